"""Molecule verification with degrade-not-reject semantics.

A molecule that fails verification is replaced by the ``Unnamed Cluster``
sentinel carrying the same atom membership. The batch never changes the number
of molecules or the set of atoms they reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import InferredMolecule, MoleculeAction

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from atomledger.domain.model import InferredAtom

log = getLogger(__name__)

GENERIC_NAME_WORDS: Final[tuple[str, ...]] = ("unnamed", "misc", "other", "cluster", "group")
_MIN_DESCRIPTION_LENGTH = 10
_CONCEPT_MIN_LENGTH = 4
_LOW_FIT_ISSUE_THRESHOLD = 70
_SPLIT_FIT_THRESHOLD = 50
_LOW_CONFIDENCE = 0.5
_FOCUS_CATEGORIES: Final[tuple[str, ...]] = ("security", "performance")

ISSUE_SHORT_DESCRIPTION = "Molecule description is too short or missing"
ISSUE_GENERIC_NAME = "Molecule name is too generic"
ISSUE_TOO_MANY_CATEGORIES = "Molecule contains atoms from too many different categories"
ISSUE_NO_CONCEPT_OVERLAP = "Molecule description does not reference atom concepts"
ISSUE_NO_ATOMS = "Molecule has no atoms"
ISSUE_POOR_FIT = "Some atoms may not fit well in this molecule"


@dataclass(frozen=True, slots=True)
class MoleculeThresholds:
    min_completeness: int = 60
    min_fit: int = 60
    min_atoms_for_coherence: int = 2
    max_categories: int = 3

    def __post_init__(self) -> None:
        if self.min_atoms_for_coherence < 1 or self.max_categories < 1:
            raise ValidationError("Molecule coherence limits must be positive")


@dataclass(frozen=True, slots=True, kw_only=True)
class MoleculeVerificationResult:
    molecule_temp_id: str
    passes: bool
    completeness_score: int
    fit_score: int
    overall_score: int
    recommended_action: MoleculeAction
    molecule: InferredMolecule
    degraded_molecule: InferredMolecule | None = None
    issues: tuple[str, ...] = ()
    feedback: tuple[str, ...] = ()

    @property
    def output_molecule(self) -> InferredMolecule:
        return self.degraded_molecule or self.molecule

    def to_payload(self) -> dict[str, Any]:
        return {
            "molecule_temp_id": self.molecule_temp_id,
            "passes": self.passes,
            "completeness_score": self.completeness_score,
            "fit_score": self.fit_score,
            "overall_score": self.overall_score,
            "recommended_action": self.recommended_action.value,
            "molecule": self.molecule.to_payload(),
            "degraded_molecule": (
                self.degraded_molecule.to_payload() if self.degraded_molecule else None
            ),
            "issues": list(self.issues),
            "feedback": list(self.feedback),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MoleculeVerificationResult:
        degraded = payload.get("degraded_molecule")
        return cls(
            molecule_temp_id=str(payload["molecule_temp_id"]),
            passes=bool(payload["passes"]),
            completeness_score=int(payload["completeness_score"]),
            fit_score=int(payload["fit_score"]),
            overall_score=int(payload["overall_score"]),
            recommended_action=MoleculeAction(payload["recommended_action"]),
            molecule=InferredMolecule.from_payload(payload["molecule"]),
            degraded_molecule=InferredMolecule.from_payload(degraded) if degraded else None,
            issues=tuple(payload.get("issues", ())),
            feedback=tuple(payload.get("feedback", ())),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class BatchVerificationResult:
    total_molecules: int = 0
    passed_count: int = 0
    degraded_count: int = 0
    results: tuple[MoleculeVerificationResult, ...] = ()
    output_molecules: tuple[InferredMolecule, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "total_molecules": self.total_molecules,
            "passed_count": self.passed_count,
            "degraded_count": self.degraded_count,
            "results": [result.to_payload() for result in self.results],
            "output_molecules": [molecule.to_payload() for molecule in self.output_molecules],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> BatchVerificationResult:
        return cls(
            total_molecules=int(payload["total_molecules"]),
            passed_count=int(payload["passed_count"]),
            degraded_count=int(payload["degraded_count"]),
            results=tuple(
                MoleculeVerificationResult.from_payload(item) for item in payload["results"]
            ),
            output_molecules=tuple(
                InferredMolecule.from_payload(item) for item in payload["output_molecules"]
            ),
        )


def _member_ids(molecules: Iterable[InferredMolecule]) -> set[str]:
    return {temp_id for molecule in molecules for temp_id in molecule.atom_temp_ids}


def _words(text: str) -> list[str]:
    return text.lower().split()


def _completeness(
    molecule: InferredMolecule,
    atoms: Sequence[InferredAtom],
    thresholds: MoleculeThresholds,
    issues: list[str],
) -> int:
    score = 100
    if len(molecule.description.strip()) < _MIN_DESCRIPTION_LENGTH:
        score -= 20
        issues.append(ISSUE_SHORT_DESCRIPTION)

    lowered_name = molecule.name.lower()
    if any(word in lowered_name for word in GENERIC_NAME_WORDS):
        score -= 15
        issues.append(ISSUE_GENERIC_NAME)

    if len(atoms) < thresholds.min_atoms_for_coherence:
        score -= 15
        issues.append(f"Molecule has fewer than {thresholds.min_atoms_for_coherence} atoms")

    if len({atom.category for atom in atoms}) > thresholds.max_categories:
        score -= 10
        issues.append(ISSUE_TOO_MANY_CATEGORIES)

    concepts = [
        word
        for atom in atoms
        for word in _words(atom.description)
        if len(word) > _CONCEPT_MIN_LENGTH
    ]
    description_words = set(_words(molecule.description))
    if concepts and not any(concept in description_words for concept in concepts):
        score -= 10
        issues.append(ISSUE_NO_CONCEPT_OVERLAP)

    return max(0, score)


def _atom_fit(molecule: InferredMolecule, atom: InferredAtom) -> int:
    fit = 100
    name_words = _words(molecule.name)
    atom_words = _words(atom.description)
    overlap = [
        word
        for word in name_words
        if any(word in atom_word or atom_word in word for atom_word in atom_words)
    ]
    if not overlap and len(name_words) > 1:
        fit -= 20

    lowered_name = molecule.name.lower()
    for category in _FOCUS_CATEGORIES:
        if category in lowered_name and atom.category != category:
            fit -= 15

    if atom.confidence < _LOW_CONFIDENCE:
        fit -= 10
    return fit


def _fit(
    molecule: InferredMolecule,
    atoms: Sequence[InferredAtom],
    issues: list[str],
) -> int:
    if not atoms:
        issues.append(ISSUE_NO_ATOMS)
        return 0
    average = round(sum(_atom_fit(molecule, atom) for atom in atoms) / len(atoms))
    if average < _LOW_FIT_ISSUE_THRESHOLD:
        issues.append(ISSUE_POOR_FIT)
    return average


def _recommend(
    fit_score: int,
    atom_count: int,
    issues: Sequence[str],
    thresholds: MoleculeThresholds,
) -> MoleculeAction:
    if ISSUE_TOO_MANY_CATEGORIES in issues or fit_score < _SPLIT_FIT_THRESHOLD:
        return MoleculeAction.SPLIT
    if atom_count < thresholds.min_atoms_for_coherence:
        return MoleculeAction.MERGE
    if ISSUE_GENERIC_NAME in issues:
        return MoleculeAction.RENAME
    return MoleculeAction.ACCEPT


def _feedback(
    completeness_score: int,
    fit_score: int,
    issues: Sequence[str],
    thresholds: MoleculeThresholds,
) -> tuple[str, ...]:
    feedback: list[str] = []
    if completeness_score < thresholds.min_completeness:
        feedback.append(
            "Consider improving molecule description to better summarize the grouped behaviors"
        )
    if fit_score < thresholds.min_fit:
        feedback.append("Review atom grouping - some atoms may fit better in other molecules")
    if ISSUE_GENERIC_NAME in issues:
        feedback.append("Give the molecule a name that describes the capability it covers")
    return tuple(feedback)


def verify_molecule(
    molecule: InferredMolecule,
    atoms: Iterable[InferredAtom],
    thresholds: MoleculeThresholds | None = None,
) -> MoleculeVerificationResult:
    active = thresholds or MoleculeThresholds()
    member_ids = set(molecule.atom_temp_ids)
    members = [atom for atom in atoms if atom.temp_id in member_ids]
    issues: list[str] = []

    completeness_score = _completeness(molecule, members, active, issues)
    fit_score = _fit(molecule, members, issues)
    passes = completeness_score >= active.min_completeness and fit_score >= active.min_fit

    degraded = None
    if not passes:
        degraded = molecule.degraded(issues)
        log.info(
            "Molecule %s degraded to unnamed cluster (completeness=%s, fit=%s)",
            molecule.temp_id,
            completeness_score,
            fit_score,
        )

    return MoleculeVerificationResult(
        molecule_temp_id=molecule.temp_id,
        passes=passes,
        completeness_score=completeness_score,
        fit_score=fit_score,
        overall_score=round((completeness_score + fit_score) / 2),
        recommended_action=_recommend(fit_score, len(members), issues, active),
        molecule=molecule,
        degraded_molecule=degraded,
        issues=tuple(issues),
        feedback=_feedback(completeness_score, fit_score, issues, active),
    )


def verify_molecules(
    molecules: Sequence[InferredMolecule],
    atoms: Sequence[InferredAtom],
    thresholds: MoleculeThresholds | None = None,
) -> BatchVerificationResult:
    results = tuple(verify_molecule(molecule, atoms, thresholds) for molecule in molecules)
    outputs = tuple(result.output_molecule for result in results)
    passed = sum(1 for result in results if result.passes)

    if len(outputs) != len(molecules) or _member_ids(outputs) != _member_ids(molecules):
        raise RuntimeError("Molecule verification changed molecule count or atom membership")

    log.info(
        "Verified %s molecules: %s passed, %s degraded",
        len(molecules),
        passed,
        len(molecules) - passed,
    )
    return BatchVerificationResult(
        total_molecules=len(molecules),
        passed_count=passed,
        degraded_count=len(molecules) - passed,
        results=results,
        output_molecules=outputs,
    )
