"""Human review: interrupt payloads and decision handling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import QualityDecision, ReviewVerdict

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from atomledger.domain.model import InferredAtom, InferredMolecule

    from .quality import AtomQualityResult, QualityThresholds

REASON_QUALITY = "Some atoms need human review before they can be applied"
REASON_REQUESTED = "Review was requested for this run"
REASON_CLARIFY = "Clarification requested for some items"

type ReviewTarget = Literal["atom", "molecule"]


@dataclass(frozen=True, slots=True, kw_only=True)
class ReviewDecision:
    target_id: str
    verdict: ReviewVerdict
    target: ReviewTarget = "atom"
    note: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "verdict": self.verdict.value,
            "target": self.target,
            "note": self.note,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ReviewDecision:
        target = payload.get("target", "atom")
        if target not in {"atom", "molecule"}:
            raise ValidationError(f"Unknown review target: {target!r}")
        try:
            verdict = ReviewVerdict(payload["verdict"])
        except ValueError as exc:
            raise ValidationError(f"Unknown review verdict: {payload['verdict']!r}") from exc
        return cls(
            target_id=str(payload["target_id"]),
            verdict=verdict,
            target=target,
            note=payload.get("note"),
        )


def needs_review(
    atom_results: Iterable[AtomQualityResult],
    *,
    requested: bool,
) -> bool:
    return requested or any(result.decision is QualityDecision.REVISE for result in atom_results)


def build_interrupt_payload(
    *,
    atoms: Sequence[InferredAtom],
    atom_results: Sequence[AtomQualityResult],
    molecules: Sequence[InferredMolecule],
    thresholds: QualityThresholds,
    requested: bool,
) -> dict[str, Any]:
    """Summarise verification results for a reviewer.

    Rejected atoms are left out; when review was requested explicitly every
    non-rejected atom is pending, otherwise only the ``revise`` ones are.
    """

    results_by_id = {result.temp_id: result for result in atom_results}
    pending_atoms: list[dict[str, Any]] = []
    for atom in atoms:
        result = results_by_id[atom.temp_id]
        if result.decision is QualityDecision.REJECT:
            continue
        if not requested and result.decision is not QualityDecision.REVISE:
            continue
        pending_atoms.append(
            {
                "temp_id": atom.temp_id,
                "description": atom.description,
                "category": atom.category,
                "quality_score": result.score,
                "passes": result.decision is QualityDecision.APPROVE,
                "issues": list(result.issues),
            }
        )

    pass_count = sum(1 for result in atom_results if result.decision is QualityDecision.APPROVE)
    return {
        "summary": {
            "total_atoms": len(atom_results),
            "pass_count": pass_count,
            "fail_count": len(atom_results) - pass_count,
            "quality_threshold": thresholds.approve,
        },
        "pending_atoms": pending_atoms,
        "pending_molecules": [
            {
                "temp_id": molecule.temp_id,
                "name": molecule.name,
                "description": molecule.description,
                "atom_count": len(molecule.atom_temp_ids),
                "confidence": molecule.confidence,
            }
            for molecule in molecules
        ],
        "reason": REASON_REQUESTED if requested else REASON_QUALITY,
    }


def _pending_ids(payload: Mapping[str, Any], key: str) -> set[str]:
    return {str(item["temp_id"]) for item in payload.get(key, [])}


def validate_decisions(
    payload: Mapping[str, Any],
    decisions: Sequence[ReviewDecision],
) -> None:
    if not decisions:
        raise ValidationError("At least one review decision is required")

    pending = {
        "atom": _pending_ids(payload, "pending_atoms"),
        "molecule": _pending_ids(payload, "pending_molecules"),
    }
    seen: set[tuple[str, str]] = set()
    for decision in decisions:
        key = (decision.target, decision.target_id)
        if key in seen:
            raise ValidationError(f"Duplicate decision for {decision.target} {decision.target_id}")
        seen.add(key)
        if decision.target_id not in pending[decision.target]:
            raise ValidationError(
                f"{decision.target.capitalize()} {decision.target_id} is not pending review"
            )


def narrow_to_clarifications(
    payload: Mapping[str, Any],
    decisions: Sequence[ReviewDecision],
) -> dict[str, Any]:
    """Keep only the pending items a reviewer asked to have clarified."""

    wanted = {
        (decision.target, decision.target_id)
        for decision in decisions
        if decision.verdict is ReviewVerdict.CLARIFY
    }
    return {
        **payload,
        "pending_atoms": [
            item for item in payload.get("pending_atoms", []) if ("atom", item["temp_id"]) in wanted
        ],
        "pending_molecules": [
            item
            for item in payload.get("pending_molecules", [])
            if ("molecule", item["temp_id"]) in wanted
        ],
        "reason": REASON_CLARIFY,
    }


def approved_atom_ids(
    atom_results: Iterable[AtomQualityResult],
    decisions: Iterable[ReviewDecision] = (),
) -> set[str]:
    """Atoms to apply: explicit reviewer verdicts win, the rest follow the gate."""

    verdicts = {d.target_id: d.verdict for d in decisions if d.target == "atom"}
    approved: set[str] = set()
    for result in atom_results:
        verdict = verdicts.get(result.temp_id)
        if verdict is ReviewVerdict.APPROVE or (
            verdict is None and result.decision is QualityDecision.APPROVE
        ):
            approved.add(result.temp_id)
    return approved


def rejected_molecule_ids(decisions: Iterable[ReviewDecision]) -> set[str]:
    return {
        decision.target_id
        for decision in decisions
        if decision.target == "molecule" and decision.verdict is ReviewVerdict.REJECT
    }
