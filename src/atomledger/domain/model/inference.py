"""Candidates produced by inference and passed between reconciliation phases.

These are frozen: confidence and evidence are fixed once a candidate exists.
Verification and review never write back to them; they produce separate result
objects instead.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

DEGRADED_MOLECULE_NAME: Final[str] = "Unnamed Cluster"


@dataclass(frozen=True, slots=True, kw_only=True)
class SourceTestRef:
    file_path: str
    test_name: str
    line: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.file_path, self.test_name)


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceRef:
    """Pointer into the manifest; ``symbol`` narrows it to a test or export in the file."""

    file_path: str
    symbol: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class InferredAtom:
    temp_id: str
    description: str
    category: str
    source_test: SourceTestRef
    observable_outcomes: tuple[str, ...]
    confidence: float
    reasoning: str
    source_evidence: tuple[EvidenceRef, ...]
    ambiguity_reasons: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if not self.observable_outcomes:
            raise ValueError(f"atom {self.temp_id} has no observable outcomes")
        if not self.source_evidence:
            raise ValueError(f"atom {self.temp_id} has no source evidence")

    def to_payload(self) -> dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "description": self.description,
            "category": self.category,
            "source_test": {
                "file_path": self.source_test.file_path,
                "test_name": self.source_test.test_name,
                "line": self.source_test.line,
            },
            "observable_outcomes": list(self.observable_outcomes),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "source_evidence": [
                {"file_path": ref.file_path, "symbol": ref.symbol} for ref in self.source_evidence
            ],
            "ambiguity_reasons": list(self.ambiguity_reasons),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> InferredAtom:
        source_test = payload["source_test"]
        return cls(
            temp_id=str(payload["temp_id"]),
            description=str(payload["description"]),
            category=str(payload["category"]),
            source_test=SourceTestRef(
                file_path=str(source_test["file_path"]),
                test_name=str(source_test["test_name"]),
                line=source_test.get("line"),
            ),
            observable_outcomes=tuple(str(item) for item in payload["observable_outcomes"]),
            confidence=float(payload["confidence"]),
            reasoning=str(payload.get("reasoning", "")),
            source_evidence=tuple(
                EvidenceRef(file_path=str(ref["file_path"]), symbol=ref.get("symbol"))
                for ref in payload["source_evidence"]
            ),
            ambiguity_reasons=tuple(str(item) for item in payload.get("ambiguity_reasons", [])),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class InferredMolecule:
    temp_id: str
    name: str
    description: str
    atom_temp_ids: tuple[str, ...]
    confidence: float
    reasoning: str = ""
    lens_type: str = "feature"
    parent_temp_id: str | None = None

    def __post_init__(self) -> None:
        if not self.atom_temp_ids:
            raise ValueError(f"molecule {self.temp_id} references no atoms")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @property
    def is_degraded(self) -> bool:
        return self.name == DEGRADED_MOLECULE_NAME and self.confidence == 0.0

    def degraded(self, issues: Iterable[str]) -> InferredMolecule:
        """Return the sentinel replacement used when verification fails.

        Atom membership is carried over unchanged so no atom is lost.
        """

        issue_text = " ".join(issues)
        return dataclasses.replace(
            self,
            name=DEGRADED_MOLECULE_NAME,
            description=f"Atoms grouped for review (original: {self.name}). {issue_text}".strip(),
            confidence=0.0,
            reasoning=f"[Degraded] Original reasoning: {self.reasoning}",
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "name": self.name,
            "description": self.description,
            "atom_temp_ids": list(self.atom_temp_ids),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "lens_type": self.lens_type,
            "parent_temp_id": self.parent_temp_id,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> InferredMolecule:
        return cls(
            temp_id=str(payload["temp_id"]),
            name=str(payload["name"]),
            description=str(payload.get("description", "")),
            atom_temp_ids=tuple(str(item) for item in payload["atom_temp_ids"]),
            confidence=float(payload["confidence"]),
            reasoning=str(payload.get("reasoning", "")),
            lens_type=str(payload.get("lens_type", "feature")),
            parent_temp_id=payload.get("parent_temp_id"),
        )
