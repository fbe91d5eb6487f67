"""Phase outputs as persisted in run snapshots.

Each phase hands its result to the next one only through the snapshot it
writes. ``PhaseOutputs`` decodes those snapshot payloads, so a resumed or
recovered run sees exactly what the original run stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

from atomledger.domain.model import InferredAtom, InferredMolecule, RunPhase

from .classifier import Classification
from .molecule_verifier import BatchVerificationResult
from .quality import AtomQualityResult
from .review import ReviewDecision
from .state_machine import PHASE_ORDER

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from atomledger.domain.model import PhaseSnapshot, RepoManifest
    from atomledger.domain.ports import AtomInferenceResult


def manifest_payload(manifest: RepoManifest) -> dict[str, Any]:
    return {
        "manifest_id": str(manifest.id),
        "commit_hash": manifest.commit_hash,
        "base_commit_hash": manifest.base_commit_hash,
        "tests": len(manifest.evidence.tests),
    }


def inference_payload(result: AtomInferenceResult, *, degraded: bool = False) -> dict[str, Any]:
    return {
        "atoms": [atom.to_payload() for atom in result.atoms],
        "rejected": [
            {"temp_id": rejection.temp_id, "reason": rejection.reason}
            for rejection in result.rejected
        ],
        "degraded": degraded,
    }


def molecules_payload(
    molecules: Sequence[InferredMolecule], *, degraded: bool = False
) -> dict[str, Any]:
    return {
        "molecules": [molecule.to_payload() for molecule in molecules],
        "degraded": degraded,
    }


def verification_payload(
    *,
    atom_results: Sequence[AtomQualityResult],
    batch: BatchVerificationResult,
    review_required: bool,
    pending_review: Mapping[str, Any] | None,
) -> dict[str, Any]:
    return {
        "atom_results": [result.to_payload() for result in atom_results],
        "molecules": batch.to_payload(),
        "review_required": review_required,
        "pending_review": dict(pending_review) if pending_review is not None else None,
    }


def review_payload(decisions: Sequence[ReviewDecision]) -> dict[str, Any]:
    return {"decisions": [decision.to_payload() for decision in decisions]}


@dataclass(slots=True)
class PhaseOutputs:
    payloads: dict[RunPhase, dict[str, Any]] = field(default_factory=dict[RunPhase, Any])

    @classmethod
    def from_snapshots(cls, snapshots: Mapping[RunPhase, PhaseSnapshot]) -> PhaseOutputs:
        return cls({phase: dict(snapshot.payload) for phase, snapshot in snapshots.items()})

    def absorb(self, phase: RunPhase, payload: dict[str, Any]) -> None:
        self.payloads[phase] = payload

    @property
    def last_completed(self) -> RunPhase | None:
        completed = [phase for phase in PHASE_ORDER if phase in self.payloads]
        return completed[-1] if completed else None

    def _get(self, phase: RunPhase) -> dict[str, Any]:
        try:
            return self.payloads[phase]
        except KeyError:
            raise LookupError(f"Phase {phase} has not produced output yet") from None

    @property
    def manifest_id(self) -> UUID:
        return UUID(self._get(RunPhase.LOAD_MANIFEST)["manifest_id"])

    @property
    def classification(self) -> Classification:
        return Classification.from_payload(self._get(RunPhase.CLASSIFY))

    @property
    def atoms(self) -> tuple[InferredAtom, ...]:
        payload = self.payloads.get(RunPhase.INFER_ATOMS, {})
        return tuple(InferredAtom.from_payload(item) for item in payload.get("atoms", []))

    @property
    def molecules(self) -> tuple[InferredMolecule, ...]:
        payload = self.payloads.get(RunPhase.SYNTHESIZE_MOLECULES, {})
        return tuple(InferredMolecule.from_payload(item) for item in payload.get("molecules", []))

    @property
    def atom_results(self) -> tuple[AtomQualityResult, ...]:
        payload = self._get(RunPhase.VERIFY_QUALITY)
        return tuple(AtomQualityResult.from_payload(item) for item in payload["atom_results"])

    @property
    def verification(self) -> BatchVerificationResult:
        return BatchVerificationResult.from_payload(self._get(RunPhase.VERIFY_QUALITY)["molecules"])

    @property
    def review_required(self) -> bool:
        return bool(self.payloads.get(RunPhase.VERIFY_QUALITY, {}).get("review_required"))

    @property
    def pending_review(self) -> dict[str, Any] | None:
        return self.payloads.get(RunPhase.VERIFY_QUALITY, {}).get("pending_review")

    @property
    def reviewed(self) -> bool:
        return RunPhase.AWAIT_REVIEW in self.payloads

    @property
    def decisions(self) -> tuple[ReviewDecision, ...]:
        payload = self.payloads.get(RunPhase.AWAIT_REVIEW, {})
        return tuple(ReviewDecision.from_payload(item) for item in payload.get("decisions", []))
