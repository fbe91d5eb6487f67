"""Ports for the external inference service and the atom inference boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from atomledger.domain.model import (
        EvidenceInventory,
        InferredAtom,
        InferredMolecule,
        TestEvidence,
    )


class InferenceFailureKind(StrEnum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    INVALID_REQUEST = "invalid_request"
    MALFORMED_RESPONSE = "malformed_response"
    REFUSED = "refused"


@dataclass(frozen=True, slots=True)
class InferenceSuccess:
    payload: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class InferenceFailure:
    kind: InferenceFailureKind
    retryable: bool
    message: str = ""


type InferenceOutcome = InferenceSuccess | InferenceFailure


@runtime_checkable
class InferenceService(Protocol):
    """Structured-output model endpoint. Provider selection lives behind this port."""

    async def infer(self, prompt: str, schema: Mapping[str, Any]) -> InferenceOutcome: ...


@dataclass(frozen=True, slots=True)
class CandidateRejection:
    temp_id: str
    reason: str


@dataclass(frozen=True, slots=True)
class AtomInferenceResult:
    atoms: tuple[InferredAtom, ...] = ()
    rejected: tuple[CandidateRejection, ...] = ()


@runtime_checkable
class AtomInferencePort(Protocol):
    """Turns orphan tests into grounded atom candidates and groups them into molecules."""

    async def infer_atoms(
        self,
        orphans: Sequence[TestEvidence],
        *,
        evidence: EvidenceInventory,
    ) -> AtomInferenceResult: ...

    async def synthesize_molecules(
        self,
        atoms: Sequence[InferredAtom],
    ) -> tuple[InferredMolecule, ...]: ...
