"""Domain error taxonomy.

Every failure surfaced by the reconciliation, ledger, and drift services is one
of these types. Storage adapters translate their own exceptions into them at
the repository or unit-of-work boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from atomledger.domain.model.commitment import InvariantCheckResult


class AtomLedgerError(Exception):
    """Base class for domain errors."""


class ValidationError(AtomLedgerError):
    """Malformed request; rejected before any state is written."""


class HierarchyCycleError(ValidationError):
    """A molecule parent assignment would create a cycle or exceed the depth bound."""


class NotFoundError(AtomLedgerError):
    """Referenced run, atom, commitment, or drift item does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidTransitionError(AtomLedgerError):
    """Operation not allowed in the current run state."""

    def __init__(self, run_id: UUID, current: str, requested: str) -> None:
        super().__init__(f"Run {run_id} cannot move from {current} to {requested}")
        self.run_id = run_id
        self.current = current
        self.requested = requested


class EvidenceGroundingError(AtomLedgerError):
    """Inferred candidate references evidence the manifest does not contain."""

    def __init__(self, temp_id: str, reason: str) -> None:
        super().__init__(f"Candidate {temp_id} is not grounded: {reason}")
        self.temp_id = temp_id
        self.reason = reason


class TransientInferenceError(AtomLedgerError):
    """Inference kept failing with retryable errors until attempts ran out."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class InferenceFailedError(AtomLedgerError):
    """Inference failed in a way retries cannot fix (bad request, malformed payload)."""

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind


class InvariantViolation(AtomLedgerError):  # noqa: N818
    """Blocking invariant checks failed and no override justification was supplied."""

    def __init__(self, checks: Sequence[InvariantCheckResult]) -> None:
        ids = ", ".join(check.invariant_id for check in checks)
        super().__init__(f"Blocking invariants failed: {ids}")
        self.checks = tuple(checks)


class ImmutabilityViolation(AtomLedgerError):  # noqa: N818
    """Attempt to change or delete committed state."""


class ConcurrencyConflict(AtomLedgerError):  # noqa: N818
    """Another writer changed the same atoms or commitment chain first."""
