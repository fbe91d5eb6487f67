"""Allowed run status transitions."""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from atomledger.domain.errors import InvalidTransitionError
from atomledger.domain.model import RunPhase, RunStatus, utc_now

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from atomledger.domain.model import ReconciliationRun

ALLOWED_TRANSITIONS: Final[Mapping[RunStatus, frozenset[RunStatus]]] = MappingProxyType(
    {
        RunStatus.QUEUED: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED, RunStatus.FAILED}),
        RunStatus.RUNNING: frozenset(
            {
                RunStatus.INTERRUPTED,
                RunStatus.COMPLETED,
                RunStatus.FAILED,
                RunStatus.CANCELLED,
            }
        ),
        RunStatus.INTERRUPTED: frozenset(
            {RunStatus.RUNNING, RunStatus.CANCELLED, RunStatus.FAILED}
        ),
        RunStatus.COMPLETED: frozenset(),
        RunStatus.FAILED: frozenset(),
        RunStatus.CANCELLED: frozenset(),
    }
)

PHASE_ORDER: Final[tuple[RunPhase, ...]] = tuple(RunPhase)

# failures in these phases end the run; the rest degrade to an empty result
CRITICAL_PHASES: Final[frozenset[RunPhase]] = frozenset(
    {
        RunPhase.LOAD_MANIFEST,
        RunPhase.CLASSIFY,
        RunPhase.VERIFY_QUALITY,
        RunPhase.APPLY,
    }
)


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    run: ReconciliationRun,
    target: RunStatus,
    *,
    now: datetime | None = None,
) -> None:
    if not can_transition(run.status, target):
        raise InvalidTransitionError(run.id, run.status.value, target.value)
    moment = now or utc_now()
    run.status = target
    run.updated_at = moment
    if target.is_terminal:
        run.completed_at = moment


def phases_after(phase: RunPhase | None) -> tuple[RunPhase, ...]:
    """Phases still to run once ``phase`` has completed (all phases when ``None``)."""

    if phase is None:
        return PHASE_ORDER
    index = PHASE_ORDER.index(phase)
    return PHASE_ORDER[index + 1 :]
