from __future__ import annotations

from datetime import UTC, datetime

import pytest

from atomledger.domain.errors import InvalidTransitionError
from atomledger.domain.model import ReconciliationRun, RunMode, RunPhase, RunStatus
from atomledger.domain.reconciliation import can_transition, phases_after, transition


def _run(status: RunStatus = RunStatus.QUEUED) -> ReconciliationRun:
    return ReconciliationRun(project_id="shop", mode=RunMode.FULL, source={}, status=status)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (RunStatus.QUEUED, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.INTERRUPTED),
        (RunStatus.INTERRUPTED, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.CANCELLED),
        (RunStatus.INTERRUPTED, RunStatus.CANCELLED),
    ],
)
def test_allowed_transitions(current: RunStatus, target: RunStatus) -> None:
    assert can_transition(current, target)


@pytest.mark.parametrize("terminal", [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED])
def test_terminal_states_are_final(terminal: RunStatus) -> None:
    run = _run(terminal)
    with pytest.raises(InvalidTransitionError):
        transition(run, RunStatus.RUNNING)


def test_queued_run_cannot_complete_directly() -> None:
    with pytest.raises(InvalidTransitionError):
        transition(_run(), RunStatus.COMPLETED)


def test_terminal_transition_stamps_completion() -> None:
    run = _run(RunStatus.RUNNING)
    moment = datetime(2026, 3, 2, 12, tzinfo=UTC)

    transition(run, RunStatus.FAILED, now=moment)

    assert run.status is RunStatus.FAILED
    assert run.completed_at == moment
    assert run.updated_at == moment


def test_phases_after_follows_pipeline_order() -> None:
    assert phases_after(None)[0] is RunPhase.LOAD_MANIFEST
    assert phases_after(RunPhase.VERIFY_QUALITY) == (RunPhase.AWAIT_REVIEW, RunPhase.APPLY)
    assert phases_after(RunPhase.APPLY) == ()
