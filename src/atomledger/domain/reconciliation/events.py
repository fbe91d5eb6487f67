"""Ordered, replayable run event log."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING, Any

from atomledger.domain.model import RunEvent, utc_now

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model import ReconciliationRun, RunEventKind
    from atomledger.domain.ports import EventPublisher, UnitOfWorkFactory

log = getLogger(__name__)


class RunEventLog:
    """Append-only event stream per run.

    Events are persisted with a strictly increasing sequence number before any
    consumer sees them. Consumers either ``replay`` from a sequence number or
    ``tail`` the stream until it ends; both resynchronise from persisted state.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        publishers: Sequence[EventPublisher] = (),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._publishers = tuple(publishers)
        self._clock = clock
        self._signals: dict[UUID, asyncio.Event] = {}

    def append(
        self,
        run: ReconciliationRun,
        kind: RunEventKind,
        *,
        payload: dict[str, Any] | None = None,
    ) -> RunEvent:
        with self._unit_of_work_factory() as uow:
            sequence = uow.repositories.run_events.last_sequence(run.id) + 1
            event = RunEvent(
                run_id=run.id,
                sequence=sequence,
                kind=kind,
                status=run.status,
                phase=run.current_phase,
                atoms_count=run.inferred_atoms_count,
                molecules_count=run.inferred_molecules_count,
                payload=payload or {},
                emitted_at=self._clock(),
            )
            uow.repositories.run_events.add(event)
            uow.commit()

        self._wake(run.id)
        self._publish(event)
        return event

    def replay(self, run_id: UUID, *, after: int = 0) -> list[RunEvent]:
        with self._unit_of_work_factory() as uow:
            return uow.repositories.run_events.list_for_run(run_id, after=after)

    async def tail(self, run_id: UUID, *, after: int = 0) -> AsyncIterator[RunEvent]:
        """Yield events as they arrive until one ends the stream."""

        cursor = after
        while True:
            signal = self._signal(run_id)
            for event in self.replay(run_id, after=cursor):
                cursor = event.sequence
                yield event
                if event.kind.ends_stream:
                    return
            await signal.wait()

    def _signal(self, run_id: UUID) -> asyncio.Event:
        signal = self._signals.get(run_id)
        if signal is None or signal.is_set():
            signal = asyncio.Event()
            self._signals[run_id] = signal
        return signal

    def _wake(self, run_id: UUID) -> None:
        signal = self._signals.pop(run_id, None)
        if signal is not None:
            signal.set()

    def _publish(self, event: RunEvent) -> None:
        for publisher in self._publishers:
            try:
                publisher.publish(event)
            except Exception:
                log.exception(
                    "Event publisher %r failed for run %s event %s",
                    publisher,
                    event.run_id,
                    event.sequence,
                )
