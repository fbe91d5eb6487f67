"""Outbound notification channel for run events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from atomledger.domain.model import RunEvent


@runtime_checkable
class EventPublisher(Protocol):
    def publish(self, event: RunEvent) -> None: ...
