"""Partition test evidence into already-linked and orphan tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from atomledger.domain.model import EvidenceChange, RunMode, TestEvidence

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping

    from atomledger.domain.model import EvidenceInventory

_CHANGED = frozenset({EvidenceChange.ADDED, EvidenceChange.MODIFIED})


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of classifying the evidence a run considers.

    ``annotated`` and ``orphan`` are disjoint and together cover every test in
    scope. Only ``orphan`` may be sent to inference.
    """

    annotated: tuple[TestEvidence, ...] = ()
    orphan: tuple[TestEvidence, ...] = ()
    changed_linked: tuple[TestEvidence, ...] = ()
    unresolved_links: tuple[TestEvidence, ...] = ()
    removed: tuple[TestEvidence, ...] = ()

    @property
    def considered(self) -> int:
        return len(self.annotated) + len(self.orphan)

    def to_payload(self) -> dict[str, Any]:
        return {
            "annotated": [test.to_payload() for test in self.annotated],
            "orphan": [test.to_payload() for test in self.orphan],
            "changed_linked": [test.to_payload() for test in self.changed_linked],
            "unresolved_links": [test.to_payload() for test in self.unresolved_links],
            "removed": [test.to_payload() for test in self.removed],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Classification:
        def load(name: str) -> tuple[TestEvidence, ...]:
            return tuple(TestEvidence.from_payload(item) for item in payload.get(name, []))

        return cls(
            annotated=load("annotated"),
            orphan=load("orphan"),
            changed_linked=load("changed_linked"),
            unresolved_links=load("unresolved_links"),
            removed=load("removed"),
        )


def classify(
    inventory: EvidenceInventory,
    *,
    mode: RunMode,
    known_atom_ids: Collection[str] | None = None,
) -> Classification:
    """Split tests into annotated and orphan sets.

    Full mode considers every test. Delta mode considers only tests added or
    modified relative to the base commit; deleted tests are reported in
    ``removed`` and never considered.
    """

    annotated: list[TestEvidence] = []
    orphan: list[TestEvidence] = []
    changed_linked: list[TestEvidence] = []
    unresolved: list[TestEvidence] = []
    removed: list[TestEvidence] = []
    seen: set[tuple[str, str]] = set()

    for test in inventory.iter_tests():
        if test.change is EvidenceChange.DELETED:
            removed.append(test)
            continue
        if mode is RunMode.DELTA and test.change not in _CHANGED:
            continue
        if test.key in seen:
            continue
        seen.add(test.key)

        if not test.is_annotated:
            orphan.append(test)
            continue

        annotated.append(test)
        if test.change is EvidenceChange.MODIFIED:
            changed_linked.append(test)
        if known_atom_ids is not None and test.linked_atom_id not in known_atom_ids:
            unresolved.append(test)

    return Classification(
        annotated=tuple(annotated),
        orphan=tuple(orphan),
        changed_linked=tuple(changed_linked),
        unresolved_links=tuple(unresolved),
        removed=tuple(removed),
    )
