"""Persisted intent atoms and the molecule lenses that group them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Literal
from uuid import UUID

from atomledger.domain.errors import HierarchyCycleError, ImmutabilityViolation
from atomledger.domain.model.entity import Entity, utc_now
from atomledger.domain.model.enums import AtomStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

MAX_MOLECULE_DEPTH: Final[int] = 16


# Origin variants -------------------------------------------------------------


@dataclass(frozen=True, slots=True, kw_only=True)
class CreatedByHuman:
    author: str
    kind: Literal["human"] = "human"


@dataclass(frozen=True, slots=True, kw_only=True)
class ProposedByAgent:
    agent: str
    rationale: str
    confidence: float
    run_id: UUID | None = None
    kind: Literal["agent"] = "agent"


type AtomOrigin = CreatedByHuman | ProposedByAgent


def origin_to_payload(origin: AtomOrigin) -> dict[str, Any]:
    match origin:
        case CreatedByHuman(author=author):
            return {"kind": "human", "author": author}
        case ProposedByAgent(agent=agent, rationale=rationale, confidence=confidence, run_id=run):
            return {
                "kind": "agent",
                "agent": agent,
                "rationale": rationale,
                "confidence": confidence,
                "run_id": str(run) if run else None,
            }
        case _:
            raise TypeError(f"Unsupported atom origin: {origin!r}")


def origin_from_payload(payload: Mapping[str, Any]) -> AtomOrigin:
    kind = payload.get("kind")
    if kind == "human":
        return CreatedByHuman(author=str(payload["author"]))
    if kind == "agent":
        run_id = payload.get("run_id")
        return ProposedByAgent(
            agent=str(payload["agent"]),
            rationale=str(payload.get("rationale", "")),
            confidence=float(payload["confidence"]),
            run_id=UUID(run_id) if run_id else None,
        )
    raise ValueError(f"Unknown atom origin kind: {kind!r}")


# Atom ------------------------------------------------------------------------


@dataclass(eq=False, kw_only=True)
class Atom(Entity):
    atom_id: str
    description: str
    category: str
    origin: AtomOrigin
    observable_outcomes: list[str] = field(default_factory=list[str])
    quality_score: float | None = None
    confidence: float | None = None
    status: AtomStatus = AtomStatus.DRAFT
    project_id: str | None = None
    source_test_file: str | None = None
    source_test_name: str | None = None
    tags: list[str] = field(default_factory=list[str])
    created_at: datetime = field(default_factory=utc_now)
    committed_at: datetime | None = None
    version: int = field(default=0, init=False, repr=False)

    @property
    def is_draft(self) -> bool:
        return self.status is AtomStatus.DRAFT

    @property
    def is_locked(self) -> bool:
        return self.status in {AtomStatus.COMMITTED, AtomStatus.SUPERSEDED}

    def mark_committed(self, *, at: datetime) -> None:
        if not self.is_draft:
            raise ImmutabilityViolation(f"Atom {self.atom_id} is {self.status}, not draft")
        self.status = AtomStatus.COMMITTED
        self.committed_at = at

    def mark_superseded(self) -> None:
        if self.status is not AtomStatus.COMMITTED:
            raise ImmutabilityViolation(f"Atom {self.atom_id} is {self.status}, not committed")
        self.status = AtomStatus.SUPERSEDED


# Molecule --------------------------------------------------------------------


@dataclass(eq=False, kw_only=True)
class Molecule(Entity):
    """A lens over atoms. Membership is by reference; atoms stay independent."""

    molecule_id: str
    name: str
    description: str
    atom_ids: list[UUID] = field(default_factory=list["UUID"])
    lens_type: str = "feature"
    confidence: float = 0.0
    degraded: bool = False
    project_id: str | None = None
    source_run_id: UUID | None = None
    created_at: datetime = field(default_factory=utc_now)
    _parent_id: UUID | None = field(default=None, init=False, repr=False)

    @property
    def parent_id(self) -> UUID | None:
        return self._parent_id


def assign_parent(
    child: Molecule,
    parent: Molecule | None,
    *,
    molecules_by_id: Mapping[UUID, Molecule],
    max_depth: int = MAX_MOLECULE_DEPTH,
) -> None:
    """Point ``child`` at ``parent`` after checking the ancestor chain.

    The walk is bounded by ``max_depth`` so corrupt chains cannot loop forever.
    """

    if parent is None:
        child._parent_id = None  # noqa: SLF001
        return
    if parent.id == child.id:
        raise HierarchyCycleError(f"Molecule {child.molecule_id} cannot be its own parent")

    depth = 1
    cursor: Molecule | None = parent
    while cursor is not None:
        if cursor.id == child.id:
            raise HierarchyCycleError(
                f"Assigning {parent.molecule_id} as parent of {child.molecule_id} creates a cycle"
            )
        depth += 1
        if depth > max_depth:
            raise HierarchyCycleError(
                f"Molecule hierarchy under {child.molecule_id} exceeds depth {max_depth}"
            )
        cursor = molecules_by_id.get(cursor.parent_id) if cursor.parent_id else None

    child._parent_id = parent.id  # noqa: SLF001
