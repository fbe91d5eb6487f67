"""Commitment ledger: preview, commit, and supersede intent atoms.

Commit and supersede run in a single unit of work. Optimistic version checks
on atoms and commitments turn a lost race into ``ConcurrencyConflict``; the
caller refreshes and retries.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from atomledger.domain.errors import (
    ConcurrencyConflict,
    ImmutabilityViolation,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from atomledger.domain.model import AtomStatus, Commitment, utc_now

from .invariants import CheckContext, InvariantSuite

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime
    from uuid import UUID

    from atomledger.domain.model import Atom, InvariantCheckResult
    from atomledger.domain.ports import LedgerUnitOfWork, UnitOfWorkFactory

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class CommitmentPreview:
    can_commit: bool
    blocking_issues: tuple[InvariantCheckResult, ...]
    warnings: tuple[InvariantCheckResult, ...]
    checks: tuple[InvariantCheckResult, ...]
    atom_count: int
    atom_versions: dict[UUID, int]


def _unique_ids(atom_ids: Sequence[UUID]) -> list[UUID]:
    if not atom_ids:
        raise ValidationError("A commitment needs at least one atom")
    if len(set(atom_ids)) != len(atom_ids):
        raise ValidationError("Atom ids must not repeat within a commitment")
    return list(atom_ids)


def _load_atoms(uow: LedgerUnitOfWork, atom_ids: Sequence[UUID]) -> list[Atom]:
    found = {atom.id: atom for atom in uow.repositories.atoms.get_many(atom_ids)}
    missing = [atom_id for atom_id in atom_ids if atom_id not in found]
    if missing:
        raise NotFoundError("Atom", ", ".join(str(atom_id) for atom_id in missing))
    return [found[atom_id] for atom_id in atom_ids]


def _check_versions(atoms: Sequence[Atom], expected: Mapping[UUID, int] | None) -> None:
    if expected is None:
        return
    stale = [
        atom.atom_id
        for atom in atoms
        if atom.id in expected and expected[atom.id] != atom.version
    ]
    if stale:
        raise ConcurrencyConflict(f"Atoms changed since they were read: {', '.join(stale)}")


def _project_of(atoms: Sequence[Atom]) -> str | None:
    projects = {atom.project_id for atom in atoms}
    if len(projects) > 1:
        raise ValidationError("All atoms of a commitment must belong to the same project")
    return next(iter(projects))


@dataclass(slots=True)
class CommitmentLedger:
    unit_of_work_factory: UnitOfWorkFactory
    invariants: InvariantSuite = field(default_factory=InvariantSuite)
    clock: Callable[[], datetime] = field(default=utc_now)

    def preview(self, atom_ids: Sequence[UUID], committed_by: str) -> CommitmentPreview:
        """Evaluate invariants without writing anything."""

        ids = _unique_ids(atom_ids)
        with self.unit_of_work_factory() as uow:
            atoms = _load_atoms(uow, ids)
            checks = self.invariants.check_all(atoms, CheckContext(committed_by=committed_by))
            versions = {atom.id: atom.version for atom in atoms}

        blocking = tuple(check for check in checks if check.is_blocking_failure)
        return CommitmentPreview(
            can_commit=not blocking,
            blocking_issues=blocking,
            warnings=tuple(check for check in checks if check.is_warning),
            checks=tuple(checks),
            atom_count=len(atoms),
            atom_versions=versions,
        )

    def commit(
        self,
        atom_ids: Sequence[UUID],
        committed_by: str,
        *,
        override_justification: str | None = None,
        expected_versions: Mapping[UUID, int] | None = None,
    ) -> Commitment:
        ids = _unique_ids(atom_ids)
        with self.unit_of_work_factory() as uow:
            commitment = self._commit_atoms(
                uow,
                ids,
                committed_by,
                override_justification=override_justification,
                expected_versions=expected_versions,
            )
            uow.commit()
        log.info(
            "Commitment %s froze %s atom(s) for %s",
            commitment.commitment_id,
            len(ids),
            committed_by,
        )
        return commitment

    def supersede(
        self,
        commitment_id: UUID,
        atom_ids: Sequence[UUID],
        *,
        reason: str,
        committed_by: str,
        override_justification: str | None = None,
        expected_version: int | None = None,
    ) -> Commitment:
        """Replace an active commitment; the original row stays untouched apart from its pointer."""

        if not reason.strip():
            raise ValidationError("Superseding a commitment requires a reason")
        ids = _unique_ids(atom_ids)
        with self.unit_of_work_factory() as uow:
            original = uow.repositories.commitments.get(commitment_id)
            if original is None:
                raise NotFoundError("Commitment", commitment_id)
            if expected_version is not None and original.version != expected_version:
                raise ConcurrencyConflict(
                    f"Commitment {original.commitment_id} changed since it was read"
                )
            if not original.is_active:
                raise ConcurrencyConflict(
                    f"Commitment {original.commitment_id} was already superseded"
                )

            replacement = self._commit_atoms(
                uow,
                ids,
                committed_by,
                override_justification=override_justification,
                supersedes=original,
                reason=reason,
                carried_over=frozenset(original.atom_ids),
            )
            original.mark_superseded(by=replacement.id)
            replaced = [atom_id for atom_id in original.atom_ids if atom_id not in set(ids)]
            for atom in _load_atoms(uow, replaced):
                atom.mark_superseded()
            uow.commit()

        log.info(
            "Commitment %s supersedes %s: %s",
            replacement.commitment_id,
            original.commitment_id,
            reason,
        )
        return replacement

    def get(self, commitment_id: UUID) -> Commitment:
        with self.unit_of_work_factory() as uow:
            commitment = uow.repositories.commitments.get(commitment_id)
        if commitment is None:
            raise NotFoundError("Commitment", commitment_id)
        return commitment

    def history(self, commitment_id: UUID) -> list[Commitment]:
        """The supersession chain containing ``commitment_id``, oldest first."""

        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.commitments
            current = repository.get(commitment_id)
            if current is None:
                raise NotFoundError("Commitment", commitment_id)
            while current.supersedes is not None:
                previous = repository.get(current.supersedes)
                if previous is None:
                    break
                current = previous
            chain = [current]
            while current.superseded_by is not None:
                following = repository.get(current.superseded_by)
                if following is None:
                    break
                chain.append(following)
                current = following
        return chain

    def delete_commitment(self, commitment_id: UUID) -> None:
        raise ImmutabilityViolation(f"Commitment {commitment_id} cannot be deleted")

    def delete_atom(self, atom_id: UUID) -> None:
        with self.unit_of_work_factory() as uow:
            atom = uow.repositories.atoms.get(atom_id)
            if atom is None:
                raise NotFoundError("Atom", atom_id)
            if atom.is_locked:
                raise ImmutabilityViolation(f"Atom {atom.atom_id} is {atom.status}")
            uow.repositories.atoms.delete(atom)
            uow.commit()
        log.info("Deleted draft atom %s", atom.atom_id)

    def _commit_atoms(
        self,
        uow: LedgerUnitOfWork,
        atom_ids: Sequence[UUID],
        committed_by: str,
        *,
        override_justification: str | None,
        expected_versions: Mapping[UUID, int] | None = None,
        supersedes: Commitment | None = None,
        reason: str | None = None,
        carried_over: frozenset[UUID] = frozenset(),
    ) -> Commitment:
        atoms = _load_atoms(uow, atom_ids)
        _check_versions(atoms, expected_versions)
        kept = [
            atom
            for atom in atoms
            if atom.id in carried_over and atom.status is AtomStatus.COMMITTED
        ]

        override = (override_justification or "").strip() or None
        checks = self.invariants.check_all(
            atoms,
            CheckContext(
                committed_by=committed_by,
                override_justification=override,
                carried_over=frozenset(atom.atom_id for atom in kept),
            ),
        )
        blocking = [check for check in checks if check.is_blocking_failure]
        if blocking and override is None:
            raise InvariantViolation(blocking)
        if blocking:
            log.warning(
                "Committing %s over blocking invariants %s: %s",
                committed_by,
                ", ".join(check.invariant_id for check in blocking),
                override,
            )

        now = self.clock()
        commitment = Commitment(
            commitment_id=uow.repositories.commitments.next_commitment_id(),
            committed_by=committed_by,
            project_id=_project_of(atoms),
            atom_ids=[atom.id for atom in atoms],
            invariant_checks=tuple(checks),
            override_justification=override,
            supersedes=supersedes.id if supersedes is not None else None,
            supersession_reason=reason,
            committed_at=now,
        )
        for atom in atoms:
            if atom not in kept:
                atom.mark_committed(at=now)
        commitment.seal(atoms)
        uow.repositories.commitments.add(commitment)
        return commitment
