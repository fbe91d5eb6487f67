"""Memoised manifest loading, one build per (project, commit)."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from atomledger.domain.errors import ConcurrencyConflict, NotFoundError
from atomledger.domain.model import RepoManifest

if TYPE_CHECKING:
    from uuid import UUID

    from atomledger.domain.ports import ManifestBuilder, ManifestSource, UnitOfWorkFactory

log = getLogger(__name__)

type ManifestKey = tuple[str, str]


class ManifestProvider:
    """Builds manifests on demand and shares them between runs.

    A complete manifest already stored for the commit is reused. Concurrent
    requests for a commit that is still being scanned await the same build.
    """

    def __init__(
        self,
        builder: ManifestBuilder,
        unit_of_work_factory: UnitOfWorkFactory,
    ) -> None:
        self._builder = builder
        self._unit_of_work_factory = unit_of_work_factory
        self._in_flight: dict[ManifestKey, asyncio.Task[RepoManifest]] = {}

    async def get_or_build(self, project_id: str, source: ManifestSource) -> RepoManifest:
        commit_hash = await self._builder.resolve_commit(source)
        key = (project_id, commit_hash)

        existing = self._find(key)
        if existing is not None:
            log.info("Reusing manifest %s for %s@%s", existing.id, project_id, commit_hash)
            return existing

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._build(key, source))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        # shielded so one cancelled waiter does not abort the scan for the others
        return await asyncio.shield(task)

    def get(self, manifest_id: UUID) -> RepoManifest:
        with self._unit_of_work_factory() as uow:
            manifest = uow.repositories.manifests.get(manifest_id)
        if manifest is None:
            raise NotFoundError("Manifest", manifest_id)
        return manifest

    def _find(self, key: ManifestKey) -> RepoManifest | None:
        with self._unit_of_work_factory() as uow:
            manifest = uow.repositories.manifests.find_by_commit(*key)
        if manifest is not None and manifest.is_complete:
            return manifest
        return None

    async def _build(self, key: ManifestKey, source: ManifestSource) -> RepoManifest:
        project_id, commit_hash = key
        log.info("Building manifest for %s@%s", project_id, commit_hash)
        data = await self._builder.build(source, commit_hash=commit_hash)

        manifest = RepoManifest(
            project_id=project_id,
            commit_hash=commit_hash,
            base_commit_hash=data.base_commit_hash,
            structure=dict(data.structure),
            evidence=data.evidence,
            domain_concepts=list(data.domain_concepts),
            health=dict(data.health),
        )
        manifest.mark_complete()
        try:
            with self._unit_of_work_factory() as uow:
                uow.repositories.manifests.add(manifest)
                uow.commit()
        except ConcurrencyConflict:
            winner = self._find(key)
            if winner is None:
                raise
            log.info("Manifest for %s@%s was stored concurrently; reusing it", *key)
            return winner
        return manifest
