"""Manifest evidence builders and a fake manifest builder."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from atomledger.domain.model import EvidenceChange, EvidenceInventory, TestEvidence
from atomledger.domain.ports import FileMapSource, ManifestData

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from atomledger.domain.ports import ManifestSource


def make_test(
    name: str,
    *,
    file_path: str = "tests/test_checkout.py",
    linked: str | None = None,
    change: EvidenceChange = EvidenceChange.UNCHANGED,
) -> TestEvidence:
    return TestEvidence(
        file_path=file_path,
        test_name=name,
        line=10,
        linked_atom_id=linked,
        change=change,
    )


def make_inventory(
    tests: Iterable[TestEvidence],
    *,
    source_files: Iterable[str] = ("src/checkout.py",),
    coverage: Mapping[str, float] | None = None,
) -> EvidenceInventory:
    return EvidenceInventory(
        tests=tuple(tests),
        source_files=tuple(source_files),
        coverage=dict(coverage or {}),
    )


def orphan_tests(count: int, *, file_path: str = "tests/test_checkout.py") -> list[TestEvidence]:
    return [make_test(f"test_case_{index}", file_path=file_path) for index in range(1, count + 1)]


def source_for(commit_hash: str = "abc123") -> FileMapSource:
    return FileMapSource(files={"tests/test_checkout.py": ""}, commit_hash=commit_hash)


@dataclass
class FakeManifestBuilder:
    """Serves prepared evidence per commit hash and counts how often it scans."""

    manifests: dict[str, EvidenceInventory] = field(default_factory=dict)
    error: Exception | None = None
    gate: asyncio.Event | None = None
    builds: list[str] = field(default_factory=list)

    def add(self, commit_hash: str, evidence: EvidenceInventory) -> None:
        self.manifests[commit_hash] = evidence

    async def resolve_commit(self, source: ManifestSource) -> str:
        assert isinstance(source, FileMapSource)
        return source.commit_hash or "HEAD"

    async def build(self, source: ManifestSource, *, commit_hash: str) -> ManifestData:
        _ = source
        self.builds.append(commit_hash)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ManifestData(
            commit_hash=commit_hash,
            evidence=self.manifests[commit_hash],
            domain_concepts=("checkout",),
        )
