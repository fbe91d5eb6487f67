"""Manifest builder port and the source variants it accepts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from atomledger.domain.model import EvidenceInventory

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True, kw_only=True)
class FilesystemSource:
    path: str
    commit_hash: str | None = None
    base_commit_hash: str | None = None
    kind: Literal["filesystem"] = "filesystem"


@dataclass(frozen=True, slots=True, kw_only=True)
class FileMapSource:
    """In-memory repository contents keyed by relative path."""

    files: Mapping[str, str]
    commit_hash: str | None = None
    base_commit_hash: str | None = None
    kind: Literal["file-map"] = "file-map"


@dataclass(frozen=True, slots=True, kw_only=True)
class RemoteRepositorySource:
    url: str
    ref: str = "HEAD"
    base_ref: str | None = None
    kind: Literal["remote"] = "remote"


type ManifestSource = FilesystemSource | FileMapSource | RemoteRepositorySource


def describe_source(source: ManifestSource) -> dict[str, Any]:
    """Return a JSON-safe description for auditing; file contents are not copied."""

    match source:
        case FilesystemSource():
            return {
                "kind": source.kind,
                "path": source.path,
                "commit_hash": source.commit_hash,
                "base_commit_hash": source.base_commit_hash,
            }
        case FileMapSource():
            return {
                "kind": source.kind,
                "paths": sorted(source.files),
                "commit_hash": source.commit_hash,
                "base_commit_hash": source.base_commit_hash,
            }
        case RemoteRepositorySource():
            return {
                "kind": source.kind,
                "url": source.url,
                "ref": source.ref,
                "base_ref": source.base_ref,
            }
        case _:
            raise TypeError(f"Unsupported manifest source: {source!r}")


@dataclass(frozen=True, slots=True, kw_only=True)
class ManifestData:
    commit_hash: str
    evidence: EvidenceInventory
    base_commit_hash: str | None = None
    structure: Mapping[str, Any] = field(default_factory=dict[str, Any])
    domain_concepts: tuple[str, ...] = ()
    health: Mapping[str, float] = field(default_factory=dict[str, float])


@runtime_checkable
class ManifestBuilder(Protocol):
    """Scans a source into evidence. Must be idempotent per commit hash."""

    async def resolve_commit(self, source: ManifestSource) -> str: ...

    async def build(self, source: ManifestSource, *, commit_hash: str) -> ManifestData: ...
