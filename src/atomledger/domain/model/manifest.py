"""Repository manifest: the evidence snapshot a run reconciles against."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, cast

from atomledger.domain.errors import ImmutabilityViolation
from atomledger.domain.model.entity import Entity, utc_now
from atomledger.domain.model.enums import EvidenceChange, ManifestStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from datetime import datetime

type EvidenceKey = tuple[str, str]


@dataclass(frozen=True, slots=True, kw_only=True)
class TestEvidence:
    """One test case found in the repository.

    ``linked_atom_id`` carries the display id from an ``@atom`` annotation when
    the test already declares which intent atom it proves.
    """

    __test__ = False

    file_path: str
    test_name: str
    line: int | None = None
    linked_atom_id: str | None = None
    change: EvidenceChange = EvidenceChange.UNCHANGED
    body: str | None = None

    @property
    def key(self) -> EvidenceKey:
        return (self.file_path, self.test_name)

    @property
    def is_annotated(self) -> bool:
        return bool(self.linked_atom_id)

    def to_payload(self) -> dict[str, object]:
        return {
            "file_path": self.file_path,
            "test_name": self.test_name,
            "line": self.line,
            "linked_atom_id": self.linked_atom_id,
            "change": self.change.value,
            "body": self.body,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TestEvidence:
        return cls(
            file_path=str(payload["file_path"]),
            test_name=str(payload["test_name"]),
            line=payload.get("line"),
            linked_atom_id=payload.get("linked_atom_id"),
            change=EvidenceChange(payload.get("change", EvidenceChange.UNCHANGED)),
            body=payload.get("body"),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class SourceExport:
    file_path: str
    name: str
    kind: str = "symbol"


@dataclass(frozen=True, slots=True, kw_only=True)
class EvidenceInventory:
    """Tests, source files, exported symbols, and coverage observed at one commit."""

    tests: tuple[TestEvidence, ...] = ()
    source_files: tuple[str, ...] = ()
    exports: tuple[SourceExport, ...] = ()
    # line coverage fraction per source file; empty when no coverage was reported
    coverage: Mapping[str, float] = field(default_factory=dict[str, float])

    def iter_tests(self) -> Iterator[TestEvidence]:
        return iter(self.tests)

    def find_test(self, file_path: str, test_name: str) -> TestEvidence | None:
        for test in self.tests:
            if test.file_path == file_path and test.test_name == test_name:
                return test
        return None

    def known_files(self) -> set[str]:
        files = set(self.source_files)
        files.update(test.file_path for test in self.tests)
        files.update(export.file_path for export in self.exports)
        return files

    def symbols_in(self, file_path: str) -> set[str]:
        symbols = {test.test_name for test in self.tests if test.file_path == file_path}
        symbols.update(export.name for export in self.exports if export.file_path == file_path)
        return symbols

    def linked_atom_ids(self) -> set[str]:
        return {test.linked_atom_id for test in self.tests if test.linked_atom_id}

    def to_payload(self) -> dict[str, object]:
        return {
            "tests": [test.to_payload() for test in self.tests],
            "source_files": list(self.source_files),
            "exports": [
                {"file_path": export.file_path, "name": export.name, "kind": export.kind}
                for export in self.exports
            ],
            "coverage": dict(self.coverage),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> EvidenceInventory:
        exports = cast("list[Mapping[str, Any]]", payload.get("exports", []))
        return cls(
            tests=tuple(TestEvidence.from_payload(item) for item in payload.get("tests", [])),
            source_files=tuple(str(path) for path in payload.get("source_files", [])),
            exports=tuple(
                SourceExport(
                    file_path=str(item["file_path"]),
                    name=str(item["name"]),
                    kind=str(item.get("kind", "symbol")),
                )
                for item in exports
            ),
            coverage={
                str(path): float(value) for path, value in payload.get("coverage", {}).items()
            },
        )

    @classmethod
    def of(cls, tests: Iterable[TestEvidence], **kwargs: Any) -> EvidenceInventory:
        return cls(tests=tuple(tests), **kwargs)


@dataclass(eq=False, kw_only=True)
class RepoManifest(Entity):
    """Evidence snapshot for one (project, commit); shared by every run on that commit."""

    project_id: str
    commit_hash: str
    base_commit_hash: str | None = None
    status: ManifestStatus = ManifestStatus.GENERATING
    structure: dict[str, Any] = field(default_factory=dict[str, Any])
    evidence: EvidenceInventory = field(default_factory=EvidenceInventory)
    domain_concepts: list[str] = field(default_factory=list[str])
    health: dict[str, float] = field(default_factory=dict[str, float])
    error: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.status is ManifestStatus.COMPLETE

    def mark_complete(self, *, now: datetime | None = None) -> None:
        if self.is_complete:
            raise ImmutabilityViolation(f"Manifest {self.id} is already complete")
        self.status = ManifestStatus.COMPLETE
        self.completed_at = now or utc_now()

    def mark_failed(self, message: str) -> None:
        if self.is_complete:
            raise ImmutabilityViolation(f"Manifest {self.id} is already complete")
        self.status = ManifestStatus.FAILED
        self.error = message
