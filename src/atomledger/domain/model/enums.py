"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class RunMode(StrEnum):
    FULL = "full"
    DELTA = "delta"


class RunStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}


class RunPhase(StrEnum):
    """Pipeline phases in execution order."""

    LOAD_MANIFEST = "load_manifest"
    CLASSIFY = "classify"
    INFER_ATOMS = "infer_atoms"
    SYNTHESIZE_MOLECULES = "synthesize_molecules"
    VERIFY_QUALITY = "verify_quality"
    AWAIT_REVIEW = "await_review"
    APPLY = "apply"


class RunEventKind(StrEnum):
    PHASE_STARTED = "phase-started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"

    @property
    def ends_stream(self) -> bool:
        return self in {
            RunEventKind.COMPLETED,
            RunEventKind.FAILED,
            RunEventKind.INTERRUPTED,
            RunEventKind.CANCELLED,
        }


class AttestationType(StrEnum):
    LOCAL = "local"
    CI_ATTESTED = "ci-attested"


class ExceptionLane(StrEnum):
    NORMAL = "normal"
    HOTFIX = "hotfix-exception"
    SPIKE = "spike-exception"


class ManifestStatus(StrEnum):
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


class EvidenceChange(StrEnum):
    """How a piece of test evidence changed relative to the manifest's base commit."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


class AtomStatus(StrEnum):
    DRAFT = "draft"
    COMMITTED = "committed"
    SUPERSEDED = "superseded"


class QualityDecision(StrEnum):
    APPROVE = "approve"
    REVISE = "revise"
    REJECT = "reject"


class MoleculeAction(StrEnum):
    ACCEPT = "accept"
    RENAME = "rename"
    MERGE = "merge"
    SPLIT = "split"


class ReviewVerdict(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    CLARIFY = "clarify"


class CommitmentStatus(StrEnum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class CheckSeverity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class DriftType(StrEnum):
    ORPHAN_TEST = "orphan_test"
    COMMITMENT_BACKLOG = "commitment_backlog"
    STALE_COUPLING = "stale_coupling"
    UNCOVERED_CODE = "uncovered_code"


class DriftStatus(StrEnum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    WAIVED = "waived"


class DriftSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    DriftSeverity.LOW: 0,
    DriftSeverity.MEDIUM: 1,
    DriftSeverity.HIGH: 2,
    DriftSeverity.CRITICAL: 3,
}
