"""Reconciliation runs: classification, inference, verification, review, apply."""

from __future__ import annotations

from .classifier import Classification, classify
from .events import RunEventLog
from .manifests import ManifestProvider
from .molecule_verifier import (
    BatchVerificationResult,
    MoleculeThresholds,
    MoleculeVerificationResult,
    verify_molecule,
    verify_molecules,
)
from .orchestrator import (
    ReconciliationOrchestrator,
    RecoverableRun,
    RecoveryResult,
    RunRequest,
    RunStatusView,
    run_request,
)
from .phases import PhaseOutputs
from .quality import (
    DEFAULT_QUALITY_RULES,
    AtomQualityResult,
    QualityRule,
    QualityThresholds,
    evaluate_atom,
    evaluate_atoms,
    score_atom,
)
from .review import ReviewDecision, build_interrupt_payload
from .run_store import RunStore
from .state_machine import (
    ALLOWED_TRANSITIONS,
    CRITICAL_PHASES,
    PHASE_ORDER,
    can_transition,
    phases_after,
    transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CRITICAL_PHASES",
    "DEFAULT_QUALITY_RULES",
    "PHASE_ORDER",
    "AtomQualityResult",
    "BatchVerificationResult",
    "Classification",
    "ManifestProvider",
    "MoleculeThresholds",
    "MoleculeVerificationResult",
    "PhaseOutputs",
    "QualityRule",
    "QualityThresholds",
    "ReconciliationOrchestrator",
    "RecoverableRun",
    "RecoveryResult",
    "ReviewDecision",
    "RunEventLog",
    "RunRequest",
    "RunStatusView",
    "RunStore",
    "build_interrupt_payload",
    "can_transition",
    "classify",
    "evaluate_atom",
    "evaluate_atoms",
    "phases_after",
    "run_request",
    "score_atom",
    "transition",
    "verify_molecule",
    "verify_molecules",
]
