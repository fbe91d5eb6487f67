"""Drift debt detection, convergence policy, and reporting."""

from __future__ import annotations

from .engine import DriftDebtEngine, DriftDetectionResult, DriftObservation, observe
from .policy import (
    AGING_BUCKETS,
    DEFAULT_SEVERITY,
    ConvergenceReport,
    ConvergenceState,
    DriftPolicy,
    aging_buckets,
    evaluate_convergence,
)
from .service import CiPolicyResult, DriftService, DriftSummary

__all__ = [
    "AGING_BUCKETS",
    "DEFAULT_SEVERITY",
    "CiPolicyResult",
    "ConvergenceReport",
    "ConvergenceState",
    "DriftDebtEngine",
    "DriftDetectionResult",
    "DriftObservation",
    "DriftPolicy",
    "DriftService",
    "DriftSummary",
    "aging_buckets",
    "evaluate_convergence",
    "observe",
]
