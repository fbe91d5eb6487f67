"""Commitment ledger and the invariants guarding it."""

from __future__ import annotations

from .commitments import CommitmentLedger, CommitmentPreview
from .invariants import (
    AMBIGUITY_PATTERNS,
    DEFAULT_INVARIANT_CONFIG,
    BehavioralTestabilityChecker,
    CheckContext,
    DraftOnlyChecker,
    ExplicitCommitmentChecker,
    HumanCommitterChecker,
    InvariantChecker,
    InvariantConfig,
    InvariantSuite,
    NoAmbiguityChecker,
    ambiguity_issues,
    default_checkers,
)

__all__ = [
    "AMBIGUITY_PATTERNS",
    "DEFAULT_INVARIANT_CONFIG",
    "BehavioralTestabilityChecker",
    "CheckContext",
    "CommitmentLedger",
    "CommitmentPreview",
    "DraftOnlyChecker",
    "ExplicitCommitmentChecker",
    "HumanCommitterChecker",
    "InvariantChecker",
    "InvariantConfig",
    "InvariantSuite",
    "NoAmbiguityChecker",
    "ambiguity_issues",
    "default_checkers",
]
