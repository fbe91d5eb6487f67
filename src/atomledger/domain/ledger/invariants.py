"""Invariant checks evaluated before atoms are committed."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

from atomledger.domain.model import AtomStatus, CheckSeverity, InvariantCheckResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from atomledger.domain.model import Atom


@dataclass(frozen=True, slots=True)
class CheckContext:
    committed_by: str
    override_justification: str | None = None
    # committed atoms a superseding commitment carries over unchanged
    carried_over: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class InvariantConfig:
    enabled: bool = True
    blocking: bool = True

    @property
    def severity(self) -> CheckSeverity:
        return CheckSeverity.ERROR if self.blocking else CheckSeverity.WARNING


@runtime_checkable
class InvariantChecker(Protocol):
    invariant_id: str
    name: str

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult: ...


def _result(
    checker: InvariantChecker,
    config: InvariantConfig,
    *,
    failing: Sequence[Atom] = (),
    passed_message: str,
    failed_message: str,
    suggestions: Sequence[str] = (),
) -> InvariantCheckResult:
    has_failed = bool(failing)
    return InvariantCheckResult(
        invariant_id=checker.invariant_id,
        name=checker.name,
        passed=not has_failed,
        severity=config.severity,
        message=failed_message if has_failed else passed_message,
        affected_atom_ids=tuple(atom.atom_id for atom in failing),
        suggestions=tuple(suggestions) if has_failed else (),
    )


# Built-in checkers -----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExplicitCommitmentChecker:
    invariant_id: str = "INV-001"
    name: str = "Explicit Commitment Required"

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult:
        return _result(
            self,
            config,
            failing=atoms if not context.committed_by.strip() else (),
            passed_message=f"Commitment explicitly requested by {context.committed_by}",
            failed_message="Intent cannot be committed without a named committer",
            suggestions=("Provide the name of the person committing these atoms",),
        )


@dataclass(frozen=True, slots=True)
class BehavioralTestabilityChecker:
    invariant_id: str = "INV-002"
    name: str = "Intent Atoms Must Be Behaviorally Testable"
    min_quality_score: float = 60.0

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult:
        failing = [
            atom
            for atom in atoms
            if atom.quality_score is None or atom.quality_score < self.min_quality_score
        ]
        return _result(
            self,
            config,
            failing=failing,
            passed_message="All atoms meet the testability threshold",
            failed_message=(
                f"{len(failing)} atom(s) score below {self.min_quality_score:g} "
                "or have no quality score"
            ),
            suggestions=("Describe observable, falsifiable behaviour with concrete outcomes",),
        )


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


AMBIGUITY_PATTERNS: Final[Mapping[str, tuple[re.Pattern[str], ...]]] = MappingProxyType(
    {
        "vague term": _patterns(
            r"\bfast\b",
            r"\bquick(ly)?\b",
            r"\befficient(ly)?\b",
            r"\bappropriate(ly)?\b",
            r"\buser[- ]friendly\b",
            r"\beasy\b",
            r"\bsimple\b",
            r"\bintuitive\b",
            r"\bscalable\b",
            r"\brobust\b",
            r"\breliable\b",
            r"\bsecure(ly)?\b",
            r"\bgood\b",
            r"\bbetter\b",
            r"\bbest\b",
            r"\boptimal\b",
            r"\breasonable\b",
            r"\bacceptable\b",
            r"\bsufficient\b",
            r"\bas needed\b",
            r"\bwhere applicable\b",
            r"\bif necessary\b",
            r"\betc\b",
            r"\band so on\b",
        ),
        "implementation directive": _patterns(
            r"\buse\s+\w+\s+(framework|library|tool|language|database|api)\b",
            r"\bimplement(ed)?\s+(with|using|in)\b",
            r"\bwritten\s+in\b",
            r"\bbuilt\s+(with|using)\b",
            r"\bdeploy(ed)?\s+(to|on)\b",
            r"\buse\s+(react|angular|vue|sql|mongodb|redis|docker|kubernetes|aws|gcp|azure)\b",
        ),
        "unresolved marker": _patterns(
            r"\btbd\b",
            r"\bto\s+be\s+(determined|defined|decided)\b",
            r"\bunclear\b",
            r"\?\?\?+",
            r"\btodo\b",
            r"\bfixme\b",
            r"\bneeds?\s+to\s+(be\s+)?(define|determine|decide)d?\b",
            r"\bplaceholder\b",
        ),
        "vague conditional": _patterns(
            r"\bif\s+applicable\b",
            r"\bwhen\s+necessary\b",
            r"\bas\s+appropriate\b",
            r"\bdepending\s+on\b",
            r"\bwhere\s+relevant\b",
            r"\boptionally\b",
            r"\bpossibly\b",
            r"\bmight\b",
            r"\bmay\s+or\s+may\s+not\b",
            r"\busually\b",
            r"\bgenerally\b",
        ),
    }
)


def ambiguity_issues(text: str) -> list[str]:
    issues: list[str] = []
    for label, patterns in AMBIGUITY_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match is not None:
                issues.append(f'{label}: "{match.group(0)}"')
    return issues


@dataclass(frozen=True, slots=True)
class NoAmbiguityChecker:
    invariant_id: str = "INV-003"
    name: str = "No Ambiguity in Commitment Artifacts"

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult:
        findings = {
            atom.atom_id: ambiguity_issues(" ".join([atom.description, *atom.observable_outcomes]))
            for atom in atoms
        }
        failing = [atom for atom in atoms if findings[atom.atom_id]]
        suggestions = [
            f"{atom.atom_id}: {', '.join(findings[atom.atom_id])}" for atom in failing
        ]
        return _result(
            self,
            config,
            failing=failing,
            passed_message="No ambiguous language found",
            failed_message=f"{len(failing)} atom(s) contain ambiguous language",
            suggestions=suggestions,
        )


@dataclass(frozen=True, slots=True)
class DraftOnlyChecker:
    invariant_id: str = "INV-004"
    name: str = "Commitment Is Immutable"

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult:
        failing = [
            atom
            for atom in atoms
            if atom.status is not AtomStatus.DRAFT
            and not (atom.status is AtomStatus.COMMITTED and atom.atom_id in context.carried_over)
        ]
        return _result(
            self,
            config,
            failing=failing,
            passed_message="All atoms are drafts",
            failed_message=f"{len(failing)} atom(s) are already committed or superseded",
            suggestions=("Supersede the existing commitment instead of re-committing",),
        )


_AGENT_COMMITTER = re.compile(r"(^|[\W_])(agent|bot|system|automation)($|[\W_])", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class HumanCommitterChecker:
    invariant_id: str = "INV-006"
    name: str = "Agents May Not Commit Intent"

    def check(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
        config: InvariantConfig,
    ) -> InvariantCheckResult:
        automated = bool(_AGENT_COMMITTER.search(context.committed_by))
        return _result(
            self,
            config,
            failing=atoms if automated else (),
            passed_message="Committer is a person",
            failed_message=f"{context.committed_by!r} looks like an automated committer",
            suggestions=("Have a human review and commit the proposed atoms",),
        )


# Suite -----------------------------------------------------------------------


def default_checkers() -> tuple[InvariantChecker, ...]:
    return (
        ExplicitCommitmentChecker(),
        BehavioralTestabilityChecker(),
        NoAmbiguityChecker(),
        DraftOnlyChecker(),
        HumanCommitterChecker(),
    )


DEFAULT_INVARIANT_CONFIG: Final[Mapping[str, InvariantConfig]] = MappingProxyType(
    {"INV-003": InvariantConfig(blocking=False)}
)


@dataclass(frozen=True, slots=True)
class InvariantSuite:
    checkers: tuple[InvariantChecker, ...] = field(default_factory=default_checkers)
    config: Mapping[str, InvariantConfig] = field(default_factory=lambda: DEFAULT_INVARIANT_CONFIG)

    def config_for(self, invariant_id: str) -> InvariantConfig:
        return self.config.get(invariant_id, InvariantConfig())

    def check_all(
        self,
        atoms: Sequence[Atom],
        context: CheckContext,
    ) -> list[InvariantCheckResult]:
        results: list[InvariantCheckResult] = []
        for checker in self.checkers:
            config = self.config_for(checker.invariant_id)
            if not config.enabled:
                continue
            results.append(checker.check(atoms, context, config))
        return results
