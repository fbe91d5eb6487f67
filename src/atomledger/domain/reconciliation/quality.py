"""Atom quality scoring for the verification gate.

Scores are computed from weighted rules over the frozen candidate; the result
is a separate ``AtomQualityResult`` so the candidate itself is never touched.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import InferredAtom, QualityDecision

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

MAX_SCORE: Final[int] = 100


@dataclass(frozen=True, slots=True)
class QualityThresholds:
    approve: int = 80
    revise: int = 60

    def __post_init__(self) -> None:
        if not 0 <= self.revise <= self.approve <= MAX_SCORE:
            raise ValidationError(
                f"Invalid quality thresholds: revise={self.revise}, approve={self.approve}"
            )

    def decide(self, score: float) -> QualityDecision:
        if score >= self.approve:
            return QualityDecision.APPROVE
        if score >= self.revise:
            return QualityDecision.REVISE
        return QualityDecision.REJECT


@dataclass(frozen=True, slots=True)
class QualityRule:
    name: str
    weight: int
    check: Callable[[InferredAtom], bool]


DEFAULT_QUALITY_RULES: Final[tuple[QualityRule, ...]] = (
    QualityRule("has_description", 25, lambda atom: len(atom.description.strip()) > 5),  # noqa: PLR2004
    QualityRule("has_outcomes", 15, lambda atom: bool(atom.observable_outcomes)),
    QualityRule("has_category", 15, lambda atom: bool(atom.category.strip())),
    QualityRule("has_reasoning", 10, lambda atom: len(atom.reasoning.strip()) > 10),  # noqa: PLR2004
    QualityRule("has_confidence", 15, lambda atom: atom.confidence >= 0.5),  # noqa: PLR2004
    QualityRule("no_ambiguity", 10, lambda atom: not atom.ambiguity_reasons),
    QualityRule(
        "has_source_test",
        10,
        lambda atom: bool(atom.source_test.file_path and atom.source_test.test_name),
    ),
)

_IMPLEMENTATION_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bclass\b", re.IGNORECASE),
    re.compile(r"\bmethod\b", re.IGNORECASE),
    re.compile(r"\bfunction\b", re.IGNORECASE),
    re.compile(r"\(\)\s*$"),
    re.compile(r"\bService\b"),
    re.compile(r"\bRepository\b"),
    re.compile(r"\bController\b"),
)
_VAGUE_OUTCOME_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"works", re.IGNORECASE),
    re.compile(r"handles", re.IGNORECASE),
    re.compile(r"properly", re.IGNORECASE),
    re.compile(r"correctly", re.IGNORECASE),
)
_MIN_DESCRIPTION_LENGTH = 20
_MIN_OUTCOME_LENGTH = 10
_VAGUE_OUTCOME_LENGTH = 30


@dataclass(frozen=True, slots=True, kw_only=True)
class AtomQualityResult:
    temp_id: str
    score: int
    decision: QualityDecision
    issues: tuple[str, ...] = ()
    passed_rules: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "score": self.score,
            "decision": self.decision.value,
            "issues": list(self.issues),
            "passed_rules": list(self.passed_rules),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AtomQualityResult:
        return cls(
            temp_id=str(payload["temp_id"]),
            score=int(payload["score"]),
            decision=QualityDecision(payload["decision"]),
            issues=tuple(payload.get("issues", ())),
            passed_rules=tuple(payload.get("passed_rules", ())),
        )


def score_atom(
    atom: InferredAtom,
    rules: Sequence[QualityRule] = DEFAULT_QUALITY_RULES,
) -> tuple[int, tuple[str, ...]]:
    """Return the capped rule score and the names of the rules that passed."""

    passed = tuple(rule.name for rule in rules if rule.check(atom))
    weights = {rule.name: rule.weight for rule in rules}
    return min(MAX_SCORE, sum(weights[name] for name in passed)), passed


def description_issues(description: str) -> list[str]:
    issues = [
        f"Description contains implementation detail: {pattern.pattern}"
        for pattern in _IMPLEMENTATION_PATTERNS
        if pattern.search(description)
    ]
    if len(description) < _MIN_DESCRIPTION_LENGTH:
        issues.append(f"Description too short (< {_MIN_DESCRIPTION_LENGTH} chars)")
    return issues


def outcome_issues(outcomes: Iterable[str]) -> list[str]:
    issues: list[str] = []
    materialised = list(outcomes)
    if not materialised:
        return ["No observable outcomes defined"]
    for outcome in materialised:
        if len(outcome) < _MIN_OUTCOME_LENGTH:
            issues.append(f'Outcome too short: "{outcome}"')
        if len(outcome) < _VAGUE_OUTCOME_LENGTH and any(
            pattern.search(outcome) for pattern in _VAGUE_OUTCOME_PATTERNS
        ):
            issues.append(f'Outcome may be vague: "{outcome}"')
    return issues


def evaluate_atom(
    atom: InferredAtom,
    thresholds: QualityThresholds,
    *,
    rules: Sequence[QualityRule] = DEFAULT_QUALITY_RULES,
) -> AtomQualityResult:
    score, passed = score_atom(atom, rules)
    issues = (*description_issues(atom.description), *outcome_issues(atom.observable_outcomes))
    return AtomQualityResult(
        temp_id=atom.temp_id,
        score=score,
        decision=thresholds.decide(score),
        issues=tuple(issues),
        passed_rules=passed,
    )


def evaluate_atoms(
    atoms: Iterable[InferredAtom],
    thresholds: QualityThresholds,
) -> tuple[AtomQualityResult, ...]:
    return tuple(evaluate_atom(atom, thresholds) for atom in atoms)
