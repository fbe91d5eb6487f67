from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from atomledger.domain.ledger import (
    BehavioralTestabilityChecker,
    CheckContext,
    DraftOnlyChecker,
    HumanCommitterChecker,
    InvariantConfig,
    InvariantSuite,
    ambiguity_issues,
)
from atomledger.domain.model import AtomStatus, CheckSeverity
from tests.helpers.atoms import make_atom

if TYPE_CHECKING:
    from tests.helpers.clock import FrozenClock


def _by_id(results: list) -> dict:
    return {result.invariant_id: result for result in results}


def test_clean_atoms_pass_every_default_check() -> None:
    results = InvariantSuite().check_all([make_atom()], CheckContext(committed_by="dana"))

    assert [result.invariant_id for result in results] == [
        "INV-001",
        "INV-002",
        "INV-003",
        "INV-004",
        "INV-006",
    ]
    assert all(result.passed for result in results)


def test_missing_committer_blocks() -> None:
    result = _by_id(InvariantSuite().check_all([make_atom()], CheckContext(committed_by="  ")))[
        "INV-001"
    ]

    assert result.is_blocking_failure
    assert result.affected_atom_ids == ("IA-001",)


@pytest.mark.parametrize("score", [None, 59.5])
def test_quality_below_threshold_blocks(score: float | None) -> None:
    atoms = [make_atom(quality_score=score), make_atom("IA-002")]

    result = BehavioralTestabilityChecker().check(
        atoms, CheckContext(committed_by="dana"), InvariantConfig()
    )

    assert not result.passed
    assert result.affected_atom_ids == ("IA-001",)


def test_ambiguity_is_a_warning_by_default() -> None:
    atom = make_atom(description="Checkout should be fast and user-friendly")

    result = _by_id(InvariantSuite().check_all([atom], CheckContext(committed_by="dana")))[
        "INV-003"
    ]

    assert result.is_warning
    assert result.severity is CheckSeverity.WARNING
    assert "vague term" in result.suggestions[0]


def test_ambiguity_patterns_cover_unresolved_markers() -> None:
    issues = ambiguity_issues("Refund limit is TBD and might depend on region")

    assert any(issue.startswith("unresolved marker") for issue in issues)
    assert any(issue.startswith("vague conditional") for issue in issues)
    assert ambiguity_issues("Receipt lists every purchased item") == []


def test_committed_atoms_fail_unless_carried_over(clock: FrozenClock) -> None:
    atom = make_atom()
    atom.mark_committed(at=clock())
    checker = DraftOnlyChecker()

    refused = checker.check([atom], CheckContext(committed_by="dana"), InvariantConfig())
    carried = checker.check(
        [atom],
        CheckContext(committed_by="dana", carried_over=frozenset({"IA-001"})),
        InvariantConfig(),
    )

    assert not refused.passed
    assert carried.passed


def test_superseded_atoms_are_never_carried_over(clock: FrozenClock) -> None:
    atom = make_atom()
    atom.mark_committed(at=clock())
    atom.mark_superseded()
    assert atom.status is AtomStatus.SUPERSEDED

    result = DraftOnlyChecker().check(
        [atom],
        CheckContext(committed_by="dana", carried_over=frozenset({"IA-001"})),
        InvariantConfig(),
    )

    assert not result.passed


@pytest.mark.parametrize(
    ("committer", "blocked"),
    [
        ("reconciliation-agent", True),
        ("release_bot", True),
        ("System", True),
        ("dana", False),
        ("robotics-lead", False),
    ],
)
def test_automated_committers_are_refused(committer: str, blocked: bool) -> None:
    result = HumanCommitterChecker().check(
        [make_atom()], CheckContext(committed_by=committer), InvariantConfig()
    )

    assert result.passed is not blocked


def test_disabled_invariants_are_skipped() -> None:
    suite = InvariantSuite(config={"INV-006": InvariantConfig(enabled=False)})

    results = suite.check_all([make_atom()], CheckContext(committed_by="ci-bot"))

    assert "INV-006" not in _by_id(results)
    assert _by_id(results)["INV-003"].severity is CheckSeverity.ERROR
