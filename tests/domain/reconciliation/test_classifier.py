from __future__ import annotations

from atomledger.domain.model import EvidenceChange, RunMode, TestEvidence
from atomledger.domain.reconciliation import classify
from atomledger.domain.reconciliation.classifier import Classification
from tests.helpers.evidence import make_inventory, make_test


def _keys(tests: tuple[TestEvidence, ...]) -> set[tuple[str, str]]:
    return {test.key for test in tests}


def test_full_mode_partitions_every_test() -> None:
    inventory = make_inventory(
        [
            make_test("test_total", linked="IA-001"),
            make_test("test_shipping"),
            make_test("test_discount"),
        ]
    )

    result = classify(inventory, mode=RunMode.FULL)

    assert _keys(result.annotated) == {("tests/test_checkout.py", "test_total")}
    assert _keys(result.orphan) == {
        ("tests/test_checkout.py", "test_shipping"),
        ("tests/test_checkout.py", "test_discount"),
    }
    assert not _keys(result.annotated) & _keys(result.orphan)
    assert result.considered == 3


def test_delta_mode_only_considers_changed_tests() -> None:
    inventory = make_inventory(
        [
            make_test("test_added", change=EvidenceChange.ADDED),
            make_test("test_modified", linked="IA-002", change=EvidenceChange.MODIFIED),
            make_test("test_untouched"),
            make_test("test_removed", change=EvidenceChange.DELETED),
        ]
    )

    result = classify(inventory, mode=RunMode.DELTA)

    assert [test.test_name for test in result.orphan] == ["test_added"]
    assert [test.test_name for test in result.annotated] == ["test_modified"]
    assert [test.test_name for test in result.changed_linked] == ["test_modified"]
    assert [test.test_name for test in result.removed] == ["test_removed"]


def test_unknown_links_are_reported_but_stay_annotated() -> None:
    inventory = make_inventory([make_test("test_total", linked="IA-404")])

    result = classify(inventory, mode=RunMode.FULL, known_atom_ids={"IA-001"})

    assert len(result.annotated) == 1
    assert [test.linked_atom_id for test in result.unresolved_links] == ["IA-404"]
    assert not result.orphan


def test_duplicate_evidence_is_counted_once() -> None:
    inventory = make_inventory([make_test("test_total"), make_test("test_total")])

    result = classify(inventory, mode=RunMode.FULL)

    assert len(result.orphan) == 1


def test_classification_survives_snapshot_payload() -> None:
    inventory = make_inventory([make_test("test_total", linked="IA-001"), make_test("test_tax")])
    result = classify(inventory, mode=RunMode.FULL)

    assert Classification.from_payload(result.to_payload()) == result
