from __future__ import annotations

import pytest

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import ReviewVerdict
from atomledger.domain.reconciliation import (
    QualityThresholds,
    ReviewDecision,
    build_interrupt_payload,
    evaluate_atoms,
)
from atomledger.domain.reconciliation.review import (
    REASON_CLARIFY,
    REASON_QUALITY,
    REASON_REQUESTED,
    approved_atom_ids,
    narrow_to_clarifications,
    rejected_molecule_ids,
    validate_decisions,
)
from tests.helpers.atoms import make_inferred_atom, make_inferred_molecule

THRESHOLDS = QualityThresholds()


def _atoms() -> list:
    return [
        make_inferred_atom("atom-1"),
        make_inferred_atom("atom-2", confidence=0.4, ambiguity=("unclear",)),
        make_inferred_atom("atom-3", description="Works", reasoning="", confidence=0.1),
    ]


def _payload(*, requested: bool) -> dict:
    atoms = _atoms()
    return build_interrupt_payload(
        atoms=atoms,
        atom_results=evaluate_atoms(atoms, THRESHOLDS),
        molecules=[make_inferred_molecule(("atom-1", "atom-2"))],
        thresholds=THRESHOLDS,
        requested=requested,
    )


def test_quality_interrupt_lists_only_revise_atoms() -> None:
    payload = _payload(requested=False)

    assert [item["temp_id"] for item in payload["pending_atoms"]] == ["atom-2"]
    assert payload["reason"] == REASON_QUALITY
    assert payload["summary"] == {
        "total_atoms": 3,
        "pass_count": 1,
        "fail_count": 2,
        "quality_threshold": 80,
    }


def test_requested_review_lists_every_non_rejected_atom() -> None:
    payload = _payload(requested=True)

    assert [item["temp_id"] for item in payload["pending_atoms"]] == ["atom-1", "atom-2"]
    assert payload["reason"] == REASON_REQUESTED
    assert [item["temp_id"] for item in payload["pending_molecules"]] == ["mol-1"]


def test_decisions_must_target_pending_items() -> None:
    payload = _payload(requested=False)

    with pytest.raises(ValidationError, match="At least one"):
        validate_decisions(payload, [])
    with pytest.raises(ValidationError, match="not pending"):
        validate_decisions(payload, [ReviewDecision(target_id="atom-1", verdict=ReviewVerdict.APPROVE)])
    with pytest.raises(ValidationError, match="Duplicate"):
        validate_decisions(
            payload,
            [
                ReviewDecision(target_id="atom-2", verdict=ReviewVerdict.APPROVE),
                ReviewDecision(target_id="atom-2", verdict=ReviewVerdict.REJECT),
            ],
        )


def test_clarification_narrows_pending_items() -> None:
    payload = _payload(requested=True)

    narrowed = narrow_to_clarifications(
        payload,
        [
            ReviewDecision(target_id="atom-1", verdict=ReviewVerdict.APPROVE),
            ReviewDecision(target_id="atom-2", verdict=ReviewVerdict.CLARIFY),
        ],
    )

    assert [item["temp_id"] for item in narrowed["pending_atoms"]] == ["atom-2"]
    assert narrowed["pending_molecules"] == []
    assert narrowed["reason"] == REASON_CLARIFY


def test_reviewer_verdicts_override_the_gate() -> None:
    results = evaluate_atoms(_atoms(), THRESHOLDS)
    decisions = [
        ReviewDecision(target_id="atom-1", verdict=ReviewVerdict.REJECT),
        ReviewDecision(target_id="atom-2", verdict=ReviewVerdict.APPROVE),
        ReviewDecision(target_id="mol-1", verdict=ReviewVerdict.REJECT, target="molecule"),
    ]

    assert approved_atom_ids(results, decisions) == {"atom-2"}
    assert approved_atom_ids(results) == {"atom-1"}
    assert rejected_molecule_ids(decisions) == {"mol-1"}


def test_decision_payload_rejects_unknown_values() -> None:
    with pytest.raises(ValidationError):
        ReviewDecision.from_payload({"target_id": "atom-1", "verdict": "maybe"})
    with pytest.raises(ValidationError):
        ReviewDecision.from_payload({"target_id": "x", "verdict": "approve", "target": "run"})
