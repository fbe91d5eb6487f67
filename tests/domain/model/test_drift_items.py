from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from atomledger.domain.errors import ValidationError
from atomledger.domain.model import (
    DriftDebtItem,
    DriftSeverity,
    DriftStatus,
    DriftType,
    age_in_days,
)

DETECTED = datetime(2026, 3, 2, tzinfo=UTC)


def _item() -> DriftDebtItem:
    return DriftDebtItem(
        project_id="shop",
        drift_type=DriftType.ORPHAN_TEST,
        description="orphan",
        severity=DriftSeverity.MEDIUM,
        due_at=DETECTED + timedelta(days=14),
        detected_by_run_id=uuid4(),
        file_path="tests/test_checkout.py",
        test_name="test_total",
        detected_at=DETECTED,
        last_confirmed_at=DETECTED,
    )


def test_confirm_counts_and_ages() -> None:
    item = _item()
    run_id = uuid4()

    item.confirm(run_id=run_id, now=DETECTED + timedelta(days=3, hours=5))

    assert item.confirmation_count == 2
    assert item.last_confirmed_by_run_id == run_id
    assert item.age_days == 3


def test_escalate_never_lowers_severity() -> None:
    item = _item()

    assert item.escalate(DriftSeverity.HIGH)
    assert not item.escalate(DriftSeverity.LOW)
    assert item.severity is DriftSeverity.HIGH


def test_resolve_records_run() -> None:
    item = _item()
    run_id = uuid4()

    item.resolve(run_id=run_id, now=DETECTED)

    assert item.status is DriftStatus.RESOLVED
    assert item.resolved_by_run_id == run_id
    assert not item.is_active


def test_acknowledge_requires_open_item_and_name() -> None:
    item = _item()
    with pytest.raises(ValidationError):
        item.acknowledge(by="  ")

    item.acknowledge(by="dana", comment="tracked in sprint")
    assert item.status is DriftStatus.ACKNOWLEDGED
    with pytest.raises(ValidationError):
        item.acknowledge(by="dana")


def test_waive_requires_justification() -> None:
    item = _item()
    with pytest.raises(ValidationError):
        item.waive(justification="")

    item.waive(justification="Generated fixture tests")
    assert item.status is DriftStatus.WAIVED
    with pytest.raises(ValidationError):
        item.waive(justification="again")


def test_age_in_days_floors_and_clamps() -> None:
    assert age_in_days(DETECTED, DETECTED + timedelta(hours=47)) == 1
    assert age_in_days(DETECTED, DETECTED - timedelta(days=1)) == 0
