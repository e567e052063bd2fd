from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from distro_crm.crm.errors import ValidationViolation, ViolationKind
from distro_crm.crm.lifecycle import (
    STAGE_ORDER,
    STAGE_PROBABILITY_BANDS,
    OpportunityLifecycle,
    OpportunityStage,
    check_stage_probability,
)


def _opportunity(stage: str, **values) -> SimpleNamespace:
    defaults = {"id": uuid.uuid4(), "stage": stage, "won_date": None, "stage_changed_at": None}
    defaults.update(values)
    return SimpleNamespace(**defaults)


def test_stage_order_and_bands_cover_every_stage() -> None:
    assert STAGE_ORDER[0] is OpportunityStage.NEW_LEAD
    assert STAGE_ORDER[-1] is OpportunityStage.CLOSED_WON
    assert set(STAGE_PROBABILITY_BANDS) == set(OpportunityStage)
    assert STAGE_PROBABILITY_BANDS[OpportunityStage.CLOSED_WON] == (100, 100)
    assert OpportunityStage.CLOSED_WON.is_terminal
    assert not OpportunityStage.DEMO_SCHEDULED.is_terminal


def test_band_edges_are_inclusive() -> None:
    assert check_stage_probability("Demo Scheduled", 70) is None
    assert check_stage_probability("Demo Scheduled", 90) is None
    assert check_stage_probability("Demo Scheduled", 91) is not None
    assert check_stage_probability("Closed - Won", 99) is not None


def test_forward_transition_to_won_sets_won_fields() -> None:
    at = datetime(2026, 9, 1, 12, tzinfo=timezone.utc)
    result = OpportunityLifecycle().transition(_opportunity("Demo Scheduled"), "Closed - Won", 100, at=at)

    assert result.to_stage is OpportunityStage.CLOSED_WON
    assert result.is_won is True
    assert result.won_date == at
    assert result.stage_changed_at == at
    assert result.is_regression is False
    assert result.changes()["stage"] == "Closed - Won"


def test_leaving_won_clears_won_fields_and_is_regression(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    won_at = datetime(2026, 8, 1, tzinfo=timezone.utc)
    opportunity = _opportunity("Closed - Won", won_date=won_at)

    result = OpportunityLifecycle(allow_regression=True).transition(opportunity, "Feedback Logged", 60)

    assert result.is_won is False
    assert result.won_date is None
    assert result.is_regression is True
    assert any(record.getMessage() == "crm.opportunity.stage_regression" for record in caplog.records)


def test_regression_rejected_when_disabled() -> None:
    with pytest.raises(ValidationViolation) as exc_info:
        OpportunityLifecycle(allow_regression=False).transition(_opportunity("Demo Scheduled"), "New Lead", 10)
    assert exc_info.value.violation.kind is ViolationKind.STAGE_CONSISTENCY


def test_probability_outside_target_band_rejected() -> None:
    with pytest.raises(ValidationViolation) as exc_info:
        OpportunityLifecycle().transition(_opportunity("New Lead"), "Initial Outreach", 80)
    assert exc_info.value.violation.kind is ViolationKind.RANGE
    assert exc_info.value.violation.field == "probability_percent"


def test_unknown_target_stage_rejected() -> None:
    with pytest.raises(ValidationViolation) as exc_info:
        OpportunityLifecycle().transition(_opportunity("New Lead"), "Closed - Lost", 0)
    assert exc_info.value.violation.kind is ViolationKind.STAGE_CONSISTENCY
    assert exc_info.value.violation.field == "stage"
    assert "Closed - Lost" in exc_info.value.violation.detail

def test_same_stage_keeps_stage_changed_at_and_won_date() -> None:
    changed_at = datetime(2026, 7, 1, tzinfo=timezone.utc)
    opportunity = _opportunity("Closed - Won", won_date=changed_at, stage_changed_at=changed_at)

    result = OpportunityLifecycle().transition(opportunity, "Closed - Won", 100)

    assert result.won_date == changed_at
    assert result.stage_changed_at == changed_at
    assert result.is_regression is False


def test_round_trip_through_every_stage() -> None:
    lifecycle = OpportunityLifecycle(allow_regression=False)
    opportunity = _opportunity("New Lead")
    for stage in STAGE_ORDER[1:]:
        low, high = STAGE_PROBABILITY_BANDS[stage]
        result = lifecycle.transition(opportunity, stage, high)
        for key, value in result.changes().items():
            setattr(opportunity, key, value)
    assert opportunity.stage == "Closed - Won"
    assert opportunity.is_won is True
    assert opportunity.probability_percent == 100
