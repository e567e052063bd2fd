from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from distro_crm.crm.errors import ValidationViolation, Violation, ViolationKind
from distro_crm.metrics import observe_stage_transition

logger = logging.getLogger("distro_crm.crm.lifecycle")


class OpportunityStage(str, Enum):
    NEW_LEAD = "New Lead"
    INITIAL_OUTREACH = "Initial Outreach"
    SAMPLE_OR_VISIT_OFFERED = "Sample/Visit Offered"
    AWAITING_RESPONSE = "Awaiting Response"
    FEEDBACK_LOGGED = "Feedback Logged"
    DEMO_SCHEDULED = "Demo Scheduled"
    CLOSED_WON = "Closed - Won"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is OpportunityStage.CLOSED_WON


STAGE_ORDER: tuple[OpportunityStage, ...] = tuple(OpportunityStage)

# Inclusive probability band per stage; bands of neighbouring stages overlap.
STAGE_PROBABILITY_BANDS: dict[OpportunityStage, tuple[int, int]] = {
    OpportunityStage.NEW_LEAD: (0, 25),
    OpportunityStage.INITIAL_OUTREACH: (15, 35),
    OpportunityStage.SAMPLE_OR_VISIT_OFFERED: (25, 45),
    OpportunityStage.AWAITING_RESPONSE: (35, 55),
    OpportunityStage.FEEDBACK_LOGGED: (50, 70),
    OpportunityStage.DEMO_SCHEDULED: (70, 90),
    OpportunityStage.CLOSED_WON: (100, 100),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_stage(value: Any) -> OpportunityStage | None:
    if isinstance(value, OpportunityStage):
        return value
    try:
        return OpportunityStage(value)
    except ValueError:
        return None


def _unknown_stage(stage_value: Any) -> Violation:
    return Violation(
        kind=ViolationKind.STAGE_CONSISTENCY,
        entity="opportunity",
        field="stage",
        detail=f"Unknown opportunity stage {stage_value!r}",
    )


def check_stage_probability(stage_value: Any, probability: Any) -> Violation | None:
    stage = parse_stage(stage_value)
    if stage is None:
        return _unknown_stage(stage_value)
    if not isinstance(probability, int) or isinstance(probability, bool) or not 0 <= probability <= 100:
        return Violation(
            kind=ViolationKind.RANGE,
            entity="opportunity",
            field="probability_percent",
            detail="probability_percent must be an integer between 0 and 100",
        )
    low, high = STAGE_PROBABILITY_BANDS[stage]
    if not low <= probability <= high:
        return Violation(
            kind=ViolationKind.RANGE,
            entity="opportunity",
            field="probability_percent",
            detail=f"probability_percent {probability} is outside {low}-{high} for stage {stage.value}",
            reference=stage.value,
        )
    return None


def check_won_consistency(stage_value: Any, is_won: bool) -> Violation | None:
    stage = parse_stage(stage_value)
    if (stage is OpportunityStage.CLOSED_WON) != bool(is_won):
        return Violation(
            kind=ViolationKind.STAGE_CONSISTENCY,
            entity="opportunity",
            field="is_won",
            detail="is_won must be true exactly when stage is Closed - Won",
            reference=str(stage_value),
        )
    return None


@dataclass(frozen=True, slots=True)
class OpportunityTransition:
    from_stage: OpportunityStage
    to_stage: OpportunityStage
    probability_percent: int
    is_won: bool
    won_date: datetime | None
    stage_changed_at: datetime
    is_regression: bool

    def changes(self) -> dict[str, Any]:
        return {
            "stage": self.to_stage.value,
            "probability_percent": self.probability_percent,
            "is_won": self.is_won,
            "won_date": self.won_date,
            "stage_changed_at": self.stage_changed_at,
        }


class OpportunityLifecycle:
    def __init__(self, *, allow_regression: bool = True) -> None:
        self.allow_regression = allow_regression

    def transition(
        self,
        opportunity: Any,
        target_stage: OpportunityStage | str,
        target_probability: int,
        *,
        at: datetime | None = None,
    ) -> OpportunityTransition:
        """Compute the field values for moving ``opportunity`` to ``target_stage``.

        Nothing is written here. Raises ``ValidationViolation`` when the
        probability is outside the target band or when a regression is
        attempted while regressions are disabled.
        """
        stage = parse_stage(target_stage)
        violation = check_stage_probability(target_stage, target_probability)
        if violation is not None:
            raise ValidationViolation(violation)
        if stage is None:
            raise ValidationViolation(_unknown_stage(target_stage))

        current = parse_stage(opportunity.stage) or OpportunityStage.NEW_LEAD
        is_regression = stage.position < current.position
        if is_regression and not self.allow_regression:
            raise ValidationViolation(
                Violation(
                    kind=ViolationKind.STAGE_CONSISTENCY,
                    entity="opportunity",
                    field="stage",
                    detail=f"Stage regression from {current.value} to {stage.value} is not allowed",
                    reference=str(opportunity.id),
                )
            )

        now = at or utcnow()
        if stage is OpportunityStage.CLOSED_WON:
            won_date = opportunity.won_date if current is OpportunityStage.CLOSED_WON and opportunity.won_date else now
            is_won = True
        else:
            won_date = None
            is_won = False

        stage_changed_at = now if stage is not current else (opportunity.stage_changed_at or now)

        if is_regression:
            logger.warning(
                "crm.opportunity.stage_regression",
                extra={"opportunity_id": str(opportunity.id), "from_stage": current.value, "to_stage": stage.value},
            )
        observe_stage_transition(_direction(current, stage))

        return OpportunityTransition(
            from_stage=current,
            to_stage=stage,
            probability_percent=target_probability,
            is_won=is_won,
            won_date=won_date,
            stage_changed_at=stage_changed_at,
            is_regression=is_regression,
        )


def _direction(current: OpportunityStage, target: OpportunityStage) -> str:
    if target.position > current.position:
        return "forward"
    if target.position < current.position:
        return "regression"
    return "same"
