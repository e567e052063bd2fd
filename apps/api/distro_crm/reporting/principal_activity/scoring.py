"""Recency classification and engagement scoring for principal summaries.

Engagement score, bounded to 0..100 and non-decreasing in every input::

    recency      = 40 * max(0, 1 - days_since_last_activity / 180)   (0 without activity)
    interactions = min(30, 5 * interactions_last_30_days
                           + (interactions_last_90_days - interactions_last_30_days))
    pipeline     = min(20, 10 * active_opportunities + 5 * won_opportunities)
    products     = min(10, 2 * active_product_count)

Recent interactions weigh five times as much as those 31-90 days old, so a
principal with fresh activity scores at least as high as an otherwise equal
stale one.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

RECENCY_WEIGHT = 40
RECENCY_HORIZON_DAYS = 180
INTERACTION_CAP = 30
PIPELINE_CAP = 20
PRODUCT_CAP = 10

_TWO_PLACES = Decimal("0.01")


class ActivityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MODERATE = "MODERATE"
    STALE = "STALE"
    NO_ACTIVITY = "NO_ACTIVITY"


def days_since(last_activity: datetime | None, as_of: datetime) -> float | None:
    if last_activity is None:
        return None
    return max(0.0, (as_of - last_activity).total_seconds() / 86400)


def activity_status(
    last_activity: datetime | None,
    as_of: datetime,
    *,
    recent_days: int = 30,
    moderate_days: int = 90,
) -> ActivityStatus:
    age = days_since(last_activity, as_of)
    if age is None:
        return ActivityStatus.NO_ACTIVITY
    if age <= recent_days:
        return ActivityStatus.ACTIVE
    if age <= moderate_days:
        return ActivityStatus.MODERATE
    return ActivityStatus.STALE


def engagement_score(
    *,
    days_since_activity: float | None,
    interactions_last_30_days: int,
    interactions_last_90_days: int,
    active_opportunities: int,
    won_opportunities: int,
    active_product_count: int,
) -> Decimal:
    recency = 0.0
    if days_since_activity is not None:
        recency = RECENCY_WEIGHT * max(0.0, 1 - days_since_activity / RECENCY_HORIZON_DAYS)
    older = max(0, interactions_last_90_days - interactions_last_30_days)
    interactions = min(INTERACTION_CAP, 5 * interactions_last_30_days + older)
    pipeline = min(PIPELINE_CAP, 10 * active_opportunities + 5 * won_opportunities)
    products = min(PRODUCT_CAP, 2 * active_product_count)

    total = min(100.0, max(0.0, recency + interactions + pipeline + products))
    return quantize(total)


def quantize(value: float | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def product_performance_score(
    *,
    opportunity_count: int,
    won_opportunities: int,
    recent_interactions: int,
    exclusive_rights: bool,
) -> Decimal:
    won_rate = (won_opportunities / opportunity_count * 100) if opportunity_count else 0.0
    recent = 30 if recent_interactions > 0 else 0
    exclusivity = 20 if exclusive_rights else 10
    total = won_rate * 0.5 + recent * 0.3 + exclusivity * 0.2
    return quantize(min(100.0, max(0.0, total)))
