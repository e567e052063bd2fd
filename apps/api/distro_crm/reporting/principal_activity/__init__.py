from distro_crm.reporting.principal_activity.aggregator import (
    ActivityAggregator,
    AggregationInconsistency,
    AggregationResult,
    PrincipalActivityRow,
)
from distro_crm.reporting.principal_activity.api import router
from distro_crm.reporting.principal_activity.models import PrincipalActivitySummary, SummaryRefreshRun
from distro_crm.reporting.principal_activity.schemas import (
    PrincipalActivityStatsRead,
    PrincipalActivitySummaryRead,
    RefreshResultRead,
)
from distro_crm.reporting.principal_activity.scoring import ActivityStatus, activity_status, engagement_score
from distro_crm.reporting.principal_activity.service import PrincipalActivityService, principal_activity_service

__all__ = [
    "router",
    "ActivityAggregator",
    "AggregationInconsistency",
    "AggregationResult",
    "PrincipalActivityRow",
    "PrincipalActivitySummary",
    "SummaryRefreshRun",
    "PrincipalActivitySummaryRead",
    "PrincipalActivityStatsRead",
    "RefreshResultRead",
    "ActivityStatus",
    "activity_status",
    "engagement_score",
    "PrincipalActivityService",
    "principal_activity_service",
]
