from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ActivityStatusName = Literal["ACTIVE", "MODERATE", "STALE", "NO_ACTIVITY"]
ContractStatus = Literal["EXPIRED", "EXPIRING_SOON", "PENDING", "ACTIVE"]


class PrincipalActivitySummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal_id: UUID
    principal_name: str
    principal_status: str
    distributor_id: UUID | None
    distributor_name: str | None
    primary_contact_name: str | None
    contact_count: int
    total_interactions: int
    interactions_last_30_days: int
    interactions_last_90_days: int
    last_interaction_date: datetime | None
    last_interaction_type: str | None
    next_follow_up_date: date | None
    avg_interaction_rating: Decimal | None
    positive_interactions: int
    follow_ups_required: int
    total_opportunities: int
    active_opportunities: int
    won_opportunities: int
    opportunities_last_30_days: int
    avg_probability_percent: Decimal
    latest_opportunity_stage: str | None
    product_count: int
    active_product_count: int
    last_activity_date: datetime | None
    activity_status: ActivityStatusName
    engagement_score: Decimal
    checksum: str
    as_of: datetime
    generated_at: datetime


class RefreshResultRead(BaseModel):
    run_id: UUID
    as_of: datetime
    row_count: int
    inconsistency_count: int
    duration_ms: float
    over_budget: bool
    snapshot_checksum: str


class SummaryRefreshRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trigger: str
    status: Literal["SUCCEEDED", "FAILED"]
    as_of: datetime
    started_at: datetime
    finished_at: datetime | None
    row_count: int
    inconsistency_count: int
    duration_ms: Decimal | None
    snapshot_checksum: str | None
    error: str | None
    correlation_id: str | None


class TopPrincipalRead(BaseModel):
    principal_id: UUID
    principal_name: str
    engagement_score: Decimal
    activity_status: ActivityStatusName


class PrincipalActivityStatsRead(BaseModel):
    total_principals: int
    active_principals: int
    principals_with_products: int
    principals_with_opportunities: int
    avg_engagement_score: Decimal
    avg_interactions_per_principal: Decimal
    avg_opportunities_per_principal: Decimal
    status_breakdown: dict[str, int]
    top_principals: list[TopPrincipalRead] = Field(default_factory=list)
    generated_at: datetime | None


class DistributorRelationshipRead(BaseModel):
    principal_id: UUID
    principal_name: str
    principal_status: str
    principal_city: str | None
    principal_state: str | None
    principal_country: str | None
    distributor_id: UUID | None
    distributor_name: str | None
    distributor_status: str | None
    distributor_city: str | None
    distributor_state: str | None
    distributor_country: str | None
    relationship_type: Literal["HAS_DISTRIBUTOR", "DIRECT"]


class ProductPerformanceRead(BaseModel):
    association_id: UUID
    principal_id: UUID
    principal_name: str
    product_id: UUID
    product_name: str
    product_category: str | None
    product_sku: str | None
    is_primary_principal: bool
    exclusive_rights: bool
    contract_start_date: date | None
    contract_end_date: date | None
    contract_status: ContractStatus
    opportunities_for_product: int
    won_opportunities_for_product: int
    active_opportunities_for_product: int
    avg_opportunity_probability: Decimal
    interactions_for_product: int
    recent_interactions_for_product: int
    last_interaction_date: datetime | None
    product_performance_score: Decimal


class TimelineEntryRead(BaseModel):
    principal_id: UUID
    activity_date: datetime
    activity_type: Literal["CONTACT_UPDATE", "INTERACTION", "OPPORTUNITY_CREATED", "PRODUCT_ASSOCIATION"]
    activity_subject: str
    activity_details: str
    source_id: UUID
    source_table: str
    opportunity_name: str | None = None
    contact_name: str | None = None
    product_name: str | None = None
    activity_status: str
    follow_up_required: bool = False
    follow_up_date: date | None = None
    timeline_rank: int
