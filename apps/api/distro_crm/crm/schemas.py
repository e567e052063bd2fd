from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


AuthorityLevel = Literal["HIGH", "MEDIUM", "LOW"]
OpportunityStageName = Literal[
    "New Lead",
    "Initial Outreach",
    "Sample/Visit Offered",
    "Awaiting Response",
    "Feedback Logged",
    "Demo Scheduled",
    "Closed - Won",
]
OpportunityContext = Literal[
    "Site Visit",
    "Food Show",
    "New Product Interest",
    "Follow-up",
    "Demo Request",
    "Sampling",
    "Custom",
]
InteractionType = Literal["EMAIL", "CALL", "IN_PERSON", "DEMO", "FOLLOW_UP", "SAMPLE_DELIVERY"]
InteractionStatus = Literal["SCHEDULED", "COMPLETED", "CANCELLED"]
InteractionOutcome = Literal["POSITIVE", "NEUTRAL", "NEGATIVE", "NEEDS_FOLLOW_UP"]
ProductCategory = Literal["Protein", "Sauce", "Seasoning", "Beverage", "Snack", "Frozen", "Dairy", "Bakery", "Other"]


class TerritoryRestrictions(BaseModel):
    regions: list[str] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)
    excluded_regions: list[str] = Field(default_factory=list)
    excluded_states: list[str] = Field(default_factory=list)


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    region: str | None = None
    status: str = "Active"
    is_principal: bool = False
    is_distributor: bool = False
    distributor_id: UUID | None = None
    notes: str | None = None


class OrganizationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    region: str | None = None
    status: str | None = None
    is_principal: bool | None = None
    is_distributor: bool | None = None
    distributor_id: UUID | None = None
    notes: str | None = None


class OrganizationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    city: str | None
    state_province: str | None
    country: str | None
    region: str | None
    status: str
    is_principal: bool
    is_distributor: bool
    distributor_id: UUID | None
    notes: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class ContactCreate(BaseModel):
    organization_id: UUID | None = None
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    title: str | None = None
    authority_level: AuthorityLevel | None = None
    is_primary: bool = False
    notes: str | None = None


class ContactUpdate(BaseModel):
    organization_id: UUID | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    title: str | None = None
    authority_level: AuthorityLevel | None = None
    is_primary: bool | None = None
    notes: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID | None
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    title: str | None
    authority_level: AuthorityLevel | None
    is_primary: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class OpportunityCreate(BaseModel):
    organization_id: UUID
    principal_id: UUID | None = None
    product_id: UUID | None = None
    name: str = Field(min_length=1, max_length=255)
    stage: OpportunityStageName = "New Lead"
    probability_percent: int = 0
    context: OpportunityContext | None = None
    expected_close_date: date | None = None
    estimated_value: Decimal | None = None
    deal_owner: str | None = None
    notes: str | None = None


class OpportunityUpdate(BaseModel):
    """Field edits only. Stage and probability move through the transition endpoint."""

    organization_id: UUID | None = None
    principal_id: UUID | None = None
    product_id: UUID | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    context: OpportunityContext | None = None
    expected_close_date: date | None = None
    estimated_value: Decimal | None = None
    deal_owner: str | None = None
    notes: str | None = None


class OpportunityStageTransition(BaseModel):
    stage: OpportunityStageName
    probability_percent: int


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    principal_id: UUID | None
    product_id: UUID | None
    name: str
    stage: OpportunityStageName
    probability_percent: int
    is_won: bool
    context: OpportunityContext | None
    expected_close_date: date | None
    estimated_value: Decimal | None
    deal_owner: str | None
    notes: str | None
    stage_changed_at: datetime | None
    won_date: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class OpportunityTransitionRead(BaseModel):
    opportunity: OpportunityRead
    from_stage: OpportunityStageName
    is_regression: bool


class InteractionCreate(BaseModel):
    opportunity_id: UUID
    contact_id: UUID | None = None
    organization_id: UUID | None = None
    type: InteractionType
    subject: str = Field(min_length=1, max_length=255)
    interaction_date: datetime | None = None
    status: InteractionStatus = "SCHEDULED"
    outcome: InteractionOutcome | None = None
    notes: str | None = None
    duration_minutes: int | None = None
    rating: int | None = None
    follow_up_required: bool = False
    follow_up_date: date | None = None


class InteractionUpdate(BaseModel):
    contact_id: UUID | None = None
    organization_id: UUID | None = None
    type: InteractionType | None = None
    subject: str | None = Field(default=None, min_length=1, max_length=255)
    interaction_date: datetime | None = None
    status: InteractionStatus | None = None
    outcome: InteractionOutcome | None = None
    notes: str | None = None
    duration_minutes: int | None = None
    rating: int | None = None
    follow_up_required: bool | None = None
    follow_up_date: date | None = None


class InteractionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    opportunity_id: UUID
    contact_id: UUID | None
    organization_id: UUID | None
    type: InteractionType
    subject: str
    interaction_date: datetime
    status: InteractionStatus
    outcome: InteractionOutcome | None
    notes: str | None
    duration_minutes: int | None
    rating: int | None
    follow_up_required: bool
    follow_up_date: date | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str | None = None
    category: ProductCategory | None = None
    description: str | None = None
    unit_cost: Decimal | None = None
    is_active: bool = True
    launch_date: date | None = None
    discontinue_date: date | None = None


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    sku: str | None = None
    category: ProductCategory | None = None
    description: str | None = None
    unit_cost: Decimal | None = None
    is_active: bool | None = None
    launch_date: date | None = None
    discontinue_date: date | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    sku: str | None
    category: ProductCategory | None
    description: str | None
    unit_cost: Decimal | None
    is_active: bool
    launch_date: date | None
    discontinue_date: date | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class ProductPrincipalCreate(BaseModel):
    product_id: UUID
    principal_id: UUID
    is_primary_principal: bool = False
    exclusive_rights: bool = False
    wholesale_price: Decimal | None = None
    minimum_order_quantity: int | None = None
    lead_time_days: int | None = None
    territory_restrictions: TerritoryRestrictions | None = None
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    auto_renewal: bool = False
    notes: str | None = None


class ProductPrincipalUpdate(BaseModel):
    is_primary_principal: bool | None = None
    exclusive_rights: bool | None = None
    wholesale_price: Decimal | None = None
    minimum_order_quantity: int | None = None
    lead_time_days: int | None = None
    territory_restrictions: TerritoryRestrictions | None = None
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    auto_renewal: bool | None = None
    notes: str | None = None


class ProductPrincipalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    principal_id: UUID
    is_primary_principal: bool
    exclusive_rights: bool
    wholesale_price: Decimal | None
    minimum_order_quantity: int | None
    lead_time_days: int | None
    territory_restrictions: TerritoryRestrictions | None
    contract_start_date: date | None
    contract_end_date: date | None
    auto_renewal: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None


class TerritoryOverlapRead(BaseModel):
    product_id: UUID
    first_association_id: UUID
    first_principal_id: UUID
    second_association_id: UUID
    second_principal_id: UUID
    overlapping_states: list[str]
