from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from distro_crm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampedMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Organization(TimestampedMixin, Base):
    __tablename__ = "crm_organization"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state_province: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")
    is_principal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_distributor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    distributor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="RESTRICT"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("NOT (is_principal AND is_distributor)", name="ck_crm_organization_role_exclusive"),
        CheckConstraint(
            "NOT is_distributor OR distributor_id IS NULL",
            name="ck_crm_organization_distributor_no_parent",
        ),
        CheckConstraint("distributor_id IS NULL OR distributor_id <> id", name="ck_crm_organization_no_self_parent"),
        Index("ix_crm_organization_distributor", "distributor_id"),
        Index("ix_crm_organization_principal", "is_principal", "deleted_at"),
    )


class Contact(TimestampedMixin, Base):
    __tablename__ = "crm_contact"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="RESTRICT"),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    authority_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "authority_level IS NULL OR authority_level IN ('HIGH', 'MEDIUM', 'LOW')",
            name="ck_crm_contact_authority_level",
        ),
        Index("ix_crm_contact_organization", "organization_id", "deleted_at"),
        Index("ix_crm_contact_email", "email"),
        Index(
            "uq_crm_contact_active_primary",
            "organization_id",
            unique=True,
            postgresql_where=text("is_primary AND deleted_at IS NULL"),
            sqlite_where=text("is_primary AND deleted_at IS NULL"),
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Opportunity(TimestampedMixin, Base):
    __tablename__ = "crm_opportunity"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="RESTRICT"),
        nullable=False,
    )
    principal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="RESTRICT"),
        nullable=True,
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_product.id", ondelete="RESTRICT"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    stage: Mapped[str] = mapped_column(String(64), nullable=False, default="New Lead", server_default="New Lead")
    probability_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_won: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    context: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expected_close_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    estimated_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    deal_owner: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    won_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "probability_percent >= 0 AND probability_percent <= 100",
            name="ck_crm_opportunity_probability",
        ),
        CheckConstraint("(stage = 'Closed - Won') = is_won", name="ck_crm_opportunity_won_stage"),
        CheckConstraint(
            "estimated_value IS NULL OR estimated_value >= 0",
            name="ck_crm_opportunity_estimated_value",
        ),
        Index("ix_crm_opportunity_principal", "principal_id", "deleted_at"),
        Index("ix_crm_opportunity_organization", "organization_id"),
    )


class Interaction(TimestampedMixin, Base):
    __tablename__ = "crm_interaction"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunity.id", ondelete="RESTRICT"),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="SET NULL"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    interaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="SCHEDULED", server_default="SCHEDULED")
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    follow_up_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    follow_up_date: Mapped[date | None] = mapped_column(Date(), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "type IN ('EMAIL', 'CALL', 'IN_PERSON', 'DEMO', 'FOLLOW_UP', 'SAMPLE_DELIVERY')",
            name="ck_crm_interaction_type",
        ),
        CheckConstraint("status IN ('SCHEDULED', 'COMPLETED', 'CANCELLED')", name="ck_crm_interaction_status"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_crm_interaction_rating"),
        CheckConstraint(
            "duration_minutes IS NULL OR duration_minutes >= 0",
            name="ck_crm_interaction_duration",
        ),
        CheckConstraint(
            "status <> 'COMPLETED' OR outcome IS NOT NULL",
            name="ck_crm_interaction_completed_outcome",
        ),
        CheckConstraint(
            "NOT follow_up_required OR follow_up_date IS NOT NULL",
            name="ck_crm_interaction_follow_up_date",
        ),
        Index("ix_crm_interaction_opportunity", "opportunity_id", "deleted_at"),
        Index("ix_crm_interaction_date", "interaction_date"),
    )


class Product(TimestampedMixin, Base):
    __tablename__ = "crm_product"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    launch_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    discontinue_date: Mapped[date | None] = mapped_column(Date(), nullable=True)

    __table_args__ = (
        CheckConstraint("unit_cost IS NULL OR unit_cost >= 0", name="ck_crm_product_unit_cost"),
        CheckConstraint(
            "launch_date IS NULL OR discontinue_date IS NULL OR launch_date < discontinue_date",
            name="ck_crm_product_lifecycle_dates",
        ),
    )


class ProductPrincipal(TimestampedMixin, Base):
    __tablename__ = "crm_product_principal"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_product.id", ondelete="RESTRICT"),
        nullable=False,
    )
    principal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_organization.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_primary_principal: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    exclusive_rights: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    wholesale_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    minimum_order_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    territory_restrictions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    contract_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    contract_end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    auto_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "wholesale_price IS NULL OR wholesale_price >= 0",
            name="ck_crm_product_principal_wholesale_price",
        ),
        CheckConstraint(
            "minimum_order_quantity IS NULL OR minimum_order_quantity > 0",
            name="ck_crm_product_principal_moq",
        ),
        CheckConstraint(
            "lead_time_days IS NULL OR lead_time_days >= 0",
            name="ck_crm_product_principal_lead_time",
        ),
        CheckConstraint(
            "contract_start_date IS NULL OR contract_end_date IS NULL OR contract_start_date < contract_end_date",
            name="ck_crm_product_principal_contract_dates",
        ),
        Index("ix_crm_product_principal_product", "product_id", "deleted_at"),
        Index("ix_crm_product_principal_principal", "principal_id", "deleted_at"),
        Index(
            "uq_crm_product_principal_active_pair",
            "product_id",
            "principal_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uq_crm_product_principal_active_primary",
            "product_id",
            unique=True,
            postgresql_where=text("is_primary_principal AND deleted_at IS NULL"),
            sqlite_where=text("is_primary_principal AND deleted_at IS NULL"),
        ),
    )
