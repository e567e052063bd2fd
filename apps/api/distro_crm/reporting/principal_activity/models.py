from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from distro_crm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PrincipalActivitySummary(Base):
    """Derived per-principal snapshot. Replaced wholesale by every refresh."""

    __tablename__ = "principal_activity_summary"

    principal_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    principal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    principal_status: Mapped[str] = mapped_column(String(32), nullable=False)
    distributor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    distributor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    primary_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interactions_last_30_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interactions_last_90_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_interaction_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_interaction_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_follow_up_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    avg_interaction_rating: Mapped[Decimal | None] = mapped_column(Numeric(4, 2), nullable=True)
    positive_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    follow_ups_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_opportunities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_opportunities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    won_opportunities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opportunities_last_30_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_probability_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    latest_opportunity_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activity_status: Mapped[str] = mapped_column(String(16), nullable=False)
    engagement_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "interactions_last_30_days <= interactions_last_90_days "
            "AND interactions_last_90_days <= total_interactions",
            name="ck_principal_activity_summary_windows",
        ),
        CheckConstraint(
            "active_opportunities + won_opportunities <= total_opportunities",
            name="ck_principal_activity_summary_opportunities",
        ),
        CheckConstraint(
            "engagement_score >= 0 AND engagement_score <= 100",
            name="ck_principal_activity_summary_engagement",
        ),
        CheckConstraint(
            "activity_status IN ('ACTIVE', 'MODERATE', 'STALE', 'NO_ACTIVITY')",
            name="ck_principal_activity_summary_status",
        ),
        Index("ix_principal_activity_summary_status_score", "activity_status", "engagement_score"),
    )


class SummaryRefreshRun(Base):
    __tablename__ = "principal_activity_refresh_run"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inconsistency_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    snapshot_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('SUCCEEDED', 'FAILED')", name="ck_principal_activity_refresh_run_status"),
        Index("ix_principal_activity_refresh_run_started", "started_at"),
    )
