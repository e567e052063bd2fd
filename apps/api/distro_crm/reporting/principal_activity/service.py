from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from distro_crm.context import bind_refresh_run_id, get_correlation_id
from distro_crm.core.config import get_settings
from distro_crm.crm.errors import EntityNotFoundError, RefreshFailure
from distro_crm.crm.invariants import as_utc
from distro_crm.crm.lifecycle import OpportunityStage
from distro_crm.crm.models import Contact, Interaction, Opportunity, Organization, Product, ProductPrincipal
from distro_crm.metrics import observe_refresh
from distro_crm.otel import get_tracer, refresh_span
from distro_crm.reporting.principal_activity.aggregator import ActivityAggregator, AggregationResult
from distro_crm.reporting.principal_activity.models import PrincipalActivitySummary, SummaryRefreshRun
from distro_crm.reporting.principal_activity.schemas import (
    DistributorRelationshipRead,
    PrincipalActivityStatsRead,
    PrincipalActivitySummaryRead,
    ProductPerformanceRead,
    RefreshResultRead,
    SummaryRefreshRunRead,
    TimelineEntryRead,
    TopPrincipalRead,
)
from distro_crm.reporting.principal_activity.scoring import ActivityStatus, product_performance_score, quantize

logger = logging.getLogger("distro_crm.reporting.principal_activity")
tracer = get_tracer("distro_crm.reporting.principal_activity")

# Session-level pg_advisory_lock key; serializes refreshes across worker processes.
REFRESH_LOCK_KEY = 0x5041_5331
CONTRACT_EXPIRY_WARNING_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@dataclass(slots=True)
class PrincipalActivityService:
    aggregator: ActivityAggregator | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _aggregator(self) -> ActivityAggregator:
        if self.aggregator is not None:
            return self.aggregator
        settings = get_settings()
        return ActivityAggregator(
            recent_days=settings.activity_recent_days,
            moderate_days=settings.activity_moderate_days,
        )

    def refresh(self, session: Session, as_of: datetime | None = None, *, trigger: str = "manual") -> RefreshResultRead:
        """Recompute every principal summary and swap the whole set in one transaction.

        Readers keep seeing the previous snapshot until the commit. On a store
        error the transaction is rolled back, a FAILED run is recorded, and
        ``RefreshFailure`` is raised.
        """
        settings = get_settings()
        reference_time = as_utc(as_of) or utcnow()
        run_id = uuid.uuid4()
        started_at = utcnow()
        started = time.perf_counter()
        span_context = refresh_span(tracer, run_id=str(run_id), trigger=trigger)
        with bind_refresh_run_id(str(run_id)), self._lock, span_context as span:
            try:
                with self._cross_process_lock(session):
                    self._begin_snapshot(session)
                    result = self._aggregator().recompute(session, reference_time)
                    self._replace_snapshot(session, result)
                    duration_ms = _elapsed_ms(started)
                    session.add(
                        SummaryRefreshRun(
                            id=run_id,
                            trigger=trigger,
                            status="SUCCEEDED",
                            as_of=reference_time,
                            started_at=started_at,
                            finished_at=utcnow(),
                            row_count=len(result.rows),
                            inconsistency_count=len(result.inconsistencies),
                            duration_ms=Decimal(str(duration_ms)),
                            snapshot_checksum=result.snapshot_checksum,
                            correlation_id=get_correlation_id(),
                        )
                    )
                    session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                duration_ms = _elapsed_ms(started)
                self._record_failure(session, run_id, trigger, reference_time, started_at, duration_ms, exc)
                raise RefreshFailure("Principal activity refresh failed; previous snapshot retained", cause=exc) from exc

            over_budget = duration_ms > settings.summary_refresh_budget_ms
            span.set_attribute("refresh.row_count", len(result.rows))
            span.set_attribute("refresh.inconsistency_count", len(result.inconsistencies))
            span.set_attribute("refresh.duration_ms", duration_ms)
            observe_refresh("succeeded", duration_ms / 1000, over_budget=over_budget)
            log_extra = {
                "row_count": len(result.rows),
                "inconsistency_count": len(result.inconsistencies),
                "duration_ms": duration_ms,
                "status": "SUCCEEDED",
            }
            if over_budget:
                logger.warning(
                    "principal_activity.refresh_over_budget",
                    extra={**log_extra, "budget_ms": settings.summary_refresh_budget_ms},
                )
            logger.info("principal_activity.refresh_completed", extra=log_extra)

        return RefreshResultRead(
            run_id=run_id,
            as_of=reference_time,
            row_count=len(result.rows),
            inconsistency_count=len(result.inconsistencies),
            duration_ms=duration_ms,
            over_budget=over_budget,
            snapshot_checksum=result.snapshot_checksum,
        )

    @contextmanager
    def _cross_process_lock(self, session: Session) -> Iterator[None]:
        """Hold the refresh advisory lock on a separate connection.

        The lock must be granted before the session's transaction takes its
        REPEATABLE READ snapshot, otherwise a waiting refresh would read state
        that predates the winner's commit and fail on the replace.
        """
        bind = session.get_bind()
        if bind.dialect.name != "postgresql":
            yield
            return

        with bind.engine.connect() as connection:
            connection.execute(text("SELECT pg_advisory_lock(:key)"), {"key": REFRESH_LOCK_KEY})
            connection.commit()
            try:
                yield
            finally:
                try:
                    connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": REFRESH_LOCK_KEY})
                    connection.commit()
                except SQLAlchemyError:
                    # Session locks survive pool checkin; a connection that could not unlock is discarded.
                    connection.invalidate()
                    logger.error("principal_activity.refresh_unlock_failed", exc_info=True)

    def _begin_snapshot(self, session: Session) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        if not session.in_transaction():
            session.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    def _replace_snapshot(self, session: Session, result: AggregationResult) -> None:
        generated_at = utcnow()
        session.execute(delete(PrincipalActivitySummary))
        session.add_all(
            PrincipalActivitySummary(**row.as_dict(), generated_at=generated_at) for row in result.rows
        )
        session.flush()

    def _record_failure(
        self,
        session: Session,
        run_id: uuid.UUID,
        trigger: str,
        as_of: datetime,
        started_at: datetime,
        duration_ms: float,
        exc: SQLAlchemyError,
    ) -> None:
        observe_refresh("failed", duration_ms / 1000)
        logger.error(
            "principal_activity.refresh_failed",
            exc_info=True,
            extra={"duration_ms": duration_ms, "status": "FAILED", "error": str(exc)},
        )
        try:
            session.add(
                SummaryRefreshRun(
                    id=run_id,
                    trigger=trigger,
                    status="FAILED",
                    as_of=as_of,
                    started_at=started_at,
                    finished_at=utcnow(),
                    duration_ms=Decimal(str(duration_ms)),
                    error=str(exc)[:500],
                    correlation_id=get_correlation_id(),
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.error("principal_activity.refresh_run_not_recorded", exc_info=True)

    # read surface

    def get_summary(self, session: Session, principal_id: uuid.UUID) -> PrincipalActivitySummaryRead:
        row = session.get(PrincipalActivitySummary, principal_id)
        if row is None:
            raise EntityNotFoundError("principal_activity_summary", principal_id)
        return PrincipalActivitySummaryRead.model_validate(row)

    def list_summaries(
        self,
        session: Session,
        *,
        activity_status: ActivityStatus | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PrincipalActivitySummaryRead]:
        stmt = select(PrincipalActivitySummary)
        if activity_status is not None:
            stmt = stmt.where(PrincipalActivitySummary.activity_status == ActivityStatus(activity_status).value)
        stmt = stmt.order_by(
            PrincipalActivitySummary.engagement_score.desc(),
            PrincipalActivitySummary.principal_name.asc(),
            PrincipalActivitySummary.principal_id.asc(),
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [PrincipalActivitySummaryRead.model_validate(row) for row in session.scalars(stmt)]

    def get_stats(self, session: Session) -> PrincipalActivityStatsRead:
        rows = list(session.scalars(select(PrincipalActivitySummary)))
        total = len(rows)
        statuses = Counter(row.activity_status for row in rows)
        ranked = sorted(rows, key=lambda row: (-row.engagement_score, row.principal_name, str(row.principal_id)))

        def average(values: list[Decimal | int]) -> Decimal:
            if not values:
                return quantize(0)
            return quantize(Decimal(sum(values)) / Decimal(len(values)))

        return PrincipalActivityStatsRead(
            total_principals=total,
            active_principals=statuses.get(ActivityStatus.ACTIVE.value, 0),
            principals_with_products=sum(1 for row in rows if row.product_count > 0),
            principals_with_opportunities=sum(1 for row in rows if row.total_opportunities > 0),
            avg_engagement_score=average([row.engagement_score for row in rows]),
            avg_interactions_per_principal=average([row.total_interactions for row in rows]),
            avg_opportunities_per_principal=average([row.total_opportunities for row in rows]),
            status_breakdown={status.value: statuses.get(status.value, 0) for status in ActivityStatus},
            top_principals=[
                TopPrincipalRead(
                    principal_id=row.principal_id,
                    principal_name=row.principal_name,
                    engagement_score=row.engagement_score,
                    activity_status=row.activity_status,
                )
                for row in ranked[:5]
            ],
            generated_at=max((row.generated_at for row in rows), default=None),
        )

    def latest_run(self, session: Session) -> SummaryRefreshRunRead | None:
        stmt = select(SummaryRefreshRun).order_by(SummaryRefreshRun.started_at.desc()).limit(1)
        run = session.scalars(stmt).first()
        return SummaryRefreshRunRead.model_validate(run) if run is not None else None

    # live reports

    def distributor_relationships(self, session: Session) -> list[DistributorRelationshipRead]:
        principals = session.scalars(
            select(Organization)
            .where(Organization.is_principal.is_(True), Organization.deleted_at.is_(None))
            .order_by(Organization.name.asc(), Organization.id.asc())
        ).all()
        parent_ids = {row.distributor_id for row in principals if row.distributor_id is not None}
        parents: dict[uuid.UUID, Organization] = {}
        if parent_ids:
            parents = {
                row.id: row
                for row in session.scalars(
                    select(Organization).where(Organization.id.in_(parent_ids), Organization.deleted_at.is_(None))
                )
            }

        report: list[DistributorRelationshipRead] = []
        for principal in principals:
            distributor = parents.get(principal.distributor_id) if principal.distributor_id else None
            report.append(
                DistributorRelationshipRead(
                    principal_id=principal.id,
                    principal_name=principal.name,
                    principal_status=principal.status,
                    principal_city=principal.city,
                    principal_state=principal.state_province,
                    principal_country=principal.country,
                    distributor_id=distributor.id if distributor else None,
                    distributor_name=distributor.name if distributor else None,
                    distributor_status=distributor.status if distributor else None,
                    distributor_city=distributor.city if distributor else None,
                    distributor_state=distributor.state_province if distributor else None,
                    distributor_country=distributor.country if distributor else None,
                    relationship_type="HAS_DISTRIBUTOR" if distributor else "DIRECT",
                )
            )
        return report

    def product_performance(
        self,
        session: Session,
        *,
        principal_id: uuid.UUID | None = None,
        as_of: datetime | None = None,
    ) -> list[ProductPerformanceRead]:
        reference_time = as_utc(as_of) or utcnow()
        recent_start = reference_time - timedelta(days=30)
        today = reference_time.date()

        stmt = (
            select(ProductPrincipal, Organization, Product)
            .join(Organization, Organization.id == ProductPrincipal.principal_id)
            .join(Product, Product.id == ProductPrincipal.product_id)
            .where(
                ProductPrincipal.deleted_at.is_(None),
                Organization.deleted_at.is_(None),
                Organization.is_principal.is_(True),
                Product.deleted_at.is_(None),
            )
        )
        if principal_id is not None:
            stmt = stmt.where(ProductPrincipal.principal_id == principal_id)
        associations = session.execute(stmt.order_by(Organization.name.asc(), Product.name.asc())).all()
        if not associations:
            return []

        principal_ids = {association.principal_id for association, _, _ in associations}
        opportunities = session.scalars(
            select(Opportunity).where(
                Opportunity.deleted_at.is_(None),
                Opportunity.principal_id.in_(principal_ids),
                Opportunity.product_id.is_not(None),
            )
        ).all()
        by_pair: dict[tuple[uuid.UUID, uuid.UUID], list[Opportunity]] = {}
        for opportunity in opportunities:
            by_pair.setdefault((opportunity.principal_id, opportunity.product_id), []).append(opportunity)  # type: ignore[arg-type]

        interactions_by_opportunity: dict[uuid.UUID, list[Interaction]] = {}
        if opportunities:
            interaction_stmt = select(Interaction).where(
                Interaction.deleted_at.is_(None),
                Interaction.opportunity_id.in_([item.id for item in opportunities]),
            )
            for interaction in session.scalars(interaction_stmt):
                interactions_by_opportunity.setdefault(interaction.opportunity_id, []).append(interaction)

        report: list[ProductPerformanceRead] = []
        for association, principal, product in associations:
            pair = by_pair.get((association.principal_id, association.product_id), [])
            won = sum(1 for item in pair if item.is_won)
            active = sum(1 for item in pair if not item.is_won and item.stage != OpportunityStage.CLOSED_WON.value)
            interactions = [row for item in pair for row in interactions_by_opportunity.get(item.id, [])]
            past_dates = [
                happened_at
                for happened_at in (as_utc(row.interaction_date) for row in interactions)
                if happened_at is not None and happened_at <= reference_time
            ]
            recent = sum(1 for happened_at in past_dates if happened_at >= recent_start)
            avg_probability = (
                quantize(Decimal(sum(item.probability_percent for item in pair)) / Decimal(len(pair)))
                if pair
                else quantize(0)
            )
            report.append(
                ProductPerformanceRead(
                    association_id=association.id,
                    principal_id=principal.id,
                    principal_name=principal.name,
                    product_id=product.id,
                    product_name=product.name,
                    product_category=product.category,
                    product_sku=product.sku,
                    is_primary_principal=association.is_primary_principal,
                    exclusive_rights=association.exclusive_rights,
                    contract_start_date=association.contract_start_date,
                    contract_end_date=association.contract_end_date,
                    contract_status=contract_status(
                        association.contract_start_date, association.contract_end_date, today
                    ),
                    opportunities_for_product=len(pair),
                    won_opportunities_for_product=won,
                    active_opportunities_for_product=active,
                    avg_opportunity_probability=avg_probability,
                    interactions_for_product=len(interactions),
                    recent_interactions_for_product=recent,
                    last_interaction_date=max(past_dates, default=None),
                    product_performance_score=product_performance_score(
                        opportunity_count=len(pair),
                        won_opportunities=won,
                        recent_interactions=recent,
                        exclusive_rights=association.exclusive_rights,
                    ),
                )
            )
        return report

    def timeline(self, session: Session, principal_id: uuid.UUID, *, limit: int = 50) -> list[TimelineEntryRead]:
        principal = session.get(Organization, principal_id)
        if principal is None or principal.deleted_at is not None or not principal.is_principal:
            raise EntityNotFoundError("principal", principal_id)

        opportunities = session.scalars(
            select(Opportunity).where(Opportunity.principal_id == principal_id, Opportunity.deleted_at.is_(None))
        ).all()
        product_ids = {item.product_id for item in opportunities if item.product_id is not None}
        associations = session.scalars(
            select(ProductPrincipal).where(
                ProductPrincipal.principal_id == principal_id,
                ProductPrincipal.deleted_at.is_(None),
            )
        ).all()
        product_ids.update(item.product_id for item in associations)
        products = (
            {row.id: row for row in session.scalars(select(Product).where(Product.id.in_(product_ids)))}
            if product_ids
            else {}
        )

        organization_ids = {principal_id} | {item.organization_id for item in opportunities}
        contacts = session.scalars(
            select(Contact).where(Contact.organization_id.in_(organization_ids), Contact.deleted_at.is_(None))
        ).all()
        opportunity_by_id = {item.id: item for item in opportunities}
        interactions = (
            session.scalars(
                select(Interaction).where(
                    Interaction.opportunity_id.in_(list(opportunity_by_id)),
                    Interaction.deleted_at.is_(None),
                )
            ).all()
            if opportunity_by_id
            else []
        )

        entries: list[dict] = []
        for contact in contacts:
            entries.append(
                {
                    "activity_date": as_utc(contact.updated_at),
                    "activity_type": "CONTACT_UPDATE",
                    "activity_subject": f"Contact: {contact.full_name}",
                    "activity_details": contact.notes or "Contact information updated",
                    "source_id": contact.id,
                    "source_table": "contacts",
                    "contact_name": contact.full_name,
                    "activity_status": "COMPLETED",
                }
            )
        for interaction in interactions:
            opportunity = opportunity_by_id[interaction.opportunity_id]
            product = products.get(opportunity.product_id) if opportunity.product_id else None
            entries.append(
                {
                    "activity_date": as_utc(interaction.interaction_date),
                    "activity_type": "INTERACTION",
                    "activity_subject": interaction.subject,
                    "activity_details": interaction.notes or f"Interaction: {interaction.type}",
                    "source_id": interaction.id,
                    "source_table": "interactions",
                    "opportunity_name": opportunity.name,
                    "product_name": product.name if product else None,
                    "activity_status": interaction.status,
                    "follow_up_required": interaction.follow_up_required,
                    "follow_up_date": interaction.follow_up_date,
                }
            )
        for opportunity in opportunities:
            product = products.get(opportunity.product_id) if opportunity.product_id else None
            entries.append(
                {
                    "activity_date": as_utc(opportunity.created_at),
                    "activity_type": "OPPORTUNITY_CREATED",
                    "activity_subject": f"New Opportunity: {opportunity.name}",
                    "activity_details": (
                        f"Stage: {opportunity.stage} (Probability: {opportunity.probability_percent}%)"
                    ),
                    "source_id": opportunity.id,
                    "source_table": "opportunities",
                    "opportunity_name": opportunity.name,
                    "product_name": product.name if product else None,
                    "activity_status": "WON" if opportunity.is_won else "ACTIVE",
                    "follow_up_date": opportunity.expected_close_date,
                }
            )
        for association in associations:
            product = products.get(association.product_id)
            if product is None or product.deleted_at is not None:
                continue
            details = f"Category: {product.category or 'Unknown'}"
            if association.is_primary_principal:
                details += " (Primary Principal)"
            entries.append(
                {
                    "activity_date": as_utc(association.created_at),
                    "activity_type": "PRODUCT_ASSOCIATION",
                    "activity_subject": f"Product Added: {product.name}",
                    "activity_details": details,
                    "source_id": association.id,
                    "source_table": "product_principals",
                    "product_name": product.name,
                    "activity_status": "ACTIVE",
                    "follow_up_date": association.contract_end_date,
                }
            )

        entries.sort(key=lambda entry: (entry["activity_date"], str(entry["source_id"])), reverse=True)
        return [
            TimelineEntryRead(principal_id=principal_id, timeline_rank=rank, **entry)
            for rank, entry in enumerate(entries[:limit], start=1)
        ]


def contract_status(start: date | None, end: date | None, today: date) -> str:
    if end is not None and end < today:
        return "EXPIRED"
    if end is not None and end < today + timedelta(days=CONTRACT_EXPIRY_WARNING_DAYS):
        return "EXPIRING_SOON"
    if start is not None and start > today:
        return "PENDING"
    return "ACTIVE"


principal_activity_service = PrincipalActivityService()
