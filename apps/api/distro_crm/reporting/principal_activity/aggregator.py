"""Pure recomputation of the per-principal activity summary.

``ActivityAggregator.recompute`` reads the live entity tables in a handful of
bulk queries and returns fresh summary rows. It never writes; persisting the
rows is the refresh orchestrator's job.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from distro_crm.crm.invariants import as_utc
from distro_crm.crm.lifecycle import OpportunityStage
from distro_crm.crm.models import Contact, Interaction, Opportunity, Organization, Product, ProductPrincipal
from distro_crm.metrics import observe_aggregation_inconsistency
from distro_crm.reporting.principal_activity.scoring import activity_status, days_since, engagement_score, quantize

logger = logging.getLogger("distro_crm.reporting.principal_activity")

_CHECKSUM_EXCLUDED = {"checksum", "as_of"}


@dataclass(frozen=True, slots=True)
class AggregationInconsistency:
    reason: str
    entity: str
    entity_id: uuid.UUID
    reference: uuid.UUID | None
    principal_id: uuid.UUID | None = None


@dataclass(slots=True)
class PrincipalActivityRow:
    principal_id: uuid.UUID
    principal_name: str
    principal_status: str
    as_of: datetime
    distributor_id: uuid.UUID | None = None
    distributor_name: str | None = None
    primary_contact_name: str | None = None
    contact_count: int = 0
    total_interactions: int = 0
    interactions_last_30_days: int = 0
    interactions_last_90_days: int = 0
    last_interaction_date: datetime | None = None
    last_interaction_type: str | None = None
    next_follow_up_date: date | None = None
    avg_interaction_rating: Decimal | None = None
    positive_interactions: int = 0
    follow_ups_required: int = 0
    total_opportunities: int = 0
    active_opportunities: int = 0
    won_opportunities: int = 0
    opportunities_last_30_days: int = 0
    avg_probability_percent: Decimal = Decimal("0.00")
    latest_opportunity_stage: str | None = None
    product_count: int = 0
    active_product_count: int = 0
    last_activity_date: datetime | None = None
    activity_status: str = "NO_ACTIVITY"
    engagement_score: Decimal = Decimal("0.00")
    checksum: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def compute_checksum(self) -> str:
        values = {key: value for key, value in self.as_dict().items() if key not in _CHECKSUM_EXCLUDED}
        encoded = json.dumps(values, sort_keys=True, default=_canonical)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class AggregationResult:
    as_of: datetime
    rows: list[PrincipalActivityRow] = field(default_factory=list)
    inconsistencies: list[AggregationInconsistency] = field(default_factory=list)

    @property
    def snapshot_checksum(self) -> str:
        digest = hashlib.sha256()
        for row in sorted(self.rows, key=lambda item: str(item.principal_id)):
            digest.update(f"{row.principal_id}:{row.checksum}\n".encode("utf-8"))
        return digest.hexdigest()


def _canonical(value: Any) -> str:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()  # type: ignore[union-attr]
    if isinstance(value, Decimal):
        return str(quantize(value))
    return str(value)


@dataclass(slots=True)
class _Bucket:
    opportunities: list[Opportunity] = field(default_factory=list)
    interactions: list[Interaction] = field(default_factory=list)
    customer_ids: set[uuid.UUID] = field(default_factory=set)


class ActivityAggregator:
    def __init__(self, *, recent_days: int = 30, moderate_days: int = 90) -> None:
        self.recent_days = recent_days
        self.moderate_days = moderate_days

    def recompute(self, session: Session, as_of: datetime) -> AggregationResult:
        as_of = as_utc(as_of)  # type: ignore[assignment]
        recent_window = as_of - timedelta(days=self.recent_days)
        moderate_window = as_of - timedelta(days=self.moderate_days)
        result = AggregationResult(as_of=as_of)

        organizations = {row.id: row for row in session.scalars(select(Organization))}
        principals = sorted(
            (row for row in organizations.values() if row.is_principal and row.deleted_at is None),
            key=lambda row: (row.name, str(row.id)),
        )
        buckets: dict[uuid.UUID, _Bucket] = {row.id: _Bucket() for row in principals}

        opportunities = list(session.scalars(select(Opportunity)))
        counted_opportunities: dict[uuid.UUID, uuid.UUID] = {}
        retired_opportunities: set[uuid.UUID] = set()
        for opportunity in opportunities:
            if opportunity.deleted_at is not None:
                retired_opportunities.add(opportunity.id)
                continue
            if opportunity.principal_id is None:
                continue
            bucket = buckets.get(opportunity.principal_id)
            if bucket is None:
                self._flag(
                    result,
                    "opportunity_principal_inactive",
                    "opportunity",
                    opportunity.id,
                    opportunity.principal_id,
                )
                continue
            bucket.opportunities.append(opportunity)
            counted_opportunities[opportunity.id] = opportunity.principal_id
            customer = organizations.get(opportunity.organization_id)
            if customer is None or customer.deleted_at is not None:
                self._flag(
                    result,
                    "opportunity_customer_retired",
                    "opportunity",
                    opportunity.id,
                    opportunity.organization_id,
                    opportunity.principal_id,
                )
                continue
            bucket.customer_ids.add(customer.id)

        for interaction in session.scalars(select(Interaction).where(Interaction.deleted_at.is_(None))):
            principal_id = counted_opportunities.get(interaction.opportunity_id)
            if principal_id is not None:
                buckets[principal_id].interactions.append(interaction)
            elif interaction.opportunity_id in retired_opportunities:
                self._flag(
                    result,
                    "interaction_opportunity_retired",
                    "interaction",
                    interaction.id,
                    interaction.opportunity_id,
                )

        customer_ids: set[uuid.UUID] = set().union(*(bucket.customer_ids for bucket in buckets.values()))
        contacts_by_org: dict[uuid.UUID, list[Contact]] = defaultdict(list)
        if customer_ids:
            contact_stmt = select(Contact).where(
                Contact.deleted_at.is_(None),
                Contact.organization_id.in_(customer_ids),
            )
            for contact in session.scalars(contact_stmt):
                contacts_by_org[contact.organization_id].append(contact)  # type: ignore[index]

        products = {row.id: row for row in session.scalars(select(Product))}
        associations_by_principal: dict[uuid.UUID, list[Product]] = defaultdict(list)
        association_stmt = select(ProductPrincipal).where(ProductPrincipal.deleted_at.is_(None))
        for association in session.scalars(association_stmt):
            if association.principal_id not in buckets:
                continue
            product = products.get(association.product_id)
            if product is None or product.deleted_at is not None:
                self._flag(
                    result,
                    "association_product_retired",
                    "product_principal",
                    association.id,
                    association.product_id,
                    association.principal_id,
                )
                continue
            associations_by_principal[association.principal_id].append(product)

        for principal in principals:
            bucket = buckets[principal.id]
            contacts = {
                contact.id: contact
                for customer_id in bucket.customer_ids
                for contact in contacts_by_org.get(customer_id, [])
            }
            row = self._summarize(
                principal,
                organizations,
                bucket,
                list(contacts.values()),
                associations_by_principal.get(principal.id, []),
                as_of,
                recent_window,
                moderate_window,
            )
            row.checksum = row.compute_checksum()
            result.rows.append(row)

        return result

    def _summarize(
        self,
        principal: Organization,
        organizations: dict[uuid.UUID, Organization],
        bucket: _Bucket,
        contacts: list[Contact],
        products: list[Product],
        as_of: datetime,
        recent_window: datetime,
        moderate_window: datetime,
    ) -> PrincipalActivityRow:
        row = PrincipalActivityRow(
            principal_id=principal.id,
            principal_name=principal.name,
            principal_status=principal.status,
            as_of=as_of,
        )

        distributor = organizations.get(principal.distributor_id) if principal.distributor_id else None
        if distributor is not None and distributor.deleted_at is None:
            row.distributor_id = distributor.id
            row.distributor_name = distributor.name

        row.contact_count = len(contacts)
        if contacts:
            primary = max(contacts, key=lambda item: (item.is_primary, as_utc(item.updated_at), str(item.id)))
            row.primary_contact_name = primary.full_name

        # interactions
        interactions = bucket.interactions
        row.total_interactions = len(interactions)
        past: list[tuple[datetime, Interaction]] = []
        ratings: list[int] = []
        today = as_of.date()
        upcoming: list[date] = []
        for interaction in interactions:
            happened_at = as_utc(interaction.interaction_date)
            if happened_at is not None and happened_at <= as_of:
                past.append((happened_at, interaction))
                if happened_at >= moderate_window:
                    row.interactions_last_90_days += 1
                    if happened_at >= recent_window:
                        row.interactions_last_30_days += 1
            if interaction.rating is not None:
                ratings.append(interaction.rating)
            if interaction.outcome == "POSITIVE":
                row.positive_interactions += 1
            if interaction.follow_up_required and interaction.follow_up_date and interaction.follow_up_date > today:
                row.follow_ups_required += 1
                upcoming.append(interaction.follow_up_date)
        if past:
            last_at, last = max(past, key=lambda item: (item[0], str(item[1].id)))
            row.last_interaction_date = last_at
            row.last_interaction_type = last.type
        if ratings:
            row.avg_interaction_rating = quantize(Decimal(sum(ratings)) / Decimal(len(ratings)))
        if upcoming:
            row.next_follow_up_date = min(upcoming)

        # opportunities
        opportunities = bucket.opportunities
        row.total_opportunities = len(opportunities)
        row.won_opportunities = sum(1 for item in opportunities if item.is_won)
        row.active_opportunities = sum(
            1 for item in opportunities if not item.is_won and item.stage != OpportunityStage.CLOSED_WON.value
        )
        row.opportunities_last_30_days = sum(
            1 for item in opportunities if recent_window <= as_utc(item.created_at) <= as_of  # type: ignore[operator]
        )
        if opportunities:
            total_probability = sum(item.probability_percent for item in opportunities)
            row.avg_probability_percent = quantize(Decimal(total_probability) / Decimal(len(opportunities)))
            latest = max(opportunities, key=lambda item: (as_utc(item.updated_at), str(item.id)))
            row.latest_opportunity_stage = latest.stage

        # products
        distinct_products = {product.id: product for product in products}
        row.product_count = len(distinct_products)
        row.active_product_count = sum(1 for product in distinct_products.values() if product.is_active)

        # recency
        candidates = [row.last_interaction_date]
        candidates.extend(as_utc(contact.updated_at) for contact in contacts)
        candidates.extend(as_utc(item.updated_at) for item in opportunities)
        row.last_activity_date = max(
            (value for value in candidates if value is not None and value <= as_of),
            default=None,
        )
        row.activity_status = activity_status(
            row.last_activity_date,
            as_of,
            recent_days=self.recent_days,
            moderate_days=self.moderate_days,
        ).value
        row.engagement_score = engagement_score(
            days_since_activity=days_since(row.last_activity_date, as_of),
            interactions_last_30_days=row.interactions_last_30_days,
            interactions_last_90_days=row.interactions_last_90_days,
            active_opportunities=row.active_opportunities,
            won_opportunities=row.won_opportunities,
            active_product_count=row.active_product_count,
        )
        return row

    def _flag(
        self,
        result: AggregationResult,
        reason: str,
        entity: str,
        entity_id: uuid.UUID,
        reference: uuid.UUID | None,
        principal_id: uuid.UUID | None = None,
    ) -> None:
        result.inconsistencies.append(
            AggregationInconsistency(
                reason=reason,
                entity=entity,
                entity_id=entity_id,
                reference=reference,
                principal_id=principal_id,
            )
        )
        observe_aggregation_inconsistency(reason)
        logger.warning(
            "principal_activity.aggregation_inconsistency",
            extra={
                "reason": reason,
                "entity": entity,
                "entity_id": str(entity_id),
                "reference": str(reference) if reference is not None else None,
                "principal_id": str(principal_id) if principal_id is not None else None,
            },
        )
