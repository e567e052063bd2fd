from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from distro_crm.crm.models import Contact, Interaction, Opportunity, Organization, Product, ProductPrincipal

ModelT = TypeVar("ModelT")


class SoftDeleteRepository(Generic[ModelT]):
    """Row access for one entity table where retirement is a ``deleted_at`` timestamp."""

    model: type[Any]

    def select_active(self, include_retired: bool = False) -> Select[Any]:
        stmt = select(self.model)
        if not include_retired:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def get(self, session: Session, entity_id: uuid.UUID) -> ModelT | None:
        return session.get(self.model, entity_id)

    def get_active(self, session: Session, entity_id: uuid.UUID | None) -> ModelT | None:
        if entity_id is None:
            return None
        row = session.get(self.model, entity_id)
        if row is None or row.deleted_at is not None:
            return None
        return row

    def list_rows(
        self,
        session: Session,
        *,
        include_retired: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ModelT]:
        stmt = self.select_active(include_retired).order_by(self.model.created_at.asc(), self.model.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))

    def add(self, session: Session, values: dict[str, Any]) -> ModelT:
        row = self.model(**values)
        session.add(row)
        session.flush()
        return row

    def apply_changes(self, session: Session, row: ModelT, changes: dict[str, Any]) -> ModelT:
        for field_name, value in changes.items():
            setattr(row, field_name, value)
        session.flush()
        return row

    def soft_delete(self, session: Session, row: ModelT, *, at: datetime | None = None) -> ModelT:
        row.deleted_at = at or datetime.now(timezone.utc)
        session.flush()
        return row

    def restore(self, session: Session, row: ModelT) -> ModelT:
        row.deleted_at = None
        session.flush()
        return row


class OrganizationRepository(SoftDeleteRepository[Organization]):
    model = Organization

    def list_distributor_clients(
        self, session: Session, distributor_id: uuid.UUID, include_retired: bool = False
    ) -> list[Organization]:
        stmt = self.select_active(include_retired).where(Organization.distributor_id == distributor_id)
        return list(session.scalars(stmt.order_by(Organization.name.asc())))

    def count_active_clients(self, session: Session, distributor_id: uuid.UUID) -> int:
        stmt = select(func.count(Organization.id)).where(
            Organization.distributor_id == distributor_id,
            Organization.deleted_at.is_(None),
        )
        return int(session.scalar(stmt) or 0)


class ContactRepository(SoftDeleteRepository[Contact]):
    model = Contact

    def list_by_organization(
        self, session: Session, organization_id: uuid.UUID, include_retired: bool = False
    ) -> list[Contact]:
        stmt = self.select_active(include_retired).where(Contact.organization_id == organization_id)
        return list(session.scalars(stmt.order_by(Contact.last_name.asc(), Contact.first_name.asc())))

    def find_active_by_email(self, session: Session, email: str) -> list[Contact]:
        stmt = self.select_active().where(func.lower(Contact.email) == email.strip().lower())
        return list(session.scalars(stmt))

    def list_active_primaries(self, session: Session, organization_id: uuid.UUID) -> list[Contact]:
        stmt = self.select_active().where(
            Contact.organization_id == organization_id,
            Contact.is_primary.is_(True),
        )
        return list(session.scalars(stmt))


class OpportunityRepository(SoftDeleteRepository[Opportunity]):
    model = Opportunity

    def list_by_organization(
        self, session: Session, organization_id: uuid.UUID, include_retired: bool = False
    ) -> list[Opportunity]:
        stmt = self.select_active(include_retired).where(Opportunity.organization_id == organization_id)
        return list(session.scalars(stmt.order_by(Opportunity.created_at.desc())))

    def list_by_principal(
        self, session: Session, principal_id: uuid.UUID, include_retired: bool = False
    ) -> list[Opportunity]:
        stmt = self.select_active(include_retired).where(Opportunity.principal_id == principal_id)
        return list(session.scalars(stmt.order_by(Opportunity.created_at.desc())))


class InteractionRepository(SoftDeleteRepository[Interaction]):
    model = Interaction

    def list_by_opportunity(
        self, session: Session, opportunity_id: uuid.UUID, include_retired: bool = False
    ) -> list[Interaction]:
        stmt = self.select_active(include_retired).where(Interaction.opportunity_id == opportunity_id)
        return list(session.scalars(stmt.order_by(Interaction.interaction_date.desc())))

    def list_by_principal(
        self, session: Session, principal_id: uuid.UUID, include_retired: bool = False
    ) -> list[Interaction]:
        opportunity_ids = select(Opportunity.id).where(Opportunity.principal_id == principal_id)
        if not include_retired:
            opportunity_ids = opportunity_ids.where(Opportunity.deleted_at.is_(None))
        stmt = self.select_active(include_retired).where(Interaction.opportunity_id.in_(opportunity_ids))
        return list(session.scalars(stmt.order_by(Interaction.interaction_date.desc())))

    def list_in_window(
        self,
        session: Session,
        start: datetime,
        end: datetime,
        *,
        include_retired: bool = False,
    ) -> list[Interaction]:
        stmt = self.select_active(include_retired).where(
            Interaction.interaction_date >= start,
            Interaction.interaction_date <= end,
        )
        return list(session.scalars(stmt.order_by(Interaction.interaction_date.asc())))


class ProductRepository(SoftDeleteRepository[Product]):
    model = Product


class ProductPrincipalRepository(SoftDeleteRepository[ProductPrincipal]):
    model = ProductPrincipal

    def list_by_product(
        self, session: Session, product_id: uuid.UUID, include_retired: bool = False
    ) -> list[ProductPrincipal]:
        stmt = self.select_active(include_retired).where(ProductPrincipal.product_id == product_id)
        return list(session.scalars(stmt.order_by(ProductPrincipal.created_at.asc())))

    def list_by_principal(
        self, session: Session, principal_id: uuid.UUID, include_retired: bool = False
    ) -> list[ProductPrincipal]:
        stmt = self.select_active(include_retired).where(ProductPrincipal.principal_id == principal_id)
        return list(session.scalars(stmt.order_by(ProductPrincipal.created_at.asc())))


@dataclass(slots=True)
class EntityStore:
    organizations: OrganizationRepository = field(default_factory=OrganizationRepository)
    contacts: ContactRepository = field(default_factory=ContactRepository)
    opportunities: OpportunityRepository = field(default_factory=OpportunityRepository)
    interactions: InteractionRepository = field(default_factory=InteractionRepository)
    products: ProductRepository = field(default_factory=ProductRepository)
    product_principals: ProductPrincipalRepository = field(default_factory=ProductPrincipalRepository)


entity_store = EntityStore()
