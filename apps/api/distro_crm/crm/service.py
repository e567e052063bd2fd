from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from distro_crm import audit, events
from distro_crm.core.config import get_settings
from distro_crm.crm.errors import EntityNotFoundError, ValidationViolation, Violation, ViolationKind
from distro_crm.crm.invariants import InvariantSet, as_utc, invariant_set, territory_states
from distro_crm.crm.lifecycle import OpportunityLifecycle, OpportunityStage
from distro_crm.crm.models import Contact, Opportunity, Organization, ProductPrincipal
from distro_crm.crm.repositories import EntityStore, SoftDeleteRepository, entity_store
from distro_crm.crm.schemas import (
    ContactCreate,
    ContactRead,
    ContactUpdate,
    InteractionCreate,
    InteractionRead,
    InteractionUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityStageTransition,
    OpportunityTransitionRead,
    OpportunityUpdate,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
    ProductCreate,
    ProductPrincipalCreate,
    ProductPrincipalRead,
    ProductPrincipalUpdate,
    ProductRead,
    ProductUpdate,
    TerritoryOverlapRead,
)

logger = logging.getLogger("distro_crm.crm.service")

ReadT = TypeVar("ReadT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActorUser:
    user_id: str
    correlation_id: str | None = None


def _row_state(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


class _EntityService(Generic[ReadT]):
    """Create / update / soft-delete / restore flow shared by every CRM entity.

    Every write is validated against the injected ``InvariantSet`` before the
    session is touched; audit entries and events are recorded inside the same
    transaction as the write.
    """

    entity_type = ""
    event_prefix = ""
    read_schema: type[ReadT]

    def __init__(self, store: EntityStore | None = None, invariants: InvariantSet | None = None) -> None:
        self.store = store or entity_store
        self.invariants = invariants or invariant_set

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        raise NotImplementedError

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        raise NotImplementedError

    def _create_values(self, session: Session, dto: BaseModel) -> dict[str, Any]:
        return dto.model_dump()

    def _update_values(self, session: Session, row: Any, dto: BaseModel) -> dict[str, Any]:
        return dto.model_dump(exclude_unset=True)

    def _before_write(self, session: Session, proposed: dict[str, Any], current: Any) -> None:
        return None

    def _before_retire(self, session: Session, row: Any) -> None:
        return None

    def _event_payload(self, row: Any) -> dict[str, Any]:
        return {f"{self.entity_type}_id": str(row.id)}

    def to_read(self, row: Any) -> ReadT:
        return self.read_schema.model_validate(row)

    def get_row(self, session: Session, entity_id: uuid.UUID, *, include_retired: bool = False) -> Any:
        row = (
            self.repository.get(session, entity_id)
            if include_retired
            else self.repository.get_active(session, entity_id)
        )
        if row is None:
            raise EntityNotFoundError(self.entity_type, entity_id)
        return row

    def get(self, session: Session, entity_id: uuid.UUID, *, include_retired: bool = False) -> ReadT:
        return self.to_read(self.get_row(session, entity_id, include_retired=include_retired))

    def list_records(
        self, session: Session, *, include_retired: bool = False, limit: int | None = None, offset: int = 0
    ) -> list[ReadT]:
        rows = self.repository.list_rows(session, include_retired=include_retired, limit=limit, offset=offset)
        return [self.to_read(row) for row in rows]

    def create(self, session: Session, actor_user: ActorUser, dto: BaseModel) -> ReadT:
        values = self._create_values(session, dto)
        self._validate(session, dict(values), None, restoring=False)
        try:
            self._before_write(session, values, None)
            row = self.repository.add(session, values)
            read_model = self.to_read(row)
            self._record(actor_user, row, "create", None, read_model)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise self._integrity_violation(exc) from exc
        return read_model

    def update(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID, dto: BaseModel) -> ReadT:
        row = self.get_row(session, entity_id)
        changes = self._update_values(session, row, dto)
        if not changes:
            return self.to_read(row)

        self.invariants.validate_changes(self.entity_type, row, changes)
        proposed = {**_row_state(row), **changes}
        self._validate(session, proposed, row, restoring=False)
        before = self.to_read(row)
        try:
            self._before_write(session, proposed, row)
            self.repository.apply_changes(session, row, changes)
            read_model = self.to_read(row)
            self._record(actor_user, row, "update", before, read_model)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise self._integrity_violation(exc) from exc
        return read_model

    def soft_delete(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID) -> ReadT:
        row = self.get_row(session, entity_id)
        self._before_retire(session, row)
        before = self.to_read(row)
        self.repository.soft_delete(session, row)
        read_model = self.to_read(row)
        self._record(actor_user, row, "delete", before, read_model)
        session.commit()
        return read_model

    def restore(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID) -> ReadT:
        row = self.get_row(session, entity_id, include_retired=True)
        if row.deleted_at is None:
            return self.to_read(row)

        self._validate(session, _row_state(row), row, restoring=True)
        before = self.to_read(row)
        try:
            self.repository.restore(session, row)
            read_model = self.to_read(row)
            self._record(actor_user, row, "restore", before, read_model)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise self._integrity_violation(exc) from exc
        return read_model

    def _record(self, actor_user: ActorUser, row: Any, action: str, before: ReadT | None, after: ReadT) -> None:
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"crm.{self.entity_type}",
            entity_id=str(row.id),
            action=action,
            before=before.model_dump(mode="json") if before is not None else None,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        event_action = {"create": "created", "update": "updated", "delete": "deleted", "restore": "restored"}[action]
        self._publish(actor_user, f"{self.event_prefix}.{event_action}", self._event_payload(row))

    def _publish(self, actor_user: ActorUser, event_type: str, payload: dict[str, Any]) -> None:
        envelope = events.build_envelope(event_type, actor_user.user_id, payload)
        if actor_user.correlation_id:
            envelope["correlation_id"] = actor_user.correlation_id
        events.publish(envelope)

    def _integrity_violation(self, exc: IntegrityError) -> ValidationViolation:
        logger.warning("crm.integrity_conflict", extra={"entity": self.entity_type, "error": str(exc.orig)})
        return ValidationViolation(
            Violation(
                kind=ViolationKind.UNIQUENESS,
                entity=self.entity_type,
                field="*",
                detail=f"{self.entity_type} conflicts with an existing row",
            )
        )


class OrganizationService(_EntityService[OrganizationRead]):
    entity_type = "organization"
    event_prefix = "crm.organization"
    read_schema = OrganizationRead

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.organizations

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_organization(session, proposed, current)

    def _create_values(self, session: Session, dto: BaseModel) -> dict[str, Any]:
        values = dto.model_dump()
        values["name"] = values["name"].strip()
        return values

    def _before_retire(self, session: Session, row: Organization) -> None:
        self.invariants.validate_organization_retirement(session, row)

    def list_organizations(
        self,
        session: Session,
        *,
        is_principal: bool | None = None,
        is_distributor: bool | None = None,
        include_retired: bool = False,
    ) -> list[OrganizationRead]:
        stmt = self.store.organizations.select_active(include_retired)
        if is_principal is not None:
            stmt = stmt.where(Organization.is_principal.is_(is_principal))
        if is_distributor is not None:
            stmt = stmt.where(Organization.is_distributor.is_(is_distributor))
        rows = session.scalars(stmt.order_by(Organization.name.asc(), Organization.id.asc()))
        return [self.to_read(row) for row in rows]

    def list_distributor_clients(
        self, session: Session, distributor_id: uuid.UUID, *, include_retired: bool = False
    ) -> list[OrganizationRead]:
        distributor = self.get_row(session, distributor_id)
        if not distributor.is_distributor:
            raise EntityNotFoundError("distributor", distributor_id)
        rows = self.store.organizations.list_distributor_clients(
            session, distributor_id, include_retired=include_retired
        )
        return [self.to_read(row) for row in rows]


class ContactService(_EntityService[ContactRead]):
    entity_type = "contact"
    event_prefix = "crm.contact"
    read_schema = ContactRead

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.contacts

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_contact(session, proposed, current, demote_primary=not restoring)

    def _create_values(self, session: Session, dto: BaseModel) -> dict[str, Any]:
        values = dto.model_dump()
        values["first_name"] = values["first_name"].strip()
        values["last_name"] = values["last_name"].strip()
        if values.get("email") is not None:
            values["email"] = str(values["email"])
        return values

    def _update_values(self, session: Session, row: Any, dto: BaseModel) -> dict[str, Any]:
        changes = dto.model_dump(exclude_unset=True)
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"])
        return changes

    def _before_write(self, session: Session, proposed: dict[str, Any], current: Any) -> None:
        organization_id = proposed.get("organization_id")
        if not proposed.get("is_primary") or organization_id is None:
            return
        conditions = [
            Contact.organization_id == organization_id,
            Contact.deleted_at.is_(None),
            Contact.is_primary.is_(True),
        ]
        if current is not None:
            conditions.append(Contact.id != current.id)
        result = session.execute(
            update(Contact)
            .where(and_(*conditions))
            .values(is_primary=False, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info(
                "crm.contact.primary_demoted",
                extra={"entity": "contact", "entity_id": str(organization_id), "row_count": result.rowcount},
            )

    def _event_payload(self, row: Contact) -> dict[str, Any]:
        return {
            "contact_id": str(row.id),
            "organization_id": str(row.organization_id) if row.organization_id else None,
        }

    def list_for_organization(
        self, session: Session, organization_id: uuid.UUID, *, include_retired: bool = False
    ) -> list[ContactRead]:
        rows = self.store.contacts.list_by_organization(session, organization_id, include_retired=include_retired)
        return [self.to_read(row) for row in rows]


class OpportunityService(_EntityService[OpportunityRead]):
    entity_type = "opportunity"
    event_prefix = "crm.opportunity"
    read_schema = OpportunityRead

    def __init__(
        self,
        store: EntityStore | None = None,
        invariants: InvariantSet | None = None,
        lifecycle: OpportunityLifecycle | None = None,
    ) -> None:
        super().__init__(store, invariants)
        self.lifecycle = lifecycle

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.opportunities

    def _lifecycle(self) -> OpportunityLifecycle:
        if self.lifecycle is not None:
            return self.lifecycle
        return OpportunityLifecycle(allow_regression=get_settings().allow_stage_regression)

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_opportunity(session, proposed, current)

    def _create_values(self, session: Session, dto: BaseModel) -> dict[str, Any]:
        values = dto.model_dump()
        values["name"] = values["name"].strip()
        now = utcnow()
        is_won = values["stage"] == OpportunityStage.CLOSED_WON.value
        values["is_won"] = is_won
        values["won_date"] = now if is_won else None
        values["stage_changed_at"] = now
        return values

    def _event_payload(self, row: Opportunity) -> dict[str, Any]:
        return {
            "opportunity_id": str(row.id),
            "organization_id": str(row.organization_id),
            "principal_id": str(row.principal_id) if row.principal_id else None,
        }

    def transition(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: OpportunityStageTransition,
    ) -> OpportunityTransitionRead:
        row = self.get_row(session, opportunity_id)
        result = self._lifecycle().transition(row, dto.stage, dto.probability_percent)
        changes = result.changes()
        self._validate(session, {**_row_state(row), **changes}, row, restoring=False)

        before = self.to_read(row)
        self.repository.apply_changes(session, row, changes)
        read_model = self.to_read(row)
        self._record(actor_user, row, "update", before, read_model)
        if result.from_stage is not result.to_stage:
            self._publish(
                actor_user,
                "crm.opportunity.stage_changed",
                {
                    **self._event_payload(row),
                    "from_stage": result.from_stage.value,
                    "to_stage": result.to_stage.value,
                    "is_regression": result.is_regression,
                },
            )
        session.commit()
        return OpportunityTransitionRead(
            opportunity=read_model,
            from_stage=result.from_stage.value,
            is_regression=result.is_regression,
        )

    def list_opportunities(
        self,
        session: Session,
        *,
        organization_id: uuid.UUID | None = None,
        principal_id: uuid.UUID | None = None,
        include_retired: bool = False,
    ) -> list[OpportunityRead]:
        if principal_id is not None:
            rows = self.store.opportunities.list_by_principal(session, principal_id, include_retired=include_retired)
            if organization_id is not None:
                rows = [row for row in rows if row.organization_id == organization_id]
        elif organization_id is not None:
            rows = self.store.opportunities.list_by_organization(
                session, organization_id, include_retired=include_retired
            )
        else:
            rows = self.store.opportunities.list_rows(session, include_retired=include_retired)
        return [self.to_read(row) for row in rows]


class InteractionService(_EntityService[InteractionRead]):
    entity_type = "interaction"
    event_prefix = "crm.interaction"
    read_schema = InteractionRead

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.interactions

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_interaction(session, proposed, current)

    def _create_values(self, session: Session, dto: BaseModel) -> dict[str, Any]:
        values = dto.model_dump()
        if values.get("interaction_date") is None:
            values["interaction_date"] = utcnow()
        return values

    def _event_payload(self, row: Any) -> dict[str, Any]:
        return {"interaction_id": str(row.id), "opportunity_id": str(row.opportunity_id)}

    def list_interactions(
        self,
        session: Session,
        *,
        opportunity_id: uuid.UUID | None = None,
        principal_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_retired: bool = False,
    ) -> list[InteractionRead]:
        repository = self.store.interactions
        if opportunity_id is None and principal_id is None and start is not None and end is not None:
            rows = repository.list_in_window(session, start, end, include_retired=include_retired)
            return [self.to_read(row) for row in rows]

        if opportunity_id is not None:
            rows = repository.list_by_opportunity(session, opportunity_id, include_retired=include_retired)
        elif principal_id is not None:
            rows = repository.list_by_principal(session, principal_id, include_retired=include_retired)
        else:
            rows = repository.list_rows(session, include_retired=include_retired)

        reads = [self.to_read(row) for row in rows]
        if start is not None:
            reads = [item for item in reads if as_utc(item.interaction_date) >= as_utc(start)]
        if end is not None:
            reads = [item for item in reads if as_utc(item.interaction_date) <= as_utc(end)]
        return reads


class ProductService(_EntityService[ProductRead]):
    entity_type = "product"
    event_prefix = "crm.product"
    read_schema = ProductRead

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.products

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_product(session, proposed, current)


class ProductPrincipalService(_EntityService[ProductPrincipalRead]):
    entity_type = "product_principal"
    event_prefix = "crm.product_principal"
    read_schema = ProductPrincipalRead

    @property
    def repository(self) -> SoftDeleteRepository[Any]:
        return self.store.product_principals

    def _validate(self, session: Session, proposed: dict[str, Any], current: Any, *, restoring: bool) -> None:
        self.invariants.validate_product_principal(session, proposed, current)

    def _update_values(self, session: Session, row: Any, dto: BaseModel) -> dict[str, Any]:
        changes = dto.model_dump(exclude_unset=True)
        if "territory_restrictions" in changes:
            territory = getattr(dto, "territory_restrictions")
            changes["territory_restrictions"] = territory.model_dump() if territory is not None else None
        return changes

    def _event_payload(self, row: ProductPrincipal) -> dict[str, Any]:
        return {
            "product_principal_id": str(row.id),
            "product_id": str(row.product_id),
            "principal_id": str(row.principal_id),
        }

    def list_associations(
        self,
        session: Session,
        *,
        product_id: uuid.UUID | None = None,
        principal_id: uuid.UUID | None = None,
        include_retired: bool = False,
    ) -> list[ProductPrincipalRead]:
        repository = self.store.product_principals
        if product_id is not None:
            rows = repository.list_by_product(session, product_id, include_retired=include_retired)
            if principal_id is not None:
                rows = [row for row in rows if row.principal_id == principal_id]
        elif principal_id is not None:
            rows = repository.list_by_principal(session, principal_id, include_retired=include_retired)
        else:
            rows = repository.list_rows(session, include_retired=include_retired)
        return [self.to_read(row) for row in rows]

    def territory_overlaps(self, session: Session, product_id: uuid.UUID) -> list[TerritoryOverlapRead]:
        if self.store.products.get_active(session, product_id) is None:
            raise EntityNotFoundError("product", product_id)
        rows = self.store.product_principals.list_by_product(session, product_id)
        overlaps: list[TerritoryOverlapRead] = []
        for first, second in itertools.combinations(rows, 2):
            shared = territory_states(first.territory_restrictions) & territory_states(second.territory_restrictions)
            if not shared:
                continue
            overlaps.append(
                TerritoryOverlapRead(
                    product_id=product_id,
                    first_association_id=first.id,
                    first_principal_id=first.principal_id,
                    second_association_id=second.id,
                    second_principal_id=second.principal_id,
                    overlapping_states=sorted(shared),
                )
            )
        return overlaps


organization_service = OrganizationService()
contact_service = ContactService()
opportunity_service = OpportunityService()
interaction_service = InteractionService()
product_service = ProductService()
product_principal_service = ProductPrincipalService()
