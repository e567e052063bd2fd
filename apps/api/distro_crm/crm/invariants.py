"""Structural business rules checked before any CRM mutation is written.

Every ``check_*`` method inspects a proposed entity state (a plain dict of
column values after the change is applied) and returns a ``Violation`` or
``None``. The ``validate_*`` methods run the checks for one entity in order and
raise ``ValidationViolation`` for the first failure. Nothing here writes to the
session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from distro_crm.crm.errors import ValidationViolation, Violation, ViolationKind
from distro_crm.crm.lifecycle import check_stage_probability, check_won_consistency
from distro_crm.crm.models import Opportunity
from distro_crm.crm.repositories import EntityStore, entity_store
from distro_crm.metrics import observe_validation_violation

logger = logging.getLogger("distro_crm.crm.invariants")

Check = Callable[[], Violation | None]


class OrganizationRole(str, Enum):
    PRINCIPAL = "PRINCIPAL"
    DISTRIBUTOR = "DISTRIBUTOR"
    PLAIN = "PLAIN"

    @classmethod
    def from_flags(cls, is_principal: bool, is_distributor: bool) -> OrganizationRole:
        if is_principal and is_distributor:
            raise ValueError("an organization cannot be both principal and distributor")
        if is_principal:
            return cls.PRINCIPAL
        if is_distributor:
            return cls.DISTRIBUTOR
        return cls.PLAIN


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return as_utc(value).date()  # type: ignore[union-attr]
    return value


def _ref(value: Any) -> str | None:
    return str(value) if value is not None else None


def _violation(kind: ViolationKind, entity: str, field: str, detail: str, reference: Any = None) -> Violation:
    return Violation(kind=kind, entity=entity, field=field, detail=detail, reference=_ref(reference))


def _check_non_negative(entity: str, field: str, value: int | Decimal | None) -> Violation | None:
    if value is not None and value < 0:
        return _violation(ViolationKind.RANGE, entity, field, f"{field} must not be negative")
    return None


def _check_ordered(entity: str, field: str, start: date | None, end: date | None, label: str) -> Violation | None:
    if start is not None and end is not None and not start < end:
        return _violation(ViolationKind.DATE_ORDER, entity, field, f"{label} must be before its end date")
    return None


class InvariantSet:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    # organizations

    def check_role_exclusivity(self, proposed: dict[str, Any]) -> Violation | None:
        try:
            OrganizationRole.from_flags(bool(proposed.get("is_principal")), bool(proposed.get("is_distributor")))
        except ValueError:
            return _violation(
                ViolationKind.ROLE_EXCLUSIVITY,
                "organization",
                "is_distributor",
                "Organization cannot be both principal and distributor",
            )
        return None

    def check_distributor_parent(
        self, session: Session, proposed: dict[str, Any], current: Any = None
    ) -> Violation | None:
        parent_id = proposed.get("distributor_id")
        if parent_id is None:
            return None
        role = OrganizationRole.from_flags(bool(proposed.get("is_principal")), bool(proposed.get("is_distributor")))
        if role is OrganizationRole.DISTRIBUTOR:
            return _violation(
                ViolationKind.DISTRIBUTOR_HIERARCHY,
                "organization",
                "distributor_id",
                "A distributor cannot have a parent distributor",
                parent_id,
            )
        own_id = proposed.get("id") or (current.id if current is not None else None)
        if own_id is not None and parent_id == own_id:
            return _violation(
                ViolationKind.DISTRIBUTOR_HIERARCHY,
                "organization",
                "distributor_id",
                "An organization cannot be its own distributor",
                parent_id,
            )
        parent = self.store.organizations.get_active(session, parent_id)
        if parent is None or not parent.is_distributor:
            return _violation(
                ViolationKind.DISTRIBUTOR_HIERARCHY,
                "organization",
                "distributor_id",
                "distributor_id must reference an active distributor",
                parent_id,
            )
        return None

    def check_distributor_clients(
        self, session: Session, proposed: dict[str, Any] | None, current: Any
    ) -> Violation | None:
        """A distributor with active clients may not drop its role or be retired."""
        if current is None or not current.is_distributor:
            return None
        if proposed is not None and proposed.get("is_distributor"):
            return None
        clients = self.store.organizations.count_active_clients(session, current.id)
        if clients == 0:
            return None
        return _violation(
            ViolationKind.DISTRIBUTOR_HIERARCHY,
            "organization",
            "is_distributor",
            f"Distributor still has {clients} active client organization(s)",
            current.id,
        )

    def validate_organization(self, session: Session, proposed: dict[str, Any], current: Any = None) -> None:
        self._run(
            "organization",
            [
                lambda: self.check_role_exclusivity(proposed),
                lambda: self.check_distributor_parent(session, proposed, current),
                lambda: self.check_distributor_clients(session, proposed, current),
            ],
        )

    def validate_organization_retirement(self, session: Session, current: Any) -> None:
        self._run("organization", [lambda: self.check_distributor_clients(session, None, current)])

    # contacts

    def check_contact_organization(self, session: Session, proposed: dict[str, Any]) -> Violation | None:
        organization_id = proposed.get("organization_id")
        if organization_id is None:
            return None
        if self.store.organizations.get_active(session, organization_id) is None:
            return _violation(
                ViolationKind.REFERENTIAL,
                "contact",
                "organization_id",
                "organization_id must reference an active organization",
                organization_id,
            )
        return None

    def check_contact_email(self, session: Session, proposed: dict[str, Any], current: Any = None) -> Violation | None:
        email = proposed.get("email")
        if not email:
            return None
        own_id = current.id if current is not None else proposed.get("id")
        for other in self.store.contacts.find_active_by_email(session, str(email)):
            if other.id != own_id:
                return _violation(
                    ViolationKind.UNIQUENESS,
                    "contact",
                    "email",
                    "Another active contact already uses this email",
                    other.id,
                )
        return None

    def check_primary_contact(self, session: Session, proposed: dict[str, Any], current: Any = None) -> Violation | None:
        organization_id = proposed.get("organization_id")
        if not proposed.get("is_primary") or organization_id is None:
            return None
        own_id = current.id if current is not None else proposed.get("id")
        for other in self.store.contacts.list_active_primaries(session, organization_id):
            if other.id != own_id:
                return _violation(
                    ViolationKind.SINGLETON,
                    "contact",
                    "is_primary",
                    "Organization already has an active primary contact",
                    other.id,
                )
        return None

    def validate_contact(
        self,
        session: Session,
        proposed: dict[str, Any],
        current: Any = None,
        *,
        demote_primary: bool = True,
    ) -> None:
        """With ``demote_primary`` the caller clears other primaries in the same transaction."""
        checks: list[Check] = [
            lambda: self.check_contact_organization(session, proposed),
            lambda: self.check_contact_email(session, proposed, current),
        ]
        if not demote_primary:
            checks.append(lambda: self.check_primary_contact(session, proposed, current))
        self._run("contact", checks)

    # opportunities

    def check_opportunity_references(self, session: Session, proposed: dict[str, Any]) -> Violation | None:
        organization_id = proposed.get("organization_id")
        if self.store.organizations.get_active(session, organization_id) is None:
            return _violation(
                ViolationKind.REFERENTIAL,
                "opportunity",
                "organization_id",
                "organization_id must reference an active organization",
                organization_id,
            )
        principal_id = proposed.get("principal_id")
        if principal_id is not None:
            principal = self.store.organizations.get_active(session, principal_id)
            if principal is None or not principal.is_principal:
                return _violation(
                    ViolationKind.REFERENTIAL,
                    "opportunity",
                    "principal_id",
                    "principal_id must reference an active principal organization",
                    principal_id,
                )
        product_id = proposed.get("product_id")
        if product_id is not None and self.store.products.get_active(session, product_id) is None:
            return _violation(
                ViolationKind.REFERENTIAL,
                "opportunity",
                "product_id",
                "product_id must reference an active product",
                product_id,
            )
        return None

    def validate_opportunity(self, session: Session, proposed: dict[str, Any], current: Any = None) -> None:
        self._run(
            "opportunity",
            [
                lambda: self.check_opportunity_references(session, proposed),
                lambda: check_stage_probability(proposed.get("stage"), proposed.get("probability_percent")),
                lambda: check_won_consistency(proposed.get("stage"), bool(proposed.get("is_won"))),
                lambda: _check_non_negative("opportunity", "estimated_value", proposed.get("estimated_value")),
            ],
        )

    # interactions

    def check_interaction_references(
        self, session: Session, proposed: dict[str, Any]
    ) -> tuple[Violation | None, Opportunity | None]:
        opportunity_id = proposed.get("opportunity_id")
        opportunity = self.store.opportunities.get_active(session, opportunity_id)
        if opportunity is None:
            return (
                _violation(
                    ViolationKind.REFERENTIAL,
                    "interaction",
                    "opportunity_id",
                    "opportunity_id must reference an active opportunity",
                    opportunity_id,
                ),
                None,
            )
        contact_id = proposed.get("contact_id")
        if contact_id is not None and self.store.contacts.get_active(session, contact_id) is None:
            return (
                _violation(
                    ViolationKind.REFERENTIAL,
                    "interaction",
                    "contact_id",
                    "contact_id must reference an active contact",
                    contact_id,
                ),
                opportunity,
            )
        organization_id = proposed.get("organization_id")
        if organization_id is not None and self.store.organizations.get_active(session, organization_id) is None:
            return (
                _violation(
                    ViolationKind.REFERENTIAL,
                    "interaction",
                    "organization_id",
                    "organization_id must reference an active organization",
                    organization_id,
                ),
                opportunity,
            )
        return None, opportunity

    def check_interaction_timing(self, proposed: dict[str, Any], opportunity: Opportunity) -> Violation | None:
        interaction_date = as_utc(proposed.get("interaction_date"))
        opened_at = as_utc(opportunity.created_at)
        if interaction_date is not None and opened_at is not None and interaction_date < opened_at:
            return _violation(
                ViolationKind.TEMPORAL,
                "interaction",
                "interaction_date",
                "interaction_date cannot precede the opportunity creation time",
                opportunity.id,
            )
        return None

    def check_interaction_fields(self, proposed: dict[str, Any]) -> Violation | None:
        if proposed.get("status") == "COMPLETED" and not proposed.get("outcome"):
            return _violation(ViolationKind.REQUIRED, "interaction", "outcome", "outcome is required when COMPLETED")

        follow_up_date = proposed.get("follow_up_date")
        if proposed.get("follow_up_required"):
            if follow_up_date is None:
                return _violation(
                    ViolationKind.REQUIRED,
                    "interaction",
                    "follow_up_date",
                    "follow_up_date is required when follow_up_required is set",
                )
            interaction_day = _as_date(proposed.get("interaction_date"))
            if interaction_day is not None and not _as_date(follow_up_date) > interaction_day:
                return _violation(
                    ViolationKind.DATE_ORDER,
                    "interaction",
                    "follow_up_date",
                    "follow_up_date must be after the interaction",
                )
        elif follow_up_date is not None:
            return _violation(
                ViolationKind.REQUIRED,
                "interaction",
                "follow_up_required",
                "follow_up_required must be set when a follow_up_date is given",
            )

        rating = proposed.get("rating")
        if rating is not None and not 1 <= rating <= 5:
            return _violation(ViolationKind.RANGE, "interaction", "rating", "rating must be between 1 and 5")
        return _check_non_negative("interaction", "duration_minutes", proposed.get("duration_minutes"))

    def validate_interaction(self, session: Session, proposed: dict[str, Any], current: Any = None) -> None:
        violation, opportunity = self.check_interaction_references(session, proposed)
        checks: list[Check] = [lambda: violation]
        if opportunity is not None:
            checks.append(lambda: self.check_interaction_timing(proposed, opportunity))
        checks.append(lambda: self.check_interaction_fields(proposed))
        self._run("interaction", checks)

    # products

    def validate_product(self, session: Session, proposed: dict[str, Any], current: Any = None) -> None:
        self._run(
            "product",
            [
                lambda: _check_non_negative("product", "unit_cost", proposed.get("unit_cost")),
                lambda: _check_ordered(
                    "product",
                    "discontinue_date",
                    proposed.get("launch_date"),
                    proposed.get("discontinue_date"),
                    "launch_date",
                ),
            ],
        )

    # product / principal associations

    def check_association_references(self, session: Session, proposed: dict[str, Any]) -> Violation | None:
        product_id = proposed.get("product_id")
        if self.store.products.get_active(session, product_id) is None:
            return _violation(
                ViolationKind.REFERENTIAL,
                "product_principal",
                "product_id",
                "product_id must reference an active product",
                product_id,
            )
        principal_id = proposed.get("principal_id")
        principal = self.store.organizations.get_active(session, principal_id)
        if principal is None or not principal.is_principal:
            return _violation(
                ViolationKind.REFERENTIAL,
                "product_principal",
                "principal_id",
                "principal_id must reference an active principal organization",
                principal_id,
            )
        return None

    def check_association_siblings(
        self, session: Session, proposed: dict[str, Any], current: Any = None
    ) -> Violation | None:
        own_id = current.id if current is not None else proposed.get("id")
        siblings = [
            row
            for row in self.store.product_principals.list_by_product(session, proposed["product_id"])
            if row.id != own_id
        ]
        for sibling in siblings:
            if sibling.principal_id == proposed.get("principal_id"):
                return _violation(
                    ViolationKind.UNIQUENESS,
                    "product_principal",
                    "principal_id",
                    "Product is already associated with this principal",
                    sibling.id,
                )
        if siblings and proposed.get("exclusive_rights"):
            return _violation(
                ViolationKind.SINGLETON,
                "product_principal",
                "exclusive_rights",
                "Exclusive rights require the product to have no other principal association",
                siblings[0].id,
            )
        for sibling in siblings:
            if sibling.exclusive_rights:
                return _violation(
                    ViolationKind.SINGLETON,
                    "product_principal",
                    "exclusive_rights",
                    "Product is held under exclusive rights by another principal",
                    sibling.id,
                )
        if proposed.get("is_primary_principal"):
            for sibling in siblings:
                if sibling.is_primary_principal:
                    return _violation(
                        ViolationKind.SINGLETON,
                        "product_principal",
                        "is_primary_principal",
                        "Product already has a primary principal",
                        sibling.id,
                    )
        return None

    def check_association_terms(self, proposed: dict[str, Any]) -> Violation | None:
        violation = _check_non_negative("product_principal", "wholesale_price", proposed.get("wholesale_price"))
        if violation is not None:
            return violation
        quantity = proposed.get("minimum_order_quantity")
        if quantity is not None and quantity <= 0:
            return _violation(
                ViolationKind.RANGE,
                "product_principal",
                "minimum_order_quantity",
                "minimum_order_quantity must be positive",
            )
        violation = _check_non_negative("product_principal", "lead_time_days", proposed.get("lead_time_days"))
        if violation is not None:
            return violation
        return _check_ordered(
            "product_principal",
            "contract_end_date",
            proposed.get("contract_start_date"),
            proposed.get("contract_end_date"),
            "contract_start_date",
        )

    def check_territory(self, proposed: dict[str, Any]) -> Violation | None:
        territory = proposed.get("territory_restrictions")
        if not territory:
            return None
        if not isinstance(territory, dict):
            return _violation(
                ViolationKind.TERRITORY,
                "product_principal",
                "territory_restrictions",
                "territory_restrictions must be an object",
            )
        for included_key, excluded_key in (("regions", "excluded_regions"), ("states", "excluded_states")):
            included = _normalized(territory.get(included_key))
            excluded = _normalized(territory.get(excluded_key))
            both = sorted(included & excluded)
            if both:
                return _violation(
                    ViolationKind.TERRITORY,
                    "product_principal",
                    "territory_restrictions",
                    f"{', '.join(both)} listed in both {included_key} and {excluded_key}",
                    both[0],
                )
        return None

    def validate_product_principal(self, session: Session, proposed: dict[str, Any], current: Any = None) -> None:
        self._run(
            "product_principal",
            [
                lambda: self.check_association_references(session, proposed),
                lambda: self.check_association_siblings(session, proposed, current),
                lambda: self.check_association_terms(proposed),
                lambda: self.check_territory(proposed),
            ],
        )

    def check_required_not_cleared(self, entity: str, current: Any, changes: dict[str, Any]) -> Violation | None:
        columns = current.__table__.columns
        for key in sorted(changes):
            if changes[key] is None and key in columns and not columns[key].nullable:
                return _violation(ViolationKind.REQUIRED, entity, key, f"{key} cannot be cleared", current.id)
        return None

    def validate_changes(self, entity: str, current: Any, changes: dict[str, Any]) -> None:
        """Partial updates may omit a required field but never set it to null."""
        self._run(entity, [lambda: self.check_required_not_cleared(entity, current, changes)])

    def _run(self, entity: str, checks: Iterable[Check]) -> None:
        for check in checks:
            violation = check()
            if violation is None:
                continue
            observe_validation_violation(violation.kind.value, entity)
            logger.info(
                "crm.validation_rejected",
                extra={
                    "entity": entity,
                    "violation_kind": violation.kind.value,
                    "field": violation.field,
                    "reference": violation.reference,
                },
            )
            raise ValidationViolation(violation)


def _normalized(values: Any) -> set[str]:
    if not values:
        return set()
    return {str(value).strip().upper() for value in values if str(value).strip()}


def territory_states(territory: dict[str, Any] | None) -> set[str]:
    if not territory:
        return set()
    return _normalized(territory.get("states"))


invariant_set = InvariantSet(entity_store)
