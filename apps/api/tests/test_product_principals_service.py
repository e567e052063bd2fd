from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from distro_crm import audit, events
from distro_crm.core.database import Base
from distro_crm.crm.errors import EntityNotFoundError, ValidationViolation, ViolationKind
from distro_crm.crm.schemas import (
    OrganizationCreate,
    ProductCreate,
    ProductPrincipalCreate,
    ProductPrincipalUpdate,
    ProductUpdate,
    TerritoryRestrictions,
)
from distro_crm.crm.service import ActorUser, OrganizationService, ProductPrincipalService, ProductService


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def actor() -> ActorUser:
    return ActorUser(user_id="rep-1")


@pytest.fixture()
def catalog(db_session: Session, actor: ActorUser) -> dict:
    organizations = OrganizationService()
    products = ProductService()
    return {
        "product": products.create(db_session, actor, ProductCreate(name="Smoked Brisket", category="Protein")).id,
        "a": organizations.create(db_session, actor, OrganizationCreate(name="Principal A", is_principal=True)).id,
        "b": organizations.create(db_session, actor, OrganizationCreate(name="Principal B", is_principal=True)).id,
    }


def test_exclusive_association_blocks_second_principal(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    service = ProductPrincipalService()
    service.create(
        db_session,
        actor,
        ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["a"], exclusive_rights=True),
    )

    with pytest.raises(ValidationViolation) as exc_info:
        service.create(
            db_session,
            actor,
            ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["b"]),
        )

    assert exc_info.value.violation.kind is ViolationKind.SINGLETON
    assert exc_info.value.is_conflict is True
    assert len(service.list_associations(db_session, product_id=catalog["product"])) == 1


def test_retired_association_frees_exclusivity(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    service = ProductPrincipalService()
    exclusive = service.create(
        db_session,
        actor,
        ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["a"], exclusive_rights=True),
    )
    service.soft_delete(db_session, actor, exclusive.id)

    created = service.create(
        db_session,
        actor,
        ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["b"]),
    )
    assert created.principal_id == catalog["b"]

    with pytest.raises(ValidationViolation):
        service.restore(db_session, actor, exclusive.id)


def test_single_primary_principal_per_product(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    service = ProductPrincipalService()
    service.create(
        db_session,
        actor,
        ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["a"], is_primary_principal=True),
    )
    second = service.create(
        db_session,
        actor,
        ProductPrincipalCreate(product_id=catalog["product"], principal_id=catalog["b"]),
    )

    with pytest.raises(ValidationViolation) as exc_info:
        service.update(db_session, actor, second.id, ProductPrincipalUpdate(is_primary_principal=True))
    assert exc_info.value.violation.field == "is_primary_principal"


def test_association_requires_principal_role(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    customer = OrganizationService().create(db_session, actor, OrganizationCreate(name="Customer"))

    with pytest.raises(ValidationViolation) as exc_info:
        ProductPrincipalService().create(
            db_session,
            actor,
            ProductPrincipalCreate(product_id=catalog["product"], principal_id=customer.id),
        )
    assert exc_info.value.violation.kind is ViolationKind.REFERENTIAL


def test_territory_overlaps_reported_per_product(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    service = ProductPrincipalService()
    first = service.create(
        db_session,
        actor,
        ProductPrincipalCreate(
            product_id=catalog["product"],
            principal_id=catalog["a"],
            territory_restrictions=TerritoryRestrictions(states=["TX", "OK"]),
        ),
    )
    second = service.create(
        db_session,
        actor,
        ProductPrincipalCreate(
            product_id=catalog["product"],
            principal_id=catalog["b"],
            territory_restrictions=TerritoryRestrictions(states=["ok", "LA"]),
        ),
    )

    overlaps = service.territory_overlaps(db_session, catalog["product"])

    assert len(overlaps) == 1
    assert {overlaps[0].first_association_id, overlaps[0].second_association_id} == {first.id, second.id}
    assert overlaps[0].overlapping_states == ["OK"]

    updated = service.update(
        db_session,
        actor,
        second.id,
        ProductPrincipalUpdate(territory_restrictions=TerritoryRestrictions(states=["LA"])),
    )
    assert updated.territory_restrictions is not None
    assert service.territory_overlaps(db_session, catalog["product"]) == []


def test_territory_overlaps_unknown_product(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    ProductService().soft_delete(db_session, actor, catalog["product"])
    with pytest.raises(EntityNotFoundError):
        ProductPrincipalService().territory_overlaps(db_session, catalog["product"])


def test_product_lifecycle_dates_validated(db_session: Session, actor: ActorUser, catalog: dict) -> None:
    service = ProductService()
    with pytest.raises(ValidationViolation) as exc_info:
        service.update(
            db_session,
            actor,
            catalog["product"],
            ProductUpdate(launch_date="2026-06-01", discontinue_date="2026-01-01"),
        )
    assert exc_info.value.violation.kind is ViolationKind.DATE_ORDER
