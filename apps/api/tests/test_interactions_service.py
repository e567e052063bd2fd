from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from distro_crm import audit, events
from distro_crm.core.database import Base
from distro_crm.crm.errors import ValidationViolation, ViolationKind
from distro_crm.crm.schemas import InteractionCreate, InteractionUpdate, OpportunityCreate, OrganizationCreate
from distro_crm.crm.service import ActorUser, InteractionService, OpportunityService, OrganizationService


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
def opportunity_id(db_session: Session, actor: ActorUser):
    organizations = OrganizationService()
    customer = organizations.create(db_session, actor, OrganizationCreate(name="Pier 9"))
    principal = organizations.create(db_session, actor, OrganizationCreate(name="Ocean Co", is_principal=True))
    return (
        OpportunityService()
        .create(
            db_session,
            actor,
            OpportunityCreate(organization_id=customer.id, principal_id=principal.id, name="Seafood program"),
        )
        .id
    )


def test_interaction_date_defaults_to_now(db_session: Session, actor: ActorUser, opportunity_id) -> None:
    created = InteractionService().create(
        db_session,
        actor,
        InteractionCreate(opportunity_id=opportunity_id, type="CALL", subject="Intro call"),
    )
    assert created.interaction_date is not None
    assert created.status == "SCHEDULED"


def test_interaction_before_opportunity_rejected(db_session: Session, actor: ActorUser, opportunity_id) -> None:
    with pytest.raises(ValidationViolation) as exc_info:
        InteractionService().create(
            db_session,
            actor,
            InteractionCreate(
                opportunity_id=opportunity_id,
                type="EMAIL",
                subject="Backdated",
                interaction_date=datetime.now(timezone.utc) - timedelta(days=3),
            ),
        )
    assert exc_info.value.violation.kind is ViolationKind.TEMPORAL


def test_completing_requires_outcome(db_session: Session, actor: ActorUser, opportunity_id) -> None:
    service = InteractionService()
    created = service.create(
        db_session,
        actor,
        InteractionCreate(opportunity_id=opportunity_id, type="DEMO", subject="Kitchen demo"),
    )

    with pytest.raises(ValidationViolation) as exc_info:
        service.update(db_session, actor, created.id, InteractionUpdate(status="COMPLETED"))
    assert exc_info.value.violation.field == "outcome"

    completed = service.update(
        db_session,
        actor,
        created.id,
        InteractionUpdate(status="COMPLETED", outcome="POSITIVE", rating=5),
    )
    assert completed.outcome == "POSITIVE"


def test_follow_up_date_must_follow_interaction(db_session: Session, actor: ActorUser, opportunity_id) -> None:
    service = InteractionService()
    now = datetime.now(timezone.utc)

    with pytest.raises(ValidationViolation) as exc_info:
        service.create(
            db_session,
            actor,
            InteractionCreate(
                opportunity_id=opportunity_id,
                type="CALL",
                subject="Check in",
                interaction_date=now,
                follow_up_required=True,
                follow_up_date=now.date(),
            ),
        )
    assert exc_info.value.violation.kind is ViolationKind.DATE_ORDER

    created = service.create(
        db_session,
        actor,
        InteractionCreate(
            opportunity_id=opportunity_id,
            type="CALL",
            subject="Check in",
            interaction_date=now,
            follow_up_required=True,
            follow_up_date=now.date() + timedelta(days=7),
        ),
    )
    assert created.follow_up_date == now.date() + timedelta(days=7)


def test_retired_opportunity_rejects_new_interactions(
    db_session: Session, actor: ActorUser, opportunity_id
) -> None:
    OpportunityService().soft_delete(db_session, actor, opportunity_id)

    with pytest.raises(ValidationViolation) as exc_info:
        InteractionService().create(
            db_session,
            actor,
            InteractionCreate(opportunity_id=opportunity_id, type="CALL", subject="Too late"),
        )
    assert exc_info.value.violation.kind is ViolationKind.REFERENTIAL


def test_list_interactions_filters(db_session: Session, actor: ActorUser, opportunity_id) -> None:
    service = InteractionService()
    now = datetime.now(timezone.utc)
    first = service.create(
        db_session,
        actor,
        InteractionCreate(opportunity_id=opportunity_id, type="CALL", subject="Now", interaction_date=now),
    )
    later = service.create(
        db_session,
        actor,
        InteractionCreate(
            opportunity_id=opportunity_id,
            type="EMAIL",
            subject="Later",
            interaction_date=now + timedelta(days=10),
        ),
    )

    by_opportunity = service.list_interactions(db_session, opportunity_id=opportunity_id)
    assert [item.id for item in by_opportunity] == [later.id, first.id]

    window = service.list_interactions(
        db_session,
        start=now - timedelta(hours=1),
        end=now + timedelta(days=1),
    )
    assert [item.id for item in window] == [first.id]

    windowed_by_opportunity = service.list_interactions(
        db_session,
        opportunity_id=opportunity_id,
        start=now + timedelta(days=1),
    )
    assert [item.id for item in windowed_by_opportunity] == [later.id]
