from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from distro_crm.core.database import Base
from distro_crm.crm.errors import EntityNotFoundError
from distro_crm.crm.models import Contact, Interaction, Opportunity, Organization, Product, ProductPrincipal
from distro_crm.reporting.principal_activity.service import PrincipalActivityService

AS_OF = datetime(2026, 9, 30, 12, 0, tzinfo=timezone.utc)


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


def _ago(days: int) -> datetime:
    return AS_OF - timedelta(days=days)


def test_distributor_relationships(db_session: Session) -> None:
    distributor = Organization(name="Sysco West", is_distributor=True, city="Fresno", state_province="CA")
    db_session.add(distributor)
    db_session.flush()
    db_session.add_all(
        [
            Organization(name="Acme Foods", is_principal=True, distributor_id=distributor.id),
            Organization(name="Brook Farms", is_principal=True),
            Organization(name="Gone Inc", is_principal=True, deleted_at=AS_OF),
            Organization(name="Corner Deli"),
        ]
    )
    db_session.commit()

    report = PrincipalActivityService().distributor_relationships(db_session)

    assert [(row.principal_name, row.relationship_type) for row in report] == [
        ("Acme Foods", "HAS_DISTRIBUTOR"),
        ("Brook Farms", "DIRECT"),
    ]
    assert report[0].distributor_name == "Sysco West"
    assert report[0].distributor_city == "Fresno"
    assert report[1].distributor_id is None


def test_product_performance(db_session: Session) -> None:
    principal = Organization(name="Acme Foods", is_principal=True)
    customer = Organization(name="Corner Deli")
    olive_oil = Product(name="Olive Oil", category="Sauce")
    vinegar = Product(name="Vinegar", category="Seasoning")
    retired = Product(name="Old Syrup", deleted_at=AS_OF)
    db_session.add_all([principal, customer, olive_oil, vinegar, retired])
    db_session.flush()
    db_session.add_all(
        [
            ProductPrincipal(
                product_id=olive_oil.id,
                principal_id=principal.id,
                exclusive_rights=True,
                contract_start_date=date(2026, 1, 1),
                contract_end_date=date(2026, 10, 15),
            ),
            ProductPrincipal(
                product_id=vinegar.id,
                principal_id=principal.id,
                contract_start_date=date(2026, 11, 1),
            ),
            ProductPrincipal(product_id=retired.id, principal_id=principal.id),
        ]
    )
    won = Opportunity(
        organization_id=customer.id,
        principal_id=principal.id,
        product_id=olive_oil.id,
        name="Oil won",
        stage="Closed - Won",
        probability_percent=100,
        is_won=True,
    )
    open_deal = Opportunity(
        organization_id=customer.id,
        principal_id=principal.id,
        product_id=olive_oil.id,
        name="Oil open",
        stage="Initial Outreach",
        probability_percent=20,
    )
    db_session.add_all([won, open_deal])
    db_session.flush()
    db_session.add_all(
        [
            Interaction(opportunity_id=open_deal.id, type="CALL", subject="Pricing", interaction_date=_ago(5)),
            Interaction(opportunity_id=won.id, type="EMAIL", subject="Order", interaction_date=_ago(60)),
            Interaction(opportunity_id=open_deal.id, type="CALL", subject="Later", interaction_date=AS_OF + timedelta(days=3)),
        ]
    )
    db_session.commit()

    report = PrincipalActivityService().product_performance(db_session, as_of=AS_OF)

    assert [row.product_name for row in report] == ["Olive Oil", "Vinegar"]
    oil, vinegar_row = report
    assert oil.contract_status == "EXPIRING_SOON"
    assert oil.opportunities_for_product == 2
    assert oil.won_opportunities_for_product == 1
    assert oil.active_opportunities_for_product == 1
    assert oil.avg_opportunity_probability == Decimal("60.00")
    assert oil.interactions_for_product == 3
    assert oil.recent_interactions_for_product == 1
    assert oil.last_interaction_date == _ago(5)
    # 50% won -> 25, recent interaction -> 9, exclusive -> 4
    assert oil.product_performance_score == Decimal("38.00")

    assert vinegar_row.contract_status == "PENDING"
    assert vinegar_row.opportunities_for_product == 0
    assert vinegar_row.product_performance_score == Decimal("2.00")


def test_product_performance_filters_by_principal(db_session: Session) -> None:
    acme = Organization(name="Acme Foods", is_principal=True)
    brook = Organization(name="Brook Farms", is_principal=True)
    product = Product(name="Olive Oil")
    db_session.add_all([acme, brook, product])
    db_session.flush()
    db_session.add_all(
        [
            ProductPrincipal(product_id=product.id, principal_id=acme.id, is_primary_principal=True),
            ProductPrincipal(product_id=product.id, principal_id=brook.id),
        ]
    )
    db_session.commit()

    report = PrincipalActivityService().product_performance(db_session, principal_id=brook.id, as_of=AS_OF)

    assert [row.principal_name for row in report] == ["Brook Farms"]
    assert report[0].contract_status == "ACTIVE"


def test_timeline_orders_entries_newest_first(db_session: Session) -> None:
    principal = Organization(name="Acme Foods", is_principal=True)
    customer = Organization(name="Corner Deli")
    product = Product(name="Olive Oil", category="Sauce")
    db_session.add_all([principal, customer, product])
    db_session.flush()
    opportunity = Opportunity(
        organization_id=customer.id,
        principal_id=principal.id,
        product_id=product.id,
        name="Oil deal",
        stage="New Lead",
        probability_percent=10,
        created_at=_ago(20),
        updated_at=_ago(20),
    )
    db_session.add_all(
        [
            opportunity,
            Contact(
                organization_id=customer.id,
                first_name="Sam",
                last_name="Lee",
                created_at=_ago(40),
                updated_at=_ago(10),
            ),
            ProductPrincipal(
                product_id=product.id,
                principal_id=principal.id,
                is_primary_principal=True,
                created_at=_ago(30),
                updated_at=_ago(30),
            ),
        ]
    )
    db_session.flush()
    db_session.add(
        Interaction(
            opportunity_id=opportunity.id,
            type="DEMO",
            subject="Tasting",
            interaction_date=_ago(2),
            status="COMPLETED",
            outcome="POSITIVE",
            follow_up_required=True,
            follow_up_date=date(2026, 10, 5),
        )
    )
    db_session.commit()

    service = PrincipalActivityService()
    timeline = service.timeline(db_session, principal.id)

    assert [entry.activity_type for entry in timeline] == [
        "INTERACTION",
        "CONTACT_UPDATE",
        "OPPORTUNITY_CREATED",
        "PRODUCT_ASSOCIATION",
    ]
    assert [entry.timeline_rank for entry in timeline] == [1, 2, 3, 4]
    assert timeline[0].follow_up_required is True
    assert timeline[0].product_name == "Olive Oil"
    assert timeline[1].contact_name == "Sam Lee"
    assert timeline[2].activity_subject == "New Opportunity: Oil deal"
    assert timeline[3].activity_details == "Category: Sauce (Primary Principal)"

    assert len(service.timeline(db_session, principal.id, limit=2)) == 2


def test_timeline_requires_active_principal(db_session: Session) -> None:
    customer = Organization(name="Corner Deli")
    db_session.add(customer)
    db_session.commit()

    with pytest.raises(EntityNotFoundError):
        PrincipalActivityService().timeline(db_session, customer.id)
