from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from distro_crm.core.config import get_settings
from distro_crm.core.database import Base
from distro_crm.crm.errors import EntityNotFoundError, RefreshFailure
from distro_crm.crm.models import Contact, Interaction, Opportunity, Organization
from distro_crm.reporting.principal_activity.aggregator import ActivityAggregator, AggregationResult
from distro_crm.reporting.principal_activity.models import PrincipalActivitySummary
from distro_crm.reporting.principal_activity.schemas import RefreshResultRead
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


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class _CorruptingAggregator(ActivityAggregator):
    def recompute(self, session: Session, as_of: datetime) -> AggregationResult:
        result = super().recompute(session, as_of)
        for row in result.rows:
            row.engagement_score = Decimal("150.00")
        return result


class _UnavailableAggregator(ActivityAggregator):
    def recompute(self, session: Session, as_of: datetime) -> AggregationResult:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def _seed_two_principals(session: Session) -> dict[str, Organization]:
    """Principal "Fresh" saw activity two days ago; every row of "Dormant" is 120+ days old."""
    long_ago = AS_OF - timedelta(days=150)
    dormant_at = AS_OF - timedelta(days=120)
    recent = AS_OF - timedelta(days=2)

    fresh = Organization(name="Fresh", is_principal=True, created_at=long_ago, updated_at=long_ago)
    dormant = Organization(name="Dormant", is_principal=True, created_at=long_ago, updated_at=long_ago)
    fresh_customer = Organization(name="Fresh Customer", created_at=long_ago, updated_at=long_ago)
    dormant_customer = Organization(name="Dormant Customer", created_at=long_ago, updated_at=long_ago)
    session.add_all([fresh, dormant, fresh_customer, dormant_customer])
    session.flush()

    fresh_deal = Opportunity(
        organization_id=fresh_customer.id,
        principal_id=fresh.id,
        name="Fresh deal",
        stage="Initial Outreach",
        probability_percent=25,
        created_at=long_ago,
        updated_at=long_ago,
    )
    dormant_deal = Opportunity(
        organization_id=dormant_customer.id,
        principal_id=dormant.id,
        name="Dormant deal",
        stage="Initial Outreach",
        probability_percent=25,
        created_at=long_ago,
        updated_at=dormant_at,
    )
    session.add_all([fresh_deal, dormant_deal])
    session.flush()
    session.add_all(
        [
            Interaction(
                opportunity_id=fresh_deal.id,
                type="CALL",
                subject="Check in",
                interaction_date=recent,
                created_at=recent,
                updated_at=recent,
            ),
            Interaction(
                opportunity_id=dormant_deal.id,
                type="CALL",
                subject="Check in",
                interaction_date=dormant_at,
                created_at=dormant_at,
                updated_at=dormant_at,
            ),
            Contact(
                organization_id=dormant_customer.id,
                first_name="Old",
                last_name="Contact",
                created_at=long_ago,
                updated_at=dormant_at,
            ),
        ]
    )
    session.commit()
    return {"fresh": fresh, "dormant": dormant}


def test_refresh_classifies_active_and_stale(db_session: Session) -> None:
    principals = _seed_two_principals(db_session)
    service = PrincipalActivityService()

    result = service.refresh(db_session, AS_OF)

    assert result.row_count == 2
    assert result.inconsistency_count == 0
    fresh = service.get_summary(db_session, principals["fresh"].id)
    dormant = service.get_summary(db_session, principals["dormant"].id)
    assert fresh.activity_status == "ACTIVE"
    assert dormant.activity_status == "STALE"
    assert fresh.engagement_score >= dormant.engagement_score

    listed = service.list_summaries(db_session)
    assert [item.principal_name for item in listed] == ["Fresh", "Dormant"]
    assert [item.principal_name for item in service.list_summaries(db_session, activity_status="STALE")] == [
        "Dormant"
    ]


def test_refresh_is_idempotent(db_session: Session) -> None:
    _seed_two_principals(db_session)
    service = PrincipalActivityService()

    first = service.refresh(db_session, AS_OF)
    first_rows = {row.principal_id: row.checksum for row in db_session.scalars(select(PrincipalActivitySummary))}
    second = service.refresh(db_session, AS_OF)
    second_rows = {row.principal_id: row.checksum for row in db_session.scalars(select(PrincipalActivitySummary))}

    assert first.snapshot_checksum == second.snapshot_checksum
    assert first_rows == second_rows
    assert first.run_id != second.run_id


def test_refresh_replaces_whole_snapshot(db_session: Session) -> None:
    principals = _seed_two_principals(db_session)
    service = PrincipalActivityService()
    service.refresh(db_session, AS_OF)

    dormant = db_session.get(Organization, principals["dormant"].id)
    dormant.deleted_at = AS_OF
    db_session.commit()
    result = service.refresh(db_session, AS_OF)

    assert result.row_count == 1
    with pytest.raises(EntityNotFoundError):
        service.get_summary(db_session, principals["dormant"].id)


def test_failed_refresh_keeps_previous_snapshot(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR)
    principals = _seed_two_principals(db_session)
    PrincipalActivityService().refresh(db_session, AS_OF)
    before = service_snapshot(db_session)

    with pytest.raises(RefreshFailure) as exc_info:
        PrincipalActivityService(aggregator=_CorruptingAggregator()).refresh(db_session, AS_OF)

    assert exc_info.value.retryable is True
    assert service_snapshot(db_session) == before
    assert PrincipalActivityService().get_summary(db_session, principals["fresh"].id).activity_status == "ACTIVE"
    latest = PrincipalActivityService().latest_run(db_session)
    assert latest is not None
    assert latest.status == "FAILED"
    assert latest.error
    assert any(record.getMessage() == "principal_activity.refresh_failed" for record in caplog.records)


def test_unavailable_store_raises_refresh_failure(db_session: Session) -> None:
    with pytest.raises(RefreshFailure):
        PrincipalActivityService(aggregator=_UnavailableAggregator()).refresh(db_session, AS_OF)

    assert db_session.scalars(select(PrincipalActivitySummary)).all() == []


def test_refresh_over_budget_is_logged(
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setenv("SUMMARY_REFRESH_BUDGET_MS", "0")
    get_settings.cache_clear()
    caplog.set_level(logging.INFO)
    _seed_two_principals(db_session)

    result = PrincipalActivityService().refresh(db_session, AS_OF)

    assert result.over_budget is True
    messages = [record.getMessage() for record in caplog.records]
    assert "principal_activity.refresh_over_budget" in messages
    assert "principal_activity.refresh_completed" in messages


def test_stats_summarize_snapshot(db_session: Session) -> None:
    _seed_two_principals(db_session)
    service = PrincipalActivityService()
    service.refresh(db_session, AS_OF)

    stats = service.get_stats(db_session)

    assert stats.total_principals == 2
    assert stats.active_principals == 1
    assert stats.principals_with_opportunities == 2
    assert stats.principals_with_products == 0
    assert stats.avg_opportunities_per_principal == Decimal("1.00")
    assert stats.status_breakdown == {"ACTIVE": 1, "MODERATE": 0, "STALE": 1, "NO_ACTIVITY": 0}
    assert [item.principal_name for item in stats.top_principals] == ["Fresh", "Dormant"]
    assert stats.generated_at is not None


def service_snapshot(session: Session) -> dict:
    session.expire_all()
    return {
        row.principal_id: (row.checksum, row.engagement_score)
        for row in session.scalars(select(PrincipalActivitySummary))
    }


class _EmptyAggregator(ActivityAggregator):
    def recompute(self, session: Session, as_of: datetime) -> AggregationResult:
        return AggregationResult(as_of=as_of)


class _RecordingConnection:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    def __enter__(self) -> "_RecordingConnection":
        return self

    def __exit__(self, *exc_info: object) -> bool:
        self.log.append("close")
        return False

    def execute(self, statement: object, params: object = None) -> None:
        self.log.append(str(statement))

    def commit(self) -> None:
        return None

    def invalidate(self) -> None:
        self.log.append("invalidate")


class _PostgresBind:
    dialect = SimpleNamespace(name="postgresql")

    def __init__(self, log: list[str]) -> None:
        self.log = log
        self.engine = self

    def connect(self) -> _RecordingConnection:
        self.log.append("connect")
        return _RecordingConnection(self.log)


class _PostgresSession:
    """Stands in for a PostgreSQL-bound session and records statement order."""

    def __init__(self) -> None:
        self.log: list[str] = []
        self.bind = _PostgresBind(self.log)

    def get_bind(self) -> _PostgresBind:
        return self.bind

    def in_transaction(self) -> bool:
        return False

    def connection(self, execution_options: dict | None = None) -> None:
        self.log.append(f"begin {(execution_options or {}).get('isolation_level')}")

    def execute(self, statement: object, params: object = None) -> None:
        self.log.append(str(statement).split()[0])

    def add_all(self, rows: object) -> None:
        list(rows)  # type: ignore[call-overload]

    def add(self, row: object) -> None:
        return None

    def flush(self) -> None:
        return None

    def commit(self) -> None:
        self.log.append("commit")

    def rollback(self) -> None:
        self.log.append("rollback")


def test_postgres_advisory_lock_is_granted_before_snapshot() -> None:
    session = _PostgresSession()

    result = PrincipalActivityService(aggregator=_EmptyAggregator()).refresh(session, AS_OF)  # type: ignore[arg-type]

    assert result.row_count == 0
    assert session.log == [
        "connect",
        "SELECT pg_advisory_lock(:key)",
        "begin REPEATABLE READ",
        "DELETE",
        "commit",
        "SELECT pg_advisory_unlock(:key)",
        "close",
    ]


def test_concurrent_refreshes_leave_one_consistent_snapshot(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'summary.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with SessionLocal() as session:
        principals = _seed_two_principals(session)
        principal_ids = sorted(row.id for row in principals.values())
        expected = ActivityAggregator().recompute(session, AS_OF)
    expected_rows = {row.principal_id: row.checksum for row in expected.rows}

    service = PrincipalActivityService()
    workers = 4
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []

    def run_refresh() -> None:
        with SessionLocal() as session:
            barrier.wait()
            try:
                outcomes.append(service.refresh(session, AS_OF, trigger="scheduled"))
            except RefreshFailure as exc:
                outcomes.append(exc)

    threads = [threading.Thread(target=run_refresh) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(outcomes) == workers
    assert all(isinstance(item, (RefreshResultRead, RefreshFailure)) for item in outcomes)
    succeeded = [item for item in outcomes if isinstance(item, RefreshResultRead)]
    assert succeeded
    assert {item.snapshot_checksum for item in succeeded} == {expected.snapshot_checksum}

    with SessionLocal() as session:
        rows = session.scalars(select(PrincipalActivitySummary)).all()
        assert sorted(row.principal_id for row in rows) == principal_ids
        assert {row.principal_id: row.checksum for row in rows} == expected_rows
    engine.dispose()
