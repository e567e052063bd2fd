from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from distro_crm.core.config import get_settings
from distro_crm.core.database import Base, get_db
from distro_crm.crm.api import get_current_user as crm_get_current_user
from distro_crm.crm.service import ActorUser
from distro_crm.main import app
from distro_crm.otel import attach_inmemory_exporter


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


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = attach_inmemory_exporter("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(user_id="user-1", correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/api/crm/organizations",
        json={"name": "Acme Foods", "is_principal": True},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_refresh_span_carries_run_attributes(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    assert client.post("/api/crm/organizations", json={"name": "Acme Foods", "is_principal": True}).status_code == 201

    refreshed = client.post(
        "/api/reports/principal-activity/refresh",
        headers={"X-Correlation-Id": "otel-refresh-1"},
    )
    assert refreshed.status_code == 200

    refresh_spans = [span for span in span_exporter.get_finished_spans() if span.name == "principal_activity.refresh"]
    assert refresh_spans
    span = refresh_spans[-1]
    assert span.attributes.get("refresh.trigger") == "api"
    assert span.attributes.get("refresh.run_id") == refreshed.json()["run_id"]
    assert span.attributes.get("refresh.row_count") == 1
    assert span.attributes.get("correlation_id") == "otel-refresh-1"
