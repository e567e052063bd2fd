from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from distro_crm.core.config import get_settings
from distro_crm.main import app


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    app.dependency_overrides.clear()
    with TestClient(app) as test_client:
        yield test_client


def _token(secret: str, **claims) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def test_metrics_accepts_signed_token_with_role(client: TestClient) -> None:
    token = _token("test-secret", sub="ops-1", roles=["system.metrics.read"])

    response = client.get("/metrics", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_token_without_role_is_forbidden(client: TestClient) -> None:
    token = _token("test-secret", sub="rep-1", roles=["crm.sales"])

    response = client.get("/metrics", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 403


@pytest.mark.parametrize(
    "header",
    [
        None,
        "Bearer not-a-jwt",
        f"Bearer {jwt.encode({'sub': 'x', 'roles': ['system.metrics.read']}, 'other-secret', algorithm='HS256')}",
        "Basic abc",
    ],
)
def test_missing_or_invalid_token_falls_back_to_guest(client: TestClient, header: str | None) -> None:
    headers = {"Authorization": header} if header else {}

    response = client.get("/metrics", headers=headers)

    assert response.status_code == 403
