from datetime import timedelta
from typing import Any, AsyncIterator

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from studio.config import get_settings
from studio.deps import get_current_actor, get_session
from studio.domain.actors import Actor
from studio.main import app as studio_app
from studio.utils.auth import create_access_token


class DummySession:
    def __init__(self, role: str | None) -> None:
        self.role = role

    async def __aenter__(self) -> "DummySession":  # pragma: no cover
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:  # pragma: no cover
        return False

    async def scalar(self, *args: Any, **kwargs: Any) -> str | None:
        return self.role

    async def rollback(self) -> None:
        return None


def _override(role: str | None):
    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession(role=role)

    return override_get_session


def _make_app(role: str | None) -> TestClient:
    app = FastAPI()
    app.dependency_overrides[get_session] = _override(role)

    @app.get("/protected")
    async def protected(actor: Actor = Depends(get_current_actor)) -> dict[str, Any]:
        return {"user_id": actor.user_id, "role": actor.role}

    return TestClient(app)


def _token(secret: str, *, expired: bool = False) -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_access_token(user_id=123, secret=secret, expires_delta=delta)


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    monkeypatch.delenv("CRON_SECRET", raising=False)
    get_settings.cache_clear()


def test_protected_accepts_valid_token() -> None:
    client = _make_app(role="student")
    token = _token("testsecret")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json() == {"user_id": 123, "role": "student"}


def test_protected_rejects_missing_header() -> None:
    client = _make_app(role="student")
    res = client.get("/protected")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")


def test_protected_rejects_token_signed_with_other_secret() -> None:
    client = _make_app(role="student")
    token = _token("someone-else")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_expired_token() -> None:
    client = _make_app(role="student")
    token = _token("testsecret", expired=True)
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_inactive_or_unknown_user() -> None:
    client = _make_app(role=None)
    token = _token("testsecret")
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/me/reservations"),
        ("post", "/reservations/1/cancel"),
        ("get", "/classes/1/availability"),
        ("post", "/waitlist"),
        ("get", "/me/packages"),
        ("post", "/patterns/1/generate"),
    ],
)
def test_api_routes_require_bearer_token(method: str, path: str) -> None:
    studio_app.dependency_overrides[get_session] = _override("student")
    try:
        client = TestClient(studio_app)
        res = client.request(method.upper(), path)
    finally:
        studio_app.dependency_overrides.clear()
    assert res.status_code == 401
    assert res.headers.get("x-request-id")


def test_students_cannot_generate_classes() -> None:
    studio_app.dependency_overrides[get_session] = _override("student")
    try:
        client = TestClient(studio_app)
        res = client.post(
            "/patterns/1/generate",
            json={"weeks_ahead": 2},
            headers={"Authorization": f"Bearer {_token('testsecret')}"},
        )
    finally:
        studio_app.dependency_overrides.clear()
    assert res.status_code == 403


def test_cron_routes_need_configured_secret() -> None:
    client = TestClient(studio_app)
    res = client.post("/cron/payment-deadlines", headers={"Authorization": "Bearer x"})
    assert res.status_code == 503


def test_health_is_public() -> None:
    client = TestClient(studio_app)
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
