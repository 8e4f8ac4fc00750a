from fastapi import FastAPI
from starlette.testclient import TestClient

from recallbot.config import Settings
from recallbot.container import ServiceContainer
from recallbot.errors import (
    BadRequestError,
    InternalError,
    NotFoundError,
    RateLimitExceeded,
    install_exception_handlers,
)


def _app(app_env: str = "production") -> FastAPI:
    app = FastAPI()
    app.state.container = ServiceContainer(Settings(app_env=app_env))
    install_exception_handlers(app)

    @app.get("/bad-request")
    async def bad_request():
        raise BadRequestError(
            "Interaction does not belong to user",
            code="INTERACTION_OWNER_MISMATCH",
            details={"interactionId": "i-1"},
        )

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Memory not found")

    @app.get("/internal")
    async def internal():
        raise InternalError("db password is hunter2")

    @app.get("/limited")
    async def limited():
        raise RateLimitExceeded(retry_after=12)

    @app.get("/crash")
    async def crash():
        raise KeyError("internal detail")

    return app


def test_client_errors_render_message_and_context():
    with TestClient(_app()) as client:
        resp = client.get("/bad-request", headers={"X-Request-Id": "req-1"})

    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "Interaction does not belong to user"
    assert data["code"] == "INTERACTION_OWNER_MISMATCH"
    assert data["details"] == {"interactionId": "i-1"}
    assert data["path"] == "/bad-request"
    assert data["method"] == "GET"
    assert data["requestId"] == "req-1"
    assert data["timestamp"]


def test_not_found_uses_default_code():
    with TestClient(_app()) as client:
        resp = client.get("/missing")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


def test_internal_errors_hide_their_message():
    with TestClient(_app()) as client:
        resp = client.get("/internal")
    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"
    assert "hunter2" not in resp.text


def test_rate_limit_shape():
    with TestClient(_app()) as client:
        resp = client.get("/limited")
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "12"
    data = resp.json()
    assert data["retryAfter"] == 12
    assert data["code"] == "RATE_LIMIT_EXCEEDED"


def test_unhandled_errors_include_stack_only_in_development():
    with TestClient(_app(), raise_server_exceptions=False) as client:
        prod = client.get("/crash")
    with TestClient(_app("development"), raise_server_exceptions=False) as client:
        dev = client.get("/crash")

    assert prod.status_code == 500
    assert prod.json()["code"] == "INTERNAL_ERROR"
    assert "stack" not in prod.json()
    assert dev.status_code == 500
    assert "KeyError" in dev.json()["stack"]
