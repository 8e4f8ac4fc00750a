import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from recallbot.app_logging import _install_access_logging


def _create_app() -> FastAPI:
    app = FastAPI()

    @app.post("/echo")
    async def echo(request: Request):
        return {"rid": request.state.request_id}

    @app.post("/denied")
    async def denied():
        return JSONResponse(status_code=401, content={"error": "nope"})

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    _install_access_logging(app)
    return app


def test_access_logging_request_id_and_scrubbing(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/echo",
            json={"token": "secret", "a": 1},
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        record = caplog.records[0]
        data = json.loads(record.getMessage())
        assert data["request_id"] == "abc"
        assert data["headers"]["authorization"] == "***"
        assert data["body"]["token"] == "***"

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_generated_request_id_is_echoed(caplog):
    app = _create_app()
    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.post("/echo", json={})
    rid = resp.headers["X-Request-Id"]
    assert len(rid) == 32
    assert resp.json() == {"rid": rid}
    assert "body" not in json.loads(caplog.records[0].getMessage())


def test_rejections_are_logged_as_warnings_with_form_body_scrubbed(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()
    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.post(
            "/denied",
            data={"MessageSid": "SM1", "api_key": "k"},
            headers={"X-Twilio-Signature": "sha1=abc", "X-Forwarded-For": "9.9.9.9, 10.0.0.1"},
        )

    assert resp.status_code == 401
    [record] = caplog.records
    assert record.levelno == logging.WARNING
    data = json.loads(record.getMessage())
    assert data["client_ip"] == "9.9.9.9"
    assert data["headers"]["x-twilio-signature"] == "***"
    assert data["body"] == {"MessageSid": "SM1", "api_key": "***"}
