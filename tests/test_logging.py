import json
import logging
import sys
from logging.handlers import TimedRotatingFileHandler

from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from recallbot.app_logging import JsonFormatter, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


def test_timed_rotating_handler_configuration(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers("recallbot")
    access_logger = _clear_handlers("uvicorn.access")

    init_logging()

    app_handler = next(
        h for h in app_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert app_handler.when == "MIDNIGHT"
    assert app_handler.backupCount == 5

    access_handler = next(
        h for h in access_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert access_handler.backupCount == 5

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_init_logging_replaces_existing_access_handlers(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    access_logger = _clear_handlers("uvicorn.access")
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    access_logger.handlers.clear()
    _clear_handlers("recallbot")


def test_log_files_and_redaction(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app_logger = _clear_handlers("recallbot")
    access_logger = _clear_handlers("uvicorn.access")

    app = FastAPI()

    @app.post("/hook")
    async def hook(request: Request):
        form = await request.form()
        return {"sid": form["MessageSid"]}

    init_logging(app)
    logging.getLogger("recallbot.intake").info("hello intake")

    with TestClient(app) as client:
        resp = client.post(
            "/hook",
            data={"MessageSid": "SM1", "token": "secret"},
            headers={"X-Twilio-Signature": "sha1=abc", "X-API-Key": "k"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"sid": "SM1"}

    for logger in (app_logger, access_logger):
        for handler in logger.handlers:
            handler.flush()

    app_log = tmp_path / "recallbot.log"
    assert "hello intake" in app_log.read_text()

    access_line = (tmp_path / "access.log").read_text().splitlines()[-1]
    data = json.loads(access_line.split(": ", 1)[1])
    assert data["headers"]["x-twilio-signature"] == "***"
    assert data["headers"]["x-api-key"] == "***"
    assert data["body"] == {"MessageSid": "SM1", "token": "***"}

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_json_formatter_includes_logger_and_exception():
    formatter = JsonFormatter()
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord(
            "recallbot.test", logging.ERROR, __file__, 1, "failed %s", ("x",), sys.exc_info()
        )
    data = json.loads(formatter.format(record))
    assert data["logger"] == "recallbot.test"
    assert data["message"] == "failed x"
    assert "ValueError: boom" in data["exc_info"]
