"""Logging for the ``recallbot`` logger and the HTTP access log.

Both logs rotate at midnight. Access lines are JSON objects carrying the
request id, status and latency; webhook signatures, API keys and Twilio
credentials are masked in headers and in logged form or JSON bodies.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from urllib.parse import parse_qsl
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.rate_limit import get_client_ip

APP_LOGGER = "recallbot"
ACCESS_LOGGER = "uvicorn.access"
QUIET_PATHS = frozenset({"/api/health", "/api/metrics"})


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-twilio-signature",
    "password",
    "token",
    "auth_token",
    "api_key",
}


def _scrub(data: object) -> object:
    """Recursively mask sensitive fields in dictionaries and lists."""

    if isinstance(data, dict):
        return {
            k: ("***" if k.lower() in SENSITIVE_FIELDS else _scrub(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _decode_body(body_bytes: bytes, content_type: str) -> object:
    if "application/x-www-form-urlencoded" in content_type:
        text = body_bytes.decode("utf-8", errors="replace")
        return _scrub(dict(parse_qsl(text, keep_blank_values=True)))
    try:
        return _scrub(json.loads(body_bytes))
    except ValueError:
        return body_bytes.decode("utf-8", errors="replace")


def _status_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _install_access_logging(app: FastAPI) -> None:
    """Write one JSON access line per request, echoing ``X-Request-Id``.

    Rejections (4xx, including signature failures and 429s) are logged at
    WARNING and server errors at ERROR so they stand out in ``access.log``.
    """

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    access_logger = logging.getLogger(ACCESS_LOGGER)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        body_content = None
        if log_request_bodies:
            body_bytes = await request.body()

            async def receive() -> dict:  # pragma: no cover - internal
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]
            if body_bytes:
                body_content = _decode_body(
                    body_bytes, request.headers.get("content-type", "")
                )

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "client_ip": get_client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body_content is not None:
            log_data["body"] = body_content

        access_logger.log(
            _status_level(response.status_code), json.dumps(log_data, default=str)
        )
        return response


def _rotating_handler(
    log_dir: str, filename: str, retention_days: int, rotate_utc: bool
) -> TimedRotatingFileHandler:
    return TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=retention_days,
        utc=rotate_utc,
    )


def init_logging(app: FastAPI | None = None) -> None:
    """Attach rotating handlers to the ``recallbot`` and access loggers.

    The access logger's handlers are replaced on every call; the app logger
    keeps handlers that are already attached.
    """

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER)
    if not app_logger.handlers:
        handler = _rotating_handler(log_dir, "recallbot.log", retention_days, rotate_utc)
        handler.setFormatter(formatter)
        app_logger.addHandler(handler)
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger(ACCESS_LOGGER)
    access_logger.handlers.clear()
    handler = _rotating_handler(log_dir, "access.log", retention_days, rotate_utc)
    handler.setFormatter(formatter)
    access_logger.addHandler(handler)
    access_logger.setLevel(log_level)

    if app is not None:
        _install_access_logging(app)
