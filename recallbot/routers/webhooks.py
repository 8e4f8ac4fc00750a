"""Webhook intake route for the Twilio WhatsApp channel."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ..channels.twilio import normalize_phone
from ..container import ServiceContainer
from ..core.rate_limit import ROUTE_WEBHOOK, get_client_ip, resolve_identity
from ..core.sanitize import sanitize
from ..errors import AppError, MemoryStorageError
from ..intake import schemas
from ..intake.replies import ERROR_REPLY

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _signed_url(request: Request, container: ServiceContainer) -> str:
    """URL the provider signed; configurable for deployments behind a proxy."""

    return container.settings.webhook_public_url or str(request.url)


def _failure_response() -> JSONResponse:
    body = schemas.WebhookResponse(
        success=False,
        message="Internal server error",
        response=schemas.ReplyPayload(content=ERROR_REPLY),
    )
    return JSONResponse(status_code=500, content=body.to_body())


@router.post("/api/webhook/whatsapp")
async def whatsapp_webhook(request: Request) -> JSONResponse:
    container = get_container(request)
    raw_body = await request.body()
    container.adapter.verify_signature(
        _signed_url(request, container), raw_body, request.headers
    )

    form = await request.form()
    raw_payload = {key: value for key, value in form.items() if isinstance(value, str)}

    client_ip = get_client_ip(request)
    identity = resolve_identity(
        user_id=request.headers.get("X-User-Id"),
        phone=normalize_phone(raw_payload.get("From")),
        client_ip=client_ip,
    )
    container.rate_limiter.check(ROUTE_WEBHOOK, client_ip=client_ip, identity=identity)

    payload = sanitize(raw_payload)
    message = container.adapter.parse_incoming(payload)
    logger.info(
        "Webhook received %s from %s (%s, %d media)",
        message.provider_message_id,
        normalize_phone(message.from_address),
        message.message_type.value,
        len(message.media),
    )

    def _handle() -> schemas.WebhookResponse:
        with container.intake_scope() as service:
            return service.handle(message)

    try:
        result = await run_in_threadpool(_handle)
    except MemoryStorageError as exc:
        logger.error(
            "Webhook %s left retryable: %s", message.provider_message_id, exc
        )
        return _failure_response()
    except AppError:
        raise
    except Exception:
        logger.exception("Webhook %s failed", message.provider_message_id)
        return _failure_response()
    return JSONResponse(status_code=200, content=result.to_body())
