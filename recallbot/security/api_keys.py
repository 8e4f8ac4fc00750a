"""API key guard for the REST endpoints."""

from __future__ import annotations

import hmac

from fastapi import Request

from ..errors import UnauthorizedError


def _presented_key(request: Request) -> str | None:
    key = request.headers.get("X-API-Key")
    if key:
        return key.strip()
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def require_api_key(request: Request) -> None:
    """FastAPI dependency rejecting requests without the configured key."""

    expected = request.app.state.container.settings.api_key
    presented = _presented_key(request)
    if not presented:
        raise UnauthorizedError("API key required", code="MISSING_API_KEY")
    if not expected or not hmac.compare_digest(presented.encode(), expected.encode()):
        raise UnauthorizedError("Invalid API key", code="INVALID_API_KEY")
