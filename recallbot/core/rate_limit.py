"""Fixed-window admission control for the HTTP endpoints.

Three tiers are evaluated in order for every request:

- **global**: one counter per route class shared by every caller;
- **route**: per route class and client address, with narrower limits for
  the expensive routes (webhook ingestion, memory search);
- **identity**: per resolved caller identity (user id, phone number or
  network address).

Limits are written in the ``limits`` notation (``"100/minute"``) and
counted by ``limits``' fixed-window strategy over a shared in-process
:class:`~limits.storage.MemoryStorage`; each tier namespaces its keys.
A background sweep expires finished windows between requests.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from starlette.requests import Request

from ..config import Settings
from ..errors import RateLimitExceeded

logger = logging.getLogger(__name__)

ROUTE_WEBHOOK = "webhook"
ROUTE_SEARCH = "search"

ROUTE_CODES = {
    ROUTE_WEBHOOK: "WEBHOOK_RATE_LIMIT_EXCEEDED",
    ROUTE_SEARCH: "SEARCH_RATE_LIMIT_EXCEEDED",
}


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class FixedWindowLimiter:
    """One limit applied per key inside fixed windows.

    The window opens on the first hit for a key and lasts the limit's
    expiry; the counter increment happens under the storage's per-key lock.
    """

    def __init__(
        self,
        limit: str,
        *,
        storage: MemoryStorage | None = None,
        namespace: str = "default",
    ) -> None:
        self.item = parse(limit)
        self.namespace = namespace
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    @property
    def max_requests(self) -> int:
        return self.item.amount

    @property
    def window_seconds(self) -> int:
        return self.item.get_expiry()

    def hit(self, key: str) -> RateDecision:
        """Record one request for ``key`` and decide whether to admit it."""

        allowed = self._strategy.hit(self.item, self.namespace, key)
        stats = self._strategy.get_window_stats(self.item, self.namespace, key)
        if allowed:
            return RateDecision(True, stats.remaining)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        return RateDecision(False, 0, retry_after)


def sweep_storage(storage: MemoryStorage) -> int:
    """Expire finished windows in ``storage`` and return how many were dropped."""

    before = len(storage.expirations)
    for key in list(storage.expirations):
        # ``get`` drops the counter once its window has passed.
        storage.get(key)
    return before - len(storage.expirations)


@dataclass(frozen=True)
class RateLimitPolicy:
    global_limit: str = "1000/minute"
    route_limits: Mapping[str, str] = field(
        default_factory=lambda: {ROUTE_WEBHOOK: "100/minute", ROUTE_SEARCH: "30/minute"}
    )
    identity_limit: str = "30/minute"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitPolicy":
        return cls(
            global_limit=settings.rate_limit_global,
            route_limits={
                ROUTE_WEBHOOK: settings.rate_limit_webhook,
                ROUTE_SEARCH: settings.rate_limit_search,
            },
            identity_limit=settings.rate_limit_identity,
        )


class RateLimiter:
    """The three admission tiers behind a single ``check`` call."""

    def __init__(
        self, policy: RateLimitPolicy, *, storage: MemoryStorage | None = None
    ) -> None:
        self.policy = policy
        self.storage = storage if storage is not None else MemoryStorage()
        self._global = FixedWindowLimiter(
            policy.global_limit, storage=self.storage, namespace="global"
        )
        self._routes = {
            name: FixedWindowLimiter(limit, storage=self.storage, namespace=f"route:{name}")
            for name, limit in policy.route_limits.items()
        }
        self._identity = FixedWindowLimiter(
            policy.identity_limit, storage=self.storage, namespace="identity"
        )

    def check(
        self,
        route_class: str,
        *,
        client_ip: str | None = None,
        identity: str | None = None,
    ) -> None:
        """Raise :class:`RateLimitExceeded` if any tier rejects the request."""

        decision = self._global.hit(f"global:{route_class}")
        if not decision.allowed:
            raise RateLimitExceeded(retry_after=decision.retry_after)

        route = self._routes.get(route_class)
        if route is not None:
            decision = route.hit(f"{route_class}:{client_ip or 'unknown'}")
            if not decision.allowed:
                raise RateLimitExceeded(
                    retry_after=decision.retry_after,
                    code=ROUTE_CODES.get(route_class),
                )

        if identity:
            decision = self._identity.hit(f"{route_class}:{identity}")
            if not decision.allowed:
                raise RateLimitExceeded(
                    "Too many requests from this user, please slow down.",
                    retry_after=decision.retry_after,
                )

    def sweep(self) -> int:
        return sweep_storage(self.storage)

    def __len__(self) -> int:
        return len(self.storage.expirations)

    async def run_sweeper(self, interval: float) -> None:
        """Periodically sweep expired windows until cancelled."""

        while True:
            await asyncio.sleep(interval)
            removed = self.sweep()
            if removed:
                logger.debug("Swept %d expired rate-limit windows", removed)


def get_client_ip(request: Request) -> str | None:
    """Prefer the first ``X-Forwarded-For`` hop, else the socket peer."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return None


def resolve_identity(
    *,
    user_id: str | None = None,
    phone: str | None = None,
    client_ip: str | None = None,
) -> str | None:
    """Pick the most specific caller identity available."""

    if user_id:
        return f"user:{user_id}"
    if phone:
        return f"phone:{phone}"
    if client_ip:
        return f"ip:{client_ip}"
    return None
