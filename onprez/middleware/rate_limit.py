from __future__ import annotations

import logging
import re
from typing import Optional, Sequence, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from onprez.core.rate_limiter import (
    AVAILABILITY_RULE,
    BOOKING_CANCEL_RULE,
    BOOKING_CREATE_RULE,
    LOGIN_RULE,
    InMemoryRateLimiterService,
    RateLimiterService,
    RateLimitRule,
)
from onprez.deps import get_client_ip

logger = logging.getLogger(__name__)

RouteRule = Tuple[str, re.Pattern, RateLimitRule]

DEFAULT_ROUTE_RULES: Sequence[RouteRule] = (
    ("POST", re.compile(r"^/api/auth/login/?$"), LOGIN_RULE),
    ("POST", re.compile(r"^/api/public/[^/]+/bookings/?$"), BOOKING_CREATE_RULE),
    ("POST", re.compile(r"^/api/public/[^/]+/bookings/\d+/cancel/?$"), BOOKING_CANCEL_RULE),
    ("GET", re.compile(r"^/api/public/[^/]+/availability(/next)?/?$"), AVAILABILITY_RULE),
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        *,
        rate_limiter: RateLimiterService | None = None,
        route_rules: Sequence[RouteRule] = DEFAULT_ROUTE_RULES,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self._rate_limiter = rate_limiter or InMemoryRateLimiterService()
        self._route_rules = route_rules
        self._enabled = enabled

    async def dispatch(self, request: Request, call_next):
        rule = _match_rule(self._route_rules, request.method, request.url.path) if self._enabled else None
        if rule is None:
            return await call_next(request)

        client_ip = get_client_ip(request) or "unknown"
        decision = self._rate_limiter.check(key=client_ip, rule=rule)
        if not decision.allowed:
            logger.warning("rate limit exceeded rule=%s client_ip=%s", rule.name, client_ip)
            return JSONResponse(
                status_code=429,
                content={"detail": rule.message},
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": str(decision.remaining),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def _match_rule(route_rules: Sequence[RouteRule], method: str, path: str) -> Optional[RateLimitRule]:
    for rule_method, pattern, rule in route_rules:
        if method == rule_method and pattern.match(path):
            return rule
    return None
