import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from onprez.core.rate_limiter import InMemoryRateLimiterService, RateLimitRule
from onprez.middleware.rate_limit import DEFAULT_ROUTE_RULES, RateLimitMiddleware, _match_rule

SEARCH_RULE = RateLimitRule("test:search", 2, 60, "Slow down")


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _build_client(enabled=True):
    limiter = InMemoryRateLimiterService()
    rules = [(method, pattern, SEARCH_RULE if method == "GET" else rule) for method, pattern, rule in DEFAULT_ROUTE_RULES]
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, rate_limiter=limiter, route_rules=rules, enabled=enabled)

    @app.get("/api/public/{handle}/availability")
    def availability(handle: str):
        return {"handle": handle}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return TestClient(app)


def test_limiter_blocks_after_limit_and_reports_retry():
    clock = FakeClock()
    limiter = InMemoryRateLimiterService(clock=clock)

    decisions = [limiter.check(key="203.0.113.5", rule=SEARCH_RULE) for _ in range(3)]

    assert [d.allowed for d in decisions] == [True, True, False]
    assert [d.remaining for d in decisions] == [1, 0, 0]
    assert decisions[2].retry_after_seconds == 60


def test_limiter_window_slides():
    clock = FakeClock()
    limiter = InMemoryRateLimiterService(clock=clock)
    limiter.check(key="a", rule=SEARCH_RULE)
    clock.now += 30
    limiter.check(key="a", rule=SEARCH_RULE)

    clock.now += 20
    blocked = limiter.check(key="a", rule=SEARCH_RULE)
    clock.now += 11
    reopened = limiter.check(key="a", rule=SEARCH_RULE)

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 10
    assert reopened.allowed is True
    assert limiter.check(key="b", rule=SEARCH_RULE).allowed is True


def test_limiter_reset_clears_counters():
    limiter = InMemoryRateLimiterService(clock=FakeClock())
    for _ in range(2):
        limiter.check(key="a", rule=SEARCH_RULE)

    limiter.reset()

    assert limiter.check(key="a", rule=SEARCH_RULE).allowed is True


@pytest.mark.parametrize(
    "method,path,rule_name",
    [
        ("POST", "/api/auth/login", "auth:login"),
        ("POST", "/api/public/studio-luz/bookings", "booking:create"),
        ("POST", "/api/public/studio-luz/bookings/12/cancel", "booking:cancel"),
        ("GET", "/api/public/studio-luz/availability", "api:search"),
        ("GET", "/api/public/studio-luz/availability/next", "api:search"),
        ("GET", "/api/public/studio-luz", None),
        ("GET", "/api/auth/login", None),
    ],
)
def test_default_route_rules(method, path, rule_name):
    rule = _match_rule(DEFAULT_ROUTE_RULES, method, path)

    assert (rule.name if rule else None) == rule_name


def test_middleware_returns_429_with_headers():
    client = _build_client()

    first = client.get("/api/public/studio-luz/availability")
    client.get("/api/public/studio-luz/availability")
    blocked = client.get("/api/public/studio-luz/availability")
    other_client = client.get("/api/public/studio-luz/availability", headers={"X-Forwarded-For": "198.51.100.4"})

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert blocked.status_code == 429
    assert blocked.json() == {"detail": "Slow down"}
    assert int(blocked.headers["Retry-After"]) >= 1
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert other_client.status_code == 200


def test_unmatched_routes_are_not_limited():
    client = _build_client()

    responses = [client.get("/health") for _ in range(5)]

    assert all(r.status_code == 200 for r in responses)
    assert "X-RateLimit-Limit" not in responses[0].headers


def test_disabled_middleware_never_limits():
    client = _build_client(enabled=False)

    responses = [client.get("/api/public/studio-luz/availability") for _ in range(5)]

    assert all(r.status_code == 200 for r in responses)


def test_app_installs_rate_limit_middleware():
    from onprez import main

    assert any(m.cls is RateLimitMiddleware for m in main.app.user_middleware)
