from __future__ import annotations

import json
import logging
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from onprez.core import startup_checks
from onprez.core.logging_setup import JsonFormatter, mask_sensitive

REQUIRED_ROUTES = {
    "/api/auth/login",
    "/api/account/security-status",
    "/api/account/unlock/{user_id}",
    "/api/appointments",
    "/api/appointments/multi-day",
    "/api/appointments/{appointment_id}/status",
    "/api/appointments/{appointment_id}/reschedule",
    "/api/appointments/check-conflicts",
    "/api/public/{handle}/bookings",
    "/api/public/{handle}/availability",
    "/api/public/{handle}/availability/next",
    "/api/cron/reminders",
}


def test_api_startup_and_router_registration(monkeypatch):
    from onprez import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/")
        health = client.get("/health")

    assert response.json() == {"status": "ok"}
    assert health.json() == {"status": "healthy"}
    paths = {route.path for route in main.app.routes}
    assert REQUIRED_ROUTES.issubset(paths)


def test_request_id_is_returned_in_response_header(monkeypatch):
    from onprez import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        generated = client.get("/health")
        propagated = client.get("/health", headers={"X-Request-ID": "req-123"})

    UUID(generated.headers["X-Request-ID"])
    assert propagated.headers["X-Request-ID"] == "req-123"


def test_cors_allows_known_origin_and_blocks_unknown_origin(monkeypatch):
    from onprez import main
    from onprez.core.config import CORS_ORIGINS

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    allowed_origin = CORS_ORIGINS[0]
    with TestClient(main.app) as client:
        allowed = client.options(
            "/health", headers={"origin": allowed_origin, "access-control-request-method": "GET"}
        )
        blocked = client.options(
            "/health", headers={"origin": "https://blocked-origin.example", "access-control-request-method": "GET"}
        )

    assert allowed.headers.get("access-control-allow-origin") == allowed_origin
    assert blocked.headers.get("access-control-allow-origin") is None


def test_sqlite_is_rejected_in_production(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "sqlite:///./prod.db")

    with pytest.raises(RuntimeError, match="SQLite is forbidden"):
        startup_checks.validate_database_environment()


def test_postgres_is_accepted_in_production(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "postgresql://db/onprez")

    startup_checks.validate_database_environment()


def test_migration_check_is_skipped_for_sqlite(monkeypatch):
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "sqlite:///./local.db")

    startup_checks.ensure_migrations_applied(engine=None, alembic_config_path=Path("/does/not/exist"))


def test_missing_tables_fail_startup():
    engine = create_engine("sqlite+pysqlite:///:memory:")

    with pytest.raises(RuntimeError, match="tables missing"):
        startup_checks.ensure_tables_exist(engine)


def test_json_formatter_masks_secrets():
    formatter = JsonFormatter("%(message)s")
    record = logging.LogRecord(
        name="onprez.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="login password=%s token=%s",
        args=("hunter2", "abc.def"),
        exc_info=None,
    )
    record.status_code = 200

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "login password=*** token=***"
    assert payload["status_code"] == 200
    assert payload["module"] == "onprez.test"


def test_mask_sensitive_handles_bearer_tokens():
    assert mask_sensitive("Authorization: Bearer abc123") == "Authorization: Bearer ***"
