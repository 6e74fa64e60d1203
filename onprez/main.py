import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from onprez.core.config import CORS_ORIGINS, DATABASE_URL, RATE_LIMIT_ENABLED
from onprez.core.database import Base, engine
from onprez.core.logging_setup import configure_logging
from onprez.core.startup_checks import (
    ensure_migrations_applied,
    ensure_tables_exist,
    validate_database_environment,
)
from onprez.middleware.observability import ObservabilityMiddleware
from onprez.middleware.rate_limit import RateLimitMiddleware
import onprez.models  # noqa: F401  models must be registered before create_all
import onprez.services.event_handlers  # noqa: F401  subscribes event bus handlers

from onprez.routers.account import router as account_router
from onprez.routers.appointments import router as appointments_router
from onprez.routers.auth import router as auth_router
from onprez.routers.cron import router as cron_router
from onprez.routers.public_booking import router as public_booking_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="OnPrez Booking API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(RateLimitMiddleware, enabled=RATE_LIMIT_ENABLED)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            # Local databases skip migrations
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_tables_exist(engine)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(account_router)
app.include_router(appointments_router)
app.include_router(public_booking_router)
app.include_router(cron_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
