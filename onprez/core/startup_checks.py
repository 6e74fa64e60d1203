from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from onprez.core.config import DATABASE_URL

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"

REQUIRED_TABLES = (
    "users",
    "businesses",
    "appointments",
    "account_lockouts",
    "auth_attempts",
    "security_logs",
    "business_hours",
    "special_dates",
)


def _runtime_env() -> str:
    return os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()


def validate_database_environment() -> None:
    if _runtime_env() in {"prod", "production"} and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", STARTUP_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def ensure_tables_exist(engine: Engine, required: Iterable[str] = REQUIRED_TABLES) -> None:
    inspector = inspect(engine)
    missing = sorted(table for table in required if not inspector.has_table(table))
    if missing:
        logger.error("%s tables missing / migrations not applied missing=%s", STARTUP_PREFIX, ",".join(missing))
        raise RuntimeError("tables missing / migrations not applied")


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if _runtime_env() == "test" or DATABASE_URL.startswith("sqlite"):
        logger.info("%s skipped migration check env=%s", STARTUP_PREFIX, _runtime_env())
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", STARTUP_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    script_directory = ScriptDirectory.from_config(Config(str(alembic_config_path)))
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        if "alembic_version" not in inspect(connection).get_table_names():
            logger.critical("%s alembic_version table missing", STARTUP_PREFIX)
            raise RuntimeError("Database has no migration state")
        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            STARTUP_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s migration state verified", STARTUP_PREFIX)
