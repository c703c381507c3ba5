from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"

# Tables the session and order services cannot run without.
CORE_TABLES = ("restaurant_tables", "table_sessions", "session_participants", "orders", "order_items")

_ON = {"1", "true", "yes", "on"}
_OFF = {"0", "false", "no", "off"}


def _environment() -> str:
    return os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()


def _is_production(environment: str) -> bool:
    return environment in {"prod", "production"}


def validate_database_environment(database_url: str) -> None:
    if _is_production(_environment()) and database_url.startswith("sqlite"):
        logger.critical("%s refusing SQLite for a production deployment", STARTUP_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def should_auto_apply(environment: Optional[str] = None) -> bool:
    """AUTO_APPLY_MIGRATIONS wins when set; otherwise only production upgrades itself."""
    environment = environment or _environment()
    flag = os.getenv("AUTO_APPLY_MIGRATIONS", "").strip().lower()
    if flag in _OFF:
        return False
    if flag in _ON:
        return True
    return _is_production(environment)


def _require_config(alembic_config_path: Path) -> Config:
    if not alembic_config_path.exists():
        logger.critical("%s alembic.ini missing path=%s", STARTUP_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")
    return Config(str(alembic_config_path))


def apply_migrations(*, alembic_config_path: Path) -> None:
    environment = _environment()
    if not should_auto_apply(environment):
        logger.info("%s schema upgrade not requested env=%s", STARTUP_PREFIX, environment)
        return

    _require_config(alembic_config_path)
    command = [sys.executable, "-m", "alembic", "-c", str(alembic_config_path), "upgrade", "head"]
    logger.info("%s upgrading tableside schema to head env=%s", STARTUP_PREFIX, environment)
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as exc:
        logger.critical(
            "%s schema upgrade failed returncode=%s stderr=%s",
            STARTUP_PREFIX,
            exc.returncode,
            (exc.stderr or "").strip(),
        )
        raise RuntimeError("Automatic migration failed") from exc


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if _environment() == "test":
        logger.info("%s schema check skipped for test environment", STARTUP_PREFIX)
        return

    expected = set(ScriptDirectory.from_config(_require_config(alembic_config_path)).get_heads())

    with engine.connect() as connection:
        current = set(MigrationContext.configure(connection).get_current_heads())
        present = set(inspect(connection).get_table_names())

    if not current:
        logger.critical("%s database carries no alembic revision", STARTUP_PREFIX)
        raise RuntimeError("Database has no migration state")
    if current != expected:
        logger.critical(
            "%s schema behind code current=%s expected=%s",
            STARTUP_PREFIX,
            sorted(current),
            sorted(expected),
        )
        raise RuntimeError("Pending migrations detected")

    missing = [table for table in CORE_TABLES if table not in present]
    if missing:
        logger.critical("%s revision is current but tables are missing tables=%s", STARTUP_PREFIX, missing)
        raise RuntimeError(f"Missing tables: {', '.join(missing)}")

    logger.info("%s schema at revision %s", STARTUP_PREFIX, ",".join(sorted(current)))
