"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request
from sqlalchemy import text

from app.config import get_settings
from app.core.runtime_state import is_scheduler_active
from app.db import get_engine
from app.services.signatures import secret_fingerprint

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> str:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except Exception:  # noqa: BLE001
        logger.warning("Migration table unavailable", exc_info=True)
        return "unknown"
    if expected_head is None:
        return "unknown"
    return "up_to_date" if current == expected_head else "out_of_date"


@router.get("", summary="Health check")
def healthcheck(request: Request) -> dict[str, object]:
    """Return database, gateway and scheduler status."""

    settings = get_settings()
    db_status = _db_status()
    migrations_status = _migrations_status() if db_status == "ok" else "unknown"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "env": settings.app_env,
        "db_status": db_status,
        "migrations_status": migrations_status,
        "gateway_configured": getattr(request.app.state, "gateway", None) is not None,
        "webhook_secret_fingerprint": secret_fingerprint(settings.RAZORPAY_WEBHOOK_SECRET),
        "mail_enabled": bool(settings.MAIL_API_KEY),
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
    }
