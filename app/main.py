from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import db  # engine/sessionmaker live here
from app.config import AppInfo, get_settings
from app.core.logging import get_logger, setup_logging
from app.core.runtime_state import set_scheduler_active
import app.models  # registers the tables
from app.routers import get_api_router
from app.services.cron import expire_stale_payments_once
from app.services.mailer import EmailSender
from app.services.psp_razorpay import RazorpayClient
from app.utils.errors import error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _current_settings():
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_payment_secrets(settings: Any) -> None:
    """Fail fast when gateway secrets are missing or shared outside dev."""

    key_secret = settings.RAZORPAY_KEY_SECRET
    webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET
    env_lower = settings.app_env.lower()

    if not (key_secret and webhook_secret):
        if env_lower != "dev":
            logger.error(
                "Payment secrets are missing; configure RAZORPAY_KEY_SECRET and RAZORPAY_WEBHOOK_SECRET before startup.",
                extra={"env": settings.app_env},
            )
            raise RuntimeError("Missing payment secrets in non-dev environment.")
        logger.warning(
            "Payment secrets are not configured; allowed in dev only.",
            extra={"env": settings.app_env},
        )
        return

    if key_secret == webhook_secret:
        if env_lower != "dev":
            logger.error(
                "RAZORPAY_WEBHOOK_SECRET must differ from RAZORPAY_KEY_SECRET.",
                extra={"env": settings.app_env},
            )
            raise RuntimeError("Webhook secret must differ from the gateway key secret.")
        logger.warning(
            "Webhook secret equals the gateway key secret; allowed in dev only.",
            extra={"env": settings.app_env},
        )


def _build_gateway(settings: Any) -> RazorpayClient | None:
    try:
        return RazorpayClient(settings)
    except RuntimeError:
        logger.warning(
            "Razorpay credentials missing; payment endpoints will answer 503.",
            extra={"env": settings.app_env},
        )
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_payment_secrets(settings)

    db.init_engine()  # sync, idempotent
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    app.state.gateway = _build_gateway(settings)
    app.state.mailer = EmailSender(settings)

    # Enable SCHEDULER_ENABLED on one runner only; the sweep is idempotent but noisy.
    global scheduler
    set_scheduler_active(False)
    if settings.SCHEDULER_ENABLED:
        scheduler = AsyncIOScheduler()
        scheduler.start()
        scheduler.add_job(
            expire_stale_payments_once,
            "interval",
            minutes=15,
            id="expire-stale-payments",
            replace_existing=True,
        )
        set_scheduler_active(True)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        set_scheduler_active(False)
        app.state.mailer.close()
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
