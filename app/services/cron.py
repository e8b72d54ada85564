"""Background cron jobs for maintenance tasks."""
from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_sessionmaker
from app.models import Payment, PaymentStatus
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


def expire_stale_payments_once(db: Session | None = None) -> int:
    """Fail PENDING payments older than the configured TTL.

    Returns the number of payments moved to FAILED.
    """

    owns_session = db is None
    if db is None:
        db = get_sessionmaker()()
    try:
        now = utcnow()
        cutoff = now - timedelta(minutes=get_settings().PENDING_PAYMENT_TTL_MINUTES)
        stmt = (
            update(Payment)
            .where(Payment.status == PaymentStatus.PENDING, Payment.created_at < cutoff)
            .values(status=PaymentStatus.FAILED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        expired = db.execute(stmt).rowcount
        db.commit()
    finally:
        if owns_session:
            db.close()
    if expired:
        logger.info("Stale pending payments expired", extra={"count": expired})
    return expired
