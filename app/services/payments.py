"""Free-access claims and payment history queries."""
import logging
import math
from dataclasses import dataclass
from uuid import uuid4

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Payment, Purchase
from app.services import entitlements
from app.services.orders import get_purchasable_paper
from app.utils.audit import log_audit
from app.utils.errors import api_error

logger = logging.getLogger(__name__)

FREE_ACCESS_SIGNATURE = "FREE_ACCESS"


@dataclass
class FreeClaim:
    purchase: Purchase
    message: str
    created: bool


@dataclass
class PaymentPage:
    items: list[Payment]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def claim_free_access(db: Session, *, student_id: int, paper_id: int) -> FreeClaim:
    """Grant a free, published paper to ``student_id``; repeat calls are no-ops."""

    paper = get_purchasable_paper(db, paper_id)
    if paper.price:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "PAPER_NOT_FREE",
            "This paper is not free.",
            {"price": paper.price},
        )

    existing = entitlements.get_purchase(db, paper_id=paper.id, student_id=student_id)
    if existing is not None:
        return FreeClaim(purchase=existing, message="Access already granted", created=False)

    order_id = f"FREE-{uuid4().hex}"
    try:
        with db.begin_nested():
            payment, purchase = entitlements.add_free_grant(
                db,
                student_id=student_id,
                paper_id=paper.id,
                order_id=order_id,
                currency=get_settings().PAYMENT_CURRENCY,
                signature=FREE_ACCESS_SIGNATURE,
            )
            log_audit(
                db,
                actor=f"user:{student_id}",
                action="FREE_ACCESS_GRANTED",
                entity="Purchase",
                entity_id=purchase.id,
                data={"payment_id": payment.id, "order_id": order_id, "paper_id": paper.id},
            )
    except IntegrityError:
        winner = entitlements.get_purchase(db, paper_id=paper.id, student_id=student_id)
        if winner is None:
            raise
        db.commit()
        return FreeClaim(purchase=winner, message="Access already granted", created=False)

    db.commit()
    db.refresh(purchase)
    logger.info(
        "Free access granted",
        extra={"purchase_id": purchase.id, "paper_id": paper.id, "student_id": student_id},
    )
    return FreeClaim(purchase=purchase, message="Free access granted successfully", created=True)


def payment_history(db: Session, *, student_id: int, page: int = 1, limit: int = 10) -> PaymentPage:
    """Return the student's payments, newest first."""

    page = max(page, 1)
    limit = max(limit, 1)
    total = db.scalar(select(func.count()).select_from(Payment).where(Payment.user_id == student_id)) or 0
    stmt = (
        select(Payment)
        .where(Payment.user_id == student_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return PaymentPage(items=list(db.scalars(stmt).all()), total=total, page=page, limit=limit)


__all__ = ["FREE_ACCESS_SIGNATURE", "FreeClaim", "PaymentPage", "claim_free_access", "payment_history"]
