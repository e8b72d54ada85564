"""Entitlement store: payments, purchases and the one-grant-per-pair rule.

Every path that grants access (client verification, webhook, coupon, free
claim) ends here. The database unique constraint on
``purchases(paper_id, student_id)`` decides which writer wins; the helpers in
this module turn the loser's ``IntegrityError`` into a read of the winning row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Payment, PaymentStatus, Purchase
from app.utils.audit import log_audit
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class PaymentStateError(RuntimeError):
    """The payment already reached FAILED and can no longer be settled."""

    def __init__(self, payment: Payment) -> None:
        super().__init__(f"Payment {payment.id} is {payment.status.value}")
        self.payment = payment


@dataclass
class Grant:
    payment: Payment
    purchase: Purchase
    created: bool


def get_purchase(db: Session, *, paper_id: int, student_id: int) -> Purchase | None:
    """Return the purchase for ``(paper_id, student_id)`` straight from the database."""

    stmt = (
        select(Purchase)
        .where(Purchase.paper_id == paper_id, Purchase.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def has_access(db: Session, *, student_id: int, paper_id: int) -> bool:
    return get_purchase(db, paper_id=paper_id, student_id=student_id) is not None


def get_payment_by_order(db: Session, order_id: str) -> Payment | None:
    stmt = (
        select(Payment)
        .where(Payment.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def transition_payment(db: Session, payment: Payment, status: PaymentStatus, **values: Any) -> bool:
    """Move ``payment`` out of PENDING with a conditional UPDATE.

    Returns ``False`` when the row had already left PENDING, in which case
    nothing is written. ``payment`` is refreshed either way.
    """

    stmt = (
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
        .values(status=status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.refresh(payment)
    return result.rowcount == 1


def mark_payment_failed(db: Session, payment: Payment, *, reason: str) -> bool:
    """Record a failed settlement attempt and commit it immediately."""

    changed = transition_payment(db, payment, PaymentStatus.FAILED)
    if changed:
        log_audit(
            db,
            actor="system",
            action="PAYMENT_FAILED",
            entity="Payment",
            entity_id=payment.id,
            data={"order_id": payment.order_id, "reason": reason},
        )
        logger.warning(
            "Payment marked as failed",
            extra={"payment_id": payment.id, "order_id": payment.order_id, "reason": reason},
        )
    db.commit()
    return changed


def settle_payment(
    db: Session,
    payment: Payment,
    *,
    paper_id: int,
    student_id: int,
    source: str,
    gateway_payment_id: str | None = None,
    signature: str | None = None,
) -> Grant:
    """Idempotently turn a confirmed ``payment`` into a Purchase.

    * Purchase already present: the payment is marked SUCCESS if still
      PENDING and the existing row is returned.
    * Otherwise the SUCCESS transition and the Purchase insert run in one
      savepoint. A unique violation means a concurrent writer won; the
      savepoint is discarded and the winner is returned.
    """

    values: dict[str, Any] = {}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    if signature:
        values["signature"] = signature

    existing = get_purchase(db, paper_id=paper_id, student_id=student_id)
    if existing is not None:
        transition_payment(db, payment, PaymentStatus.SUCCESS, **values)
        db.commit()
        logger.info(
            "Purchase already exists; settlement is a no-op",
            extra={"payment_id": payment.id, "purchase_id": existing.id, "source": source},
        )
        return Grant(payment=payment, purchase=existing, created=False)

    if payment.status == PaymentStatus.FAILED:
        raise PaymentStateError(payment)

    purchase = Purchase(
        paper_id=paper_id,
        student_id=student_id,
        payment_id=payment.id,
        price=payment.amount,
    )
    try:
        with db.begin_nested():
            if not transition_payment(db, payment, PaymentStatus.SUCCESS, **values):
                if payment.status != PaymentStatus.SUCCESS:
                    raise PaymentStateError(payment)
            db.add(purchase)
            db.flush()
            log_audit(
                db,
                actor=source,
                action="PURCHASE_GRANTED",
                entity="Purchase",
                entity_id=purchase.id,
                data={
                    "payment_id": payment.id,
                    "order_id": payment.order_id,
                    "paper_id": paper_id,
                    "student_id": student_id,
                    "price": payment.amount,
                    "gateway_payment_id": gateway_payment_id,
                },
            )
    except IntegrityError:
        winner = get_purchase(db, paper_id=paper_id, student_id=student_id)
        if winner is None:
            raise
        db.refresh(payment)
        transition_payment(db, payment, PaymentStatus.SUCCESS, **values)
        db.commit()
        logger.info(
            "Concurrent settlement won the race; reusing its purchase",
            extra={"payment_id": payment.id, "purchase_id": winner.id, "source": source},
        )
        return Grant(payment=payment, purchase=winner, created=False)

    db.commit()
    db.refresh(purchase)
    logger.info(
        "Payment settled",
        extra={"payment_id": payment.id, "purchase_id": purchase.id, "source": source},
    )
    return Grant(payment=payment, purchase=purchase, created=True)


def add_free_grant(
    db: Session,
    *,
    student_id: int,
    paper_id: int,
    order_id: str,
    currency: str,
    gateway_payment_id: str | None = None,
    signature: str | None = None,
) -> tuple[Payment, Purchase]:
    """Stage a zero-amount SUCCESS payment and its purchase, then flush.

    The caller owns the transaction; a duplicate ``(paper, student)`` surfaces
    as ``IntegrityError`` from the flush.
    """

    payment = Payment(
        user_id=student_id,
        order_id=order_id,
        paper_id=paper_id,
        amount=0,
        currency=currency,
        status=PaymentStatus.SUCCESS,
        gateway_payment_id=gateway_payment_id,
        signature=signature,
    )
    db.add(payment)
    db.flush()
    purchase = Purchase(paper_id=paper_id, student_id=student_id, payment_id=payment.id, price=0)
    db.add(purchase)
    db.flush()
    return payment, purchase


__all__ = [
    "Grant",
    "PaymentStateError",
    "add_free_grant",
    "get_payment_by_order",
    "get_purchase",
    "has_access",
    "mark_payment_failed",
    "settle_payment",
    "transition_payment",
]
