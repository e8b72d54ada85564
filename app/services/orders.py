"""Order creation against the payment gateway."""
from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Protocol

from fastapi import status
from sqlalchemy.orm import Session

from app.config import RECEIPT_MAX_LENGTH, get_settings
from app.models import Paper, Payment, PaymentStatus
from app.services import entitlements
from app.services.psp_razorpay import GatewayError, GatewayOrder
from app.utils.audit import log_audit
from app.utils.errors import api_error

logger = logging.getLogger(__name__)


class OrderGateway(Protocol):
    key_id: str | None

    def create_order(self, *, amount: int, currency: str, receipt: str, notes: dict[str, str]) -> GatewayOrder:
        ...


@dataclass
class OrderCreated:
    order_id: str
    amount: int
    currency: str
    payment_id: int
    key_id: str | None


def build_receipt() -> str:
    """Short receipt reference; business identifiers travel in ``notes``."""

    return f"rcpt_{int(time.time() * 1000)}_{secrets.randbelow(1000)}"[:RECEIPT_MAX_LENGTH]


def get_purchasable_paper(db: Session, paper_id: int) -> Paper:
    paper = db.get(Paper, paper_id)
    if paper is None or not paper.is_purchasable:
        raise api_error(
            status.HTTP_404_NOT_FOUND,
            "PAPER_NOT_AVAILABLE",
            "Paper not found or not available for purchase.",
        )
    return paper


def create_order(db: Session, gateway: OrderGateway, *, student_id: int, paper_id: int) -> OrderCreated:
    """Open a gateway order for ``paper_id`` and record a PENDING payment."""

    settings = get_settings()
    paper = get_purchasable_paper(db, paper_id)

    # Advisory only: the purchases unique constraint settles real races.
    if entitlements.has_access(db, student_id=student_id, paper_id=paper.id):
        raise api_error(status.HTTP_409_CONFLICT, "PAPER_ALREADY_PURCHASED", "Paper already purchased.")

    amount = paper.price or 0
    if amount <= 0:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "PAPER_IS_FREE",
            "This paper is free; claim access instead of paying.",
        )

    receipt = build_receipt()
    try:
        order = gateway.create_order(
            amount=amount,
            currency=settings.PAYMENT_CURRENCY,
            receipt=receipt,
            notes={"paperId": str(paper.id), "studentId": str(student_id)},
        )
    except GatewayError:
        logger.exception(
            "Gateway order creation failed",
            extra={"paper_id": paper.id, "student_id": student_id},
        )
        raise api_error(
            status.HTTP_502_BAD_GATEWAY,
            "GATEWAY_UNAVAILABLE",
            "Could not reach the payment gateway. Please retry.",
        )

    payment = Payment(
        user_id=student_id,
        order_id=order.id,
        paper_id=paper.id,
        amount=amount,
        currency=order.currency,
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    db.flush()
    log_audit(
        db,
        actor=f"user:{student_id}",
        action="PAYMENT_ORDER_CREATED",
        entity="Payment",
        entity_id=payment.id,
        data={"order_id": order.id, "paper_id": paper.id, "amount": amount, "receipt": receipt},
    )
    db.commit()
    db.refresh(payment)
    logger.info(
        "Payment order created",
        extra={"payment_id": payment.id, "order_id": order.id, "paper_id": paper.id, "amount": amount},
    )
    return OrderCreated(
        order_id=order.id,
        amount=order.amount,
        currency=order.currency,
        payment_id=payment.id,
        key_id=getattr(gateway, "key_id", None),
    )


__all__ = ["OrderCreated", "OrderGateway", "build_receipt", "create_order", "get_purchasable_paper"]
