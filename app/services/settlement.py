"""Settlement of gateway payments from the checkout callback and the webhook."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from fastapi import status
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Payment, PaymentStatus, Purchase
from app.services import entitlements
from app.services.entitlements import PaymentStateError
from app.services.psp_razorpay import GatewayError, GatewayPayment
from app.services.signatures import secret_fingerprint, verify_order_signature, verify_webhook_signature
from app.utils.audit import log_audit
from app.utils.errors import api_error

logger = logging.getLogger(__name__)

CAPTURED_EVENT = "payment.captured"


class PaymentLookup(Protocol):
    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        ...


@dataclass
class Settlement:
    payment: Payment
    purchase: Purchase
    already_settled: bool


@dataclass
class WebhookOutcome:
    status: str
    message: str
    order_id: str | None = None


def _current_settings():
    return get_settings()


def _payment_failed_error(payment: Payment):
    return api_error(
        status.HTTP_409_CONFLICT,
        "PAYMENT_FAILED",
        "This payment has already failed; start a new order.",
        {"order_id": payment.order_id},
    )


def verify_and_settle(
    db: Session,
    gateway: PaymentLookup,
    *,
    student_id: int,
    order_id: str,
    gateway_payment_id: str,
    signature: str,
    paper_id: int,
) -> Settlement:
    """Confirm a checkout reported by the browser and grant the paper.

    The signature is checked before anything else; nothing is read or written
    when it does not match.
    """

    settings = _current_settings()
    if not verify_order_signature(settings.RAZORPAY_KEY_SECRET, order_id, gateway_payment_id, signature):
        logger.warning(
            "Payment signature verification failed",
            extra={
                "order_id": order_id,
                "secret_fingerprint": secret_fingerprint(settings.RAZORPAY_KEY_SECRET),
            },
        )
        raise api_error(status.HTTP_400_BAD_REQUEST, "PAYMENT_SIGNATURE_INVALID", "Invalid payment signature.")

    payment = entitlements.get_payment_by_order(db, order_id)
    if payment is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "PAYMENT_NOT_FOUND", "Payment record not found.")
    if payment.user_id != student_id:
        raise api_error(status.HTTP_403_FORBIDDEN, "PAYMENT_FORBIDDEN", "This payment belongs to another user.")
    if payment.paper_id is not None and payment.paper_id != paper_id:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "PAPER_MISMATCH",
            "The order was created for a different paper.",
            {"order_paper_id": payment.paper_id, "paper_id": paper_id},
        )

    try:
        gateway_payment = gateway.fetch_payment(gateway_payment_id)
    except GatewayError:
        entitlements.mark_payment_failed(db, payment, reason="gateway_unavailable")
        raise api_error(
            status.HTTP_502_BAD_GATEWAY,
            "GATEWAY_UNAVAILABLE",
            "Could not confirm the payment with the gateway.",
        )

    if not gateway_payment.is_captured:
        entitlements.mark_payment_failed(db, payment, reason=f"gateway_status:{gateway_payment.status}")
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "PAYMENT_NOT_CAPTURED",
            "Payment was not captured by the gateway.",
            {"gateway_status": gateway_payment.status},
        )

    try:
        grant = entitlements.settle_payment(
            db,
            payment,
            paper_id=paper_id,
            student_id=student_id,
            source=f"user:{student_id}",
            gateway_payment_id=gateway_payment_id,
            signature=signature,
        )
    except PaymentStateError as exc:
        raise _payment_failed_error(exc.payment)

    return Settlement(payment=grant.payment, purchase=grant.purchase, already_settled=not grant.created)


def _parse_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _payment_entity(event: dict[str, Any]) -> dict[str, Any]:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return {}
    payment = payload.get("payment")
    if not isinstance(payment, dict):
        return {}
    entity = payment.get("entity")
    return entity if isinstance(entity, dict) else {}


def handle_webhook(db: Session, *, raw_body: bytes, signature_header: str | None) -> WebhookOutcome:
    """Process a gateway webhook delivery.

    Once the signature is valid this never raises for payload problems; the
    outcome status tells the caller (and the logs) what happened. Replays of
    the same delivery converge on the same Purchase.
    """

    settings = _current_settings()
    secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.error("Webhook received but no webhook secret is configured")
        raise api_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "WEBHOOK_NOT_CONFIGURED",
            "Webhook secret not configured.",
        )
    if not signature_header:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "WEBHOOK_SIGNATURE_MISSING",
            "X-Razorpay-Signature header is required.",
        )
    if not verify_webhook_signature(secret, raw_body, signature_header):
        logger.warning(
            "Webhook signature verification failed",
            extra={"secret_fingerprint": secret_fingerprint(secret), "body_length": len(raw_body)},
        )
        raise api_error(status.HTTP_400_BAD_REQUEST, "WEBHOOK_SIGNATURE_INVALID", "Invalid webhook signature.")

    try:
        event = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook body is not valid JSON", extra={"body_length": len(raw_body)})
        return WebhookOutcome(status="invalid_payload", message="Webhook body is not valid JSON")
    if not isinstance(event, dict):
        return WebhookOutcome(status="invalid_payload", message="Webhook body is not a JSON object")

    event_type = event.get("event") or ""
    logger.info("Webhook received", extra={"event_type": event_type})
    if event_type != CAPTURED_EVENT:
        return WebhookOutcome(status="ignored", message=f"Event {event_type or 'unknown'} ignored")

    entity = _payment_entity(event)
    order_id = entity.get("order_id")
    gateway_payment_id = entity.get("id")
    notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
    paper_id = _parse_int(notes.get("paperId"))

    if not order_id or paper_id is None:
        log_audit(
            db,
            actor="webhook",
            action="WEBHOOK_METADATA_MISSING",
            entity="Payment",
            entity_id=None,
            data={
                "event": event_type,
                "order_id": order_id,
                "gateway_payment_id": gateway_payment_id,
                "notes": notes,
            },
        )
        db.commit()
        logger.error(
            "Captured payment webhook lacks order or paper metadata",
            extra={"order_id": order_id, "gateway_payment_id": gateway_payment_id},
        )
        return WebhookOutcome(status="metadata_missing", message="Order or paper metadata missing", order_id=order_id)

    payment = entitlements.get_payment_by_order(db, order_id)
    if payment is None:
        logger.warning("Webhook for unknown order", extra={"order_id": order_id})
        return WebhookOutcome(status="payment_not_found", message="Payment record not found", order_id=order_id)

    if payment.status == PaymentStatus.SUCCESS:
        logger.info("Webhook for already settled payment", extra={"payment_id": payment.id})
        return WebhookOutcome(status="already_processed", message="Payment already processed", order_id=order_id)

    student_id = payment.user_id
    notes_student_id = _parse_int(notes.get("studentId"))
    if notes_student_id is not None and notes_student_id != student_id:
        logger.warning(
            "Webhook student metadata disagrees with the order owner",
            extra={"payment_id": payment.id, "notes_student_id": notes_student_id},
        )

    try:
        grant = entitlements.settle_payment(
            db,
            payment,
            paper_id=paper_id,
            student_id=student_id,
            source="webhook",
            gateway_payment_id=gateway_payment_id,
        )
    except PaymentStateError:
        log_audit(
            db,
            actor="webhook",
            action="WEBHOOK_CAPTURE_ON_FAILED_PAYMENT",
            entity="Payment",
            entity_id=payment.id,
            data={"order_id": order_id, "gateway_payment_id": gateway_payment_id},
        )
        db.commit()
        logger.error(
            "Captured webhook for a payment already marked failed",
            extra={"payment_id": payment.id, "order_id": order_id},
        )
        return WebhookOutcome(
            status="payment_failed",
            message="Payment was already marked failed; manual reconciliation required",
            order_id=order_id,
        )

    if not grant.created:
        return WebhookOutcome(status="purchase_exists", message="Purchase already exists", order_id=order_id)
    return WebhookOutcome(status="processed", message="Payment processed", order_id=order_id)


__all__ = ["CAPTURED_EVENT", "PaymentLookup", "Settlement", "WebhookOutcome", "handle_webhook", "verify_and_settle"]
