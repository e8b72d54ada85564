"""Razorpay SDK wrapper for order creation and payment lookups."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

CAPTURED = "captured"


class GatewayError(RuntimeError):
    """Raised when the payment gateway cannot be reached or rejects a call."""


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    status: str
    order_id: str | None = None

    @property
    def is_captured(self) -> bool:
        return self.status == CAPTURED


class RazorpayClient:
    """Wrapper around the Razorpay Python SDK to isolate PSP concerns.

    Instances are built once by the application lifespan and injected into
    the order and settlement services; tests substitute a fake with the same
    two methods.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialise the SDK client; fails when the key pair is missing."""

        import razorpay

        self.settings = settings
        if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
            raise RuntimeError(
                "Razorpay credentials are missing; configure RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self.key_id = settings.RAZORPAY_KEY_ID
        self._timeout = settings.GATEWAY_TIMEOUT_SECONDS
        self._client = razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))
        self._sdk_errors: tuple[type[Exception], ...] = (
            requests.RequestException,
            razorpay.errors.BadRequestError,
            razorpay.errors.GatewayError,
            razorpay.errors.ServerError,
        )

    @classmethod
    def from_env(cls) -> "RazorpayClient":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def create_order(
        self, *, amount: int, currency: str, receipt: str, notes: Mapping[str, str]
    ) -> GatewayOrder:
        """Open an order for ``amount`` minor units; ``notes`` is echoed in webhooks."""

        try:
            order: dict[str, Any] = self._client.order.create(
                data={
                    "amount": amount,
                    "currency": currency,
                    "receipt": receipt,
                    "notes": dict(notes),
                },
                timeout=self._timeout,
            )
        except self._sdk_errors as exc:
            logger.warning("Razorpay order creation failed", extra={"receipt": receipt, "error": str(exc)})
            raise GatewayError(str(exc)) from exc
        return GatewayOrder(id=order["id"], amount=int(order["amount"]), currency=order["currency"])

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Return the authoritative status of a gateway payment."""

        try:
            payment: dict[str, Any] = self._client.payment.fetch(payment_id, timeout=self._timeout)
        except self._sdk_errors as exc:
            logger.warning(
                "Razorpay payment fetch failed", extra={"gateway_payment_id": payment_id, "error": str(exc)}
            )
            raise GatewayError(str(exc)) from exc
        return GatewayPayment(
            id=payment.get("id", payment_id),
            status=payment.get("status", ""),
            order_id=payment.get("order_id"),
        )


__all__ = ["CAPTURED", "GatewayError", "GatewayOrder", "GatewayPayment", "RazorpayClient"]
