"""FastAPI dependencies exposing the outbound clients owned by the lifespan."""
from __future__ import annotations

from fastapi import Request, status

from app.services.mailer import EmailSender
from app.services.psp_razorpay import RazorpayClient
from app.utils.errors import api_error


def get_gateway(request: Request) -> RazorpayClient:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise api_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "GATEWAY_NOT_CONFIGURED",
            "Payment gateway is not configured.",
        )
    return gateway


def get_mailer(request: Request) -> EmailSender | None:
    return getattr(request.app.state, "mailer", None)


__all__ = ["get_gateway", "get_mailer"]
