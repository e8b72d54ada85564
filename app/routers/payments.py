"""Payment endpoints: checkout orders, verification, webhook and free access."""
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.core.clients import get_gateway
from app.db import get_db
from app.models import User
from app.schemas.payment import (
    AccessRead,
    CreateOrderRequest,
    FreeClaimRead,
    FreeClaimRequest,
    OrderCreatedRead,
    PaymentHistoryRead,
    PaymentRead,
    PurchaseRead,
    SettlementRead,
    VerifyPaymentRequest,
    WebhookAck,
)
from app.security import require_student
from app.services import entitlements, orders, settlement
from app.services import payments as payments_service
from app.services.psp_razorpay import RazorpayClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


@router.post("/create-order", response_model=OrderCreatedRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: CreateOrderRequest,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
):
    created = orders.create_order(db, gateway, student_id=user.id, paper_id=payload.paper_id)
    return OrderCreatedRead(
        order_id=created.order_id,
        amount=created.amount,
        currency=created.currency,
        payment_id=created.payment_id,
        key_id=created.key_id,
    )


@router.post("/verify", response_model=SettlementRead)
def verify_payment(
    payload: VerifyPaymentRequest,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
):
    """Confirm a completed checkout and grant access to the paper."""

    result = settlement.verify_and_settle(
        db,
        gateway,
        student_id=user.id,
        order_id=payload.order_id,
        gateway_payment_id=payload.payment_id,
        signature=payload.signature,
        paper_id=payload.paper_id,
    )
    message = "Payment already verified" if result.already_settled else "Payment verified successfully"
    return SettlementRead(
        message=message,
        already_settled=result.already_settled,
        payment=PaymentRead.model_validate(result.payment),
        purchase=PurchaseRead.model_validate(result.purchase),
    )


@router.post("/webhook", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    outcome = settlement.handle_webhook(
        db,
        raw_body=raw_body,
        signature_header=request.headers.get("X-Razorpay-Signature"),
    )
    logger.info(
        "Payment webhook handled",
        extra={"status": outcome.status, "order_id": outcome.order_id},
    )
    return WebhookAck(status=outcome.status, message=outcome.message)


@router.post("/claim-free", response_model=FreeClaimRead)
def claim_free(
    payload: FreeClaimRequest,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    claim = payments_service.claim_free_access(db, student_id=user.id, paper_id=payload.paper_id)
    return FreeClaimRead(message=claim.message, purchase=PurchaseRead.model_validate(claim.purchase))


@router.get("/history", response_model=PaymentHistoryRead)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    result = payments_service.payment_history(db, student_id=user.id, page=page, limit=limit)
    return PaymentHistoryRead(
        items=[PaymentRead.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/verify-access/{paper_id}", response_model=AccessRead)
def verify_access(
    paper_id: int,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    return AccessRead(
        paper_id=paper_id,
        has_access=entitlements.has_access(db, student_id=user.id, paper_id=paper_id),
    )
