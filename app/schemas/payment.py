"""Schemas for payment requests and responses."""
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.payment import PaymentStatus


class CreateOrderRequest(BaseModel):
    paper_id: int = Field(validation_alias=AliasChoices("paper_id", "paperId"), gt=0)


class OrderCreatedRead(BaseModel):
    order_id: str
    amount: int
    currency: str
    payment_id: int
    key_id: str | None = None


class VerifyPaymentRequest(BaseModel):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1, max_length=64)
    payment_id: str = Field(validation_alias=AliasChoices("payment_id", "paymentId"), min_length=1, max_length=64)
    signature: str = Field(min_length=1, max_length=128)
    paper_id: int = Field(validation_alias=AliasChoices("paper_id", "paperId"), gt=0)


class PurchaseRead(BaseModel):
    id: int
    paper_id: int
    student_id: int
    payment_id: int
    price: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentRead(BaseModel):
    id: int
    order_id: str
    gateway_payment_id: str | None
    paper_id: int | None
    amount: int
    currency: str
    status: PaymentStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SettlementRead(BaseModel):
    success: bool = True
    message: str
    already_settled: bool
    payment: PaymentRead
    purchase: PurchaseRead


class WebhookAck(BaseModel):
    received: bool = True
    status: str
    message: str


class FreeClaimRequest(BaseModel):
    paper_id: int = Field(validation_alias=AliasChoices("paper_id", "paperId"), gt=0)


class FreeClaimRead(BaseModel):
    success: bool = True
    message: str
    purchase: PurchaseRead


class PaymentHistoryRead(BaseModel):
    items: list[PaymentRead]
    total: int
    page: int
    limit: int
    pages: int


class AccessRead(BaseModel):
    paper_id: int
    has_access: bool
