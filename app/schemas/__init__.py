"""Schema package exports."""
from .coupon import (
    CouponBatchRead,
    CouponPaperRead,
    CouponRead,
    CouponRedemptionRead,
    CouponValidateRequest,
    PaperCouponRead,
    StudentCouponRead,
)
from .paper import PaperPublishRead, PaperRead
from .payment import (
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

__all__ = [
    "AccessRead",
    "CouponBatchRead",
    "CouponPaperRead",
    "CouponRead",
    "CouponRedemptionRead",
    "CouponValidateRequest",
    "CreateOrderRequest",
    "FreeClaimRead",
    "FreeClaimRequest",
    "OrderCreatedRead",
    "PaperCouponRead",
    "PaperPublishRead",
    "PaperRead",
    "PaymentHistoryRead",
    "PaymentRead",
    "PurchaseRead",
    "SettlementRead",
    "StudentCouponRead",
    "VerifyPaymentRequest",
    "WebhookAck",
]
