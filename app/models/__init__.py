"""ORM models package."""
from .api_key import ApiKey
from .audit import AuditLog
from .base import Base
from .coupon import Coupon
from .organization import Organization, OrganizationMember
from .paper import Paper, PaperStatus
from .payment import Payment, PaymentStatus
from .purchase import Purchase
from .user import User, UserRole

__all__ = [
    "ApiKey",
    "AuditLog",
    "Base",
    "Coupon",
    "Organization",
    "OrganizationMember",
    "Paper",
    "PaperStatus",
    "Payment",
    "PaymentStatus",
    "Purchase",
    "User",
    "UserRole",
]
