"""Payment model definitions."""
import enum

from sqlalchemy import CheckConstraint, Enum as SqlEnum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PaymentStatus(str, enum.Enum):
    """Possible statuses for a payment.

    Only ``PENDING -> SUCCESS`` and ``PENDING -> FAILED`` are legal;
    ``SUCCESS`` is terminal.
    """

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Payment(Base):
    """One gateway order attempt, or one free grant (coupon / free claim)."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_non_negative_amount"),
        Index("ix_payments_created_at", "created_at"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paper_id: Mapped[int | None] = mapped_column(ForeignKey("papers.id"), nullable=True, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[PaymentStatus] = mapped_column(SqlEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    signature: Mapped[str | None] = mapped_column(String(128), nullable=True)

    purchases = relationship("Purchase", back_populates="payment")
