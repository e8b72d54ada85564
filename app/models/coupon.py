"""Single-use paper coupons."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Coupon(Base):
    """A non-transferable code granting one student free access to one paper."""

    __tablename__ = "coupons"
    __table_args__ = (
        UniqueConstraint("paper_id", "student_id", name="uq_coupons_paper_student"),
    )

    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    paper_id: Mapped[int] = mapped_column(ForeignKey("papers.id"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    paper = relationship("Paper")
    student = relationship("User")
