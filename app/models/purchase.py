"""Purchase (entitlement) model."""
from sqlalchemy import CheckConstraint, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Purchase(Base):
    """Grants one student access to one paper.

    The ``(paper_id, student_id)`` unique constraint is the final arbiter when
    the client callback and the webhook race to grant the same access.
    """

    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("paper_id", "student_id", name="uq_purchases_paper_student"),
        CheckConstraint("price >= 0", name="ck_purchase_non_negative_price"),
    )

    paper_id: Mapped[int] = mapped_column(ForeignKey("papers.id"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payment = relationship("Payment", back_populates="purchases")
    paper = relationship("Paper")
