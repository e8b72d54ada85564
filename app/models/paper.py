"""Exam paper model."""
import enum

from sqlalchemy import Boolean, Enum as SqlEnum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class PaperStatus(str, enum.Enum):
    """Publication status of a paper."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class Paper(Base):
    """An exam paper sold to students.

    ``price`` is expressed in minor currency units; ``None`` means no price
    has been set yet.
    """

    __tablename__ = "papers"
    __table_args__ = (Index("ix_papers_status_public", "status", "is_public"),)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(120), nullable=True)
    standard: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[PaperStatus] = mapped_column(SqlEnum(PaperStatus), nullable=False, default=PaperStatus.DRAFT)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    teacher = relationship("User")

    @property
    def is_purchasable(self) -> bool:
        return self.is_public and self.status == PaperStatus.PUBLISHED
