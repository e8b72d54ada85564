"""Schemas for paper publication."""
from pydantic import BaseModel, ConfigDict

from app.models.paper import PaperStatus
from app.schemas.coupon import CouponBatchRead


class PaperRead(BaseModel):
    id: int
    title: str
    subject: str | None
    standard: int | None
    price: int | None
    is_public: bool
    status: PaperStatus
    teacher_id: int

    model_config = ConfigDict(from_attributes=True)


class PaperPublishRead(BaseModel):
    paper: PaperRead
    coupons: CouponBatchRead | None = None
