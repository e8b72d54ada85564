"""Schemas for coupon endpoints."""
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    paper_id: int = Field(validation_alias=AliasChoices("paper_id", "paperId"), gt=0)


class CouponPaperRead(BaseModel):
    id: int
    title: str
    price: int | None

    model_config = ConfigDict(from_attributes=True)


class CouponRedemptionRead(BaseModel):
    valid: bool
    message: str
    paper: CouponPaperRead | None = None


class CouponStudentRead(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str

    model_config = ConfigDict(from_attributes=True)


class CouponRead(BaseModel):
    id: int
    code: str
    paper_id: int
    student_id: int
    is_used: bool
    used_at: datetime | None
    expires_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StudentCouponRead(CouponRead):
    paper: CouponPaperRead


class PaperCouponRead(CouponRead):
    student: CouponStudentRead


class CouponBatchRead(BaseModel):
    total_coupons: int
    coupons: list[CouponRead] = Field(default_factory=list)
    error: str | None = None

    model_config = ConfigDict(from_attributes=True)
