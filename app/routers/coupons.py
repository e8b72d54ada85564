"""Coupon endpoints for students and teachers."""
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from app.core.clients import get_mailer
from app.db import get_db
from app.models import User
from app.schemas.coupon import (
    CouponBatchRead,
    CouponPaperRead,
    CouponRedemptionRead,
    CouponValidateRequest,
    PaperCouponRead,
    StudentCouponRead,
)
from app.security import owner_scope, require_student, require_teacher
from app.services import coupons as coupons_service
from app.services.mailer import EmailSender
from app.utils.errors import api_error

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponRedemptionRead)
def validate_coupon(
    payload: CouponValidateRequest,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    """Redeem a coupon code for the authenticated student."""

    result = coupons_service.redeem(db, code=payload.code, student_id=user.id, paper_id=payload.paper_id)
    if not result.valid:
        raise api_error(status.HTTP_400_BAD_REQUEST, result.reason or "COUPON_INVALID", result.message)
    return CouponRedemptionRead(
        valid=True,
        message=result.message,
        paper=CouponPaperRead.model_validate(result.paper) if result.paper is not None else None,
    )


@router.get("/my-coupon/{paper_id}", response_model=StudentCouponRead)
def my_coupon(
    paper_id: int,
    user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    coupon = coupons_service.get_student_coupon(db, student_id=user.id, paper_id=paper_id)
    if coupon is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "COUPON_NOT_FOUND", "No coupon found for this paper.")
    return coupon


@router.get("/paper/{paper_id}", response_model=list[PaperCouponRead])
def paper_coupons(
    paper_id: int,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    return coupons_service.list_paper_coupons(db, paper_id=paper_id, teacher_id=owner_scope(user))


@router.post("/regenerate/{paper_id}", response_model=CouponBatchRead)
def regenerate_coupons(
    paper_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    mailer: EmailSender | None = Depends(get_mailer),
):
    batch = coupons_service.regenerate_coupons(db, paper_id=paper_id, teacher_id=owner_scope(user))
    if mailer is not None and batch.notifications:
        background_tasks.add_task(coupons_service.send_coupon_emails, mailer, batch.notifications)
    return CouponBatchRead.model_validate(batch)
