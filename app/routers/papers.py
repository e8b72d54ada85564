"""Paper publication endpoint."""
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.core.clients import get_mailer
from app.db import get_db
from app.models import User
from app.schemas.coupon import CouponBatchRead
from app.schemas.paper import PaperPublishRead, PaperRead
from app.security import owner_scope, require_teacher
from app.services import coupons as coupons_service
from app.services import papers as papers_service
from app.services.mailer import EmailSender

router = APIRouter(prefix="/papers", tags=["papers"])


@router.post("/{paper_id}/publish", response_model=PaperPublishRead)
def publish_paper(
    paper_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    mailer: EmailSender | None = Depends(get_mailer),
):
    """Publish a paper and email coupons to the organization's students."""

    paper, batch = papers_service.publish_paper(db, paper_id=paper_id, teacher_id=owner_scope(user))
    if batch is not None and mailer is not None and batch.notifications:
        background_tasks.add_task(coupons_service.send_coupon_emails, mailer, batch.notifications)
    return PaperPublishRead(
        paper=PaperRead.model_validate(paper),
        coupons=CouponBatchRead.model_validate(batch) if batch is not None else None,
    )
