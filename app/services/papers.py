"""Paper publication, the trigger for coupon issuance."""
import logging

from fastapi import status
from sqlalchemy.orm import Session

from app.models import Paper, PaperStatus
from app.services import coupons as coupons_service
from app.services.coupons import CouponBatch
from app.utils.audit import log_audit
from app.utils.errors import api_error

logger = logging.getLogger(__name__)


def publish_paper(db: Session, *, paper_id: int, teacher_id: int | None) -> tuple[Paper, CouponBatch | None]:
    """Publish the paper, then issue coupons to the teacher's organization.

    The publish is committed before coupons are generated; a coupon failure
    is reported in the returned batch and never undoes the publish.
    """

    paper = coupons_service.get_owned_paper(db, paper_id=paper_id, teacher_id=teacher_id)
    if paper.is_public and paper.price is None:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "PUBLIC_PAPER_REQUIRES_PRICE",
            "Public papers must have a price before publishing.",
        )

    paper.status = PaperStatus.PUBLISHED
    log_audit(
        db,
        actor=f"user:{teacher_id}" if teacher_id is not None else "admin",
        action="PAPER_PUBLISHED",
        entity="Paper",
        entity_id=paper.id,
        data={"is_public": paper.is_public, "price": paper.price},
    )
    db.commit()
    db.refresh(paper)
    logger.info("Paper published", extra={"paper_id": paper.id, "teacher_id": paper.teacher_id})

    if not paper.is_public:
        return paper, None

    membership = coupons_service.get_teacher_membership(db, paper.teacher_id)
    if membership is None:
        logger.info("Teacher has no organization; no coupons issued", extra={"paper_id": paper.id})
        return paper, None

    batch = coupons_service.generate_for_paper(
        db,
        paper_id=paper.id,
        organization_id=membership.organization_id,
        standard=paper.standard,
    )
    if batch.error:
        logger.warning("Paper published without coupons", extra={"paper_id": paper.id, "error": batch.error})
    return paper, batch
