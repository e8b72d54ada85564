"""Coupon issuance, delivery and redemption.

A coupon binds one code to one (paper, student) pair. Redemption flips
``is_used`` with a conditional UPDATE so two concurrent redemptions of the
same code cannot both grant access.
"""
from __future__ import annotations

import html
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from fastapi import status
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Coupon, OrganizationMember, Paper, UserRole
from app.services import entitlements
from app.services.mailer import MailerError
from app.utils.audit import log_audit
from app.utils.errors import api_error
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_PREFIX_LENGTH = 4
CODE_SUFFIX_LENGTH = 8


class Mailer(Protocol):
    def send(self, *, to: str, subject: str, html: str) -> bool:
        ...


@dataclass
class CouponNotice:
    email: str
    student_name: str
    paper_title: str
    subject: str | None
    standard: int | None
    organization_name: str
    code: str


@dataclass
class CouponBatch:
    total_coupons: int
    coupons: list[Coupon] = field(default_factory=list)
    notifications: list[CouponNotice] = field(default_factory=list)
    error: str | None = None


@dataclass
class CouponRedemption:
    valid: bool
    reason: str | None
    message: str
    paper: Paper | None = None


def generate_coupon_code(title: str) -> str:
    """Return ``<PREFIX>-<8 random chars>``; the prefix comes from the title."""

    prefix = "".join(ch if "A" <= ch <= "Z" else "X" for ch in title[:CODE_PREFIX_LENGTH].upper())
    prefix = prefix.ljust(CODE_PREFIX_LENGTH, "X")
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{prefix}-{suffix}"


def _insert_coupon(db: Session, *, paper: Paper, student_id: int, expires_at: datetime | None) -> Coupon:
    attempts = max(get_settings().COUPON_CODE_ATTEMPTS, 1)
    for _ in range(attempts):
        coupon = Coupon(
            code=generate_coupon_code(paper.title),
            paper_id=paper.id,
            student_id=student_id,
            is_used=False,
            expires_at=expires_at,
        )
        try:
            with db.begin_nested():
                db.add(coupon)
                db.flush()
        except IntegrityError:
            logger.info("Coupon code collision; retrying", extra={"paper_id": paper.id, "student_id": student_id})
            continue
        return coupon
    raise RuntimeError(f"Could not allocate a unique coupon code after {attempts} attempts")


def generate_for_paper(db: Session, *, paper_id: int, organization_id: int, standard: int | None) -> CouponBatch:
    """Issue one coupon per active student of the organization.

    Never raises: a failure rolls the batch back and is reported through
    ``CouponBatch.error`` so publishing is not blocked.
    """

    settings = get_settings()
    try:
        with db.begin_nested():
            paper = db.get(Paper, paper_id)
            if paper is None:
                raise LookupError(f"Paper {paper_id} not found")

            members = db.scalars(
                select(OrganizationMember)
                .where(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.role == UserRole.STUDENT,
                    OrganizationMember.is_active.is_(True),
                )
                .order_by(OrganizationMember.id)
            ).all()
            already_issued = set(db.scalars(select(Coupon.student_id).where(Coupon.paper_id == paper.id)))

            expires_at = None
            if settings.COUPON_VALID_DAYS:
                expires_at = utcnow() + timedelta(days=settings.COUPON_VALID_DAYS)

            coupons: list[Coupon] = []
            notifications: list[CouponNotice] = []
            for member in members:
                if member.user_id in already_issued:
                    continue
                coupon = _insert_coupon(db, paper=paper, student_id=member.user_id, expires_at=expires_at)
                coupons.append(coupon)
                notifications.append(
                    CouponNotice(
                        email=member.user.email,
                        student_name=member.user.full_name,
                        paper_title=paper.title,
                        subject=paper.subject,
                        standard=standard,
                        organization_name=member.organization.name,
                        code=coupon.code,
                    )
                )

            log_audit(
                db,
                actor="system",
                action="COUPONS_GENERATED",
                entity="Paper",
                entity_id=paper.id,
                data={"organization_id": organization_id, "count": len(coupons), "skipped": len(already_issued)},
            )
    except Exception as exc:
        logger.exception(
            "Coupon generation failed",
            extra={"paper_id": paper_id, "organization_id": organization_id},
        )
        return CouponBatch(total_coupons=0, coupons=[], notifications=[], error=str(exc))

    db.commit()
    logger.info(
        "Coupons generated",
        extra={"paper_id": paper_id, "organization_id": organization_id, "count": len(coupons)},
    )
    return CouponBatch(total_coupons=len(coupons), coupons=coupons, notifications=notifications)


def render_coupon_email(notice: CouponNotice) -> tuple[str, str]:
    """Return ``(subject, html)`` for a coupon notice."""

    esc = html.escape
    details = [f"<li><strong>Title:</strong> {esc(notice.paper_title)}</li>"]
    if notice.subject:
        details.append(f"<li><strong>Subject:</strong> {esc(notice.subject)}</li>")
    if notice.standard is not None:
        details.append(f"<li><strong>Standard:</strong> {notice.standard}</li>")

    detail_items = "".join(details)
    body = f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>New Exam Available!</h2>
    <p>Dear {esc(notice.student_name or notice.email)},</p>
    <p>A new exam has been published by your teacher at <strong>{esc(notice.organization_name)}</strong>.</p>
    <ul>{detail_items}</ul>
    <p>Your coupon code:</p>
    <p style="font-size: 24px; font-weight: bold; letter-spacing: 2px;">{esc(notice.code)}</p>
    <ul>
      <li>This code is unique to you and can only be used once.</li>
      <li>Use it to access the exam for free.</li>
      <li>Do not share this code with others.</li>
    </ul>
    <p>Best regards,<br><strong>{esc(notice.organization_name)}</strong></p>
    <p style="color: #666; font-size: 12px;">This is an automated email. Please do not reply.</p>
  </div>
</body>
</html>
"""
    return f"New Exam Available: {notice.paper_title}", body


def send_coupon_emails(mailer: Mailer, notices: list[CouponNotice]) -> int:
    """Deliver coupon emails; failures are logged and skipped. Returns the sent count."""

    sent = 0
    for notice in notices:
        subject, body = render_coupon_email(notice)
        try:
            if mailer.send(to=notice.email, subject=subject, html=body):
                sent += 1
        except MailerError:
            logger.warning(
                "Coupon email delivery failed",
                extra={"paper_title": notice.paper_title},
                exc_info=True,
            )
    return sent


def _consume_coupon_atomic(db: Session, *, coupon_id: int, now: datetime) -> bool:
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.is_used.is_(False))
        .values(is_used=True, used_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def _already_used(coupon: Coupon) -> CouponRedemption:
    used_on = ensure_utc(coupon.used_at).date().isoformat() if coupon.used_at else "an earlier date"
    return CouponRedemption(
        valid=False,
        reason="COUPON_ALREADY_USED",
        message=f"Coupon code already used on {used_on}",
    )


def _already_purchased(paper: Paper | None) -> CouponRedemption:
    return CouponRedemption(
        valid=False,
        reason="ALREADY_PURCHASED",
        message="You already have access to this paper",
        paper=paper,
    )


def redeem(db: Session, *, code: str, student_id: int, paper_id: int) -> CouponRedemption:
    """Validate ``code`` for the student and paper and grant free access.

    User errors come back as ``CouponRedemption(valid=False)`` with a reason;
    nothing is written for them.
    """

    normalized = code.strip().upper()
    coupon = db.scalars(
        select(Coupon).where(Coupon.code == normalized).execution_options(populate_existing=True)
    ).first()

    if coupon is None:
        return CouponRedemption(valid=False, reason="COUPON_NOT_FOUND", message="Invalid coupon code")
    if coupon.paper_id != paper_id:
        return CouponRedemption(
            valid=False, reason="COUPON_WRONG_PAPER", message="This coupon is not valid for this paper"
        )
    if coupon.student_id != student_id:
        logger.warning(
            "Coupon presented by a different student",
            extra={"coupon_id": coupon.id, "student_id": student_id},
        )
        return CouponRedemption(
            valid=False, reason="COUPON_NOT_ASSIGNED", message="This coupon is not assigned to you"
        )
    if coupon.is_used:
        return _already_used(coupon)
    now = utcnow()
    if coupon.expires_at is not None and ensure_utc(coupon.expires_at) < now:
        return CouponRedemption(valid=False, reason="COUPON_EXPIRED", message="Coupon code has expired")

    paper = db.get(Paper, paper_id)
    savepoint = db.begin_nested()
    try:
        if entitlements.has_access(db, student_id=student_id, paper_id=paper_id):
            savepoint.rollback()
            db.commit()
            return _already_purchased(paper)

        if not _consume_coupon_atomic(db, coupon_id=coupon.id, now=now):
            savepoint.rollback()
            db.commit()
            db.refresh(coupon)
            logger.info("Coupon redemption lost a concurrent race", extra={"coupon_id": coupon.id})
            return _already_used(coupon)

        payment, purchase = entitlements.add_free_grant(
            db,
            student_id=student_id,
            paper_id=paper_id,
            order_id=f"COUPON_{coupon.id}",
            currency=get_settings().PAYMENT_CURRENCY,
        )
        log_audit(
            db,
            actor=f"user:{student_id}",
            action="COUPON_REDEEMED",
            entity="Coupon",
            entity_id=coupon.id,
            data={
                "coupon_code": coupon.code,
                "paper_id": paper_id,
                "payment_id": payment.id,
                "purchase_id": purchase.id,
            },
        )
        savepoint.commit()
    except IntegrityError:
        savepoint.rollback()
        db.commit()
        if entitlements.has_access(db, student_id=student_id, paper_id=paper_id):
            return _already_purchased(paper)
        raise

    db.commit()
    db.refresh(coupon)
    logger.info(
        "Coupon redeemed",
        extra={"coupon_id": coupon.id, "paper_id": paper_id, "student_id": student_id},
    )
    return CouponRedemption(
        valid=True,
        reason=None,
        message="Coupon applied successfully! You now have access to this paper.",
        paper=paper,
    )


def get_student_coupon(db: Session, *, student_id: int, paper_id: int) -> Coupon | None:
    return db.scalars(
        select(Coupon).where(Coupon.paper_id == paper_id, Coupon.student_id == student_id)
    ).first()


def get_owned_paper(db: Session, *, paper_id: int, teacher_id: int | None) -> Paper:
    """Return the paper, enforcing ownership unless ``teacher_id`` is ``None``."""

    stmt = select(Paper).where(Paper.id == paper_id)
    if teacher_id is not None:
        stmt = stmt.where(Paper.teacher_id == teacher_id)
    paper = db.scalars(stmt).first()
    if paper is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "PAPER_NOT_FOUND", "Paper not found.")
    return paper


def list_paper_coupons(db: Session, *, paper_id: int, teacher_id: int | None) -> list[Coupon]:
    paper = get_owned_paper(db, paper_id=paper_id, teacher_id=teacher_id)
    stmt = (
        select(Coupon)
        .where(Coupon.paper_id == paper.id)
        .order_by(Coupon.created_at.desc(), Coupon.id.desc())
    )
    return list(db.scalars(stmt).all())


def get_teacher_membership(db: Session, teacher_id: int) -> OrganizationMember | None:
    return db.scalars(
        select(OrganizationMember)
        .where(OrganizationMember.user_id == teacher_id, OrganizationMember.is_active.is_(True))
        .order_by(OrganizationMember.id)
    ).first()


def regenerate_coupons(db: Session, *, paper_id: int, teacher_id: int | None) -> CouponBatch:
    """Drop unused coupons for the paper and issue a fresh batch."""

    paper = get_owned_paper(db, paper_id=paper_id, teacher_id=teacher_id)
    membership = get_teacher_membership(db, paper.teacher_id)
    if membership is None:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "TEACHER_WITHOUT_ORGANIZATION",
            "Teacher is not part of any organization.",
        )

    result = db.execute(delete(Coupon).where(Coupon.paper_id == paper.id, Coupon.is_used.is_(False)))
    log_audit(
        db,
        actor=f"user:{teacher_id}" if teacher_id is not None else "admin",
        action="COUPONS_DELETED_UNUSED",
        entity="Paper",
        entity_id=paper.id,
        data={"deleted": result.rowcount},
    )
    db.commit()
    return generate_for_paper(
        db,
        paper_id=paper.id,
        organization_id=membership.organization_id,
        standard=paper.standard,
    )


__all__ = [
    "CouponBatch",
    "CouponNotice",
    "CouponRedemption",
    "generate_coupon_code",
    "generate_for_paper",
    "get_owned_paper",
    "get_student_coupon",
    "get_teacher_membership",
    "list_paper_coupons",
    "redeem",
    "regenerate_coupons",
    "render_coupon_email",
    "send_coupon_emails",
]
