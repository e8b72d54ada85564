"""Tests for coupon issuance, delivery and regeneration."""
import re

import pytest
import requests

from app.config import Settings
from app.models import Coupon, PaperStatus, UserRole
from app.services import coupons as coupons_service
from app.services.coupons import CouponNotice, generate_coupon_code, render_coupon_email, send_coupon_emails
from app.services.mailer import EmailSender, MailerError

CODE_PATTERN = re.compile(r"^[A-Z]{4}-[A-Z0-9]{8}$")


def test_code_prefix_from_title():
    assert generate_coupon_code("Math Final").startswith("MATH-")
    assert generate_coupon_code("9th std science").startswith("XTHX-")
    assert generate_coupon_code("ab").startswith("ABXX-")
    assert CODE_PATTERN.match(generate_coupon_code("Physics"))


def test_generate_for_active_students_only(db_session, teacher, make_user, make_paper, make_organization):
    paper = make_paper(title="Math Final")
    active = [make_user(first_name="Asha"), make_user(first_name="Ravi")]
    inactive = make_user()
    org = make_organization(
        (active[0], UserRole.STUDENT, True),
        (active[1], UserRole.STUDENT, True),
        (inactive, UserRole.STUDENT, False),
        (teacher, UserRole.TEACHER, True),
    )

    batch = coupons_service.generate_for_paper(db_session, paper_id=paper.id, organization_id=org.id, standard=10)

    assert batch.error is None
    assert batch.total_coupons == 2
    assert {c.student_id for c in batch.coupons} == {active[0].id, active[1].id}
    assert all(CODE_PATTERN.match(c.code) and c.code.startswith("MATH-") for c in batch.coupons)
    assert {n.email for n in batch.notifications} == {active[0].email, active[1].email}
    assert db_session.query(Coupon).filter_by(paper_id=paper.id).count() == 2


def test_second_batch_skips_students_with_coupons(db_session, make_user, make_paper, make_organization):
    paper = make_paper()
    first_student = make_user()
    org = make_organization((first_student, UserRole.STUDENT, True))
    coupons_service.generate_for_paper(db_session, paper_id=paper.id, organization_id=org.id, standard=None)

    again = coupons_service.generate_for_paper(db_session, paper_id=paper.id, organization_id=org.id, standard=None)

    assert again.error is None
    assert again.total_coupons == 0
    assert db_session.query(Coupon).count() == 1


def test_generation_failure_is_reported_not_raised(db_session, monkeypatch, make_user, make_paper, make_organization):
    paper = make_paper()
    org = make_organization((make_user(), UserRole.STUDENT, True))

    def _boom(*args, **kwargs):
        raise RuntimeError("code space exhausted")

    monkeypatch.setattr(coupons_service, "_insert_coupon", _boom)

    batch = coupons_service.generate_for_paper(db_session, paper_id=paper.id, organization_id=org.id, standard=10)

    assert batch.total_coupons == 0
    assert batch.coupons == []
    assert batch.error == "code space exhausted"
    assert db_session.query(Coupon).count() == 0


def test_code_collision_is_retried(db_session, monkeypatch, make_user, make_paper, make_organization):
    paper = make_paper()
    holder = make_user()
    db_session.add(Coupon(code="MATH-TAKEN000", paper_id=paper.id, student_id=holder.id, is_used=True))
    db_session.commit()
    student = make_user()
    org = make_organization((student, UserRole.STUDENT, True))
    codes = iter(["MATH-TAKEN000", "MATH-FRESH000"])
    monkeypatch.setattr(coupons_service, "generate_coupon_code", lambda title: next(codes))

    batch = coupons_service.generate_for_paper(db_session, paper_id=paper.id, organization_id=org.id, standard=10)

    assert batch.error is None
    assert [c.code for c in batch.coupons] == ["MATH-FRESH000"]


def test_email_failures_are_skipped():
    class FlakyMailer:
        def __init__(self):
            self.sent = []

        def send(self, *, to, subject, html):
            if to == "broken@example.com":
                raise MailerError("550 mailbox unavailable")
            self.sent.append(to)
            return True

    notices = [
        CouponNotice("broken@example.com", "A B", "Math", "Maths", 10, "Sunrise", "MATH-AAAAAAAA"),
        CouponNotice("ok@example.com", "C D", "Math", "Maths", 10, "Sunrise", "MATH-BBBBBBBB"),
    ]
    mailer = FlakyMailer()

    assert send_coupon_emails(mailer, notices) == 1
    assert mailer.sent == ["ok@example.com"]


def test_coupon_email_escapes_fields():
    notice = CouponNotice("s@example.com", "<Sam>", "Math & Logic", None, None, "Org", "MATH-AAAAAAAA")

    subject, html = render_coupon_email(notice)

    assert subject == "New Exam Available: Math & Logic"
    assert "&lt;Sam&gt;" in html
    assert "Math &amp; Logic" in html
    assert "MATH-AAAAAAAA" in html


def test_email_sender_posts_to_api(monkeypatch):
    sender = EmailSender(Settings(MAIL_API_KEY="brevo-key", MAIL_API_URL="https://mail.test/send"))
    captured = {}

    class _Response:
        def raise_for_status(self):
            return None

    def _post(url, json, headers, timeout):
        captured.update(url=url, json=json, headers=headers)
        return _Response()

    monkeypatch.setattr(sender._session, "post", _post)

    assert sender.send(to="s@example.com", subject="Hi", html="<p>x</p>") is True
    assert captured["url"] == "https://mail.test/send"
    assert captured["headers"]["api-key"] == "brevo-key"
    assert captured["json"]["to"] == [{"email": "s@example.com"}]


def test_email_sender_wraps_transport_errors(monkeypatch):
    sender = EmailSender(Settings(MAIL_API_KEY="brevo-key"))

    def _post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(sender._session, "post", _post)

    with pytest.raises(MailerError):
        sender.send(to="s@example.com", subject="Hi", html="<p>x</p>")


def test_email_sender_disabled_without_key():
    sender = EmailSender(Settings(MAIL_API_KEY=None))
    assert sender.send(to="s@example.com", subject="Hi", html="<p>x</p>") is False


@pytest.mark.anyio
async def test_teacher_lists_and_regenerates(
    client, db_session, teacher, teacher_headers, make_user, make_paper, make_organization, mailer
):
    paper = make_paper(status=PaperStatus.PUBLISHED)
    used_by, unused_by = make_user(), make_user()
    make_organization(
        (teacher, UserRole.TEACHER, True),
        (used_by, UserRole.STUDENT, True),
        (unused_by, UserRole.STUDENT, True),
    )
    db_session.add_all(
        [
            Coupon(code="MATH-USED0000", paper_id=paper.id, student_id=used_by.id, is_used=True),
            Coupon(code="MATH-OLD00000", paper_id=paper.id, student_id=unused_by.id, is_used=False),
        ]
    )
    db_session.commit()

    listing = await client.get(f"/coupons/paper/{paper.id}", headers=teacher_headers)
    assert listing.status_code == 200
    assert {row["code"] for row in listing.json()} == {"MATH-USED0000", "MATH-OLD00000"}

    regenerated = await client.post(f"/coupons/regenerate/{paper.id}", headers=teacher_headers)

    assert regenerated.status_code == 200, regenerated.text
    assert regenerated.json()["total_coupons"] == 1
    codes = {c.code for c in db_session.query(Coupon).filter_by(paper_id=paper.id)}
    assert "MATH-USED0000" in codes
    assert "MATH-OLD00000" not in codes
    assert len(codes) == 2
    assert [m["to"] for m in mailer.sent] == [unused_by.email]


@pytest.mark.anyio
async def test_other_teacher_cannot_see_coupons(client, make_user, headers_for, make_paper):
    paper = make_paper()
    stranger = make_user(UserRole.TEACHER)

    response = await client.get(f"/coupons/paper/{paper.id}", headers=headers_for(stranger))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PAPER_NOT_FOUND"


@pytest.mark.anyio
async def test_regenerate_requires_organization(client, teacher_headers, make_paper):
    paper = make_paper()

    response = await client.post(f"/coupons/regenerate/{paper.id}", headers=teacher_headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TEACHER_WITHOUT_ORGANIZATION"
