"""Tests for the gateway webhook."""
from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from app.models import AuditLog, Payment, PaymentStatus, Purchase
from app.services import settlement
from app.services.signatures import compute_order_signature, compute_webhook_signature

WEBHOOK_SECRET = "test-webhook-secret"


def _captured_event(order_id: str | None, *, paper_id=None, student_id=None, payment_id="pay_hook_1") -> bytes:
    notes = {}
    if paper_id is not None:
        notes["paperId"] = str(paper_id)
    if student_id is not None:
        notes["studentId"] = str(student_id)
    event = {
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "status": "captured",
                    "amount": 500,
                    "notes": notes,
                }
            }
        },
    }
    return json.dumps(event).encode("utf-8")


async def _post_webhook(client, body: bytes, signature: str | None = "auto"):
    headers = {"Content-Type": "application/json"}
    if signature == "auto":
        signature = compute_webhook_signature(WEBHOOK_SECRET, body)
    if signature is not None:
        headers["X-Razorpay-Signature"] = signature
    return await client.post("/payment/webhook", content=body, headers=headers)


def _pending(db_session, student, paper, order_id="order_hook_1", amount=500) -> Payment:
    payment = Payment(
        user_id=student.id, order_id=order_id, paper_id=paper.id, amount=amount, status=PaymentStatus.PENDING
    )
    db_session.add(payment)
    db_session.commit()
    db_session.refresh(payment)
    return payment


@pytest.mark.anyio
async def test_captured_webhook_settles_and_replay_is_noop(client, db_session, student, make_paper):
    paper = make_paper(price=500)
    payment = _pending(db_session, student, paper)
    body = _captured_event(payment.order_id, paper_id=paper.id, student_id=student.id)

    first = await _post_webhook(client, body)
    second = await _post_webhook(client, body)

    assert first.status_code == 200
    assert first.json() == {"received": True, "status": "processed", "message": "Payment processed"}
    assert second.status_code == 200
    assert second.json()["status"] == "already_processed"

    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.gateway_payment_id == "pay_hook_1"
    purchase = db_session.query(Purchase).filter_by(paper_id=paper.id, student_id=student.id).one()
    assert purchase.price == 500


@pytest.mark.anyio
async def test_client_verify_then_webhook_converge(client, db_session, student, student_headers, make_paper):
    paper = make_paper(price=500)
    payment = _pending(db_session, student, paper)

    verify = await client.post(
        "/payment/verify",
        json={
            "order_id": payment.order_id,
            "payment_id": "pay_hook_1",
            "signature": compute_order_signature("test-key-secret", payment.order_id, "pay_hook_1"),
            "paper_id": paper.id,
        },
        headers=student_headers,
    )
    hook = await _post_webhook(client, _captured_event(payment.order_id, paper_id=paper.id, student_id=student.id))

    assert verify.status_code == 200
    assert hook.status_code == 200
    assert hook.json()["status"] == "already_processed"
    assert db_session.query(Purchase).count() == 1


@pytest.mark.anyio
async def test_webhook_before_client_verify(client, db_session, student, student_headers, make_paper):
    paper = make_paper(price=500)
    payment = _pending(db_session, student, paper)

    hook = await _post_webhook(client, _captured_event(payment.order_id, paper_id=paper.id, student_id=student.id))
    verify = await client.post(
        "/payment/verify",
        json={
            "order_id": payment.order_id,
            "payment_id": "pay_hook_1",
            "signature": compute_order_signature("test-key-secret", payment.order_id, "pay_hook_1"),
            "paper_id": paper.id,
        },
        headers=student_headers,
    )

    assert hook.json()["status"] == "processed"
    assert verify.status_code == 200
    assert verify.json()["already_settled"] is True
    assert db_session.query(Purchase).count() == 1


@pytest.mark.anyio
async def test_missing_signature_header(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)

    response = await _post_webhook(client, _captured_event(payment.order_id, paper_id=paper.id), signature=None)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_MISSING"


@pytest.mark.anyio
async def test_invalid_signature_changes_nothing(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)
    body = _captured_event(payment.order_id, paper_id=paper.id)

    response = await _post_webhook(client, body, signature=compute_webhook_signature("wrong-secret", body))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_INVALID"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING
    assert db_session.query(Purchase).count() == 0


@pytest.mark.anyio
async def test_latin1_signature_header_rejected(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)
    body = _captured_event(payment.order_id, paper_id=paper.id)

    response = await client.post(
        "/payment/webhook",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": b"\xe9abc"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_INVALID"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.anyio
async def test_order_secret_does_not_sign_webhooks(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)
    body = _captured_event(payment.order_id, paper_id=paper.id)

    response = await _post_webhook(client, body, signature=compute_webhook_signature("test-key-secret", body))

    assert response.status_code == 400


@pytest.mark.anyio
async def test_other_events_are_ignored(client, db_session):
    body = json.dumps({"event": "payment.failed", "payload": {}}).encode()

    response = await _post_webhook(client, body)

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


@pytest.mark.anyio
async def test_unparseable_body_is_acknowledged(client):
    response = await _post_webhook(client, b"not-json")

    assert response.status_code == 200
    assert response.json()["status"] == "invalid_payload"


@pytest.mark.anyio
async def test_metadata_missing_is_audited(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)

    response = await _post_webhook(client, _captured_event(payment.order_id))

    assert response.status_code == 200
    assert response.json()["status"] == "metadata_missing"
    assert db_session.query(AuditLog).filter_by(action="WEBHOOK_METADATA_MISSING").count() == 1
    assert db_session.query(Purchase).count() == 0


@pytest.mark.anyio
async def test_unknown_order(client, make_paper):
    paper = make_paper()

    response = await _post_webhook(client, _captured_event("order_nope", paper_id=paper.id))

    assert response.status_code == 200
    assert response.json()["status"] == "payment_not_found"


@pytest.mark.anyio
async def test_webhook_on_failed_payment_does_not_grant(client, db_session, student, make_paper):
    paper = make_paper()
    payment = _pending(db_session, student, paper)
    payment.status = PaymentStatus.FAILED
    db_session.commit()

    response = await _post_webhook(client, _captured_event(payment.order_id, paper_id=paper.id))

    assert response.json()["status"] == "payment_failed"
    assert "manual reconciliation" in response.json()["message"]
    assert db_session.query(AuditLog).filter_by(action="WEBHOOK_CAPTURE_ON_FAILED_PAYMENT").count() == 1
    assert db_session.query(Purchase).count() == 0


@pytest.mark.anyio
async def test_webhook_with_existing_purchase(client, db_session, student, make_paper):
    paper = make_paper()
    earlier = Payment(user_id=student.id, order_id="FREE-abc", paper_id=paper.id, amount=0, status=PaymentStatus.SUCCESS)
    db_session.add(earlier)
    db_session.flush()
    db_session.add(Purchase(paper_id=paper.id, student_id=student.id, payment_id=earlier.id, price=0))
    db_session.commit()
    payment = _pending(db_session, student, paper)

    response = await _post_webhook(client, _captured_event(payment.order_id, paper_id=paper.id))

    assert response.json()["status"] == "purchase_exists"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCESS
    assert db_session.query(Purchase).count() == 1


@pytest.mark.anyio
async def test_webhook_without_configured_secret(client, monkeypatch):
    monkeypatch.setattr(
        settlement,
        "get_settings",
        lambda: SimpleNamespace(RAZORPAY_WEBHOOK_SECRET=None, RAZORPAY_KEY_SECRET="x"),
    )

    response = await _post_webhook(client, b"{}")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "WEBHOOK_NOT_CONFIGURED"
