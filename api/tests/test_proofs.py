import base64
import json
import re
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from orderdesk import orders, proofs
from orderdesk.errors import Conflict, NotFound, UpstreamFailure, ValidationError
from orderdesk.models import AuditLog, Communication, Proof, ProofAnnotation
from orderdesk.utils import utcnow

from conftest import ADMIN_HEADERS

PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="
)

SIMPLE_PDF = (
    b"%PDF-1.4\n"
    b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
    b"2 0 obj\n<< /Type /Pages /Count 1 /Kids [3 0 R] >>\nendobj\n"
    b"3 0 obj\n<< /Type /Page /Parent 2 0 R /MediaBox [0 0 300 144] /Contents 4 0 R >>\nendobj\n"
    b"4 0 obj\n<< /Length 44 >>\nstream\nBT /F1 24 Tf 72 100 Td (Hello) Tj ET\nendstream\nendobj\n"
    b"xref\n0 5\n"
    b"0000000000 65535 f \n"
    b"0000000010 00000 n \n"
    b"0000000057 00000 n \n"
    b"0000000116 00000 n \n"
    b"0000000211 00000 n \n"
    b"trailer\n<< /Size 5 /Root 1 0 R >>\nstartxref\n300\n%%EOF\n"
)

SHIPPING = {"contact_name": "Jane Doe", "email": "jane@school.test", "school_name": "Lincoln High"}


@pytest.fixture
def order(session, admin):
    return orders.create_order(session, SHIPPING, [{"name": "Banner", "quantity": 1, "price": 40}], admin)


def upload_png(session, order, admin, **kwargs):
    return proofs.upload(session, order.id, PNG_BYTES, "front.png", "image/png", actor=admin, **kwargs)


def actions(session, action):
    return session.exec(select(AuditLog).where(AuditLog.action == action).order_by(AuditLog.id)).all()


def test_upload_stores_file_and_builds_review_token(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    assert proof.version == 1
    assert proof.status == "pending"
    assert proof.title == "front"
    assert mock_storage[proof.s3_key] == PNG_BYTES
    assert re.fullmatch(r"lincoln-high-front-v1-[A-Za-z0-9_-]{16}", proof.access_token)
    assert proofs.is_expired(proof) is False
    [entry] = actions(session, "proof.upload")
    assert entry.target_id == order.id
    assert json.loads(entry.details_json)["version"] == 1


def test_versions_are_never_reused(session, order, admin, mock_storage):
    first = upload_png(session, order, admin)
    second = upload_png(session, order, admin)
    assert (first.version, second.version) == (1, 2)
    second_key = second.s3_key
    proofs.delete(session, second.id, admin)
    assert second_key not in mock_storage
    third = upload_png(session, order, admin)
    assert third.version == 3
    proofs.delete(session, first.id, admin)
    proofs.delete(session, third.id, admin)
    assert upload_png(session, order, admin).version == 4
    assert len(actions(session, "proof.delete")) == 3


def test_upload_rejects_unsupported_files(session, order, admin, mock_storage, monkeypatch):
    with pytest.raises(ValidationError):
        proofs.upload(session, order.id, b"hello", "notes.txt", "text/plain", actor=admin)
    with pytest.raises(ValidationError):
        proofs.upload(session, order.id, b"", "front.png", "image/png", actor=admin)
    monkeypatch.setattr(proofs, "MAX_PROOF_BYTES", 10)
    with pytest.raises(ValidationError):
        upload_png(session, order, admin)
    assert mock_storage == {}
    with pytest.raises(NotFound):
        proofs.upload(session, 999, PNG_BYTES, "front.png", "image/png", actor=admin)


def test_storage_failure_leaves_no_proof(session, order, admin, monkeypatch):
    def broken_put(key, data, content_type="application/octet-stream"):
        raise UpstreamFailure("File storage is unavailable, please retry the upload")

    monkeypatch.setattr(proofs, "put_bytes", broken_put)
    with pytest.raises(UpstreamFailure):
        upload_png(session, order, admin)
    assert session.exec(select(Proof)).all() == []
    session.refresh(order)
    assert order.proof_version_seq == 1


def test_concurrent_uploads_get_distinct_versions(session, order, admin, mock_storage, test_engine, monkeypatch):
    stored_put = proofs.put_bytes
    versions = []
    started = []

    def put_during_other_upload(key, data, content_type="application/octet-stream"):
        if not started:
            started.append(key)
            with Session(test_engine) as other:
                versions.append(upload_png(other, order, admin).version)
        return stored_put(key, data, content_type=content_type)

    monkeypatch.setattr(proofs, "put_bytes", put_during_other_upload)
    first = upload_png(session, order, admin)
    versions.append(first.version)
    assert sorted(versions) == [1, 2]
    assert sorted(p.version for p in session.exec(select(Proof)).all()) == [1, 2]


def test_pdf_page_count_bounds_annotations(session, order, admin, mock_storage):
    proof = proofs.upload(session, order.id, SIMPLE_PDF, "layout.pdf", "application/pdf", actor=admin)
    assert proof.page_count == 1
    with pytest.raises(ValidationError):
        proofs.annotate(session, proof.id, "Jane", "pin", "Wrong page", 10, 10, page=2)
    annotation = proofs.annotate(session, proof.id, "Jane", "pin", "Right page", 10, 10, page=1)
    assert annotation.page == 1


def test_status_follows_feedback_and_approval(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    proofs.annotate(session, proof.id, "Jane", "pin", "Bigger logo", 12.5, 40)
    session.refresh(proof)
    assert proof.status == "feedback_received"
    proofs.annotate(session, proof.id, "Jane", "area", "Change color", 5, 5, width=20, height=10)
    approved = proofs.approve(session, proof.id, "Jane Doe", "Jane Doe")
    assert approved.status == "approved"
    assert approved.signed_off_at is not None
    open_count = [a for a in proofs.annotations_for(session, proof.id) if not a.resolved]
    assert len(open_count) == 2
    [entry] = actions(session, "proof.approve")
    assert json.loads(entry.details_json)["open_annotations"] == 2
    assert entry.actor_name == "Jane Doe"
    inbound = session.exec(select(Communication).where(Communication.direction == "inbound")).one()
    assert inbound.subject == f"Proof Approved - Order #{order.order_number}"


def test_annotation_validation(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    with pytest.raises(ValidationError):
        proofs.annotate(session, proof.id, "Jane", "area", "No size", 5, 5)
    with pytest.raises(ValidationError):
        proofs.annotate(session, proof.id, "Jane", "circle", "Odd shape", 5, 5)
    with pytest.raises(ValidationError):
        proofs.annotate(session, proof.id, "", "pin", "Anonymous", 5, 5)
    session.refresh(proof)
    assert proof.status == "pending"
    assert session.exec(select(ProofAnnotation)).all() == []


def test_approved_proof_is_closed(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    proofs.approve(session, proof.id, "Jane Doe", "Jane Doe")
    with pytest.raises(ValidationError):
        proofs.annotate(session, proof.id, "Jane", "pin", "Too late", 1, 1)
    with pytest.raises(Conflict):
        proofs.approve(session, proof.id, "Jane Doe", "Jane Doe")
    with pytest.raises(ValidationError):
        proofs.approve(session, upload_png(session, order, admin).id, "Jane Doe", "")


def test_resolve_is_idempotent(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    annotation = proofs.annotate(session, proof.id, "Jane", "pin", "Fix typo", 1, 1)
    first = proofs.resolve_annotation(session, annotation.id, None, admin)
    second = proofs.resolve_annotation(session, annotation.id, "Someone else", admin)
    assert first.resolved and second.resolved
    assert second.resolved_by == "Dana Admin"
    assert len(actions(session, "proof.annotation_resolve")) == 1
    session.refresh(proof)
    assert proof.status == "feedback_received"
    with pytest.raises(NotFound):
        proofs.resolve_annotation(session, 999, None, admin)


def test_expired_link_is_read_only(session, order, admin, mock_storage):
    proof = upload_png(session, order, admin)
    annotation = proofs.annotate(session, proof.id, "Jane", "pin", "Note", 1, 1)
    proof.expires_at = utcnow() - timedelta(days=1)
    session.add(proof)
    session.commit()
    view = proofs.get_by_token(session, proof.access_token)
    assert view["is_expired"] is True
    assert view["can_annotate"] is False and view["can_sign_off"] is False
    with pytest.raises(ValidationError):
        proofs.annotate_by_token(session, proof.access_token, author_name="Jane", type="pin", comment="Late", x=1, y=1)
    with pytest.raises(ValidationError):
        proofs.approve_by_token(session, proof.access_token, "Jane Doe", "Jane Doe")
    with pytest.raises(ValidationError):
        proofs.delete_annotation_by_token(session, proof.access_token, annotation.id)


def test_upload_notification_email(session, order, admin, mock_storage, sent_emails):
    proof = upload_png(session, order, admin, notify_customer=True)
    [message] = sent_emails
    assert message["to"] == "jane@school.test"
    assert message["subject"] == f"Order #{order.order_number} - Proof Ready for Review"
    assert f"/proof/{proof.access_token}" in message["text"]
    assert message["reply_to"].startswith("order-")
    [entry] = actions(session, "proof.upload")
    assert json.loads(entry.details_json)["email_sent"] is True
    assert actions(session, "order.email_send") == []
    outbound = session.exec(select(Communication).where(Communication.direction == "outbound")).one()
    assert outbound.order_id == order.id


def test_review_api_flow(client, mock_storage, sent_emails):
    order_id = client.post(
        "/api/admin/orders",
        json={"shipping_info": SHIPPING, "items": [{"name": "Banner", "quantity": 1}]},
        headers=ADMIN_HEADERS,
    ).json()["order"]["id"]
    resp = client.post(
        f"/api/admin/orders/{order_id}/proofs",
        files={"file": ("front.png", PNG_BYTES, "image/png")},
        data={"title": "Front banner"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201
    token = resp.json()["proof"]["access_token"]

    view = client.get(f"/api/proofs/review/{token}").json()
    assert view["can_annotate"] is True
    assert view["proof"]["title"] == "Front banner"
    assert [v["version"] for v in view["version_history"]] == [1]

    resp = client.post(
        f"/api/proofs/review/{token}/annotate",
        json={"author_name": "Jane", "type": "pin", "comment": "Looks good", "x": 10, "y": 10},
    )
    assert resp.status_code == 201
    annotation_id = resp.json()["annotation"]["id"]

    file_resp = client.get(f"/api/proofs/review/{token}/file")
    assert file_resp.status_code == 200
    assert file_resp.content == PNG_BYTES
    assert file_resp.headers["content-type"] == "image/png"

    resp = client.post(
        f"/api/admin/proofs/annotations/{annotation_id}/resolve", json={}, headers=ADMIN_HEADERS
    )
    assert resp.json()["annotation"]["resolved"] is True

    resp = client.post(
        f"/api/proofs/review/{token}/signoff",
        json={"signed_off_by": "Jane Doe", "signature": "Jane Doe"},
    )
    assert resp.status_code == 200
    assert resp.json()["proof"]["status"] == "approved"
    again = client.post(
        f"/api/proofs/review/{token}/signoff",
        json={"signed_off_by": "Jane Doe", "signature": "Jane Doe"},
    )
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "conflict"

    resp = client.delete(f"/api/proofs/review/{token}/annotations/{annotation_id}")
    assert resp.status_code == 400
    assert client.get("/api/proofs/review/not-a-token").status_code == 404
