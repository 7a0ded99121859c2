from conftest import ADMIN_HEADERS
from test_proofs import PNG_BYTES


def unread_feedback(client, order_id):
    counts = client.get("/api/admin/notifications/unread-counts", headers=ADMIN_HEADERS).json()["counts"]
    return counts.get(str(order_id), {}).get("feedback", 0)


def test_order_to_print_workflow(client, mock_storage, sent_emails):
    resp = client.post(
        "/api/admin/orders",
        json={
            "shipping_info": {"contact_name": "Jane Doe", "email": "jane@school.test", "school_name": "Lincoln High"},
            "items": [{"name": "Yearbook banner", "quantity": 1, "price": 120}],
            "order_number": "1001",
        },
        headers=ADMIN_HEADERS,
    )
    order = resp.json()["order"]
    assert order["status"] == "new"
    order_id = order["id"]

    resp = client.post(
        f"/api/admin/orders/{order_id}/proofs",
        files={"file": ("banner.png", PNG_BYTES, "image/png")},
        headers=ADMIN_HEADERS,
    )
    proof = resp.json()["proof"]
    assert (proof["version"], proof["status"]) == (1, "pending")
    token = proof["access_token"]

    resp = client.post(
        f"/api/proofs/review/{token}/annotate",
        json={"author_name": "Jane Doe", "type": "area", "comment": "Make the year larger", "x": 10, "y": 20, "width": 30, "height": 10},
    )
    annotation_id = resp.json()["annotation"]["id"]
    assert client.get(f"/api/proofs/review/{token}").json()["proof"]["status"] == "feedback_received"
    assert unread_feedback(client, order_id) == 1

    client.post(f"/api/admin/proofs/annotations/{annotation_id}/resolve", headers=ADMIN_HEADERS)
    assert unread_feedback(client, order_id) == 0
    assert client.get(f"/api/proofs/review/{token}").json()["proof"]["status"] == "feedback_received"

    resp = client.post(
        f"/api/proofs/review/{token}/signoff",
        json={"signed_off_by": "Jane Doe", "signature": "Jane Doe"},
    )
    approved = resp.json()["proof"]
    assert approved["status"] == "approved"
    assert approved["signed_off_at"] is not None

    resp = client.put(f"/api/admin/orders/{order_id}/status", json={"status": "sent_to_print"}, headers=ADMIN_HEADERS)
    assert resp.json()["order"]["status"] == "sent_to_print"

    history = client.get(f"/api/admin/orders/{order_id}", headers=ADMIN_HEADERS).json()["history"]
    assert [e["action"] for e in history] == [
        "order.create",
        "proof.upload",
        "proof.annotate",
        "proof.annotation_resolve",
        "proof.approve",
        "order.status_change",
    ]
    assert all(e["details"]["order_number"] == "1001" for e in history)
