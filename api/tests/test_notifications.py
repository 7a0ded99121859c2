from datetime import timedelta

from orderdesk import communications, notifications, orders, proofs
from orderdesk.utils import utcnow

from conftest import ADMIN_HEADERS, OTHER_ADMIN_HEADERS
from test_proofs import PNG_BYTES

SHIPPING = {"contact_name": "Jane Doe", "email": "jane@school.test", "school_name": "Lincoln High"}


def make_order(session, admin):
    return orders.create_order(session, SHIPPING, [{"name": "Banner", "quantity": 1}], admin)


def reply(session, order, body="Thanks!"):
    _, address = communications.reply_address(order.id)
    return communications.record_inbound(session, address, "jane@school.test", "Re: proof", body)


def test_unread_counts_messages_and_open_feedback(session, admin, mock_storage):
    order = make_order(session, admin)
    reply(session, order)
    reply(session, order)
    proof = proofs.upload(session, order.id, PNG_BYTES, "front.png", "image/png", actor=admin)
    first = proofs.annotate(session, proof.id, "Jane", "pin", "Bigger", 1, 1)
    proofs.annotate(session, proof.id, "Jane", "pin", "Bolder", 2, 2)
    assert notifications.compute_unread(session, order.id, None) == {"messages": 2, "feedback": 2}
    proofs.resolve_annotation(session, first.id, None, admin)
    assert notifications.compute_unread(session, order.id, None) == {"messages": 2, "feedback": 1}
    assert notifications.compute_unread(session, order.id, utcnow() + timedelta(seconds=1)) == {"messages": 0, "feedback": 0}


def test_acknowledge_resets_counts_per_admin(session, admin, other_admin, mock_storage):
    order = make_order(session, admin)
    reply(session, order)
    assert notifications.unread_for_actor(session, order.id, admin) == {"messages": 1, "feedback": 0}
    notifications.acknowledge(session, order.id, admin)
    assert notifications.unread_for_actor(session, order.id, admin) == {"messages": 0, "feedback": 0}
    assert notifications.unread_for_actor(session, order.id, other_admin) == {"messages": 1, "feedback": 0}
    reply(session, order, "One more thing")
    assert notifications.unread_for_actor(session, order.id, admin) == {"messages": 1, "feedback": 0}
    notifications.acknowledge(session, order.id, admin)
    counts = notifications.unread_counts(session, admin)["counts"]
    assert counts == {}


def test_outbound_mail_is_never_unread(session, admin, mock_storage, sent_emails):
    order = make_order(session, admin)
    communications.record_outbound(session, order.id, "Your order", "It is ready", actor=admin)
    assert notifications.compute_unread(session, order.id, None) == {"messages": 0, "feedback": 0}


def test_recent_merges_newest_first(session, admin, mock_storage):
    order = make_order(session, admin)
    reply(session, order, "m" * 150)
    proof = proofs.upload(session, order.id, PNG_BYTES, "front.png", "image/png", actor=admin)
    proofs.annotate(session, proof.id, "Jane", "pin", "Move the logo", 1, 1)
    result = notifications.recent(session, admin)
    assert [n["type"] for n in result["notifications"]] == ["feedback", "message"]
    message = result["notifications"][1]
    assert message["body"] == "m" * 100 + "..."
    assert message["order_number"] == order.order_number
    assert result["total_unread"] == {"messages": 1, "feedback": 1}
    assert notifications.recent(session, admin, limit=1)["total_unread"] == {"messages": 1, "feedback": 1}


def test_notifications_api(client, other_admin_user):
    order_id = client.post(
        "/api/admin/orders",
        json={"shipping_info": SHIPPING, "items": [{"name": "Banner", "quantity": 1}]},
        headers=ADMIN_HEADERS,
    ).json()["order"]["id"]
    _, address = communications.reply_address(order_id)
    resp = client.post(
        "/api/webhooks/inbound-mail",
        json={"to": address, "from": "jane@school.test", "subject": "Question", "text": "When will it ship?"},
    )
    assert resp.json()["routed"] is True

    counts = client.get("/api/admin/notifications/unread-counts", headers=ADMIN_HEADERS).json()["counts"]
    assert counts == {str(order_id): {"messages": 1, "feedback": 0, "total": 1}}

    resp = client.post(f"/api/admin/notifications/mark-read/{order_id}", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert client.get("/api/admin/notifications/unread-counts", headers=ADMIN_HEADERS).json()["counts"] == {}
    other = client.get("/api/admin/notifications/recent", headers=OTHER_ADMIN_HEADERS).json()
    assert other["total_unread"] == {"messages": 1, "feedback": 0}
    assert client.post("/api/admin/notifications/mark-read/9999", headers=ADMIN_HEADERS).status_code == 404
