from datetime import timedelta

from sqlalchemy.exc import OperationalError
from sqlmodel import select

from orderdesk import audit, orders
from orderdesk.events import ProductCreated, UserLoggedIn
from orderdesk.models import AuditLog, Order
from orderdesk.utils import isoformat, utcnow

from conftest import ADMIN_HEADERS

SHIPPING = {"contact_name": "Jane Doe", "email": "jane@school.test"}


def seed(session, admin, other_admin):
    order = orders.create_order(session, SHIPPING, [{"name": "Banner", "quantity": 1}], admin)
    for status in ("in_progress", "waiting_signoff", "completed"):
        orders.set_status(session, order.id, status, other_admin)
    audit.record(session, ProductCreated(name="Banner", category="Signs"), admin, target_id=None)
    audit.record(session, UserLoggedIn(contact_name="Jane Doe", email="jane@school.test"), None, target_id=None)
    return order


def test_record_without_target_has_no_target_type(session, admin):
    entry = audit.record(session, ProductCreated(name="Mug"), admin)
    assert entry.category == "products"
    assert entry.target_id is None and entry.target_type is None


def test_query_filters_and_counts_the_filtered_set(session, admin, other_admin):
    seed(session, admin, other_admin)
    result = audit.query(session, category="orders", limit=2)
    assert result["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}
    assert [e["action"] for e in result["entries"]] == ["order.status_change", "order.status_change"]
    assert result["entries"][0]["details"]["status"] == "completed"
    page_two = audit.query(session, category="orders", limit=2, page=2)
    assert [e["action"] for e in page_two["entries"]] == ["order.status_change", "order.create"]

    by_actor = audit.query(session, actor_id=other_admin.id, action="order.status_change")
    assert by_actor["pagination"]["total"] == 3
    assert audit.query(session, category="auth")["entries"][0]["actor_name"] == "System"


def test_query_search_is_case_insensitive(session, admin, other_admin):
    seed(session, admin, other_admin)
    assert audit.query(session, search="SAM ADMIN")["pagination"]["total"] == 3
    assert audit.query(session, search="product.CREATE")["pagination"]["total"] == 1
    assert audit.query(session, search="waiting_signoff")["pagination"]["total"] == 2
    assert audit.query(session, search="100%")["entries"] == []


def test_query_date_range_treats_naive_as_utc(session, admin, other_admin):
    seed(session, admin, other_admin)
    now = utcnow()
    naive_future = (now + timedelta(hours=1)).replace(tzinfo=None).isoformat()
    assert audit.query(session, start_date=naive_future)["pagination"]["total"] == 0
    assert audit.query(session, end_date=naive_future)["pagination"]["total"] == 6
    past = isoformat(now - timedelta(hours=1)).replace("+00:00", "Z")
    assert audit.query(session, start_date=past)["pagination"]["total"] == 6


def test_empty_log_is_not_an_error(session):
    result = audit.query(session, category="orders")
    assert result == {"entries": [], "pagination": {"page": 1, "limit": 50, "total": 0, "total_pages": 0}}
    assert audit.recent(session) == []


def test_recent_and_filters(session, admin, other_admin):
    order = seed(session, admin, other_admin)
    recent = audit.recent(session, limit=3)
    assert [e["action"] for e in recent] == ["auth.login", "product.create", "order.status_change"]
    assert recent[2]["summary"] == f"Order #{order.order_number} (Jane Doe) — waiting signoff → completed"
    values = audit.filters(session)
    assert values["categories"] == ["auth", "orders", "products"]
    assert "order.create" in values["actions"]
    assert {a["name"] for a in values["actors"]} == {"Dana Admin", "Sam Admin"}
    history = audit.history(session, order.id)
    assert [e["action"] for e in history][0] == "order.create"


def test_failed_audit_write_keeps_the_mutation(session, admin, monkeypatch):
    order = orders.create_order(session, SHIPPING, [], admin)
    real_commit = session.commit
    calls = []

    def flaky_commit():
        calls.append(1)
        if len(calls) == 2:
            raise OperationalError("INSERT INTO auditlog", {}, Exception("database is locked"))
        return real_commit()

    monkeypatch.setattr(session, "commit", flaky_commit)
    orders.set_status(session, order.id, "on_hold", admin)
    monkeypatch.undo()
    assert session.get(Order, order.id).status == "on_hold"
    actions = [row.action for row in session.exec(select(AuditLog).order_by(AuditLog.id)).all()]
    assert actions == ["order.create"]


def test_audit_api(client):
    client.post(
        "/api/admin/orders",
        json={"shipping_info": SHIPPING, "items": [{"name": "Banner", "quantity": 1}]},
        headers=ADMIN_HEADERS,
    )
    body = client.get("/api/admin/audit?category=orders&limit=10", headers=ADMIN_HEADERS).json()
    assert body["pagination"]["total"] == 1
    entry = body["entries"][0]
    assert entry["action_label"] == "Order Create"
    assert entry["summary"].endswith("1 item(s)")
    assert entry["lines"] == ["1. Banner"]
    assert client.get("/api/admin/audit/recent", headers=ADMIN_HEADERS).json()["entries"][0]["id"] == entry["id"]
    assert client.get("/api/admin/audit/filters", headers=ADMIN_HEADERS).json()["categories"] == ["orders"]


def test_audit_api_rejects_malformed_dates(client):
    resp = client.get("/api/admin/audit?start_date=yesterday", headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == {"kind": "validation_error", "message": "Invalid start_date"}
    resp = client.get("/api/admin/audit?end_date=2024-13-40", headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Invalid end_date"
