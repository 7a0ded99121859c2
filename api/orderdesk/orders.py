import json
from collections.abc import Mapping
from datetime import timedelta
from typing import List, Optional
from sqlalchemy import func
from sqlmodel import Session, col, select
from . import audit, directory
from .diff import TRACKED_SHIPPING_FIELDS, diff
from .drafts import apply_updates
from .errors import Conflict, NotFound, ValidationError
from .events import (
    GuestOrderCreated,
    OrderAssigned,
    OrderCreated,
    OrderEmailsUpdated,
    OrderItemsUpdated,
    OrderNoteAdded,
    OrderNoteDeleted,
    OrderShippingUpdated,
    OrderStatusChanged,
)
from .models import Order, OrderNote, User
from .statuses import ORDER_STATUS_VALUES, STATUS_DISPLAY, OrderStatus, is_transition_allowed
from .utils import EMAIL_RE, canonical_json, isoformat, normalize_email, utcnow


def shipping_info(order: Order) -> dict:
    return json.loads(order.shipping_info_json or "{}")


def items(order: Order) -> list:
    return json.loads(order.items_json or "[]")


def cc_emails(order: Order) -> list:
    return json.loads(order.cc_emails_json or "[]")


def contact_name(order: Order) -> Optional[str]:
    return shipping_info(order).get("contact_name")


def get_order(session: Session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(session: Session, assigned_to: Optional[int] = None, include_archived: bool = False) -> List[Order]:
    stmt = select(Order)
    if assigned_to is not None:
        stmt = stmt.where(Order.assigned_to == assigned_to)
    if not include_archived:
        stmt = stmt.where(col(Order.archived).is_(False))
    return session.exec(stmt.order_by(col(Order.created_at).desc(), col(Order.id).desc())).all()


def serialize_order(session: Session, order: Order) -> dict:
    assignee = session.get(User, order.assigned_to) if order.assigned_to else None
    display = STATUS_DISPLAY.get(order.status)
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "status_label": display.label if display else order.status,
        "assigned_to": order.assigned_to,
        "assigned_to_name": assignee.name if assignee else None,
        "shipping_info": shipping_info(order),
        "items": items(order),
        "cc_emails": cc_emails(order),
        "total": order.total,
        "archived": order.archived,
        "created_at": isoformat(order.created_at),
        "updated_at": isoformat(order.updated_at),
    }


def _item_total(line_items: list) -> float:
    total = 0.0
    for item in line_items:
        try:
            total += float(item.get("price") or 0) * int(item.get("quantity") or 0)
        except (TypeError, ValueError):
            continue
    return round(total, 2)


def _validate_items(line_items) -> list:
    if not isinstance(line_items, list):
        raise ValidationError("Items array is required")
    cleaned = []
    for idx, item in enumerate(line_items, start=1):
        if not isinstance(item, Mapping):
            raise ValidationError(f"Item {idx} must be an object")
        name = str(item.get("name") or "").strip()
        if not name:
            raise ValidationError(f"Item {idx} is missing a name")
        quantity = item.get("quantity", 1)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(f"Item {name}: quantity must be a positive whole number")
        cleaned.append({**item, "name": name, "quantity": quantity})
    return cleaned


def _validate_contact_email(info: dict) -> dict:
    email = info.get("email")
    if email in (None, ""):
        return info
    normalized = normalize_email(email)
    if not EMAIL_RE.match(normalized):
        raise ValidationError(f"Invalid email address: {email}")
    return {**info, "email": normalized}


def generate_order_number(session: Session, name: Optional[str], now=None) -> str:
    """``XXXX-MMDDYY-NNN``: name initials, UTC date and the day's sequence."""
    now = now or utcnow()
    parts = (name or "Unknown User").strip().split() or ["XX"]
    prefix = (parts[0][:2] + parts[-1][:2]).upper()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)
    count = session.exec(
        select(func.count()).select_from(Order).where(Order.created_at >= day_start, Order.created_at < day_end)
    ).one()
    seq = count + 1
    while True:
        candidate = f"{prefix}-{now:%m%d%y}-{seq:03d}"
        if not session.exec(select(Order.id).where(Order.order_number == candidate)).first():
            return candidate
        seq += 1


def create_order(
    session: Session,
    shipping: dict,
    line_items: list,
    actor=None,
    user_id: Optional[int] = None,
    order_number: Optional[str] = None,
    guest: bool = False,
    ip_address: Optional[str] = None,
) -> Order:
    if not isinstance(shipping, Mapping):
        raise ValidationError("shippingInfo must be an object")
    info = _validate_contact_email(dict(shipping))
    cleaned = _validate_items(line_items)
    if order_number:
        order_number = order_number.strip()
        if session.exec(select(Order.id).where(Order.order_number == order_number)).first():
            raise Conflict(f"Order number {order_number} already exists")
    else:
        order_number = generate_order_number(session, info.get("contact_name"))
    order = Order(
        order_number=order_number,
        user_id=user_id,
        status=OrderStatus.NEW.value,
        shipping_info_json=canonical_json(info),
        items_json=canonical_json(cleaned),
        total=_item_total(cleaned),
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    if guest:
        details = GuestOrderCreated(
            order_number=order.order_number,
            contact_name=info.get("contact_name"),
            email=info.get("email"),
            school_name=info.get("school_name"),
            project_title=info.get("project_title"),
        )
    else:
        details = OrderCreated(
            order_number=order.order_number,
            contact_name=info.get("contact_name"),
            item_count=len(cleaned),
            item_names=[item["name"] for item in cleaned],
            is_special_request=bool(info.get("is_special_request")) or None,
        )
    audit.record(session, details, actor, target_id=order.id, ip_address=ip_address)
    return order


def set_status(session: Session, order_id: int, new_status, actor, ip_address: Optional[str] = None) -> Order:
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Invalid status: {new_status}")
    order = get_order(session, order_id)
    previous = order.status
    if previous in ORDER_STATUS_VALUES and not is_transition_allowed(OrderStatus(previous), target):
        raise ValidationError(f"Cannot move order from {previous} to {target.value}")
    order.status = target.value
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    audit.record(
        session,
        OrderStatusChanged(
            order_number=order.order_number,
            contact_name=contact_name(order),
            previous_status=previous,
            status=order.status,
        ),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return order


def set_assignment(session: Session, order_id: int, admin_id: Optional[int], actor, ip_address: Optional[str] = None) -> Order:
    order = get_order(session, order_id)
    admin = None
    if admin_id:
        admin = directory.find_user(session, user_id=admin_id)
        if not admin or admin.role != "admin":
            raise ValidationError("Invalid admin user")
    previous = order.assigned_to
    order.assigned_to = admin.id if admin else None
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    audit.record(
        session,
        OrderAssigned(
            order_number=order.order_number,
            contact_name=contact_name(order),
            admin_id=str(admin.id) if admin else "unassigned",
            admin_name=admin.name if admin else None,
            previous_admin_id=str(previous) if previous else None,
        ),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return order


def update_shipping_info(
    session: Session,
    order_id: int,
    draft,
    linked_user_id: Optional[int] = None,
    actor=None,
    new_user: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> Order:
    """Merge ``draft`` (dotted keys allowed) onto the stored customer record.

    ``linked_user_id`` links the order to an existing account; ``new_user``
    creates one through the directory and links it instead.
    """
    order = get_order(session, order_id)
    if not isinstance(draft, Mapping):
        raise ValidationError("shippingInfo must be an object")
    current = shipping_info(order)
    updated = _validate_contact_email(apply_updates(current, draft))
    linked = None
    if linked_user_id:
        linked = directory.find_user(session, user_id=linked_user_id)
        if not linked:
            raise ValidationError("Selected user not found")
    elif new_user:
        linked = directory.create_user(session, new_user, actor, ip_address=ip_address)
    changes = diff(current, updated, TRACKED_SHIPPING_FIELDS)
    order.shipping_info_json = canonical_json(updated)
    primary = updated.get("email")
    if primary:
        order.cc_emails_json = canonical_json([e for e in cc_emails(order) if e != primary])
    if linked:
        order.user_id = linked.id
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    audit.record(
        session,
        OrderShippingUpdated(
            order_number=order.order_number,
            changes=changes,
            linked_user_id=linked.id if linked else None,
        ),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return order


def update_items(session: Session, order_id: int, line_items, actor, ip_address: Optional[str] = None) -> Order:
    order = get_order(session, order_id)
    cleaned = _validate_items(line_items)
    previous_count = len(items(order))
    order.items_json = canonical_json(cleaned)
    order.total = _item_total(cleaned)
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    audit.record(
        session,
        OrderItemsUpdated(
            order_number=order.order_number,
            previous_item_count=previous_count,
            item_count=len(cleaned),
            item_names=[item["name"] for item in cleaned],
        ),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return order


def list_notes(session: Session, order_id: int) -> List[OrderNote]:
    get_order(session, order_id)
    return session.exec(
        select(OrderNote)
        .where(OrderNote.order_id == order_id)
        .order_by(col(OrderNote.created_at).desc(), col(OrderNote.id).desc())
    ).all()


def add_note(session: Session, order_id: int, text: str, actor, ip_address: Optional[str] = None) -> OrderNote:
    order = get_order(session, order_id)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Note is required")
    note = OrderNote(
        order_id=order.id,
        admin_id=actor.id,
        admin_name=actor.name or actor.email or "Admin",
        text=text,
    )
    session.add(note)
    session.commit()
    session.refresh(note)
    preview = text if len(text) <= 100 else text[:100] + "..."
    audit.record(
        session,
        OrderNoteAdded(order_number=order.order_number, note_preview=preview),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return note


def delete_note(session: Session, note_id: int, actor, ip_address: Optional[str] = None) -> None:
    note = session.get(OrderNote, note_id)
    if not note:
        raise NotFound("Note not found")
    if note.admin_id != actor.id:
        raise ValidationError("Only the author can delete this note")
    order_id = note.order_id
    order = session.get(Order, order_id)
    order_number = order.order_number if order else None
    session.delete(note)
    session.commit()
    audit.record(
        session,
        OrderNoteDeleted(order_number=order_number),
        actor,
        target_id=order_id,
        ip_address=ip_address,
    )


def update_cc_emails(session: Session, order_id: int, emails, actor, ip_address: Optional[str] = None) -> Order:
    order = get_order(session, order_id)
    if not isinstance(emails, list):
        raise ValidationError("additionalEmails must be an array")
    primary = normalize_email(shipping_info(order).get("email"))
    invalid = []
    cleaned: List[str] = []
    for raw in emails:
        email = normalize_email(raw if isinstance(raw, str) else "")
        if not email:
            continue
        if not EMAIL_RE.match(email):
            invalid.append(str(raw))
            continue
        if email == primary or email in cleaned:
            continue
        cleaned.append(email)
    if invalid:
        raise ValidationError(f"Invalid email address: {', '.join(invalid)}")
    order.cc_emails_json = canonical_json(cleaned)
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    audit.record(
        session,
        OrderEmailsUpdated(order_number=order.order_number, email_count=len(cleaned), emails=cleaned),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return order
