import logging
import re
from typing import Callable, Dict, List, NamedTuple, Optional
from pydantic import ValidationError as PayloadError
from . import events as ev
from .diff import render_change

logger = logging.getLogger(__name__)


class Rendered(NamedTuple):
    summary: str
    lines: List[str]


RENDERERS: Dict[str, Callable[[ev.EventDetails], Rendered]] = {}


def renderer(*actions: str):
    def register(fn):
        for action in actions:
            RENDERERS[action] = fn
        return fn
    return register


def humanize_action(action: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), re.sub(r"[._]", " ", action))


def _words(value: Optional[str]) -> str:
    return (value or "").replace("_", " ")


def _num(order_number: Optional[str]) -> str:
    return order_number or "?"


def _compact(*lines: Optional[str]) -> List[str]:
    return [line for line in lines if line]


def _numbered(names: List[str]) -> List[str]:
    return [f"{idx}. {name}" for idx, name in enumerate(names, start=1)]


def _with_contact(d) -> str:
    return f" ({d.contact_name})" if d.contact_name else ""


# ---------- products ----------

@renderer("product.create")
def _product_create(d: ev.ProductCreated) -> Rendered:
    where = f" in {d.category}" if d.category else ""
    if d.subcategory:
        where += f" / {d.subcategory}"
    return Rendered(f'Created product "{d.name or ""}"{where}', [])


@renderer("product.update", "user.update")
def _record_update(d) -> Rendered:
    lines = [render_change(c) for c in d.changes]
    changed = f" — {len(lines)} field(s) changed" if lines else ""
    if isinstance(d, ev.ProductUpdated):
        return Rendered(f'Updated product "{d.name or ""}"{changed}', lines)
    return Rendered(f"Updated {d.contact_name or d.email or 'user'}{changed}", lines)


@renderer("product.delete")
def _product_delete(d: ev.ProductDeleted) -> Rendered:
    where = f" from {d.category}" if d.category else ""
    return Rendered(f'Deleted product "{d.name or ""}"{where}', [])


# ---------- orders ----------

@renderer("order.create")
def _order_create(d: ev.OrderCreated) -> Rendered:
    customer = f" for {d.contact_name}" if d.contact_name else ""
    special = " (custom request)" if d.is_special_request else ""
    summary = f"Order #{_num(d.order_number)}{customer} — {d.item_count or 0} item(s){special}"
    return Rendered(summary, _numbered(d.item_names))


@renderer("order.guest_create")
def _guest_create(d: ev.GuestOrderCreated) -> Rendered:
    return Rendered(
        f"Guest order #{_num(d.order_number)} by {d.contact_name or 'unknown'}",
        _compact(
            d.email and f"Email: {d.email}",
            d.school_name and f"School: {d.school_name}",
            d.project_title and f'Project: "{d.project_title}"',
        ),
    )


@renderer("order.status_change")
def _status_change(d: ev.OrderStatusChanged) -> Rendered:
    previous = f"{_words(d.previous_status)} → " if d.previous_status else ""
    return Rendered(f"Order #{_num(d.order_number)}{_with_contact(d)} — {previous}{_words(d.status)}", [])


@renderer("order.assign")
def _assign(d: ev.OrderAssigned) -> Rendered:
    if d.admin_id == "unassigned":
        return Rendered(f"Unassigned order #{_num(d.order_number)}{_with_contact(d)}", [])
    return Rendered(
        f"Assigned order #{_num(d.order_number)}{_with_contact(d)} to {d.admin_name or 'admin'}", []
    )


@renderer("order.items_update")
def _items_update(d: ev.OrderItemsUpdated) -> Rendered:
    if d.previous_item_count is not None and d.previous_item_count != d.item_count:
        counts = f"{d.previous_item_count} → {d.item_count or 0} item(s)"
    else:
        counts = f"{d.item_count or 0} item(s)"
    return Rendered(f"Order #{_num(d.order_number)} — {counts}", _numbered(d.item_names))


@renderer("order.shipping_update")
def _shipping_update(d: ev.OrderShippingUpdated) -> Rendered:
    lines = [render_change(c) for c in d.changes]
    fields = f" ({len(lines)} field(s))" if lines else ""
    return Rendered(f"Order #{_num(d.order_number)} — updated customer info{fields}", lines)


@renderer("order.emails_update")
def _emails_update(d: ev.OrderEmailsUpdated) -> Rendered:
    count = d.email_count if d.email_count is not None else len(d.emails)
    return Rendered(f"Order #{_num(d.order_number)} — {count} CC recipient(s)", list(d.emails))


@renderer("order.note_add")
def _note_add(d: ev.OrderNoteAdded) -> Rendered:
    return Rendered(
        f"Order #{_num(d.order_number)} — added note",
        [f'"{d.note_preview}"'] if d.note_preview else [],
    )


@renderer("order.note_delete")
def _note_delete(d: ev.OrderNoteDeleted) -> Rendered:
    if d.order_number:
        return Rendered(f"Order #{d.order_number} — deleted note", [])
    return Rendered("Deleted a note from order", [])


@renderer("order.email_send")
def _email_send(d: ev.OrderEmailSent) -> Rendered:
    return Rendered(
        f"Order #{_num(d.order_number)} — sent email to {d.to or 'customer'}",
        _compact(
            d.subject and f'Subject: "{d.subject}"',
            d.contact_name and f"Customer: {d.contact_name}",
            d.cc_count and f"CC: {d.cc_count}",
            d.attachment_count and f"Attachments: {d.attachment_count}",
        ),
    )


@renderer("order.comms_mark_read")
def _comms_mark_read(d: ev.OrderCommsMarkedRead) -> Rendered:
    return Rendered(
        f"Marked communications as read for order #{_num(d.order_number)}{_with_contact(d)}", []
    )


# ---------- users / auth ----------

@renderer("user.create")
def _user_create(d: ev.UserCreated) -> Rendered:
    return Rendered(
        f"Created {_words(d.user_type) or 'new'} user: {d.contact_name or ''}".rstrip(),
        _compact(
            d.email and f"Email: {d.email}",
            d.school_name and f"School: {d.school_name}",
            d.department and f"Department: {d.department}",
            d.position_title and f"Position: {d.position_title}",
        ),
    )


@renderer("user.quick_create")
def _user_quick_create(d: ev.UserQuickCreated) -> Rendered:
    return Rendered(
        f"Quick-created user: {d.contact_name or ''}".rstrip(),
        _compact(
            d.email and f"Email: {d.email}",
            d.school_name and f"School: {d.school_name}",
            d.phone and f"Phone: {d.phone}",
        ),
    )


@renderer("user.role_change")
def _role_change(d: ev.UserRoleChanged) -> Rendered:
    previous = f"{d.previous_role} → " if d.previous_role else ""
    return Rendered(f"{d.contact_name or d.email or 'User'} — role {previous}{d.role or ''}".rstrip(), [])


@renderer("user.type_change")
def _type_change(d: ev.UserTypeChanged) -> Rendered:
    previous = f"{_words(d.previous_type)} → " if d.previous_type else ""
    return Rendered(
        f"{d.contact_name or d.email or 'User'} — type {previous}{_words(d.user_type)}".rstrip(), []
    )


@renderer("auth.register")
def _register(d: ev.UserRegistered) -> Rendered:
    as_type = f" as {_words(d.user_type)}" if d.user_type else ""
    return Rendered(
        f"{d.contact_name or 'User'} registered{as_type}",
        _compact(d.email and f"Email: {d.email}", d.school_name and f"School: {d.school_name}"),
    )


@renderer("auth.login")
def _login(d: ev.UserLoggedIn) -> Rendered:
    as_type = f" as {_words(d.user_type)}" if d.user_type else ""
    return Rendered(f"{d.contact_name or d.email or 'User'} logged in{as_type}", [])


# ---------- proofs ----------

@renderer("proof.upload")
def _proof_upload(d: ev.ProofUploaded) -> Rendered:
    return Rendered(
        f'Uploaded "{d.title or ""}" v{d.version or 1} for order #{_num(d.order_number)}',
        _compact(
            d.contact_name and f"Customer: {d.contact_name}",
            d.email_sent and "Notification email sent",
        ),
    )


@renderer("proof.delete")
def _proof_delete(d: ev.ProofDeleted) -> Rendered:
    version = f" v{d.version}" if d.version else ""
    return Rendered(f'Deleted proof "{d.title or ""}"{version} from order #{_num(d.order_number)}', [])


@renderer("proof.annotate")
def _annotate(d: ev.ProofAnnotated) -> Rendered:
    kind = f"{d.type} " if d.type else ""
    version = f" v{d.version}" if d.version else ""
    return Rendered(
        f'{d.author_name or "Someone"} left {kind}feedback on "{d.proof_title or ""}"{version}',
        _compact(
            d.order_number and f"Order: #{d.order_number}",
            d.comment and f'Comment: "{d.comment}"',
        ),
    )


@renderer("proof.annotation_resolve")
def _annotation_resolve(d: ev.AnnotationResolved) -> Rendered:
    return Rendered(
        f"{d.resolved_by or 'Admin'} resolved annotation",
        [f'Comment: "{d.comment}"'] if d.comment else [],
    )


@renderer("proof.annotation_delete")
def _annotation_delete(d: ev.AnnotationDeleted) -> Rendered:
    return Rendered(
        f"{d.author_name or 'Customer'} withdrew feedback",
        _compact(
            d.order_number and f"Order: #{d.order_number}",
            d.comment and f'Comment: "{d.comment}"',
        ),
    )


@renderer("proof.approve")
def _approve(d: ev.ProofApproved) -> Rendered:
    version = f" v{d.version}" if d.version else ""
    return Rendered(
        f'{d.signed_off_by or "Customer"} approved "{d.title or ""}"{version} for order #{_num(d.order_number)}',
        _compact(d.open_annotations and f"Unresolved feedback at approval: {d.open_annotations}"),
    )


# ---------- communications ----------

@renderer("communication.inbound_received")
def _inbound(d: ev.InboundMailReceived) -> Rendered:
    return Rendered(
        f"Email from {d.sender or 'unknown'} for order #{_num(d.order_number)}",
        _compact(
            d.contact_name and f"Customer: {d.contact_name}",
            d.subject and f'Subject: "{d.subject}"',
            d.has_attachments and "Has attachments",
        ),
    )


# ---------- fallback ----------

def _is_scalar(value) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool) or value is True


def format_generic(details: Optional[dict]) -> Rendered:
    entries = [
        (key, value) for key, value in (details or {}).items()
        if value is not None and value != "" and _is_scalar(value)
    ]
    if not entries:
        return Rendered("-", [])
    (key, value), rest = entries[0], entries[1:]
    return Rendered(f"{key}: {value}", [f"{k}: {v}" for k, v in rest])


def format_event(action: str, details: Optional[dict]) -> Rendered:
    render = RENDERERS.get(action)
    if render is None:
        return format_generic(details)
    try:
        parsed = ev.parse_details(action, details)
    except PayloadError:
        logger.warning("malformed details for %s, rendering generically", action)
        return format_generic(details)
    return render(parsed)
