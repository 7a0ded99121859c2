"""Append-only per-order mail log: outbound sends and routed inbound replies."""
import json
import logging
import re
from html import escape
from typing import List, Optional
from sqlmodel import Session, col, select
from . import audit
from . import orders as order_ops
from .config import ORDERS_FROM_EMAIL, REPLY_DOMAIN
from .email import format_sender_name, send_email
from .errors import NotFound, UpstreamFailure, ValidationError
from .events import InboundMailReceived, OrderEmailSent
from .models import Communication, Order
from .statuses import Direction
from .storage import delete_object, get_bytes, put_bytes
from .utils import EMAIL_RE, canonical_json, isoformat, make_token, normalize_email, read_token, sha256_bytes

logger = logging.getLogger(__name__)

REPLY_ADDRESS_RE = re.compile(r"order-([A-Za-z0-9_.\-]+)@", re.IGNORECASE)

_SEPARATOR_RE = re.compile(r"^[-_=]{3,}$")
_WROTE_RE = re.compile(r"^On\s+.+wrote:?\s*$", re.IGNORECASE)
_ON_DATE_RE = re.compile(r"^On\s+(Mon|Tue|Wed|Thu|Fri|Sat|Sun|Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec|\d)", re.IGNORECASE)
_ORIGINAL_RE = re.compile(r"^-+\s*Original Message\s*-+$", re.IGNORECASE)
_MOBILE_RE = re.compile(r"^(Sent from (my )?(iPhone|iPad|Android|Galaxy|Samsung|Mobile|Outlook)|Get Outlook for (iOS|Android))", re.IGNORECASE)


def strip_quoted_reply(text: Optional[str]) -> str:
    """Keep only the new content of a reply, dropping quotes and signatures."""
    if not text:
        return ""
    lines = text.replace("\r\n", "\n").split("\n")
    kept = []
    for idx, line in enumerate(lines):
        stripped = line.strip()
        if stripped in ("--", "*—*") or _SEPARATOR_RE.match(stripped) or _ORIGINAL_RE.match(stripped):
            break
        if _WROTE_RE.match(stripped) or stripped.startswith(">") or re.match(r"^From:\s*.+$", stripped, re.IGNORECASE):
            break
        if _ON_DATE_RE.match(stripped):
            lookahead = [l.strip() for l in lines[idx + 1:idx + 4] if l.strip()]
            if any(re.search(r"wrote:?\s*$", l, re.IGNORECASE) for l in lookahead) or ("<" in stripped and "@" in stripped):
                break
        if _MOBILE_RE.match(stripped):
            break
        kept.append(line)
    while kept and not kept[-1].strip():
        kept.pop()
    return "\n".join(kept).strip()


def reply_address(order_id: int) -> tuple:
    token = make_token({"order_id": order_id})
    return token, f"order-{token}@{REPLY_DOMAIN}"


def order_for_reply_address(session: Session, to_address: str) -> Optional[Order]:
    match = REPLY_ADDRESS_RE.search(to_address or "")
    if not match:
        return None
    data = read_token(match.group(1))
    if not data or "order_id" not in data:
        return None
    return session.get(Order, data["order_id"])


def serialize_communication(comm: Communication) -> dict:
    return {
        "id": comm.id,
        "order_id": comm.order_id,
        "direction": comm.direction,
        "admin_id": comm.admin_id,
        "sender_email": comm.sender_email,
        "recipient_email": comm.recipient_email,
        "cc": json.loads(comm.cc_json or "[]"),
        "subject": comm.subject,
        "body": comm.body,
        "attachments": json.loads(comm.attachments_json or "[]"),
        "message_id": comm.message_id,
        "created_at": isoformat(comm.created_at),
    }


def list_for_order(session: Session, order_id: int) -> List[Communication]:
    order_ops.get_order(session, order_id)
    return session.exec(
        select(Communication)
        .where(Communication.order_id == order_id)
        .order_by(col(Communication.created_at), col(Communication.id))
    ).all()


def read_attachment(session: Session, order_id: int, communication_id: int, index: int) -> tuple:
    comm = session.get(Communication, communication_id)
    if not comm or comm.order_id != order_id:
        raise NotFound("Communication not found")
    stored = json.loads(comm.attachments_json or "[]")
    if not 0 <= index < len(stored):
        raise NotFound("Attachment not found")
    entry = stored[index]
    return get_bytes(entry["key"]), entry.get("type") or "application/octet-stream", entry.get("filename")


def _store_attachments(order_id: int, attachments: Optional[list]) -> list:
    stored = []
    try:
        for attachment in attachments or []:
            content = attachment.get("content")
            if content is None:
                continue
            filename = attachment.get("filename") or "attachment"
            content_type = attachment.get("content_type") or "application/octet-stream"
            digest = sha256_bytes(content)
            key = f"orders/{order_id}/attachments/{digest[:16]}-{filename}"
            obj = put_bytes(key, content, content_type=content_type)
            stored.append({"filename": filename, "key": obj["url"], "type": obj["type"], "size": len(content)})
    except UpstreamFailure:
        _discard_attachments(stored)
        raise
    return stored


def _discard_attachments(stored: list):
    for entry in stored:
        try:
            delete_object(entry["key"])
        except UpstreamFailure:
            logger.warning("could not remove unsent attachment %s", entry["key"])


def _order_details_block(order: Order) -> str:
    lines = [f"Order #{order.order_number}"]
    for idx, item in enumerate(order_ops.items(order), start=1):
        lines.append(f"  {idx}. {item.get('name')} x {item.get('quantity', 1)}")
    if order.total:
        lines.append(f"Total: ${order.total:,.2f}")
    return "\n".join(lines)


def _html_body(body: str, details: Optional[str]) -> str:
    paragraphs = "".join(
        f'<p style="font-size: 14px; color: #1e293b; line-height: 1.5;">{escape(p).replace(chr(10), "<br />")}</p>'
        for p in body.split("\n\n") if p.strip()
    )
    details_html = ""
    if details:
        details_html = (
            '<pre style="font-size: 13px; color: #475569; background: #f8fafc; padding: 12px 16px; border-radius: 8px;">'
            f"{escape(details)}</pre>"
        )
    return f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 560px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px;">
      {paragraphs}
      {details_html}
    </div>
  </body>
</html>
"""


def _clean_cc(emails: Optional[list], primary: str) -> list:
    cleaned = []
    for raw in emails or []:
        email = normalize_email(raw)
        if email and EMAIL_RE.match(email) and email != primary and email not in cleaned:
            cleaned.append(email)
    return cleaned


def record_outbound(
    session: Session,
    order_id: int,
    subject: str,
    body: str,
    attachments: Optional[list] = None,
    cc_emails: Optional[list] = None,
    include_order_details: bool = True,
    actor=None,
    ip_address: Optional[str] = None,
    audited: bool = True,
) -> Communication:
    """Send a mail to the order's contact and log the attempt.

    A mailer or storage failure propagates as ``UpstreamFailure`` and nothing is
    logged; the caller decides whether to retry.
    """
    subject = (subject or "").strip()
    body = (body or "").strip()
    if not subject or not body:
        raise ValidationError("Subject and body are required")
    order = order_ops.get_order(session, order_id)
    info = order_ops.shipping_info(order)
    customer_email = normalize_email(info.get("email"))
    if not customer_email:
        raise ValidationError("Customer email not found in order")
    cc = _clean_cc(cc_emails if cc_emails is not None else order_ops.cc_emails(order), customer_email)
    stored = _store_attachments(order.id, attachments)
    token, reply_to = reply_address(order.id)
    details = _order_details_block(order) if include_order_details else None
    text_body = f"{body}\n\n{details}" if details else body
    mail_attachments = [
        {
            "filename": a.get("filename") or "attachment",
            "content": a.get("content"),
            "maintype": (a.get("content_type") or "application/octet-stream").split("/")[0],
            "subtype": (a.get("content_type") or "application/octet-stream").split("/")[-1],
        }
        for a in attachments or []
        if a.get("content") is not None
    ]
    try:
        result = send_email(
            customer_email,
            subject,
            text_body,
            html_body=_html_body(body, details),
            attachments=mail_attachments,
            cc=cc,
            sender_name=format_sender_name(getattr(actor, "name", None)),
            reply_to=reply_to,
        )
    except UpstreamFailure:
        _discard_attachments(stored)
        raise
    comm = Communication(
        order_id=order.id,
        direction=Direction.OUTBOUND.value,
        admin_id=getattr(actor, "id", None),
        sender_email=result.get("from") or ORDERS_FROM_EMAIL,
        recipient_email=customer_email,
        cc_json=canonical_json(cc),
        subject=subject,
        body=body,
        reply_token=token,
        attachments_json=canonical_json(stored),
        message_id=result.get("message_id"),
    )
    session.add(comm)
    session.commit()
    session.refresh(comm)
    if audited:
        audit.record(
            session,
            OrderEmailSent(
                order_number=order.order_number,
                to=customer_email,
                subject=subject,
                contact_name=info.get("contact_name"),
                attachment_count=len(stored) or None,
                cc_count=len(cc) or None,
            ),
            actor,
            target_id=order.id,
            ip_address=ip_address,
        )
    return comm


def append_inbound(
    session: Session,
    order: Order,
    sender: Optional[str],
    subject: str,
    body: str,
    attachments: Optional[list] = None,
    reply_token: Optional[str] = None,
) -> Communication:
    comm = Communication(
        order_id=order.id,
        direction=Direction.INBOUND.value,
        sender_email=sender,
        recipient_email=ORDERS_FROM_EMAIL,
        subject=subject,
        body=body,
        reply_token=reply_token,
        attachments_json=canonical_json(attachments or []),
    )
    session.add(comm)
    session.commit()
    session.refresh(comm)
    return comm


def record_inbound(
    session: Session,
    to_address: str,
    from_address: Optional[str],
    subject: Optional[str],
    body: Optional[str],
    attachments: Optional[list] = None,
    ip_address: Optional[str] = None,
) -> Optional[Communication]:
    """Route a customer reply to its order by the reply-to token.

    Returns ``None`` when the address does not resolve to an order.
    """
    order = order_for_reply_address(session, to_address)
    if not order:
        logger.info("inbound mail to %r did not resolve to an order", to_address)
        return None
    stored = _store_attachments(order.id, attachments)
    subject = (subject or "").strip() or f"Re: Order #{order.order_number}"
    match = REPLY_ADDRESS_RE.search(to_address)
    comm = append_inbound(
        session,
        order,
        from_address,
        subject,
        strip_quoted_reply(body),
        attachments=stored,
        reply_token=match.group(1) if match else None,
    )
    audit.record(
        session,
        InboundMailReceived(
            order_number=order.order_number,
            contact_name=order_ops.contact_name(order),
            sender=from_address,
            subject=subject,
            has_attachments=bool(stored) or None,
        ),
        None,
        target_id=order.id,
        ip_address=ip_address,
    )
    return comm
