import logging
import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "20"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "orders@localhost")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "Order Desk")


def format_sender_name(admin_name: str | None = None) -> str:
    base_label = (DEFAULT_SENDER_NAME or "Order Desk").strip() or "Order Desk"
    if admin_name:
        plain = admin_name.strip()
        if plain:
            return f"{plain} via {base_label}"
    return base_label


def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    attachments: list | None = None,
    cc: list | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
) -> dict:
    """Deliver one message and return ``{"success", "message_id", "from"}``.

    Without SMTP credentials the message is logged instead of sent. Transport
    errors raise ``UpstreamFailure``; nothing here retries.
    """
    attachments = attachments or []
    cc = [addr for addr in (cc or []) if addr]
    display_name = (sender_name or DEFAULT_SENDER_NAME).strip()
    from_value = formataddr((display_name, DEFAULT_SENDER)) if display_name else DEFAULT_SENDER
    message_id = make_msgid(domain=DEFAULT_SENDER.split("@")[-1])
    if SMTP_USER and SMTP_PASSWORD:
        msg = EmailMessage()
        msg["From"] = from_value
        msg["Message-ID"] = message_id
        if reply_to:
            msg["Reply-To"] = reply_to
        msg["To"] = to
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Subject"] = subject
        msg.set_content(body or "")
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        for attachment in attachments:
            if not attachment:
                continue
            filename = attachment.get("filename") or "attachment"
            content = attachment.get("content")
            maintype = attachment.get("maintype", "application")
            subtype = attachment.get("subtype", "octet-stream")
            if content is None:
                continue
            msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)
        try:
            with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT) as smtp:
                smtp.starttls()
                smtp.login(SMTP_USER, SMTP_PASSWORD)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("mail delivery to %s failed", to)
            raise UpstreamFailure("The email could not be sent, please try again") from exc
    else:
        logger.info(
            "EMAIL (stub) from=%s reply_to=%s to=%s cc=%s subject=%r attachments=%d\n%s",
            from_value, reply_to or "(not set)", to, ", ".join(cc) or "(none)",
            subject, len(attachments), body,
        )
    return {"success": True, "message_id": message_id, "from": DEFAULT_SENDER}
