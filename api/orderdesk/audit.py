import json
import logging
import math
from datetime import datetime
from typing import Optional, Union
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select
from .config import AUDIT_PAGE_SIZE
from .errors import ValidationError
from .events import EventDetails
from .formatter import format_event, humanize_action
from .models import AuditLog
from .utils import as_utc, canonical_json, isoformat

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def record(
    session: Session,
    details: EventDetails,
    actor=None,
    target_id: Optional[int] = None,
    target_type: Optional[str] = "order",
    ip_address: Optional[str] = None,
) -> Optional[AuditLog]:
    """Append one audit entry in its own transaction.

    Callers commit the mutation first. A failed write is rolled back and logged,
    never raised, so the mutation it describes stands.
    """
    entry = AuditLog(
        category=details.CATEGORY.value,
        action=details.ACTION,
        actor_id=getattr(actor, "id", None),
        actor_name=getattr(actor, "name", None),
        actor_email=getattr(actor, "email", None),
        target_id=target_id,
        target_type=target_type if target_id is not None else None,
        details_json=canonical_json(details.payload()),
        ip_address=ip_address,
    )
    try:
        session.add(entry)
        session.commit()
        session.refresh(entry)
    except SQLAlchemyError:
        session.rollback()
        logger.exception(
            "audit write failed action=%s target=%s:%s details=%s",
            entry.action, target_type, target_id, entry.details_json,
        )
        return None
    return entry


def serialize_entry(entry: AuditLog) -> dict:
    details = json.loads(entry.details_json or "{}")
    rendered = format_event(entry.action, details)
    return {
        "id": entry.id,
        "created_at": isoformat(entry.created_at),
        "category": entry.category,
        "action": entry.action,
        "action_label": humanize_action(entry.action),
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name or "System",
        "actor_email": entry.actor_email,
        "target_id": entry.target_id,
        "target_type": entry.target_type,
        "details": details,
        "summary": rendered.summary,
        "lines": rendered.lines,
        "ip_address": entry.ip_address,
    }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_bound(value, name: str) -> Optional[datetime]:
    try:
        return as_utc(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}")


def _conditions(
    category=None, action=None, actor_id=None, target_id=None, search=None, start_date=None, end_date=None
):
    conds = []
    if category:
        conds.append(AuditLog.category == category)
    if action:
        conds.append(AuditLog.action == action)
    if actor_id is not None:
        conds.append(AuditLog.actor_id == actor_id)
    if target_id is not None:
        conds.append(AuditLog.target_id == target_id)
    if search:
        pattern = f"%{_escape_like(search.strip())}%"
        conds.append(or_(
            col(AuditLog.action).ilike(pattern, escape="\\"),
            col(AuditLog.actor_name).ilike(pattern, escape="\\"),
            col(AuditLog.actor_email).ilike(pattern, escape="\\"),
            col(AuditLog.details_json).ilike(pattern, escape="\\"),
        ))
    start = _parse_bound(start_date, "start_date")
    if start:
        conds.append(AuditLog.created_at >= start)
    end = _parse_bound(end_date, "end_date")
    if end:
        conds.append(AuditLog.created_at <= end)
    return conds


def query(
    session: Session,
    category: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[int] = None,
    target_id: Optional[int] = None,
    search: Optional[str] = None,
    start_date: Union[datetime, str, None] = None,
    end_date: Union[datetime, str, None] = None,
    page: int = 1,
    limit: int = AUDIT_PAGE_SIZE,
) -> dict:
    page = max(1, page or 1)
    limit = max(1, min(limit or AUDIT_PAGE_SIZE, MAX_PAGE_SIZE))
    conds = _conditions(category, action, actor_id, target_id, search, start_date, end_date)
    total = session.exec(select(func.count()).select_from(AuditLog).where(*conds)).one()
    rows = session.exec(
        select(AuditLog)
        .where(*conds)
        .order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return {
        "entries": [serialize_entry(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def recent(session: Session, limit: int = 8) -> list:
    rows = session.exec(
        select(AuditLog).order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc()).limit(limit)
    ).all()
    return [serialize_entry(row) for row in rows]


def history(session: Session, target_id: int, target_type: str = "order") -> list:
    rows = session.exec(
        select(AuditLog)
        .where(AuditLog.target_id == target_id, AuditLog.target_type == target_type)
        .order_by(col(AuditLog.created_at), col(AuditLog.id))
    ).all()
    return [serialize_entry(row) for row in rows]


def filters(session: Session) -> dict:
    categories = session.exec(select(AuditLog.category).distinct().order_by(AuditLog.category)).all()
    actions = session.exec(select(AuditLog.action).distinct().order_by(AuditLog.action)).all()
    actors = session.exec(
        select(AuditLog.actor_id, AuditLog.actor_name, AuditLog.actor_email)
        .where(col(AuditLog.actor_id).is_not(None))
        .distinct()
        .order_by(AuditLog.actor_name)
    ).all()
    return {
        "categories": list(categories),
        "actions": list(actions),
        "actors": [{"id": a_id, "name": name, "email": email} for a_id, name, email in actors],
    }
