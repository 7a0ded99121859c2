from datetime import datetime
from typing import Dict, List, Optional
from sqlmodel import Session, col, select
from . import audit
from . import orders as order_ops
from .events import OrderCommsMarkedRead
from .models import Communication, NotificationReadState, Order, Proof, ProofAnnotation
from .statuses import Direction
from .utils import as_utc, isoformat, utcnow


def _preview(text: Optional[str], limit: int = 100) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


def _is_after(value: datetime, since: Optional[datetime]) -> bool:
    return since is None or as_utc(value) > as_utc(since)


def _read_states(session: Session, actor_id: int) -> Dict[int, datetime]:
    rows = session.exec(select(NotificationReadState).where(NotificationReadState.actor_id == actor_id)).all()
    return {row.order_id: row.acknowledged_at for row in rows}


def _inbound(session: Session, order_id: Optional[int] = None) -> List[Communication]:
    stmt = select(Communication).where(Communication.direction == Direction.INBOUND.value)
    if order_id is not None:
        stmt = stmt.where(Communication.order_id == order_id)
    return session.exec(stmt.order_by(col(Communication.created_at).desc(), col(Communication.id).desc())).all()


def _open_feedback(session: Session, order_id: Optional[int] = None) -> list:
    stmt = (
        select(ProofAnnotation, Proof)
        .join(Proof, Proof.id == ProofAnnotation.proof_id)
        .where(col(ProofAnnotation.resolved).is_(False))
    )
    if order_id is not None:
        stmt = stmt.where(Proof.order_id == order_id)
    return session.exec(stmt.order_by(col(ProofAnnotation.created_at).desc(), col(ProofAnnotation.id).desc())).all()


def compute_unread(session: Session, order_id: int, since: Optional[datetime]) -> dict:
    """Inbound messages and unresolved annotations created strictly after ``since``."""
    messages = sum(1 for comm in _inbound(session, order_id) if _is_after(comm.created_at, since))
    feedback = sum(1 for annotation, _ in _open_feedback(session, order_id) if _is_after(annotation.created_at, since))
    return {"messages": messages, "feedback": feedback}


def unread_for_actor(session: Session, order_id: int, actor) -> dict:
    order_ops.get_order(session, order_id)
    state = session.exec(
        select(NotificationReadState).where(
            NotificationReadState.order_id == order_id,
            NotificationReadState.actor_id == actor.id,
        )
    ).first()
    return compute_unread(session, order_id, state.acknowledged_at if state else None)


def acknowledge(session: Session, order_id: int, actor, ip_address: Optional[str] = None) -> NotificationReadState:
    order = order_ops.get_order(session, order_id)
    state = session.exec(
        select(NotificationReadState).where(
            NotificationReadState.order_id == order_id,
            NotificationReadState.actor_id == actor.id,
        )
    ).first()
    if not state:
        state = NotificationReadState(order_id=order_id, actor_id=actor.id)
    state.acknowledged_at = utcnow()
    session.add(state)
    session.commit()
    session.refresh(state)
    audit.record(
        session,
        OrderCommsMarkedRead(order_number=order.order_number, contact_name=order_ops.contact_name(order)),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return state


def _unread_items(session: Session, actor) -> tuple:
    read = _read_states(session, actor.id)
    messages = [c for c in _inbound(session) if _is_after(c.created_at, read.get(c.order_id))]
    feedback = [
        (a, p) for a, p in _open_feedback(session) if _is_after(a.created_at, read.get(p.order_id))
    ]
    return messages, feedback


def unread_counts(session: Session, actor) -> dict:
    messages, feedback = _unread_items(session, actor)
    counts: Dict[int, dict] = {}
    for comm in messages:
        counts.setdefault(comm.order_id, {"messages": 0, "feedback": 0})["messages"] += 1
    for _, proof in feedback:
        counts.setdefault(proof.order_id, {"messages": 0, "feedback": 0})["feedback"] += 1
    for entry in counts.values():
        entry["total"] = entry["messages"] + entry["feedback"]
    return {"counts": counts}


def recent(session: Session, actor, limit: int = 15) -> dict:
    messages, feedback = _unread_items(session, actor)
    order_ids = sorted({c.order_id for c in messages} | {p.order_id for _, p in feedback})
    numbers = {
        o.id: o.order_number
        for o in session.exec(select(Order).where(col(Order.id).in_(order_ids))).all()
    }
    items = [
        {
            "id": comm.id,
            "type": "message",
            "order_id": comm.order_id,
            "order_number": numbers.get(comm.order_id),
            "subject": comm.subject,
            "body": _preview(comm.body),
            "sender_email": comm.sender_email,
            "created_at": as_utc(comm.created_at),
        }
        for comm in messages
    ] + [
        {
            "id": annotation.id,
            "type": "feedback",
            "order_id": proof.order_id,
            "order_number": numbers.get(proof.order_id),
            "proof_title": proof.title,
            "proof_version": proof.version,
            "comment": _preview(annotation.comment),
            "author_name": annotation.author_name,
            "created_at": as_utc(annotation.created_at),
        }
        for annotation, proof in feedback
    ]
    items.sort(key=lambda item: item["created_at"], reverse=True)
    notifications = [{**item, "created_at": isoformat(item["created_at"])} for item in items[:limit]]
    return {
        "notifications": notifications,
        "total_unread": {"messages": len(messages), "feedback": len(feedback)},
    }
