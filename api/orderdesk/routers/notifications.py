from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from .. import notifications
from ..auth import Actor, client_ip, require_admin
from ..db import get_session
from ..utils import isoformat

router = APIRouter()


@router.get("/unread-counts")
def unread_counts(session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    return notifications.unread_counts(session, actor)


@router.get("/recent")
def recent(
    limit: int = Query(15, ge=1, le=100),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    return notifications.recent(session, actor, limit)


@router.post("/mark-read/{order_id}")
def mark_read(
    order_id: int,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    state = notifications.acknowledge(session, order_id, actor, ip_address=client_ip(request))
    return {"order_id": order_id, "acknowledged_at": isoformat(state.acknowledged_at)}
