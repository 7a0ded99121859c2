from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import audit
from ..auth import Actor, require_admin
from ..config import AUDIT_PAGE_SIZE
from ..db import get_session

router = APIRouter()


@router.get("")
def query_audit_log(
    category: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[int] = None,
    target_id: Optional[int] = None,
    search: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(AUDIT_PAGE_SIZE, ge=1),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    return audit.query(
        session,
        category=category,
        action=action,
        actor_id=actor_id,
        target_id=target_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@router.get("/recent")
def recent_activity(
    limit: int = Query(8, ge=1, le=50),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    return {"entries": audit.recent(session, limit)}


@router.get("/filters")
def filter_values(session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    return audit.filters(session)
