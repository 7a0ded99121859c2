from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import directory
from ..auth import Actor, require_admin
from ..db import get_session

router = APIRouter()


@router.get("")
def list_admins(session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    # assignment dropdown; access tokens stay server-side
    return {
        "admins": [
            {"id": u.id, "name": u.name, "email": u.email}
            for u in directory.list_admins(session)
        ]
    }
