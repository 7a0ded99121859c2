from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from .. import communications
from ..auth import client_ip
from ..db import get_session
from ..schemas import InboundMail

router = APIRouter()


@router.post("/inbound-mail")
def inbound_mail(payload: InboundMail, request: Request, session: Session = Depends(get_session)):
    # unroutable mail is acknowledged anyway so the provider does not retry it
    comm = communications.record_inbound(
        session,
        payload.to,
        payload.sender,
        payload.subject,
        payload.text,
        attachments=[a.as_attachment() for a in payload.attachments],
        ip_address=client_ip(request),
    )
    if comm is None:
        return {"ok": True, "routed": False}
    return {"ok": True, "routed": True, "order_id": comm.order_id, "communication_id": comm.id}
