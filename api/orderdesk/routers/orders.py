from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status
from minio.error import S3Error
from sqlmodel import Session

from .. import audit, communications, proofs
from .. import orders as order_ops
from ..auth import Actor, client_ip, require_admin
from ..db import get_session
from ..schemas import (
    AssignmentUpdate,
    CcEmailsUpdate,
    EmailSend,
    ItemsUpdate,
    NoteCreate,
    OrderCreate,
    ShippingInfoUpdate,
    StatusUpdate,
)
from ..utils import isoformat


def _serialize_note(note):
    return {
        "id": note.id,
        "order_id": note.order_id,
        "admin_id": note.admin_id,
        "admin_name": note.admin_name,
        "text": note.text,
        "created_at": isoformat(note.created_at),
    }


router = APIRouter()


@router.get("")
def list_orders(
    mine: bool = False,
    include_archived: bool = False,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    rows = order_ops.list_orders(session, assigned_to=actor.id if mine else None, include_archived=include_archived)
    return {"orders": [order_ops.serialize_order(session, o) for o in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.create_order(
        session,
        payload.shipping_info,
        payload.items,
        actor,
        user_id=payload.user_id,
        order_number=payload.order_number,
        guest=payload.guest,
        ip_address=client_ip(request),
    )
    return {"order": order_ops.serialize_order(session, order)}


@router.get("/{order_id}")
def get_order(order_id: int, session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    order = order_ops.get_order(session, order_id)
    return {
        "order": order_ops.serialize_order(session, order),
        "history": audit.history(session, order.id),
    }


@router.put("/{order_id}/status")
def update_status(
    order_id: int,
    payload: StatusUpdate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.set_status(session, order_id, payload.status, actor, ip_address=client_ip(request))
    return {"order": order_ops.serialize_order(session, order)}


@router.put("/{order_id}/assign")
def update_assignment(
    order_id: int,
    payload: AssignmentUpdate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.set_assignment(session, order_id, payload.admin_id, actor, ip_address=client_ip(request))
    return {"order": order_ops.serialize_order(session, order)}


@router.put("/{order_id}/shipping-info")
def update_shipping_info(
    order_id: int,
    payload: ShippingInfoUpdate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.update_shipping_info(
        session,
        order_id,
        payload.shipping_info,
        linked_user_id=payload.linked_user_id,
        actor=actor,
        new_user=payload.new_user,
        ip_address=client_ip(request),
    )
    return {"order": order_ops.serialize_order(session, order)}


@router.put("/{order_id}/items")
def update_items(
    order_id: int,
    payload: ItemsUpdate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.update_items(session, order_id, payload.items, actor, ip_address=client_ip(request))
    return {"order": order_ops.serialize_order(session, order)}


@router.put("/{order_id}/cc-emails")
def update_cc_emails(
    order_id: int,
    payload: CcEmailsUpdate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order = order_ops.update_cc_emails(session, order_id, payload.emails, actor, ip_address=client_ip(request))
    return {"order": order_ops.serialize_order(session, order)}


@router.get("/{order_id}/notes")
def list_notes(order_id: int, session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    return {"notes": [_serialize_note(n) for n in order_ops.list_notes(session, order_id)]}


@router.post("/{order_id}/notes", status_code=status.HTTP_201_CREATED)
def add_note(
    order_id: int,
    payload: NoteCreate,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    note = order_ops.add_note(session, order_id, payload.text, actor, ip_address=client_ip(request))
    return {"note": _serialize_note(note)}


@router.delete("/notes/{note_id}")
def delete_note(
    note_id: int,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    order_ops.delete_note(session, note_id, actor, ip_address=client_ip(request))
    return {"ok": True}


@router.get("/{order_id}/communications")
def list_communications(order_id: int, session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    rows = communications.list_for_order(session, order_id)
    return {"communications": [communications.serialize_communication(c) for c in rows]}


@router.get("/{order_id}/communications/{communication_id}/attachments/{index}")
def download_attachment(
    order_id: int,
    communication_id: int,
    index: int,
    download: bool = False,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    try:
        data, content_type, filename = communications.read_attachment(session, order_id, communication_id, index)
    except S3Error:
        raise HTTPException(404, "stored file missing for this attachment")
    disposition = "attachment" if download else "inline"
    headers = {"Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(filename or 'attachment')}"}
    return Response(content=data, media_type=content_type, headers=headers)


@router.post("/{order_id}/email", status_code=status.HTTP_201_CREATED)
def send_order_email(
    order_id: int,
    payload: EmailSend,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    comm = communications.record_outbound(
        session,
        order_id,
        payload.subject,
        payload.body,
        attachments=[a.as_attachment() for a in payload.attachments],
        cc_emails=payload.cc_emails,
        include_order_details=payload.include_order_details,
        actor=actor,
        ip_address=client_ip(request),
    )
    return {"communication": communications.serialize_communication(comm)}


@router.get("/{order_id}/proofs")
def list_proofs(order_id: int, session: Session = Depends(get_session), actor: Actor = Depends(require_admin)):
    return {"proofs": [proofs.serialize_proof(session, p) for p in proofs.list_for_order(session, order_id)]}


@router.post("/{order_id}/proofs", status_code=status.HTTP_201_CREATED)
async def upload_proof(
    order_id: int,
    request: Request,
    file: UploadFile = File(...),
    title: str = Form(""),
    notify_customer: bool = Form(False),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    data = await file.read()
    proof = proofs.upload(
        session,
        order_id,
        data,
        file.filename,
        file.content_type,
        title=title,
        notify_customer=notify_customer,
        actor=actor,
        ip_address=client_ip(request),
    )
    return {"proof": proofs.serialize_proof(session, proof)}
