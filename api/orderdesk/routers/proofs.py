from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from .. import proofs
from ..auth import Actor, client_ip, require_admin
from ..db import get_session
from ..schemas import AnnotationResolve

router = APIRouter()


@router.delete("/{proof_id}")
def delete_proof(
    proof_id: int,
    request: Request,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    proofs.delete(session, proof_id, actor, ip_address=client_ip(request))
    return {"ok": True}


@router.post("/annotations/{annotation_id}/resolve")
def resolve_annotation(
    annotation_id: int,
    request: Request,
    payload: Optional[AnnotationResolve] = None,
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_admin),
):
    annotation = proofs.resolve_annotation(
        session, annotation_id, payload.resolved_by if payload else None, actor, ip_address=client_ip(request)
    )
    return {"annotation": proofs.serialize_annotation(annotation)}
