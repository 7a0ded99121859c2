from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from minio.error import S3Error
from sqlmodel import Session

from .. import proofs
from ..auth import client_ip
from ..db import get_session
from ..schemas import AnnotationCreate, SignOff

# Public customer review links; the proof access token is the only credential.
router = APIRouter()


@router.get("/{token}")
def load_review(token: str, session: Session = Depends(get_session)):
    return proofs.get_by_token(session, token)


@router.post("/{token}/annotate", status_code=status.HTTP_201_CREATED)
def annotate(token: str, payload: AnnotationCreate, request: Request, session: Session = Depends(get_session)):
    annotation = proofs.annotate_by_token(
        session,
        token,
        ip_address=client_ip(request),
        **payload.model_dump(),
    )
    return {"annotation": proofs.serialize_annotation(annotation)}


@router.delete("/{token}/annotations/{annotation_id}")
def delete_annotation(token: str, annotation_id: int, request: Request, session: Session = Depends(get_session)):
    proofs.delete_annotation_by_token(session, token, annotation_id, ip_address=client_ip(request))
    return {"ok": True}


@router.post("/{token}/signoff")
def sign_off(token: str, payload: SignOff, request: Request, session: Session = Depends(get_session)):
    proof = proofs.approve_by_token(
        session,
        token,
        payload.signed_off_by,
        payload.signature,
        payload.signature_type,
        ip_address=client_ip(request),
    )
    return {"proof": proofs.serialize_proof(session, proof)}


@router.get("/{token}/file")
def download_file(token: str, session: Session = Depends(get_session)):
    try:
        data, content_type = proofs.read_file(session, token)
    except S3Error:
        raise HTTPException(404, "stored file missing for this proof")
    return Response(content=data, media_type=content_type)
