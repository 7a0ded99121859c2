import logging
import os
import secrets
from datetime import timedelta
from io import BytesIO
from typing import List, Optional
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy import func, update
from sqlmodel import Session, col, select
from . import audit, communications
from . import orders as order_ops
from .auth import Actor
from .config import CLIENT_URL, MAX_PROOF_BYTES, PROOF_LINK_TTL_DAYS
from .errors import Conflict, NotFound, UpstreamFailure, ValidationError
from .events import AnnotationDeleted, AnnotationResolved, ProofAnnotated, ProofApproved, ProofDeleted, ProofUploaded
from .models import Order, Proof, ProofAnnotation
from .statuses import AnnotationType, ProofStatus
from .storage import delete_object, get_bytes, put_bytes
from .utils import as_utc, isoformat, sha256_bytes, slugify, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".pdf"}


# ---------- helpers ----------

def _get_proof(session: Session, proof_id: int) -> Proof:
    proof = session.get(Proof, proof_id)
    if not proof:
        raise NotFound("Proof not found")
    return proof


def get_by_access_token(session: Session, access_token: str) -> Proof:
    proof = session.exec(select(Proof).where(Proof.access_token == access_token)).first()
    if not proof:
        raise NotFound("Proof not found")
    return proof


def annotations_for(session: Session, proof_id: int) -> List[ProofAnnotation]:
    return session.exec(
        select(ProofAnnotation)
        .where(ProofAnnotation.proof_id == proof_id)
        .order_by(col(ProofAnnotation.created_at), col(ProofAnnotation.id))
    ).all()


def is_expired(proof: Proof) -> bool:
    expires_at = as_utc(proof.expires_at)
    return bool(expires_at and expires_at < utcnow())


def review_url(proof: Proof) -> str:
    return f"{CLIENT_URL.rstrip('/')}/proof/{proof.access_token}"


def serialize_annotation(annotation: ProofAnnotation) -> dict:
    return {
        "id": annotation.id,
        "proof_id": annotation.proof_id,
        "type": annotation.type,
        "x": annotation.x,
        "y": annotation.y,
        "width": annotation.width,
        "height": annotation.height,
        "page": annotation.page,
        "comment": annotation.comment,
        "author_name": annotation.author_name,
        "author_email": annotation.author_email,
        "resolved": annotation.resolved,
        "resolved_by": annotation.resolved_by,
        "resolved_at": isoformat(annotation.resolved_at),
        "created_at": isoformat(annotation.created_at),
    }


def serialize_proof(session: Session, proof: Proof, with_annotations: bool = True) -> dict:
    data = {
        "id": proof.id,
        "order_id": proof.order_id,
        "version": proof.version,
        "title": proof.title,
        "file_url": f"/api/proofs/review/{proof.access_token}/file",
        "file_type": proof.file_type,
        "file_size": proof.file_size,
        "page_count": proof.page_count,
        "status": proof.status,
        "access_token": proof.access_token,
        "review_url": review_url(proof),
        "expires_at": isoformat(proof.expires_at),
        "signed_off_by": proof.signed_off_by,
        "signed_off_at": isoformat(proof.signed_off_at),
        "signature": proof.signature,
        "signature_type": proof.signature_type,
        "created_at": isoformat(proof.created_at),
    }
    if with_annotations:
        annotations = annotations_for(session, proof.id)
        data["annotations"] = [serialize_annotation(a) for a in annotations]
        data["annotation_count"] = len(annotations)
    return data


def _resolve_file_type(filename: Optional[str], content_type: Optional[str]) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if content_type in ALLOWED_TYPES and (not ext or ext in ALLOWED_EXTENSIONS):
        return content_type
    raise ValidationError("Only image files (JPEG, PNG, GIF, WebP) and PDFs are allowed")


def _pdf_page_count(data: bytes) -> int:
    try:
        return len(PdfReader(BytesIO(data)).pages)
    except (PdfReadError, ValueError) as exc:
        raise ValidationError("The PDF could not be read") from exc


def generate_access_token(order: Order, title: str, version: int) -> str:
    """``{order}-{title}-v{n}-{random}``; the random tail makes it unguessable."""
    info = order_ops.shipping_info(order)
    if info.get("is_internal_order"):
        order_slug = slugify(info.get("contact_name") or info.get("department"))
    else:
        order_slug = slugify(info.get("school_name") or info.get("contact_name"))
    return f"{order_slug or 'order'}-{slugify(title) or 'proof'}-v{version}-{secrets.token_urlsafe(12)}"


def next_version(session: Session, order: Order) -> int:
    """Reserve and commit the next proof version for ``order``.

    A failed upload leaves a gap in the sequence; numbers are never reused.
    """
    while True:
        current = session.exec(select(Order.proof_version_seq).where(Order.id == order.id)).one()
        highest = session.exec(select(func.max(Proof.version)).where(Proof.order_id == order.id)).one()
        version = max(highest or 0, current or 0) + 1
        result = session.execute(
            update(Order)
            .where(Order.id == order.id, Order.proof_version_seq == current)
            .values(proof_version_seq=version)
        )
        session.commit()
        if result.rowcount == 1:
            session.refresh(order)
            return version
        logger.info("proof version race on order %s, retrying", order.id)


def _customer_actor(name: Optional[str], email: Optional[str] = None) -> Actor:
    return Actor(name=name, email=email, role="customer")


def _ensure_open(proof: Proof, verb: str):
    if is_expired(proof):
        raise ValidationError("This proof link has expired")
    if proof.status == ProofStatus.APPROVED.value:
        raise ValidationError(f"Cannot {verb} an approved proof")


# ---------- admin operations ----------

def list_for_order(session: Session, order_id: int) -> List[Proof]:
    order_ops.get_order(session, order_id)
    return session.exec(
        select(Proof).where(Proof.order_id == order_id).order_by(col(Proof.version).desc())
    ).all()


def upload(
    session: Session,
    order_id: int,
    data: bytes,
    filename: Optional[str],
    content_type: Optional[str],
    title: Optional[str] = None,
    notify_customer: bool = False,
    actor=None,
    ip_address: Optional[str] = None,
) -> Proof:
    order = order_ops.get_order(session, order_id)
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > MAX_PROOF_BYTES:
        raise ValidationError("File is too large")
    file_type = _resolve_file_type(filename, content_type)
    page_count = _pdf_page_count(data) if file_type == "application/pdf" else None
    version = next_version(session, order)
    title = (title or "").strip() or os.path.splitext(filename or "")[0] or f"Proof v{version}"
    digest = sha256_bytes(data)
    key = f"orders/{order.id}/proofs/v{version}-{digest[:12]}{ALLOWED_TYPES[file_type]}"
    stored = put_bytes(key, data, content_type=file_type)

    now = utcnow()
    proof = Proof(
        order_id=order.id,
        version=version,
        title=title,
        s3_key=stored["url"],
        file_type=stored["type"],
        file_size=len(data),
        sha256=digest,
        page_count=page_count,
        status=ProofStatus.PENDING.value,
        access_token=generate_access_token(order, title, version),
        expires_at=now + timedelta(days=PROOF_LINK_TTL_DAYS),
        created_by=getattr(actor, "id", None),
        created_at=now,
    )
    session.add(proof)
    session.commit()
    session.refresh(proof)

    email_sent = False
    if notify_customer:
        email_sent = _notify_customer(session, order, proof, actor)
    info = order_ops.shipping_info(order)
    audit.record(
        session,
        ProofUploaded(
            order_number=order.order_number,
            title=proof.title,
            version=proof.version,
            contact_name=info.get("contact_name"),
            email_sent=email_sent or None,
        ),
        actor,
        target_id=order.id,
        ip_address=ip_address,
    )
    return proof


def _notify_customer(session: Session, order: Order, proof: Proof, actor) -> bool:
    info = order_ops.shipping_info(order)
    if not info.get("email"):
        return False
    first_name = (info.get("contact_name") or "Valued Customer").split()[0]
    body = (
        f"Hi {first_name},\n\n"
        f"A proof is ready for your review!\n\n"
        f"Proof: {proof.title or f'Version {proof.version}'}\n\n"
        f"Please open the link below to review the proof and provide feedback or approve the design:\n\n"
        f"{review_url(proof)}\n\n"
        f"You can:\n"
        f"- Click on specific areas of the design to leave feedback\n"
        f"- Draw rectangles to highlight sections that need changes\n"
        f"- Approve the proof when you're satisfied with the design"
    )
    try:
        communications.record_outbound(
            session,
            order.id,
            f"Order #{order.order_number} - Proof Ready for Review",
            body,
            include_order_details=False,
            actor=actor,
            audited=False,
        )
    except UpstreamFailure:
        # the proof itself is stored; only the notification is lost
        logger.warning("proof %s uploaded but the review email was not sent", proof.id)
        return False
    return True


def delete(session: Session, proof_id: int, actor, ip_address: Optional[str] = None) -> None:
    proof = _get_proof(session, proof_id)
    order = session.get(Order, proof.order_id)
    order_id, title, version, key = proof.order_id, proof.title, proof.version, proof.s3_key
    for annotation in annotations_for(session, proof.id):
        session.delete(annotation)
    session.delete(proof)
    session.commit()
    try:
        delete_object(key)
    except UpstreamFailure:
        logger.warning("proof %s deleted but stored file %s was not removed", proof_id, key)
    audit.record(
        session,
        ProofDeleted(order_number=order.order_number if order else None, title=title, version=version),
        actor,
        target_id=order_id,
        ip_address=ip_address,
    )


def resolve_annotation(session: Session, annotation_id: int, resolved_by: Optional[str], actor=None, ip_address: Optional[str] = None) -> ProofAnnotation:
    """Mark feedback handled. Resolving twice is a no-op; the proof status is untouched."""
    annotation = session.get(ProofAnnotation, annotation_id)
    if not annotation:
        raise NotFound("Annotation not found")
    if annotation.resolved:
        return annotation
    annotation.resolved = True
    annotation.resolved_by = resolved_by or getattr(actor, "name", None) or getattr(actor, "email", None) or "Admin"
    annotation.resolved_at = utcnow()
    session.add(annotation)
    session.commit()
    session.refresh(annotation)
    proof = session.get(Proof, annotation.proof_id)
    order = session.get(Order, proof.order_id) if proof else None
    audit.record(
        session,
        AnnotationResolved(
            order_number=order.order_number if order else None,
            resolved_by=annotation.resolved_by,
            comment=annotation.comment,
        ),
        actor,
        target_id=order.id if order else None,
        ip_address=ip_address,
    )
    return annotation


# ---------- customer operations ----------

def annotate(
    session: Session,
    proof_id: int,
    author_name: str,
    type: str,
    comment: str,
    x: float,
    y: float,
    width: Optional[float] = None,
    height: Optional[float] = None,
    page: Optional[int] = None,
    author_email: Optional[str] = None,
    actor=None,
    ip_address: Optional[str] = None,
) -> ProofAnnotation:
    proof = _get_proof(session, proof_id)
    _ensure_open(proof, "add annotations to")
    author_name = (author_name or "").strip()
    comment = (comment or "").strip()
    if not comment or not author_name:
        raise ValidationError("Missing required fields: comment, author name")
    try:
        kind = AnnotationType(type)
    except ValueError:
        raise ValidationError(f"Invalid annotation type: {type}")
    if x is None or y is None:
        raise ValidationError("Missing required fields: x, y")
    if kind is AnnotationType.AREA and (not width or not height):
        raise ValidationError("Area feedback needs a width and height")
    page = page or 1
    if page < 1 or (proof.page_count and page > proof.page_count):
        raise ValidationError(f"Page {page} is outside this proof")

    annotation = ProofAnnotation(
        proof_id=proof.id,
        type=kind.value,
        x=x,
        y=y,
        width=width if kind is AnnotationType.AREA else None,
        height=height if kind is AnnotationType.AREA else None,
        page=page,
        comment=comment,
        author_name=author_name,
        author_email=author_email,
    )
    session.add(annotation)
    if proof.status == ProofStatus.PENDING.value:
        proof.status = ProofStatus.FEEDBACK_RECEIVED.value
        session.add(proof)
    session.commit()
    session.refresh(annotation)
    order = session.get(Order, proof.order_id)
    audit.record(
        session,
        ProofAnnotated(
            order_number=order.order_number if order else None,
            proof_title=proof.title,
            version=proof.version,
            author_name=author_name,
            type=kind.value,
            comment=comment,
        ),
        actor or _customer_actor(author_name, author_email),
        target_id=proof.order_id,
        ip_address=ip_address,
    )
    return annotation


def annotate_by_token(session: Session, access_token: str, ip_address: Optional[str] = None, **fields) -> ProofAnnotation:
    proof = get_by_access_token(session, access_token)
    return annotate(session, proof.id, ip_address=ip_address, **fields)


def delete_annotation_by_token(session: Session, access_token: str, annotation_id: int, ip_address: Optional[str] = None) -> None:
    proof = get_by_access_token(session, access_token)
    _ensure_open(proof, "delete annotations from")
    annotation = session.get(ProofAnnotation, annotation_id)
    if not annotation or annotation.proof_id != proof.id:
        raise NotFound("Annotation not found")
    author_name, author_email, comment = annotation.author_name, annotation.author_email, annotation.comment
    session.delete(annotation)
    session.commit()
    order = session.get(Order, proof.order_id)
    audit.record(
        session,
        AnnotationDeleted(order_number=order.order_number if order else None, author_name=author_name, comment=comment),
        _customer_actor(author_name, author_email),
        target_id=proof.order_id,
        ip_address=ip_address,
    )


def approve(
    session: Session,
    proof_id: int,
    signed_off_by: str,
    signature: str,
    signature_type: str = "typed",
    ip_address: Optional[str] = None,
) -> Proof:
    """Customer sign-off. Open annotations stay open; approval is not gated on them."""
    proof = _get_proof(session, proof_id)
    if proof.status == ProofStatus.APPROVED.value:
        raise Conflict("This proof has already been approved")
    if is_expired(proof):
        raise ValidationError("This proof link has expired")
    signed_off_by = (signed_off_by or "").strip()
    signature = (signature or "").strip()
    if not signed_off_by or not signature:
        raise ValidationError("Name and signature are required")

    proof.status = ProofStatus.APPROVED.value
    proof.signed_off_by = signed_off_by
    proof.signature = signature
    proof.signature_type = signature_type or "typed"
    proof.signed_off_at = utcnow()
    session.add(proof)
    session.commit()
    session.refresh(proof)

    order = session.get(Order, proof.order_id)
    open_count = sum(1 for a in annotations_for(session, proof.id) if not a.resolved)
    if order:
        info = order_ops.shipping_info(order)
        communications.append_inbound(
            session,
            order,
            info.get("email") or signed_off_by,
            f"Proof Approved - Order #{order.order_number}",
            f"{signed_off_by} has approved Proof Version {proof.version}.\n\n"
            f"Signature: {signature}\nSigned at: {isoformat(proof.signed_off_at)}",
            reply_token=f"proof-signoff-{proof.id}",
        )
    audit.record(
        session,
        ProofApproved(
            order_number=order.order_number if order else None,
            title=proof.title,
            version=proof.version,
            signed_off_by=signed_off_by,
            open_annotations=open_count or None,
        ),
        _customer_actor(signed_off_by),
        target_id=proof.order_id,
        ip_address=ip_address,
    )
    return proof


def approve_by_token(session: Session, access_token: str, signed_off_by: str, signature: str, signature_type: str = "typed", ip_address: Optional[str] = None) -> Proof:
    proof = get_by_access_token(session, access_token)
    return approve(session, proof.id, signed_off_by, signature, signature_type, ip_address=ip_address)


def version_history(session: Session, order_id: int) -> List[dict]:
    proofs = session.exec(
        select(Proof).where(Proof.order_id == order_id).order_by(col(Proof.version).desc())
    ).all()
    return [
        {
            "id": p.id,
            "version": p.version,
            "title": p.title,
            "status": p.status,
            "created_at": isoformat(p.created_at),
        }
        for p in proofs
    ]


def get_by_token(session: Session, access_token: str) -> dict:
    proof = get_by_access_token(session, access_token)
    order = session.get(Order, proof.order_id)
    expired = is_expired(proof)
    open_for_feedback = not expired and proof.status != ProofStatus.APPROVED.value
    data = serialize_proof(session, proof)
    data["order_number"] = order.order_number if order else None
    return {
        "proof": data,
        "is_expired": expired,
        "can_annotate": open_for_feedback,
        "can_sign_off": open_for_feedback,
        "version_history": version_history(session, proof.order_id),
    }


def read_file(session: Session, access_token: str) -> tuple:
    proof = get_by_access_token(session, access_token)
    return get_bytes(proof.s3_key), proof.file_type
