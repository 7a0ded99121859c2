from typing import Optional
from datetime import datetime
from sqlalchemy import Index
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow


class User(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str = ORMField(index=True)
    name: str
    role: str = "customer"  # admin|customer
    user_type: Optional[str] = None
    school_name: Optional[str] = None
    phone: Optional[str] = None
    access_token: Optional[str] = ORMField(default=None, index=True)
    created_at: datetime = ORMField(default_factory=utcnow)


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = ORMField(default=None, primary_key=True)
    order_number: str = ORMField(index=True)
    user_id: Optional[int] = None
    status: str = "new"
    assigned_to: Optional[int] = None
    shipping_info_json: str = "{}"
    items_json: str = "[]"
    cc_emails_json: str = "[]"
    total: float = 0.0
    proof_version_seq: int = 0
    archived: bool = False
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class OrderNote(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    order_id: int = ORMField(index=True)
    admin_id: int
    admin_name: str
    text: str
    created_at: datetime = ORMField(default_factory=utcnow)


class Proof(SQLModel, table=True):
    __table_args__ = (Index("uq_proof_order_version", "order_id", "version", unique=True),)

    id: Optional[int] = ORMField(default=None, primary_key=True)
    order_id: int = ORMField(index=True)
    version: int
    title: str
    s3_key: str
    file_type: str
    file_size: int = 0
    sha256: Optional[str] = None
    page_count: Optional[int] = None
    status: str = "pending"  # pending|feedback_received|approved
    access_token: str = ORMField(index=True)
    expires_at: Optional[datetime] = None
    created_by: Optional[int] = None
    signed_off_by: Optional[str] = None
    signed_off_at: Optional[datetime] = None
    signature: Optional[str] = None
    signature_type: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class ProofAnnotation(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    proof_id: int = ORMField(index=True)
    type: str  # pin|area
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None
    page: int = 1
    comment: str
    author_name: str
    author_email: Optional[str] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class Communication(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    order_id: int = ORMField(index=True)
    direction: str  # inbound|outbound
    admin_id: Optional[int] = None
    sender_email: Optional[str] = None
    recipient_email: Optional[str] = None
    cc_json: str = "[]"
    subject: str = ""
    body: str = ""
    reply_token: Optional[str] = None
    attachments_json: str = "[]"
    message_id: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class AuditLog(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    created_at: datetime = ORMField(default_factory=utcnow, index=True)
    category: str = ORMField(index=True)
    action: str = ORMField(index=True)
    actor_id: Optional[int] = None
    actor_name: Optional[str] = None
    actor_email: Optional[str] = None
    target_id: Optional[int] = None
    target_type: Optional[str] = None
    details_json: str = "{}"
    ip_address: Optional[str] = None


class NotificationReadState(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    order_id: int = ORMField(index=True)
    actor_id: int = ORMField(index=True)
    acknowledged_at: datetime = ORMField(default_factory=utcnow)
