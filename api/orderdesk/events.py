from typing import Any, ClassVar, Dict, List, Optional, Type
from pydantic import BaseModel, ConfigDict, Field
from .statuses import AuditCategory

DETAIL_TYPES: Dict[str, Type["EventDetails"]] = {}


class EventDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    ACTION: ClassVar[str] = ""
    CATEGORY: ClassVar[AuditCategory] = AuditCategory.ORDERS

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs):
        super().__pydantic_init_subclass__(**kwargs)
        if cls.ACTION:
            DETAIL_TYPES[cls.ACTION] = cls

    def payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


class GenericDetails(EventDetails):
    """Details for an action with no registered payload type."""


def parse_details(action: str, raw: Optional[dict]) -> EventDetails:
    model = DETAIL_TYPES.get(action, GenericDetails)
    return model.model_validate(raw or {})


def category_for(action: str) -> Optional[AuditCategory]:
    model = DETAIL_TYPES.get(action)
    return model.CATEGORY if model else None


class ChangeEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field: str
    before: Any = Field(default=None, alias="from")
    after: Any = Field(default=None, alias="to")


# ---------- products ----------

class ProductCreated(EventDetails):
    ACTION = "product.create"
    CATEGORY = AuditCategory.PRODUCTS
    name: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None


class ProductUpdated(EventDetails):
    ACTION = "product.update"
    CATEGORY = AuditCategory.PRODUCTS
    name: Optional[str] = None
    changes: List[ChangeEntry] = []


class ProductDeleted(EventDetails):
    ACTION = "product.delete"
    CATEGORY = AuditCategory.PRODUCTS
    name: Optional[str] = None
    category: Optional[str] = None


# ---------- orders ----------

class OrderCreated(EventDetails):
    ACTION = "order.create"
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    item_count: Optional[int] = None
    item_names: List[str] = []
    is_special_request: Optional[bool] = None


class GuestOrderCreated(EventDetails):
    ACTION = "order.guest_create"
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    school_name: Optional[str] = None
    project_title: Optional[str] = None


class OrderStatusChanged(EventDetails):
    ACTION = "order.status_change"
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    previous_status: Optional[str] = None
    status: Optional[str] = None


class OrderAssigned(EventDetails):
    ACTION = "order.assign"
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    admin_id: Optional[str] = None
    admin_name: Optional[str] = None
    previous_admin_id: Optional[str] = None


class OrderItemsUpdated(EventDetails):
    ACTION = "order.items_update"
    order_number: Optional[str] = None
    previous_item_count: Optional[int] = None
    item_count: Optional[int] = None
    item_names: List[str] = []


class OrderShippingUpdated(EventDetails):
    ACTION = "order.shipping_update"
    order_number: Optional[str] = None
    changes: List[ChangeEntry] = []
    linked_user_id: Optional[int] = None


class OrderEmailsUpdated(EventDetails):
    ACTION = "order.emails_update"
    order_number: Optional[str] = None
    email_count: Optional[int] = None
    emails: List[str] = []


class OrderNoteAdded(EventDetails):
    ACTION = "order.note_add"
    order_number: Optional[str] = None
    note_preview: Optional[str] = None


class OrderNoteDeleted(EventDetails):
    ACTION = "order.note_delete"
    order_number: Optional[str] = None


class OrderEmailSent(EventDetails):
    ACTION = "order.email_send"
    order_number: Optional[str] = None
    to: Optional[str] = None
    subject: Optional[str] = None
    contact_name: Optional[str] = None
    attachment_count: Optional[int] = None
    cc_count: Optional[int] = None


class OrderCommsMarkedRead(EventDetails):
    ACTION = "order.comms_mark_read"
    order_number: Optional[str] = None
    contact_name: Optional[str] = None


# ---------- users / auth ----------

class UserCreated(EventDetails):
    ACTION = "user.create"
    CATEGORY = AuditCategory.USERS
    user_type: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    school_name: Optional[str] = None
    department: Optional[str] = None
    position_title: Optional[str] = None


class UserQuickCreated(EventDetails):
    ACTION = "user.quick_create"
    CATEGORY = AuditCategory.USERS
    contact_name: Optional[str] = None
    email: Optional[str] = None
    school_name: Optional[str] = None
    phone: Optional[str] = None


class UserUpdated(EventDetails):
    ACTION = "user.update"
    CATEGORY = AuditCategory.USERS
    contact_name: Optional[str] = None
    email: Optional[str] = None
    changes: List[ChangeEntry] = []


class UserRoleChanged(EventDetails):
    ACTION = "user.role_change"
    CATEGORY = AuditCategory.USERS
    contact_name: Optional[str] = None
    email: Optional[str] = None
    previous_role: Optional[str] = None
    role: Optional[str] = None


class UserTypeChanged(EventDetails):
    ACTION = "user.type_change"
    CATEGORY = AuditCategory.USERS
    contact_name: Optional[str] = None
    email: Optional[str] = None
    previous_type: Optional[str] = None
    user_type: Optional[str] = None


class UserRegistered(EventDetails):
    ACTION = "auth.register"
    CATEGORY = AuditCategory.AUTH
    contact_name: Optional[str] = None
    email: Optional[str] = None
    user_type: Optional[str] = None
    school_name: Optional[str] = None


class UserLoggedIn(EventDetails):
    ACTION = "auth.login"
    CATEGORY = AuditCategory.AUTH
    contact_name: Optional[str] = None
    email: Optional[str] = None
    user_type: Optional[str] = None


# ---------- proofs ----------

class ProofUploaded(EventDetails):
    ACTION = "proof.upload"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    title: Optional[str] = None
    version: Optional[int] = None
    contact_name: Optional[str] = None
    email_sent: Optional[bool] = None


class ProofDeleted(EventDetails):
    ACTION = "proof.delete"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    title: Optional[str] = None
    version: Optional[int] = None


class ProofAnnotated(EventDetails):
    ACTION = "proof.annotate"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    proof_title: Optional[str] = None
    version: Optional[int] = None
    author_name: Optional[str] = None
    type: Optional[str] = None
    comment: Optional[str] = None


class AnnotationResolved(EventDetails):
    ACTION = "proof.annotation_resolve"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    resolved_by: Optional[str] = None
    comment: Optional[str] = None


class AnnotationDeleted(EventDetails):
    ACTION = "proof.annotation_delete"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    author_name: Optional[str] = None
    comment: Optional[str] = None


class ProofApproved(EventDetails):
    ACTION = "proof.approve"
    CATEGORY = AuditCategory.PROOFS
    order_number: Optional[str] = None
    title: Optional[str] = None
    version: Optional[int] = None
    signed_off_by: Optional[str] = None
    open_annotations: Optional[int] = None


# ---------- communications ----------

class InboundMailReceived(EventDetails):
    ACTION = "communication.inbound_received"
    CATEGORY = AuditCategory.COMMUNICATIONS
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    sender: Optional[str] = None
    subject: Optional[str] = None
    has_attachments: Optional[bool] = None
