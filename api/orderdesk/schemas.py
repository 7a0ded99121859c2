import base64
import binascii
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from .errors import ValidationError


class AttachmentIn(BaseModel):
    filename: str
    content_type: str = "application/octet-stream"
    content_base64: str

    def as_attachment(self) -> dict:
        try:
            content = base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(f"Attachment {self.filename} is not valid base64")
        return {"filename": self.filename, "content_type": self.content_type, "content": content}

class OrderCreate(BaseModel):
    shipping_info: dict
    items: list = []
    order_number: Optional[str] = None
    user_id: Optional[int] = None
    guest: bool = False

class StatusUpdate(BaseModel):
    status: str

class AssignmentUpdate(BaseModel):
    admin_id: Optional[int] = None

class ShippingInfoUpdate(BaseModel):
    shipping_info: dict  # dotted keys allowed, e.g. {"address.city": "Austin"}
    linked_user_id: Optional[int] = None
    new_user: Optional[dict] = None

class ItemsUpdate(BaseModel):
    items: list

class CcEmailsUpdate(BaseModel):
    emails: list

class NoteCreate(BaseModel):
    text: str

class EmailSend(BaseModel):
    subject: str
    body: str
    cc_emails: Optional[List[str]] = None
    include_order_details: bool = True
    attachments: List[AttachmentIn] = []

class AnnotationCreate(BaseModel):
    author_name: str
    author_email: Optional[str] = None
    type: str = "pin"
    comment: str
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None
    page: Optional[int] = None

class AnnotationResolve(BaseModel):
    resolved_by: Optional[str] = None

class SignOff(BaseModel):
    signed_off_by: str
    signature: str
    signature_type: str = "typed"

class InboundMail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    sender: Optional[str] = Field(default=None, alias="from")
    subject: Optional[str] = None
    text: Optional[str] = None
    attachments: List[AttachmentIn] = []
