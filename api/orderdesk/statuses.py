from enum import Enum
from typing import NamedTuple


class OrderStatus(str, Enum):
    NEW = "new"
    WAITING_FEEDBACK = "waiting_feedback"
    IN_PROGRESS = "in_progress"
    SUBMITTED_TO_KIMP360 = "submitted_to_kimp360"
    WAITING_SIGNOFF = "waiting_signoff"
    SENT_TO_PRINT = "sent_to_print"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


ORDER_STATUS_VALUES = frozenset(s.value for s in OrderStatus)


class StatusDisplay(NamedTuple):
    label: str
    color: str


STATUS_DISPLAY = {
    OrderStatus.NEW: StatusDisplay("New Request", "#3b82f6"),
    OrderStatus.WAITING_FEEDBACK: StatusDisplay("Waiting for Feedback", "#f59e0b"),
    OrderStatus.IN_PROGRESS: StatusDisplay("In Progress", "#8b5cf6"),
    OrderStatus.SUBMITTED_TO_KIMP360: StatusDisplay("Submitted to Kimp360", "#6366f1"),
    OrderStatus.WAITING_SIGNOFF: StatusDisplay("Waiting for Sign Off", "#06b6d4"),
    OrderStatus.SENT_TO_PRINT: StatusDisplay("Sent to Print", "#14b8a6"),
    OrderStatus.COMPLETED: StatusDisplay("Completed", "#10b981"),
    OrderStatus.ON_HOLD: StatusDisplay("On Hold", "#ef4444"),
}


def is_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    # any admin may move an order to any status
    return True


class ProofStatus(str, Enum):
    PENDING = "pending"
    FEEDBACK_RECEIVED = "feedback_received"
    APPROVED = "approved"


class AnnotationType(str, Enum):
    PIN = "pin"
    AREA = "area"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class AuditCategory(str, Enum):
    ORDERS = "orders"
    USERS = "users"
    AUTH = "auth"
    PROOFS = "proofs"
    COMMUNICATIONS = "communications"
    PRODUCTS = "products"
