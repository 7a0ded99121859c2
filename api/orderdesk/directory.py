"""User lookups used when linking orders to registered accounts."""
from typing import List, Optional
from sqlmodel import Session, select
from . import audit
from .errors import Conflict, ValidationError
from .events import UserQuickCreated
from .models import User
from .utils import EMAIL_RE, normalize_email


def find_user(session: Session, *, user_id: Optional[int] = None, email: Optional[str] = None) -> Optional[User]:
    if user_id is not None:
        return session.get(User, user_id)
    if email:
        return session.exec(select(User).where(User.email == normalize_email(email))).first()
    return None


def list_admins(session: Session) -> List[User]:
    return session.exec(select(User).where(User.role == "admin").order_by(User.name)).all()


def create_user(session: Session, data: dict, actor=None, ip_address: Optional[str] = None) -> User:
    email = normalize_email(data.get("email"))
    name = (data.get("contact_name") or data.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required to create a user")
    if not EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email address: {data.get('email') or '(empty)'}")
    if find_user(session, email=email):
        raise Conflict(f"A user with email {email} already exists")
    user = User(
        email=email,
        name=name,
        role="customer",
        user_type=data.get("user_type"),
        school_name=data.get("school_name"),
        phone=data.get("phone"),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    audit.record(
        session,
        UserQuickCreated(contact_name=user.name, email=user.email, school_name=user.school_name, phone=user.phone),
        actor,
        target_id=user.id,
        target_type="user",
        ip_address=ip_address,
    )
    return user
