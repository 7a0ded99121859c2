import hashlib, json, re
from datetime import datetime, timezone
from typing import Optional, Union
from itsdangerous import BadSignature, URLSafeSerializer
from .config import SECRET_KEY

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="reply-to")
    return s.dumps(payload)


def read_token(token: str) -> Optional[dict]:
    s = URLSafeSerializer(SECRET_KEY, salt="reply-to")
    try:
        return s.loads(token)
    except BadSignature:
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[datetime, str, None]) -> Optional[datetime]:
    # values without an offset are UTC by convention, never local time
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def slugify(text: Optional[str], limit: int = 30) -> str:
    if not text:
        return ""
    slug = text.lower().replace("'", "").replace("’", "")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:limit].strip("-")


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()
