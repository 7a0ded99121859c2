import os
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from minio.error import S3Error
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from orderdesk.main import app  # noqa: E402
from orderdesk import db as db_module  # noqa: E402
from orderdesk.db import get_session  # noqa: E402
from orderdesk import storage as storage_module  # noqa: E402
from orderdesk import communications as communications_module  # noqa: E402
from orderdesk import proofs as proofs_module  # noqa: E402
from orderdesk import email as email_module  # noqa: E402
from orderdesk.auth import Actor  # noqa: E402
from orderdesk.models import User  # noqa: E402

ADMIN_TOKEN = "admin-test-token"
OTHER_ADMIN_TOKEN = "other-admin-token"
CUSTOMER_TOKEN = "customer-test-token"
ADMIN_HEADERS = {"X-Access-Token": ADMIN_TOKEN}
OTHER_ADMIN_HEADERS = {"X-Access-Token": OTHER_ADMIN_TOKEN}


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    db_module.init_db(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)
        return {"url": key, "type": content_type}

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise S3Error("NoSuchKey", "missing", f"/{key}", "test-request", "test-host", None)
        return store[key]

    def fake_delete_object(key: str):
        store.pop(key, None)

    for target in (storage_module, communications_module, proofs_module):
        if hasattr(target, "put_bytes"):
            monkeypatch.setattr(target, "put_bytes", fake_put_bytes)
        if hasattr(target, "get_bytes"):
            monkeypatch.setattr(target, "get_bytes", fake_get_bytes)
        if hasattr(target, "delete_object"):
            monkeypatch.setattr(target, "delete_object", fake_delete_object)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, attachments=None, cc=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": body,
                "html": html_body,
                "attachments": attachments or [],
                "cc": cc or [],
                "sender_name": sender_name,
                "reply_to": reply_to,
            }
        )
        return {"success": True, "message_id": f"<test-{len(messages)}@orderdesk>", "from": "orders@localhost"}

    for target in (email_module, communications_module):
        monkeypatch.setattr(target, "send_email", fake_send_email)
    return messages


def _add_user(session, name, email, token, role="admin"):
    user = User(name=name, email=email, role=role, access_token=token)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin_user(session):
    return _add_user(session, "Dana Admin", "dana@orderdesk.test", ADMIN_TOKEN)


@pytest.fixture
def other_admin_user(session):
    return _add_user(session, "Sam Admin", "sam@orderdesk.test", OTHER_ADMIN_TOKEN)


@pytest.fixture
def customer_user(session):
    return _add_user(session, "Casey Customer", "casey@school.test", CUSTOMER_TOKEN, role="customer")


@pytest.fixture
def admin(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture
def other_admin(other_admin_user):
    return Actor.from_user(other_admin_user)


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails, admin_user, monkeypatch):
    monkeypatch.setattr(db_module, "engine", test_engine)

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
