import logging
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)


def init_db(bind=None):
    from .models import User, Order, OrderNote, Proof, ProofAnnotation, Communication, AuditLog, NotificationReadState
    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    _ensure_unique_index(bind, "orders", "order_number", "uq_order_number")
    _ensure_unique_index(bind, "proof", "access_token", "uq_proof_access_token")
    _ensure_unique_index(bind, "proof", "order_id, version", "uq_proof_order_version")


def get_session():
    with Session(engine) as session:
        yield session


def _ensure_unique_index(bind, table: str, column: str, index_name: str):
    inspector = inspect(bind)
    try:
        indexes = inspector.get_indexes(table)
    except Exception:
        return
    if any(idx.get("name") == index_name for idx in indexes):
        return
    with bind.begin() as conn:
        duplicates = conn.execute(
            text(f"SELECT {column} FROM {table} GROUP BY {column} HAVING COUNT(*) > 1")
        ).fetchall()
        if duplicates:
            values = ", ".join("/".join(str(v) for v in row) for row in duplicates if row[0])
            logger.warning(
                "duplicate %s.%s values detected; resolve before enforcing uniqueness: %s",
                table, column, values,
            )
            return
        conn.execute(text(f"CREATE UNIQUE INDEX IF NOT EXISTS {index_name} ON {table}({column})"))
