import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orderdesk.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "orderdesk")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
REPLY_DOMAIN = os.getenv("REPLY_DOMAIN", "parse.localhost")
ORDERS_FROM_EMAIL = os.getenv("ORDERS_FROM_EMAIL", "orders@localhost")

PROOF_LINK_TTL_DAYS = int(os.getenv("PROOF_LINK_TTL_DAYS", "60"))
MAX_PROOF_BYTES = int(os.getenv("MAX_PROOF_BYTES", str(50 * 1024 * 1024)))
AUDIT_PAGE_SIZE = int(os.getenv("AUDIT_PAGE_SIZE", "50"))

# client refresh intervals, seconds
ORDER_POLL_SECONDS = float(os.getenv("ORDER_POLL_SECONDS", "15"))
DASHBOARD_POLL_SECONDS = float(os.getenv("DASHBOARD_POLL_SECONDS", "30"))
AUDIT_POLL_SECONDS = float(os.getenv("AUDIT_POLL_SECONDS", "30"))
