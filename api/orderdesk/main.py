import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .routers import admins, audit, meta, notifications, orders, proofs, review, webhooks
from .db import init_db
from .errors import OrderDeskError, orderdesk_error_handler

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Order Desk API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(OrderDeskError, orderdesk_error_handler)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(orders.router, prefix="/api/admin/orders", tags=["orders"])
app.include_router(admins.router, prefix="/api/admin/admins", tags=["admins"])
app.include_router(proofs.router, prefix="/api/admin/proofs", tags=["proofs"])
app.include_router(review.router, prefix="/api/proofs/review", tags=["proof-review"])
app.include_router(audit.router, prefix="/api/admin/audit", tags=["audit"])
app.include_router(notifications.router, prefix="/api/admin/notifications", tags=["notifications"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(meta.router, prefix="/api/meta", tags=["meta"])

@app.get("/")
def root():
    return {"ok": True, "service": "orderdesk-api"}
