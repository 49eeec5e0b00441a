# backend/storedb/main.py
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.accounts.router_public import router as accounts_public_router
from .apps.accounts.router_admin import router as accounts_admin_router
from .apps.stores.router import router as stores_router
from .apps.stores.router_admin import router as stores_admin_router
from .apps.inventory.router import router as inventory_router
from .apps.transfers.router import router as transfers_router
from .apps.transfers.router_admin import router as transfers_admin_router
from .apps.dashboard.router import router as dashboard_router
from .apps.exports.router import router as exports_router
from .apps.audit.router import router as audit_router
from .apps.notifications.router import router as notifications_router
from .apps.shipments.router import router as shipments_router


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:3000",
    ]


app = FastAPI(title="Store Portal API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Store Portal backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


for _router in (
    accounts_public_router,
    accounts_admin_router,
    stores_router,
    stores_admin_router,
    inventory_router,
    transfers_router,
    transfers_admin_router,
    dashboard_router,
    exports_router,
    audit_router,
    notifications_router,
    shipments_router,
):
    app.include_router(_router)
