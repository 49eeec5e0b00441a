# backend/storedb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- Relationship strings ("Store", "Inventory", "Admin") resolve on first use.

The actual model classes are kept in storedb/apps/*/models.py.
"""

from .apps.stores import models as stores_models              # stores + per-store stock
from .apps.inventory import models as inventory_models        # items, batches, stock logs
from .apps.accounts import models as accounts_models          # admins / store users / auth
from .apps.transfers import models as transfers_models        # inter-store transfers
from .apps.shipments import models as shipments_models        # outbound shipments, inbound receipts
from .apps.audit import models as audit_models                # audit trail
from .apps.notifications import models as notifications_models  # email log

__all__ = [
    "stores_models",
    "inventory_models",
    "accounts_models",
    "transfers_models",
    "shipments_models",
    "audit_models",
    "notifications_models",
]
