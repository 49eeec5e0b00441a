from __future__ import annotations

from datetime import datetime

from storedb.database import WriteSessionLocal
from storedb.apps.accounts import services as account_services


def run() -> dict:
    db = WriteSessionLocal()
    try:
        deleted = account_services.cleanup_expired_temp_passwords(db, now=datetime.utcnow())
        db.commit()
        return {"deleted": deleted}
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Temp password cleanup completed:", result)
