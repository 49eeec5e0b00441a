# backend/create_initial_admin.py

import os

from storedb.database import SessionLocal
from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import schemas as account_schemas
from storedb.apps.accounts import services as account_services


def main() -> None:
    db = SessionLocal()
    try:
        email = os.getenv("INITIAL_ADMIN_EMAIL", "admin@store.example.com").strip().lower()
        password = os.getenv("INITIAL_ADMIN_PASSWORD", "ChangeMe123!Now")

        existing = db.query(account_models.Admin).filter(account_models.Admin.email == email).first()
        if existing:
            print(f"[INFO] Admin already exists: id={existing.id}, email={existing.email}")
            return

        try:
            admin = account_services.create_admin(
                db,
                account_schemas.AdminCreate(
                    email=email,
                    name="Headquarters Admin",
                    role=account_models.AdminRole.HEADQUARTERS_ADMIN,
                    password=password,
                ),
            )
        except ValueError as exc:
            print(f"[ERROR] {exc}")
            return
        db.commit()

        print("[OK] Created headquarters admin:")
        print(f"  id:      {admin.id}")
        print(f"  email:   {admin.email}")
        print(f"  role:    {admin.role.value}")
        print(f"  login password: {password}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
