# backend/storedb/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Back-office admins and store-scoped users
- Password login, lockout and password policy
- Emailed one-time temp passwords
- Account security events and rate limiting
- Public auth endpoints and admin user management
"""

from . import models  # noqa: F401

__all__ = ["models"]
