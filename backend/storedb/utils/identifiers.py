from __future__ import annotations

import secrets
import string
import time
import uuid
from datetime import date
from typing import Optional


def generate_uuid7() -> str:
    """Time-ordered UUID (version 7) string used for every primary key."""
    value = (time.time_ns() // 1_000_000) << 80
    value |= secrets.randbits(80)
    # version nibble and RFC 4122 variant bits
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(uuid.UUID(int=value))


def generate_store_code(prefix: str = "ST") -> str:
    """Return a store code such as 'ST4K9Q2Z' (prefix + 6 uppercase alphanumerics)."""
    alphabet = string.ascii_uppercase + string.digits
    return prefix + "".join(secrets.choice(alphabet) for _ in range(6))


def generate_batch_number(today: Optional[date] = None) -> str:
    """Return a lot code like 'BN-20250101-A1B2C3'."""
    today = today or date.today()
    return f"BN-{today.strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"
