"""Migration environment for the store portal schema.

Run from `backend/` with `alembic upgrade head`. The URL comes from
alembic.ini, else DATABASE_WRITE_URL / DATABASE_URL, the same variables
`storedb.database` reads.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

_BACKEND_ROOT = str(Path(__file__).resolve().parents[2])
if _BACKEND_ROOT not in sys.path:
    sys.path.insert(0, _BACKEND_ROOT)

import storedb  # noqa: F401, E402  (registers every app's tables)
from storedb.database import Base, write_engine  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_COMMON_OPTIONS = {"target_metadata": target_metadata, "compare_type": True}


def _offline_url() -> str:
    configured = (config.get_main_option("sqlalchemy.url") or "").strip()
    if configured and not configured.startswith("driver://"):
        return configured
    for name in ("DATABASE_WRITE_URL", "DATABASE_URL"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    raise RuntimeError("Offline migrations need sqlalchemy.url or DATABASE_WRITE_URL / DATABASE_URL.")


def _migrate() -> None:
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    context.configure(url=_offline_url(), literal_binds=True, render_as_batch=True, **_COMMON_OPTIONS)
    _migrate()
else:
    with write_engine.connect() as connection:
        # SQLite cannot ALTER constraints in place
        context.configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
            **_COMMON_OPTIONS,
        )
        _migrate()
