"""
backend/migrations/env.py — Alembic environment.

The database URL comes from the same place the app reads it: DATABASE_URL
(or TEST_DATABASE_URL when TEST_RUN=1), else the `postgres` section of
config.yaml.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

# Project root on sys.path so `backend.app` imports resolve.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from backend.app.extensions import db  # noqa: E402
from backend.app.models import apartment, bill, membership, payment, user  # noqa: E402,F401
from backend.config import BaseConfig, _normalise_db_url  # noqa: E402

target_metadata = db.metadata

if os.getenv("TEST_RUN"):
    db_url = _normalise_db_url(os.environ["TEST_DATABASE_URL"])
else:
    db_url = BaseConfig.SQLALCHEMY_DATABASE_URI

if not db_url:
    raise RuntimeError("Set DATABASE_URL or the postgres section of config.yaml.")

config = context.config
config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
