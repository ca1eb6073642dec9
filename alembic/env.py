"""Alembic environment configuration.

The database URL is built from LakebaseSettings: explicit credentials when
configured, otherwise Databricks OAuth, so nothing is hardcoded here.

The database is created automatically if it doesn't exist (connects to the
default ``postgres`` database to run ``CREATE DATABASE``).
"""

from __future__ import annotations

import sys
from pathlib import Path
from urllib.parse import quote_plus

from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from todo_sync.config import LakebaseSettings  # noqa: E402
from todo_sync.db.schemas import Base  # noqa: E402

config = context.config
target_metadata = Base.metadata


def _build_url(lb: LakebaseSettings) -> str:
    user = quote_plus(lb.get_user())
    password = quote_plus(lb.get_password())
    return (
        f"postgresql+psycopg://{user}:{password}@{lb.get_host()}:{lb.port}/{lb.database}"
        f"?sslmode={lb.sslmode}"
    )


def _ensure_database(lb: LakebaseSettings) -> None:
    import psycopg
    from psycopg import sql

    with psycopg.connect(
        host=lb.get_host(),
        port=lb.port,
        dbname="postgres",
        user=lb.get_user(),
        password=lb.get_password(),
        sslmode=lb.sslmode,
        autocommit=True,
    ) as conn:
        try:
            conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(lb.database)))
        except psycopg.errors.DuplicateDatabase:
            pass


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=_build_url(LakebaseSettings()),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    lb = LakebaseSettings()
    _ensure_database(lb)

    cfg = config.get_section(config.config_ini_section, {})
    cfg["sqlalchemy.url"] = _build_url(lb)
    connectable = engine_from_config(cfg, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
