"""Alembic environment for the blog schema (async SQLAlchemy).

The database URL comes from ``blog_api.config.settings`` unless it is
overridden on the command line with ``alembic -x db_url=... upgrade head``.
SQLite URLs are migrated in batch mode so ALTER-style operations work.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine

from blog_api.config import settings
from blog_api.database import Base

# Register every mapped table on Base.metadata for autogenerate.
import blog_api.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("db_url", settings.DATABASE_URL)


def _configure_kwargs(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        # Enum and length changes on status/title columns must show up in autogenerate.
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting to a database."""
    url = _database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(connection=connection, **_configure_kwargs(_database_url()))
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Hand a sync connection from the async engine to Alembic's runner."""
    connectable = create_async_engine(_database_url(), pool_pre_ping=True)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
