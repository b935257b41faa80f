"""Alembic environment for the user-service schema.

Learn: The URL comes from TASKHUB_DATABASE_URL, never from alembic.ini,
so migrations always hit the same database the service does. Both modes
share one configure call; online mode borrows a connection from an
async engine and runs the migration inside run_sync.

    alembic upgrade head
    alembic revision --autogenerate -m "..."
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from taskhub.config import settings
from taskhub.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

DATABASE_URL = settings.database_url


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        # ALTER TABLE on SQLite needs the copy-and-move batch mode
        render_as_batch=DATABASE_URL.startswith("sqlite"),
        **kwargs,
    )


def _migrate(connection=None) -> None:
    if connection is None:
        _configure(url=DATABASE_URL, literal_binds=True)
    else:
        _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _migrate()
else:
    asyncio.run(_migrate_online())
