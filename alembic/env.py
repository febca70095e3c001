"""
Alembic environment for the dealflow tables.

Only ``scheduled_emails`` and ``workflow_dispatches`` are managed here; the
CRM and workflow configuration tables belong to the shared datastore.
"""

import asyncio
from logging.config import fileConfig

from sqlmodel import SQLModel

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from dealflow.db.session import database_url

# Registers every table on SQLModel.metadata
from dealflow.db import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

# Tables owned by the CRM datastore; this service only reads them.
SHARED_TABLES = {"patients", "deals", "deal_stages", "workflows", "workflow_actions"}


def include_object(obj, name, type_, reflected, compare_to):
    """Keep shared CRM tables out of autogenerated migrations."""
    if type_ == "table" and name in SHARED_TABLES:
        return False
    return True


def render_item(type_: str, obj, autogen_context):
    """Render SQLModel's AutoString as ``sa.String()`` in generated revisions."""
    if type_ == "type":
        from sqlmodel.sql.sqltypes import AutoString

        if isinstance(obj, AutoString):
            return "sa.String()"
    return False


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        render_item=render_item,
        include_object=include_object,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    _configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = database_url

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
