"""Alembic environment for the Custodia schema.

Migrations run synchronously through psycopg against the URL in
CUSTODIA_DATABASE__URL (or ``sqlalchemy.url`` when an ini file supplies
one). ``alembic upgrade head --sql`` renders the DDL without a connection.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from custodia.db import with_driver
from custodia.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def migration_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        from custodia.core.settings import get_settings

        url = get_settings().database.url
    return with_driver(url, sync=True)


def run_offline() -> None:
    """Emit the migration DDL as SQL text."""
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    """Apply migrations over a short-lived connection."""
    engine = create_engine(migration_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
