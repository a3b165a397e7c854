import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

# Make the mailsync package importable when alembic runs from backend/
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_target_metadata():
    """Import models lazily so Settings validation only runs when needed."""
    from mailsync.core.database import Base
    from mailsync.models import MailboxConnection, MailboxRecord  # noqa: F401

    return Base.metadata


def get_database_url():
    """Database URL from alembic config, then Settings, then the environment."""
    alembic_url = config.get_main_option("sqlalchemy.url")
    if alembic_url:
        return alembic_url

    try:
        from mailsync.core.config import get_settings_instance

        database_url = get_settings_instance().database_url
    except Exception:
        database_url = os.getenv("MAILSYNC_DATABASE_URL")
        if not database_url:
            raise RuntimeError(
                "Could not determine database URL. Set MAILSYNC_DATABASE_URL or configure sqlalchemy.url."
            ) from None

    # Alembic runs on the synchronous driver
    if database_url.startswith("postgresql+asyncpg://"):
        database_url = database_url.replace("postgresql+asyncpg://", "postgresql://")

    return database_url


def run_migrations_offline() -> None:
    """Emit SQL to the script output without connecting."""
    context.configure(
        url=get_database_url(),
        target_metadata=get_target_metadata(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=get_target_metadata())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
