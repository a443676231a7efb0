# ABOUTME: Alembic environment for the newsletter schema.
# ABOUTME: Runs migrations against the synchronous database URL from settings.

from alembic import context
from sqlalchemy import engine_from_config, pool

from portfolio_newsletter.config import get_settings
from portfolio_newsletter.db.models import Base

config = context.config
config.set_main_option("sqlalchemy.url", get_settings().database_url_sync)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
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
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
