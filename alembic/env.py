from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config, pool

from app.utils.db import database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Same connection settings as the app; migrations are raw SQL, no metadata.
config.set_main_option("sqlalchemy.url", database_url("postgresql+psycopg2").replace("%", "%%"))

target_metadata = None


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(url=url, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, transaction_per_migration=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
