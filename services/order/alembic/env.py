from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context
from orderflow.core.config import settings
from orderflow.db.session import Base
import orderflow.db.models  # noqa

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata

# shares the database with other services, so keep our own history table
VERSION_TABLE = "alembic_version_order"

def _dsn() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.POSTGRES_DSN

def _options(**kwargs) -> dict:
    return dict(target_metadata=target_metadata, version_table=VERSION_TABLE, compare_type=True, **kwargs)

def run_migrations_offline():
    context.configure(**_options(url=_dsn(), literal_binds=True, dialect_opts={"paramstyle": "named"}))
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    connectable = engine_from_config({"sqlalchemy.url": _dsn()}, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(**_options(connection=connection))
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
