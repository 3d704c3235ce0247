from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from crudkit.core.config import settings
from crudkit.db.session import Base

# registers the posts table on Base.metadata
from crudkit.models import post  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# configparser treats % as interpolation
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL.replace("%", "%%"))
target_metadata = Base.metadata

_CONFIGURE_OPTIONS = {
    "target_metadata": target_metadata,
    "compare_type": True,
    "render_as_batch": settings.database_is_sqlite,
}


def run_migrations_offline() -> None:
    context.configure(url=settings.DATABASE_URL, literal_binds=True, **_CONFIGURE_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_CONFIGURE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
