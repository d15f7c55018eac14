"""
Alembic environment for the jobfeed schema.

Migrations manage the `jobs` table that feeds are upserted into and the
`import_run` audit table. The database URL comes from jobfeed settings
(DATABASE_URL), never from alembic.ini.
"""

import sys
from pathlib import Path
from logging.config import fileConfig

# Project root must be importable when alembic runs from the CLI
project_root = Path(__file__).resolve().parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from sqlalchemy import engine_from_config  # noqa: E402
from sqlalchemy import pool  # noqa: E402
from alembic import context  # noqa: E402

from jobfeed.catalog.models import Base  # noqa: E402
from jobfeed.config.settings import get_settings  # noqa: E402


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
config.set_main_option("sqlalchemy.url", settings.database_url)

# Job and ImportRun models, for autogenerate
target_metadata = Base.metadata


def _configure_options() -> dict:
    # Detect column type changes on jobs
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL for the configured URL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations over a short-lived, unpooled connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
