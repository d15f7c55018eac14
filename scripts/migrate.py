#!/usr/bin/env python3
"""
Database migration script using Alembic.

Upgrades the jobs and import_run tables to the latest revision, or
downgrades with `migrate.py downgrade [revision]`.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402

from jobfeed.config.settings import get_settings  # noqa: E402


def _alembic_config() -> Config:
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option(
        "script_location", str(project_root / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", get_settings().database_url)
    return alembic_cfg


def run_migrations():
    """Run all pending migrations."""
    print("Running database migrations...")
    try:
        command.upgrade(_alembic_config(), "head")
        print("Migrations completed successfully")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def downgrade_migrations(revision: str = "-1"):
    """
    Downgrade database migrations.

    Args:
        revision: Target revision (default: -1 for previous version)
    """
    print(f"Downgrading database to revision: {revision}...")
    try:
        command.downgrade(_alembic_config(), revision)
        print("Downgrade completed successfully")
    except Exception as e:
        print(f"Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "downgrade":
        downgrade_migrations(sys.argv[2] if len(sys.argv) > 2 else "-1")
    else:
        run_migrations()
