from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# env.py vit dans backend/alembic/ : racine du repo pour "backend.*"
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.core.config import Settings  # noqa: E402
from backend.app.db.base import Base  # noqa: E402
from backend.app.db.models import models_v1  # noqa: F401,E402

target_metadata = Base.metadata

# DATABASE_URL (.env compris) prime sur alembic.ini
DATABASE_URL = Settings.from_env().database_url
config.set_main_option("sqlalchemy.url", DATABASE_URL.replace("%", "%%"))


def _configure(**kwargs) -> None:
    # SQLite : ALTER limité -> batch mode (copie de table) pour les contraintes
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=DATABASE_URL.startswith("sqlite"),
        **kwargs,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
