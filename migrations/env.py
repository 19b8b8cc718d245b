# env.py
import sys
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

# PYTHONPATH before importing advisory
sys.path.append(str(Path(__file__).resolve().parents[1]))

from advisory.config import Settings  # noqa: E402
from advisory.models import Base  # noqa: E402

target_metadata = Base.metadata

# DATABASE_URL (environment or .env) through the same settings the API uses
url = Settings().database_url

config = context.config
config.set_main_option("sqlalchemy.url", url)

# SQLite cannot ALTER columns in place; the booking and user tables are rebuilt
render_as_batch = url.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=render_as_batch,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=render_as_batch,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
