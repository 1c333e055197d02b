from logging.config import fileConfig
from sqlalchemy import pool
from alembic import context

from courtside.core.config import Settings

# -----------------------------
# Import SQLAlchemy Base + Models
# -----------------------------
from courtside.db.session import Base
from courtside.models.facility import Facility, Court  # noqa: F401
from courtside.models.booking import Booking  # noqa: F401
from courtside.models.slot import TimeSlot, SlotClaim  # noqa: F401
from courtside.models.payment import Payment, Refund  # noqa: F401
from courtside.models.webhook_event import WebhookEvent  # noqa: F401

# -----------------------------
# Alembic Configuration
# -----------------------------
config = context.config

# -----------------------------
# DATABASE_URL from the environment (.env via Settings)
# -----------------------------
config.set_main_option("sqlalchemy.url", Settings.from_env().database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


# ===============================================================
# OFFLINE MIGRATIONS
# ===============================================================
def run_migrations_offline():
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# ===============================================================
# ONLINE MIGRATIONS
# ===============================================================
def run_migrations_online():
    """Run migrations in 'online' mode."""

    from sqlalchemy import create_engine

    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
