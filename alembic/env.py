import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, create_engine

from proescrow.core.config import settings
from proescrow.db.session import Base

# Import all models so Alembic sees them in metadata
from proescrow.models.booking import Booking, BookingEvent  # noqa: F401
from proescrow.models.escrow import EscrowLedger  # noqa: F401
from proescrow.models.payment import PaymentTransaction  # noqa: F401
from proescrow.models.otp import OTPRecord  # noqa: F401
from proescrow.models.rectification import RectificationCase  # noqa: F401
from proescrow.models.scope_change import ScopeChangeInvoice  # noqa: F401
from proescrow.models.safety_incident import SafetyIncident  # noqa: F401
from proescrow.models.scheduled_job import ScheduledJob  # noqa: F401
from proescrow.models.idempotency_key import IdempotencyKey  # noqa: F401
from proescrow.models.notification_log import NotificationLog  # noqa: F401
from proescrow.models.audit_log import AuditLog  # noqa: F401

config = context.config

db_url = getattr(settings, "DATABASE_URL", None) or os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set (check .env / proescrow.core.config.settings)")

config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    url = config.get_main_option("sqlalchemy.url")
    # sqlalchemy.url in alembic.ini is only a placeholder; the runtime DATABASE_URL wins.
    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
