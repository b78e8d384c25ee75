import logging

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from wakili.settings import settings


def test_alembic_upgrade_head(tmp_path):
    db_path = tmp_path / "test.db"
    config = Config("alembic.ini")
    original_database_url = settings.database_url
    try:
        settings.database_url = f"sqlite+aiosqlite:///{db_path}"
        command.upgrade(config, "head")
    finally:
        settings.database_url = original_database_url

    engine = create_engine(f"sqlite:///{db_path}")
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    for table in (
        "provider_profiles",
        "client_profiles",
        "provider_working_hours",
        "provider_blocked_slots",
        "consultation_bookings",
        "escrow_holds",
        "provider_wallets",
        "provider_wallet_transactions",
    ):
        assert table in tables
    index_names = {index["name"] for index in inspector.get_indexes("consultation_bookings")}
    assert "uq_consultation_bookings_provider_start_active" in index_names
    engine.dispose()


def test_alembic_upgrade_keeps_application_loggers_enabled(tmp_path):
    app_logger = logging.getLogger("wakili.main")
    config = Config("alembic.ini")
    original_database_url = settings.database_url
    try:
        settings.database_url = f"sqlite+aiosqlite:///{tmp_path / 'loggers.db'}"
        command.upgrade(config, "head")
    finally:
        settings.database_url = original_database_url

    assert app_logger.disabled is False
