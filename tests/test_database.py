"""Engine option selection per database URL."""

from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import _engine_options


def test_in_memory_sqlite_shares_one_connection():
    for url in ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:"):
        options = _engine_options(url)
        assert options["poolclass"] is StaticPool
        assert options["connect_args"] == {"check_same_thread": False}


def test_file_sqlite_uses_default_pool():
    assert _engine_options("sqlite+aiosqlite:///./payouts.db") == {}


def test_postgres_gets_pool_settings():
    options = _engine_options("postgresql+asyncpg://app:secret@db:5432/payouts")

    assert options["pool_size"] == settings.db_pool_size
    assert options["max_overflow"] == settings.db_max_overflow
    assert options["pool_pre_ping"] is True
    assert "poolclass" not in options
