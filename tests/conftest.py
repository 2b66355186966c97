from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from agenda.core.db import Database

FIXED_NOW = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def chicago():
    return ZoneInfo("America/Chicago")


@pytest.fixture
def new_york():
    return ZoneInfo("America/New_York")


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def file_database(tmp_path):
    """SQLite file DB: one connection per thread, for tests that touch the DB from several threads."""
    db = Database(f"sqlite:///{tmp_path / 'agenda.db'}")
    db.create_all()
    yield db
    db.dispose()
