"""Test configuration and fixtures for the Library Circulation service.

1. Isolated databases - each test gets its own SQLite file
2. A controllable clock - the engine reads time only through it
3. Configuration isolation - the global config is reset around each test
"""

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest

from library_circulation.config import LoanPolicy, reset_config
from library_circulation.database.item_repository import ItemCreateSchema, ItemRepository
from library_circulation.database.patron_repository import PatronCreateSchema, PatronRepository
from library_circulation.database.session import DatabaseManager, set_db_manager
from library_circulation.engine import LoanLifecycleEngine, set_engine
from library_circulation.models import Item, Patron

START = datetime(2026, 3, 2, 10, 0, 0)


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


# === Session-wide setup ===


@pytest.fixture(scope="session", autouse=True)
def quiet_logfire():
    """Keep tool tracing local during tests."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point the global config at a temporary database and reset it afterwards."""
    monkeypatch.setenv("LIBRARY_DATABASE_PATH", str(tmp_path / "config.db"))
    reset_config()
    yield
    reset_config()
    set_db_manager(None)
    set_engine(None)


# === Database Fixtures ===


@pytest.fixture
def test_database_url(tmp_path: Path) -> str:
    """Provide a SQLAlchemy database URL for testing."""
    return f"sqlite:///{tmp_path / 'test_circulation.db'}"


@pytest.fixture
def db(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    """A database manager over a fresh schema."""
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    yield manager
    manager.close()


# === Engine Fixtures ===


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def policy() -> LoanPolicy:
    return LoanPolicy()


@pytest.fixture
def engine(db: DatabaseManager, policy: LoanPolicy, clock: FixedClock) -> LoanLifecycleEngine:
    return LoanLifecycleEngine(db, policy=policy, clock=clock)


# === Data Helpers ===


@pytest.fixture
def make_item(db: DatabaseManager):
    """Factory adding an item with ``copies`` copies on the shelf."""
    counter = iter(range(1, 10_000))

    def _make(copies: int = 1, title: str = "The Left Hand of Darkness") -> Item:
        with db.session_scope() as session:
            return ItemRepository(session).create(
                ItemCreateSchema(id=f"item_{next(counter):04d}", title=title, total_copies=copies)
            )

    return _make


@pytest.fixture
def make_patron(db: DatabaseManager):
    """Factory registering a patron."""
    counter = iter(range(1, 10_000))

    def _make(active: bool = True, name: str = "Ursula Reader") -> Patron:
        with db.session_scope() as session:
            return PatronRepository(session).create(
                PatronCreateSchema(id=f"patron_{next(counter):04d}", name=name, active=active)
            )

    return _make


@pytest.fixture
def item(make_item) -> Item:
    return make_item(copies=2)


@pytest.fixture
def patron(make_patron) -> Patron:
    return make_patron()
