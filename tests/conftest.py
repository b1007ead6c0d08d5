"""
FairCoin Test Configuration
===========================

Fixtures shared by all test modules:
- clock: controllable UTC clock injected into every service
- settings: Settings isolated from the environment and .env
- database: fresh SQLite file database per test
- engine: FairCoinEngine wired to the fixtures above
- make_account: account factory with optional funding
"""

import itertools
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from faircoin_ledger.config import Settings
from faircoin_ledger.db import Database
from faircoin_ledger.db_config import DatabaseManager
from faircoin_ledger.engine import FairCoinEngine
from faircoin_ledger.models.db import AttestationType, TransactionType


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Callable returning a fixed naive UTC time that tests can advance."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 12, 0, 0))


# ============================================================================
# Settings and database
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, DB_TYPE="sqlite", DB_PATH=str(tmp_path / "faircoin.db"))


@pytest.fixture
def database(settings):
    database = Database()
    database.init(DatabaseManager.sqlite_connection_string(settings.DB_PATH))
    yield database
    database.dispose()


@pytest.fixture
def engine(database, settings, clock):
    return FairCoinEngine(database, settings, clock=clock)


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_account(engine):
    """Create an account, optionally funded through a ledger credit."""
    counter = itertools.count(1)

    def _make(username=None, balance=0, **kwargs):
        account = engine.accounts.create_account(username or f"user{next(counter)}", **kwargs)
        if balance:
            engine.ledger.credit(
                account.id, Decimal(str(balance)), TransactionType.FAIRNESS_REWARD.value, "Test funding"
            )
        return account

    return _make


@pytest.fixture
def admin(make_account):
    return make_account("admin", is_admin=True)


@pytest.fixture
def attest(engine, admin):
    """Store an admin attestation, which is verified immediately."""

    def _attest(subject_id, value, type=AttestationType.COMMUNITY_SERVICE.value):
        return engine.fairness.create_attestation(subject_id, admin.id, type, value)

    return _attest
