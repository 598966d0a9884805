"""
Shared fixtures: a throwaway SQLite database per test, plus user/subscription
factories and an in-memory bank feed.

Environment is set before anything under `tracksub` is imported so the
settings object picks it up.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_URL_SYNC", "sqlite://")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("API_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("MAILERSEND_API_KEY", "")

from collections.abc import Iterator
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

import tracksub.models  # noqa: F401
from tracksub.core.database import Base
from tracksub.core.security import encrypt_value, hash_password
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.services.errors import ExternalFeedError
from tracksub.services.financial_feed import FeedTransaction


def enable_sqlite_savepoints(sync_engine) -> None:
    """Let SQLAlchemy, not pysqlite, decide where transactions begin."""

    @event.listens_for(sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tracksub.db"


@pytest.fixture
def engine(db_path):
    eng = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    with session_factory() as session:
        yield session


# ── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(plan: str = "free", notification_days: int = 7, linked: bool = False, **kwargs) -> User:
        counter["n"] += 1
        user = User(
            email=kwargs.pop("email", f"user{counter['n']}@example.com"),
            hashed_password=hash_password("password123"),
            notification_days=notification_days,
            plan=plan,
            **kwargs,
        )
        if linked:
            user.financial_account_id = "acc_main"
            user.financial_access_token = encrypt_value("access-sandbox-token")
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_subscription(db):
    def _make(user: User, **kwargs) -> Subscription:
        values = {
            "name": "Netflix",
            "billing_cycle": "monthly",
            "start_date": date(2024, 1, 8),
            "next_payment_date": date(2024, 6, 8),
            "amount": Decimal("15.99"),
            "category": "Entertainment",
            "status": "active",
        }
        values.update(kwargs)
        sub = Subscription(user_id=user.id, **values)
        db.add(sub)
        db.commit()
        return sub

    return _make


# ── Bank feed ────────────────────────────────────────────────────────────────

def feed_tx(tx_id: str, when: datetime, amount: str = "9.99", description: str = "SPOTIFY") -> FeedTransaction:
    return FeedTransaction(
        id=tx_id,
        account="acc_main",
        amount=Decimal(amount),
        currency="USD",
        description=description,
        status="posted",
        transacted_at=when,
    )


class StubFeed:
    """In-memory FinancialFeed. `fail_after` raises once that many items are served."""

    def __init__(self, transactions=(), fail_refresh: bool = False, fail_after: int | None = None):
        self.transactions = list(transactions)
        self.fail_refresh = fail_refresh
        self.fail_after = fail_after
        self.refreshed: list[str] = []
        self.requested_since: list[datetime | None] = []

    def refresh_account(self, account_id: str) -> None:
        if self.fail_refresh:
            raise ExternalFeedError("refresh timed out")
        self.refreshed.append(account_id)

    def list_transactions(self, account_id, since, page_size):
        self.requested_since.append(since)
        for served, tx in enumerate(self.transactions):
            if self.fail_after is not None and served >= self.fail_after:
                raise ExternalFeedError("page request timed out")
            if since is None or tx.transacted_at >= since:
                yield tx
