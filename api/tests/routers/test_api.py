"""
HTTP-level tests: the FastAPI app over an aiosqlite copy of the test
database, real JWTs, and an in-memory bank feed.

Reads through the sync `db` session happen only after the last request of a
test so no read transaction is left holding the SQLite file lock.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from conftest import StubFeed, enable_sqlite_savepoints, feed_tx
from tracksub.core.database import get_db
from tracksub.core.limiter import limiter
from tracksub.core.security import create_access_token
from tracksub.main import create_app
from tracksub.models.financial import ImportedTransaction
from tracksub.models.subscription import Subscription
from tracksub.models.user import User
from tracksub.routers.billing import get_feed_factory
from tracksub.services import notifications as notifications_service
from tracksub.services.recurrence import month_key, utc_today


@pytest.fixture
def feed():
    now = datetime.now(timezone.utc)
    return StubFeed([
        feed_tx("tx1", now - timedelta(days=35), amount="15.99", description="NETFLIX.COM"),
        feed_tx("tx2", now - timedelta(days=5), amount="15.99", description="NETFLIX.COM"),
    ])


@pytest.fixture
def client(db_path, engine, feed):
    async_engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool, connect_args={"timeout": 30}
    )
    enable_sqlite_savepoints(async_engine.sync_engine)
    factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_feed_factory] = lambda: (lambda user: feed)
    limiter.reset()

    with TestClient(app) as c:
        yield c


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


# ── Health / auth ────────────────────────────────────────────────────────────

class TestAuth:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"
        assert client.get("/health/db").json() == {"status": "ok", "database": "connected"}

    def test_register_login_me(self, client):
        resp = client.post("/api/v1/auth/register", json={"email": "new@example.com", "password": "longenough"})
        assert resp.status_code == 201
        token = resp.json()["access_token"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "new@example.com"
        assert me.json()["plan"] == "free"
        assert me.json()["notification_days"] == 7

        login = client.post("/api/v1/auth/login", json={"email": "new@example.com", "password": "longenough"})
        assert login.status_code == 200

    def test_duplicate_email(self, client, make_user):
        make_user(email="taken@example.com")
        resp = client.post("/api/v1/auth/register", json={"email": "taken@example.com", "password": "longenough"})
        assert resp.status_code == 409

    def test_wrong_password(self, client, make_user):
        make_user(email="me@example.com")
        resp = client.post("/api/v1/auth/login", json={"email": "me@example.com", "password": "nope-nope"})
        assert resp.status_code == 401

    def test_requires_token(self, client):
        assert client.get("/api/v1/subscriptions/").status_code == 401
        assert client.get("/api/v1/subscriptions/", headers={"Authorization": "Bearer junk"}).status_code == 401


# ── Subscriptions / settings ─────────────────────────────────────────────────

class TestSubscriptions:
    def test_create_computes_next_payment(self, client, make_user):
        user = make_user()
        start = utc_today() - timedelta(days=40)
        resp = client.post("/api/v1/subscriptions/", headers=auth(user), json={
            "name": "Netflix",
            "billing_cycle": "monthly",
            "start_date": start.isoformat(),
            "amount": "15.99",
            "category": "Entertainment",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["next_payment_date"] > utc_today().isoformat()
        assert body["status"] == "active"

    def test_invalid_cycle_rejected(self, client, make_user):
        resp = client.post("/api/v1/subscriptions/", headers=auth(make_user()), json={
            "name": "X", "billing_cycle": "weekly", "start_date": "2024-01-01", "amount": "1",
        })
        assert resp.status_code == 422

    def test_list_update_delete_and_summary(self, client, make_user, make_subscription):
        user = make_user()
        sub = make_subscription(user, amount=Decimal("10.00"))
        make_subscription(user, name="Domain", billing_cycle="yearly", amount=Decimal("120.00"), category="Software")
        headers = auth(user)

        assert len(client.get("/api/v1/subscriptions/", headers=headers).json()) == 2

        summary = client.get("/api/v1/subscriptions/summary", headers=headers).json()
        assert summary["active_count"] == 2
        assert Decimal(summary["monthly_total"]) == Decimal("20.00")
        assert Decimal(summary["yearly_total"]) == Decimal("240.00")

        resp = client.put(f"/api/v1/subscriptions/{sub.id}", headers=headers, json={"status": "cancelled"})
        assert resp.json()["status"] == "cancelled"
        assert client.get("/api/v1/subscriptions/summary", headers=headers).json()["active_count"] == 1

        assert client.delete(f"/api/v1/subscriptions/{sub.id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/subscriptions/{sub.id}", headers=headers).status_code == 404

    def test_other_users_subscription_is_hidden(self, client, make_user, make_subscription):
        owner, stranger = make_user(), make_user()
        sub = make_subscription(owner)
        assert client.get(f"/api/v1/subscriptions/{sub.id}", headers=auth(stranger)).status_code == 404

    def test_notification_settings(self, client, make_user):
        headers = auth(make_user())
        assert client.get("/api/v1/settings/", headers=headers).json() == {"notification_days": 7}
        assert client.put("/api/v1/settings/", headers=headers, json={"notification_days": 0}).status_code == 422
        resp = client.put("/api/v1/settings/", headers=headers, json={"notification_days": 3})
        assert resp.json() == {"notification_days": 3}


# ── Notifications ────────────────────────────────────────────────────────────

class TestNotificationRun:
    def test_manual_run_sends_due_reminders(self, client, make_user, make_subscription, monkeypatch):
        sent = []
        monkeypatch.setattr(
            notifications_service, "send_email", lambda to, subject, body: sent.append(to) or True
        )
        user = make_user(email="due@example.com", notification_days=3)
        make_subscription(user, next_payment_date=utc_today() + timedelta(days=3))

        resp = client.post("/api/v1/notifications/run", headers=auth(user))
        assert resp.status_code == 200
        assert resp.json()["emails_sent"] == 1
        assert sent == ["due@example.com"]

        again = client.post("/api/v1/notifications/run", headers=auth(user))
        assert again.json()["emails_sent"] == 0


# ── Bank sync ────────────────────────────────────────────────────────────────

SYNC = "/api/v1/billing/financial-connections/sync"


class TestBankSync:
    def test_free_plan_gets_403(self, client, make_user, db):
        user = make_user(plan="free", linked=True)
        resp = client.post(SYNC, headers=auth(user))
        assert resp.status_code == 403

        db.expire_all()
        assert db.get(User, user.id).financial_sync_count == 0

    def test_unlinked_gets_400(self, client, make_user):
        resp = client.post(SYNC, headers=auth(make_user(plan="pro")))
        assert resp.status_code == 400

    def test_sync_then_quota(self, client, make_user, db):
        user = make_user(plan="pro", linked=True)
        headers = auth(user)

        first = client.post(SYNC, headers=headers)
        assert first.status_code == 200
        assert first.json()["new_transactions"] == 2
        assert first.json()["syncs_remaining"] == 1

        second = client.post(SYNC, headers=headers)
        assert second.json()["new_transactions"] == 0
        assert second.json()["syncs_remaining"] == 0

        third = client.post(SYNC, headers=headers)
        assert third.status_code == 429
        assert "2 times per month" in third.json()["detail"]

        state = client.get("/api/v1/billing/me", headers=headers).json()
        assert state["financial_sync_count"] == 2
        assert state["financial_sync_month"] == month_key(datetime.now(timezone.utc))

        assert len(db.execute(select(ImportedTransaction)).scalars().all()) == 2

    def test_exhausted_quota_from_previous_state(self, client, make_user):
        user = make_user(
            plan="pro",
            linked=True,
            financial_sync_month=month_key(datetime.now(timezone.utc)),
            financial_sync_count=2,
        )
        assert client.post(SYNC, headers=auth(user)).status_code == 429

    def test_feed_failure_is_502_with_progress(self, client, make_user, feed):
        feed.fail_after = 1
        resp = client.post(SYNC, headers=auth(make_user(plan="pro", linked=True)))
        assert resp.status_code == 502
        assert resp.json()["new_transactions"] == 1

    def test_candidates_then_import(self, client, make_user, db):
        user = make_user(plan="pro", linked=True)
        headers = auth(user)
        client.post(SYNC, headers=headers)

        candidates = client.get("/api/v1/billing/financial-connections/candidates", headers=headers).json()["candidates"]
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate["transaction_id"] == "tx2"
        assert candidate["occurrences"] == 2

        payload = {"subscriptions": [{
            "transaction_id": candidate["transaction_id"],
            "name": "Netflix",
            "billing_cycle": candidate["suggested_billing_cycle"],
            "next_payment_date": candidate["suggested_next_payment_date"],
            "amount": candidate["amount"],
        }]}
        imported = client.post("/api/v1/billing/financial-connections/import", headers=headers, json=payload)
        assert imported.status_code == 201
        assert len(imported.json()["created"]) == 1

        repeat = client.post("/api/v1/billing/financial-connections/import", headers=headers, json=payload)
        assert repeat.json() == {"created": [], "skipped": ["tx2"]}

        assert len(db.execute(select(Subscription)).scalars().all()) == 1

    def test_candidates_require_pro(self, client, make_user):
        resp = client.get("/api/v1/billing/financial-connections/candidates", headers=auth(make_user()))
        assert resp.status_code == 403


# ── Calendar ─────────────────────────────────────────────────────────────────

class TestCalendar:
    def test_pro_feed(self, client, make_user, make_subscription):
        user = make_user(plan="pro")
        make_subscription(user, name="Netflix")
        headers = auth(user)

        token = client.get("/api/v1/calendar/token", headers=headers).json()["token"]
        assert client.get("/api/v1/calendar/token", headers=headers).json()["token"] == token

        resp = client.get(f"/api/v1/calendar/ics/{token}")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/calendar")
        assert "SUMMARY:Netflix" in resp.text

    def test_free_plan_cannot_get_token(self, client, make_user):
        assert client.get("/api/v1/calendar/token", headers=auth(make_user())).status_code == 403

    def test_unknown_token(self, client):
        assert client.get("/api/v1/calendar/ics/nope").status_code == 404
