import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from budget_engine import BudgetEngine
from database import Base, User, get_db
from expenses import ExpenseLedger
from notifier import Notifier, get_notifier
from store import LedgerStore
from subscriptions import SubscriptionRegistry

NOW = datetime(2026, 3, 15, 12, 0)


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.fail = fail
        self.alerts = []
        self.reminders = []
        self.delivered = []

    def budget_alert(self, user, budget, kind, percentage):
        self.alerts.append((budget.id, kind, percentage))
        return super().budget_alert(user, budget, kind, percentage)

    def subscription_reminder(self, user, subscription, days):
        self.reminders.append((subscription.id, days))
        return super().subscription_reminder(user, subscription, days)

    def deliver(self, user, subject, text, html):
        if self.fail:
            raise ConnectionError("mail relay unreachable")
        self.delivered.append((user.username, subject))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    for username in ("alice", "bob"):
        session.add(User(
            username=username,
            name=username.title(),
            email=f"{username}@example.com",
            password_hash="x",
        ))
    session.commit()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return LedgerStore(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def budgets(store, notifier):
    return BudgetEngine(store, notifier)


@pytest.fixture
def ledger(store, budgets):
    return ExpenseLedger(store, budgets)


@pytest.fixture
def registry(store, notifier):
    return SubscriptionRegistry(store, notifier)


def budget_fields(limit=Decimal("1000"), start=datetime(2026, 3, 1), end=datetime(2026, 3, 31, 23, 59, 59), **extra):
    fields = {
        "period": "Monthly",
        "total_limit": limit,
        "start_date": start,
        "end_date": end,
        "alert_thresholds": {"warning": 80, "critical": 100},
    }
    fields.update(extra)
    return fields


def expense_fields(amount, date=datetime(2026, 3, 10), **extra):
    fields = {
        "amount": amount,
        "category": "Groceries",
        "description": "Weekly shop",
        "date": date,
        "payment_method": "Cash",
        "tags": [],
    }
    fields.update(extra)
    return fields


@pytest.fixture
def client(session_factory, notifier):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def register(client, username="alice"):
    response = client.post("/auth/register", json={
        "username": username,
        "name": username.title(),
        "email": f"{username}@example.com",
        "password": "s3cret-pass",
    })
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
