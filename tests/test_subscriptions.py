from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import NOW
from database import User
from errors import ForbiddenError, ValidationError
from subscriptions import days_until, monthly_cost, next_billing_date


def sub_fields(name="Netflix", cost="15.99", cycle="Monthly", next_date=NOW + timedelta(days=10), **extra):
    fields = {
        "service_name": name,
        "cost": Decimal(cost),
        "billing_cycle": cycle,
        "start_date": datetime(2025, 1, 1),
        "next_billing_date": next_date,
        "category": "Video Streaming",
    }
    fields.update(extra)
    return fields


@pytest.mark.parametrize("current, cycle, expected", [
    (datetime(2026, 1, 31), "Monthly", datetime(2026, 2, 28)),
    (datetime(2028, 1, 31), "Monthly", datetime(2028, 2, 29)),
    (datetime(2026, 3, 31), "Daily", datetime(2026, 4, 1)),
    (datetime(2026, 3, 10), "Weekly", datetime(2026, 3, 17)),
    (datetime(2026, 11, 30), "Quarterly", datetime(2027, 2, 28)),
    (datetime(2028, 2, 29), "Yearly", datetime(2029, 2, 28)),
])
def test_next_billing_date(current, cycle, expected):
    assert next_billing_date(current, cycle) == expected


def test_next_billing_date_rejects_unknown_cycle():
    with pytest.raises(ValidationError):
        next_billing_date(NOW, "Fortnightly")


def test_monthly_cost_normalisation():
    assert monthly_cost(Decimal("1200"), "Yearly") == Decimal("100")
    assert monthly_cost(Decimal("30"), "Quarterly") == Decimal("10")
    assert monthly_cost(Decimal("2"), "Daily") == Decimal("60")
    assert monthly_cost(Decimal("5"), "Weekly") == Decimal("20")


def test_days_until_rounds_up_partial_days():
    assert days_until(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert days_until(NOW + timedelta(days=2), NOW) == 2
    assert days_until(NOW - timedelta(hours=5), NOW) == 0


def test_renew_advances_one_cycle(registry):
    sub = registry.create("alice", sub_fields(next_date=datetime(2026, 1, 31)))

    renewed = registry.renew(sub.id, "alice")
    assert renewed.next_billing_date == datetime(2026, 2, 28)

    renewed = registry.renew(sub.id, "alice")
    assert renewed.next_billing_date == datetime(2026, 3, 28)


def test_renew_checks_owner(registry):
    sub = registry.create("alice", sub_fields())

    with pytest.raises(ForbiddenError):
        registry.renew(sub.id, "bob")


def test_create_requires_fields(registry):
    fields = sub_fields()
    del fields["next_billing_date"]

    with pytest.raises(ValidationError):
        registry.create("alice", fields)
    with pytest.raises(ValidationError):
        registry.create("alice", sub_fields(cost="-1"))


def test_cost_analysis(registry):
    registry.create("alice", sub_fields("Cloud", "1200", "Yearly", category="Cloud Storage"))
    registry.create("alice", sub_fields("Music", "9.99", "Monthly", category="Music"))
    registry.create("alice", sub_fields("Paused", "50", "Monthly", status="Paused"))
    registry.create("bob", sub_fields("Other", "70", "Monthly"))

    analysis = registry.cost_analysis("alice")

    assert analysis["total_subscriptions"] == 2
    assert analysis["monthly_total"] == Decimal("109.99")
    assert analysis["yearly_total"] == Decimal("1319.88")
    assert analysis["by_category"] == {"Cloud Storage": Decimal("100.00"), "Music": Decimal("9.99")}
    assert analysis["by_billing_cycle"]["Yearly"]["count"] == 1
    assert analysis["by_billing_cycle"]["Yearly"]["total"] == Decimal("1200")


def test_single_yearly_subscription(registry):
    registry.create("alice", sub_fields("Cloud", "1200", "Yearly"))

    analysis = registry.cost_analysis("alice")

    assert analysis["monthly_total"] == Decimal("100.00")
    assert analysis["yearly_total"] == Decimal("1200.00")


def test_list_upcoming_window(registry):
    soon = registry.create("alice", sub_fields("Soon", next_date=NOW + timedelta(days=3)))
    registry.create("alice", sub_fields("Later", next_date=NOW + timedelta(days=30)))
    registry.create("alice", sub_fields("Past", next_date=NOW - timedelta(days=1)))
    registry.create("alice", sub_fields("Off", next_date=NOW + timedelta(days=2), status="Cancelled"))
    registry.create("bob", sub_fields("Bobs", next_date=NOW + timedelta(days=1)))

    upcoming = registry.list_upcoming("alice", 7, NOW)

    assert [s.id for s in upcoming] == [soon.id]
    assert registry.list_upcoming("alice", 0, NOW) == []
    with pytest.raises(ValidationError):
        registry.list_upcoming("alice", -1, NOW)


def test_list_filters_by_status_and_category(registry):
    registry.create("alice", sub_fields("A", next_date=NOW + timedelta(days=5)))
    registry.create("alice", sub_fields("B", next_date=NOW + timedelta(days=1), category="Gaming"))
    registry.create("alice", sub_fields("C", status="Paused"))

    assert [s.service_name for s in registry.list("alice")] == ["B", "A", "C"]
    assert [s.service_name for s in registry.list("alice", status="Paused")] == ["C"]
    assert [s.service_name for s in registry.list("alice", category="Gaming")] == ["B"]


def test_sweep_reminders_window(registry, notifier):
    due = registry.create("alice", sub_fields("Due", next_date=NOW + timedelta(days=2, hours=3)))
    registry.create("alice", sub_fields("Far", next_date=NOW + timedelta(days=9)))
    registry.create("alice", sub_fields("Manual", next_date=NOW + timedelta(days=1), auto_renew=False))
    registry.create("alice", sub_fields("Paused", next_date=NOW + timedelta(days=1), status="Paused"))
    registry.create("alice", sub_fields("Overdue", next_date=NOW - timedelta(days=1)))
    wide = registry.create("bob", sub_fields("Wide", next_date=NOW + timedelta(days=6), reminder_days=7))

    result = registry.sweep_reminders(NOW)

    assert sorted(result["sent"]) == sorted([(due.id, 3), (wide.id, 6)])
    assert result["failed"] == 0
    assert sorted(notifier.reminders) == sorted([(due.id, 3), (wide.id, 6)])
    assert ("alice", "Subscription Renewal Reminder: Due") in notifier.delivered


def test_sweep_reminders_repeats_on_later_runs(registry, notifier):
    sub = registry.create("alice", sub_fields(next_date=NOW + timedelta(days=2)))

    registry.sweep_reminders(NOW)
    registry.sweep_reminders(NOW + timedelta(days=1))

    assert notifier.reminders == [(sub.id, 2), (sub.id, 1)]


def test_sweep_reminders_isolates_a_failing_subscription(registry, notifier, store, monkeypatch):
    broken = registry.create("alice", sub_fields("Broken", next_date=NOW + timedelta(days=1)))
    fine = registry.create("bob", sub_fields("Fine", next_date=NOW + timedelta(days=2)))

    original_get = store.get
    original_rollback = store.rollback
    rollbacks = []

    def flaky_get(model, record_id):
        if model is User and record_id == "alice":
            raise SQLAlchemyError("current transaction is aborted")
        return original_get(model, record_id)

    def counting_rollback():
        rollbacks.append(True)
        original_rollback()

    monkeypatch.setattr(store, "get", flaky_get)
    monkeypatch.setattr(store, "rollback", counting_rollback)
    result = registry.sweep_reminders(NOW)

    assert result["failed"] == 1
    assert result["sent"] == [(fine.id, 2)]
    assert notifier.reminders == [(fine.id, 2)]
    assert broken.id not in [sub_id for sub_id, _ in result["sent"]]
    assert rollbacks == [True]


def test_unknown_choices_are_rejected(registry):
    with pytest.raises(ValidationError):
        registry.create("alice", sub_fields(category="Streaming"))
    with pytest.raises(ValidationError):
        registry.create("alice", sub_fields(status="Expired"))
    with pytest.raises(ValidationError):
        registry.create("alice", sub_fields(cycle="Fortnightly"))

    sub = registry.create("alice", sub_fields())
    with pytest.raises(ValidationError):
        registry.update(sub.id, "alice", {"category": "Streaming"})
    assert registry.get(sub.id, "alice").category == "Video Streaming"
