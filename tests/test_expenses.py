import csv
from datetime import datetime
from decimal import Decimal
from io import StringIO

import pytest

from conftest import NOW, budget_fields, expense_fields
from database import Budget
from errors import ForbiddenError, NotFoundError, ValidationError
from expenses import period_start, sort_order


def test_create_moves_the_covering_budget(budgets, ledger, store):
    budget = budgets.create("alice", budget_fields())

    ledger.create("alice", expense_fields(Decimal("50")))
    ledger.create("alice", expense_fields(Decimal("12.34"), datetime(2026, 4, 1)))

    assert store.get(Budget, budget.id).current_spending == Decimal("50.00")


def test_create_rejects_negative_amount(ledger):
    with pytest.raises(ValidationError):
        ledger.create("alice", expense_fields(Decimal("-5")))


def test_amount_change_is_reconciled(budgets, ledger, store):
    budget = budgets.create("alice", budget_fields())
    expense = ledger.create("alice", expense_fields(Decimal("50")))

    ledger.update(expense.id, "alice", {"amount": Decimal("80")})

    assert store.get(Budget, budget.id).current_spending == Decimal("80.00")


def test_delete_subtracts_from_budget(budgets, ledger, store):
    budget = budgets.create("alice", budget_fields())
    ledger.create("alice", expense_fields(Decimal("30")))
    expense = ledger.create("alice", expense_fields(Decimal("50")))

    ledger.delete(expense.id, "alice")

    assert store.get(Budget, budget.id).current_spending == Decimal("30.00")
    with pytest.raises(NotFoundError):
        ledger.get(expense.id, "alice")


def test_other_owners_cannot_touch_expense(ledger):
    expense = ledger.create("alice", expense_fields(Decimal("5")))

    with pytest.raises(ForbiddenError):
        ledger.update(expense.id, "bob", {"amount": Decimal("1")})
    with pytest.raises(ForbiddenError):
        ledger.delete(expense.id, "bob")


def test_list_filters_and_sorts(ledger):
    ledger.create("alice", expense_fields(Decimal("10"), datetime(2026, 3, 1)))
    ledger.create("alice", expense_fields(Decimal("30"), datetime(2026, 3, 5), category="Transportation"))
    ledger.create("alice", expense_fields(Decimal("20"), datetime(2026, 3, 9)))
    ledger.create("bob", expense_fields(Decimal("99"), datetime(2026, 3, 5)))

    newest_first = ledger.list("alice")
    assert [e.date.day for e in newest_first] == [9, 5, 1]

    cheapest = ledger.list("alice", sort_by="amount")
    assert [e.amount for e in cheapest] == [Decimal("10.00"), Decimal("20.00"), Decimal("30.00")]

    window = ledger.list("alice", start=datetime(2026, 3, 2), end=datetime(2026, 3, 8))
    assert [e.category for e in window] == ["Transportation"]

    groceries = ledger.list("alice", category="Groceries")
    assert len(groceries) == 2


def test_sort_order_accepts_known_keys_only():
    assert sort_order("-date") == ["-date"]
    assert sort_order("paymentMethod") == ["payment_method"]
    with pytest.raises(ValidationError):
        sort_order("owner")


def test_period_start():
    assert period_start("monthly", NOW) == datetime(2026, 3, 1)
    assert period_start("yearly", NOW) == datetime(2026, 1, 1)
    with pytest.raises(ValidationError):
        period_start("weekly", NOW)


def test_summary_groups_by_category_and_payment_method(ledger):
    ledger.create("alice", expense_fields(Decimal("10"), datetime(2026, 3, 2)))
    ledger.create("alice", expense_fields(Decimal("15.50"), datetime(2026, 3, 4), payment_method="Credit Card"))
    ledger.create("alice", expense_fields(Decimal("40"), datetime(2026, 3, 6), category="Bills & Utilities"))
    ledger.create("alice", expense_fields(Decimal("70"), datetime(2026, 2, 20)))

    monthly = ledger.summary("alice", "monthly", NOW)

    assert monthly["count"] == 3
    assert monthly["total"] == Decimal("65.50")
    assert monthly["by_category"] == {"Groceries": Decimal("25.50"), "Bills & Utilities": Decimal("40.00")}
    assert monthly["by_payment_method"] == {"Cash": Decimal("50.00"), "Credit Card": Decimal("15.50")}

    yearly = ledger.summary("alice", "yearly", NOW)
    assert yearly["count"] == 4
    assert yearly["total"] == Decimal("135.50")

    with pytest.raises(ValidationError):
        ledger.summary("alice", "daily", NOW)


def test_export_csv(ledger):
    ledger.create("alice", expense_fields(Decimal("50"), datetime(2026, 3, 3), tags=["food", "weekly"]))
    ledger.create("alice", expense_fields(Decimal("7.5"), datetime(2026, 3, 8), description="Bus, downtown"))
    ledger.create("bob", expense_fields(Decimal("1"), datetime(2026, 3, 8)))

    rows = list(csv.reader(StringIO(ledger.export_csv("alice"))))

    assert rows[0] == ["date", "category", "description", "amount", "paymentMethod", "tags"]
    assert len(rows) == 3
    assert rows[1][2:4] == ["Bus, downtown", "7.50"]
    assert rows[2] == ["2026-03-03T00:00:00", "Groceries", "Weekly shop", "50.00", "Cash", "food, weekly"]


def test_export_csv_date_window(ledger):
    ledger.create("alice", expense_fields(Decimal("5"), datetime(2026, 2, 1)))
    ledger.create("alice", expense_fields(Decimal("6"), datetime(2026, 3, 1)))

    rows = list(csv.reader(StringIO(ledger.export_csv("alice", start=datetime(2026, 2, 15)))))

    assert len(rows) == 2
    assert rows[1][3] == "6.00"


def test_unknown_category_or_payment_method_is_rejected(budgets, ledger, store):
    budget = budgets.create("alice", budget_fields())
    with pytest.raises(ValidationError):
        ledger.create("alice", expense_fields(Decimal("5"), category="Transport"))
    with pytest.raises(ValidationError):
        ledger.create("alice", expense_fields(Decimal("5"), payment_method="Cheque"))

    expense = ledger.create("alice", expense_fields(Decimal("5")))
    with pytest.raises(ValidationError):
        ledger.update(expense.id, "alice", {"category": "Snacks"})

    assert ledger.get(expense.id, "alice").category == "Groceries"
    assert store.get(Budget, budget.id).current_spending == Decimal("5.00")
