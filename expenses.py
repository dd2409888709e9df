import csv
import logging
from datetime import datetime
from decimal import Decimal
from io import StringIO

from budget_engine import as_decimal
from database import Expense, utcnow
from errors import ValidationError
from schemas import ExpenseCategory, PaymentMethod
from store import load_owned

logger = logging.getLogger(__name__)

CSV_FIELDS = ["date", "category", "description", "amount", "paymentMethod", "tags"]

# API sort keys to columns
SORT_KEYS = {
    "date": "date",
    "amount": "amount",
    "category": "category",
    "description": "description",
    "paymentMethod": "payment_method",
    "createdAt": "created_at",
}


def sort_order(sort_by):
    descending = sort_by.startswith("-")
    key = sort_by.lstrip("-+")
    if key not in SORT_KEYS:
        raise ValidationError(f"Cannot sort expenses by '{key}'", field="sortBy")
    return [("-" if descending else "") + SORT_KEYS[key]]


CHOICES = {
    "category": ("category", {c.value for c in ExpenseCategory}),
    "payment_method": ("paymentMethod", {m.value for m in PaymentMethod}),
}


def check_choices(values):
    for name, (field, allowed) in CHOICES.items():
        if name in values and values[name] not in allowed:
            raise ValidationError(f"Unknown {field} '{values[name]}'", field=field)


def period_start(period, now):
    if period == "monthly":
        return datetime(now.year, now.month, 1)
    if period == "yearly":
        return datetime(now.year, 1, 1)
    raise ValidationError('Invalid period. Use "monthly" or "yearly"', field="period")


class ExpenseLedger:
    """Expense records; every change to an amount or date is pushed to the budgets."""

    def __init__(self, store, budgets):
        self.store = store
        self.budgets = budgets

    def _filters(self, owner_id, category=None, start=None, end=None):
        filters = {"owner_id": owner_id}
        if category:
            filters["category"] = category
        if start:
            filters["date__gte"] = start
        if end:
            filters["date__lte"] = end
        return filters

    def list(self, owner_id, category=None, start=None, end=None, sort_by="-date"):
        return self.store.find(
            Expense, self._filters(owner_id, category, start, end), sort_order(sort_by)
        )

    def get(self, expense_id, owner_id):
        return load_owned(self.store, Expense, expense_id, owner_id, "Expense")

    def create(self, owner_id, fields):
        values = {k: v for k, v in fields.items() if v is not None}
        if as_decimal(values.get("amount")) < 0:
            raise ValidationError("Amount cannot be negative", field="amount")
        check_choices(values)
        values.setdefault("date", utcnow())
        values["owner_id"] = owner_id
        expense = self.store.insert(Expense, values)
        self.budgets.apply_delta(owner_id, expense.amount, expense.date)
        self.store.commit()
        logger.info("Expense %s recorded for %s: %s", expense.id, owner_id, expense.amount)
        return expense

    def update(self, expense_id, owner_id, fields):
        expense = self.get(expense_id, owner_id)
        old_amount, old_date = as_decimal(expense.amount), expense.date
        values = {k: v for k, v in fields.items() if v is not None}
        if "amount" in values and as_decimal(values["amount"]) < 0:
            raise ValidationError("Amount cannot be negative", field="amount")
        check_choices(values)

        expense = self.store.update_by_id(Expense, expense.id, values)
        new_amount = as_decimal(expense.amount)
        if new_amount != old_amount or expense.date != old_date:
            self.budgets.apply_delta(owner_id, -old_amount, old_date)
            self.budgets.apply_delta(owner_id, new_amount, expense.date)
        self.store.commit()
        return expense

    def delete(self, expense_id, owner_id):
        expense = self.get(expense_id, owner_id)
        self.budgets.apply_delta(owner_id, -as_decimal(expense.amount), expense.date)
        self.store.delete_by_id(Expense, expense.id)
        self.store.commit()

    def summary(self, owner_id, period, now=None):
        now = now or utcnow()
        start = period_start(period, now)
        expenses = self.store.find(
            Expense, {"owner_id": owner_id, "date__gte": start}, ["-date"]
        )
        total = Decimal(0)
        by_category, by_payment_method = {}, {}
        for expense in expenses:
            amount = as_decimal(expense.amount)
            total += amount
            by_category[expense.category] = by_category.get(expense.category, Decimal(0)) + amount
            by_payment_method[expense.payment_method] = (
                by_payment_method.get(expense.payment_method, Decimal(0)) + amount
            )
        return {
            "period": period,
            "start_date": start,
            "end_date": now,
            "total": total,
            "count": len(expenses),
            "by_category": by_category,
            "by_payment_method": by_payment_method,
            "expenses": expenses,
        }

    def export_csv(self, owner_id, start=None, end=None):
        """CSV of the owner's expenses, newest first.

        Tags are written as one plain cell joined by ", " rather than a JSON
        array, so the file reads cleanly in a spreadsheet.
        """
        expenses = self.store.find(
            Expense, self._filters(owner_id, start=start, end=end), ["-date"]
        )
        csv_data = StringIO()
        writer = csv.writer(csv_data)
        writer.writerow(CSV_FIELDS)
        for e in expenses:
            writer.writerow([
                e.date.isoformat(),
                e.category,
                e.description,
                f"{as_decimal(e.amount):.2f}",
                e.payment_method,
                ", ".join(e.tags or []),
            ])
        return csv_data.getvalue()
