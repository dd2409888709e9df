"""Budget periods, running spend totals and threshold alerts.

A budget is either active or inactive; "warning" and "over budget" are
read-time classifications. The only persisted alert state is the pair of
``last_*_alert`` stamps, which limit each severity to one message per
cooldown window.
"""
import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from config import Config
from database import Budget, Expense, User, utcnow
from errors import ValidationError
from store import load_owned

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)
CENT = Decimal("0.01")
INFINITY = Decimal("Infinity")

ALERT_STAMPS = {"warning": "last_warning_alert", "critical": "last_critical_alert"}


def as_decimal(value):
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value, places=CENT):
    return as_decimal(value).quantize(places, rounding=ROUND_HALF_UP)


def spending_percentage(budget):
    """Share of the limit spent, in percent.

    A zero limit has no meaningful share: nothing spent reads as 0%, any
    spend reads as infinitely over.
    """
    limit = as_decimal(budget.total_limit)
    spent = as_decimal(budget.current_spending)
    if limit == 0:
        return Decimal(0) if spent <= 0 else INFINITY
    return spent / limit * HUNDRED


def alert_level(budget, percentage=None):
    if percentage is None:
        percentage = spending_percentage(budget)
    if percentage >= budget.critical_threshold:
        return "critical"
    if percentage >= budget.warning_threshold:
        return "warning"
    return None


def alert_due(budget, kind, now, cooldown):
    last = getattr(budget, ALERT_STAMPS[kind])
    return last is None or last < now - cooldown


def display_percentage(percentage):
    if percentage.is_infinite():
        return None
    return round_half_up(percentage)


def _window(owner_id, moment):
    return {
        "owner_id": owner_id,
        "is_active": True,
        "start_date__lte": moment,
        "end_date__gte": moment,
    }


def _columns(fields):
    """Map budget payload fields onto Budget columns."""
    values = {k: v for k, v in fields.items() if v is not None}
    thresholds = values.pop("alert_thresholds", None)
    if thresholds is not None:
        values["warning_threshold"] = thresholds["warning"]
        values["critical_threshold"] = thresholds["critical"]
    if "category_limits" in values:
        values["category_limits"] = [
            {"category": str(item["category"]), "limit": float(item["limit"])}
            for item in values["category_limits"]
        ]
    return values


class BudgetEngine:
    def __init__(self, store, notifier=None, cooldown=None):
        self.store = store
        self.notifier = notifier
        self.cooldown = cooldown or timedelta(hours=Config.ALERT_COOLDOWN_HOURS)

    def spent_between(self, owner_id, start, end):
        total = self.store.total(
            Expense,
            "amount",
            {"owner_id": owner_id, "date__gte": start, "date__lte": end},
        )
        return round_half_up(total)

    def _validate(self, values):
        limit = values.get("total_limit")
        if limit is not None and as_decimal(limit) < 0:
            raise ValidationError("Budget limit cannot be negative", field="totalLimit")
        start, end = values.get("start_date"), values.get("end_date")
        if start is None or end is None:
            raise ValidationError("Please provide a start date and an end date", field="startDate")
        if start > end:
            raise ValidationError("Start date must not be after end date", field="endDate")
        warning = values.get("warning_threshold", 80)
        critical = values.get("critical_threshold", 100)
        if warning > critical:
            raise ValidationError(
                "Warning threshold cannot exceed critical threshold", field="alertThresholds"
            )

    def list(self, owner_id, is_active=None):
        filters = {"owner_id": owner_id}
        if is_active is not None:
            filters["is_active"] = is_active
        rows = []
        for budget in self.store.find(Budget, filters, ["-start_date"]):
            spent = self.spent_between(owner_id, budget.start_date, budget.end_date)
            rows.append({
                "budget": budget,
                "total_spent": spent,
                "remaining": as_decimal(budget.total_limit) - spent,
            })
        return rows

    def get(self, budget_id, owner_id):
        return load_owned(self.store, Budget, budget_id, owner_id, "Budget")

    def create(self, owner_id, fields):
        values = _columns(fields)
        if values.get("total_limit") is None:
            raise ValidationError("Please provide a total budget limit", field="totalLimit")
        self._validate(values)

        deactivated = self.store.update_where(
            Budget, {"owner_id": owner_id, "is_active": True}, {"is_active": False}
        )
        values.update(
            owner_id=owner_id,
            is_active=True,
            current_spending=self.spent_between(
                owner_id, values["start_date"], values["end_date"]
            ),
        )
        budget = self.store.insert(Budget, values)
        self.store.commit()
        logger.info(
            "Created budget %s for %s (deactivated %d, backfilled %s)",
            budget.id, owner_id, deactivated, budget.current_spending,
        )
        return budget

    def update(self, budget_id, owner_id, fields):
        budget = self.get(budget_id, owner_id)
        values = _columns(fields)
        merged = {
            "total_limit": values.get("total_limit", budget.total_limit),
            "start_date": values.get("start_date", budget.start_date),
            "end_date": values.get("end_date", budget.end_date),
            "warning_threshold": values.get("warning_threshold", budget.warning_threshold),
            "critical_threshold": values.get("critical_threshold", budget.critical_threshold),
        }
        self._validate(merged)

        reactivated = bool(values.get("is_active")) and not budget.is_active
        if reactivated:
            self.store.update_where(
                Budget,
                {"owner_id": owner_id, "is_active": True, "id__ne": budget.id},
                {"is_active": False},
            )
        window_moved = (
            merged["start_date"] != budget.start_date or merged["end_date"] != budget.end_date
        )
        # inactive budgets miss deltas, so a reactivated one starts from the raw sum
        if window_moved or reactivated:
            values["current_spending"] = self.spent_between(
                owner_id, merged["start_date"], merged["end_date"]
            )
        budget = self.store.update_by_id(Budget, budget.id, values)
        self.store.commit()
        return budget

    def delete(self, budget_id, owner_id):
        budget = self.get(budget_id, owner_id)
        self.store.delete_by_id(Budget, budget.id)
        self.store.commit()

    def apply_delta(self, owner_id, amount, expense_date):
        """Move the running total of the active budget covering ``expense_date``.

        Joins the caller's unit of work; the caller commits. Dates outside every
        active budget are ignored.
        """
        budget = self.store.first(Budget, _window(owner_id, expense_date), ["-created_at"])
        if budget is None:
            logger.debug("No active budget for %s on %s", owner_id, expense_date)
            return None
        self.store.increment(Budget, budget.id, "current_spending", as_decimal(amount))
        return budget

    def current_budget(self, owner_id, now):
        return self.store.first(Budget, _window(owner_id, now), ["-created_at"])

    def current_status(self, owner_id, now=None):
        now = now or utcnow()
        budget = self.current_budget(owner_id, now)
        if budget is None:
            return None
        percentage = spending_percentage(budget)
        limit = as_decimal(budget.total_limit)
        spent = as_decimal(budget.current_spending)
        return {
            "budget": budget,
            "current_spending": spent,
            "total_limit": limit,
            "remaining": limit - spent,
            "spending_percentage": display_percentage(percentage),
            "alert_level": alert_level(budget, percentage),
            "is_over_budget": percentage > HUNDRED,
        }

    def _evaluate(self, budget, now):
        percentage = spending_percentage(budget)
        kind = alert_level(budget, percentage)
        if kind is None or not alert_due(budget, kind, now, self.cooldown):
            return []
        if self.notifier is not None:
            user = self.store.get(User, budget.owner_id)
            self.notifier.budget_alert(user, budget, kind, display_percentage(percentage))
        self.store.update_by_id(Budget, budget.id, {ALERT_STAMPS[kind]: now})
        logger.info("Budget %s %s alert at %s%%", budget.id, kind, display_percentage(percentage))
        return [kind]

    def check_alerts(self, owner_id, now=None):
        """Evaluate the owner's current budget on demand; None when there is none."""
        now = now or utcnow()
        budget = self.current_budget(owner_id, now)
        if budget is None:
            return None
        sent = self._evaluate(budget, now)
        self.store.commit()
        return sent

    def sweep_alerts(self, now=None):
        now = now or utcnow()
        budgets = self.store.find(
            Budget,
            {"is_active": True, "start_date__lte": now, "end_date__gte": now},
            ["id"],
        )
        logger.info("Running budget alert sweep over %d budgets", len(budgets))
        sent, failed = [], 0
        for budget in budgets:
            budget_id = budget.id
            try:
                for kind in self._evaluate(budget, now):
                    sent.append((budget_id, kind))
                self.store.commit()
            except Exception:
                self.store.rollback()
                failed += 1
                logger.exception("Alert check failed for budget %s", budget_id)
        logger.info("Budget alert sweep done: %d sent, %d failed", len(sent), failed)
        return {"checked": len(budgets), "sent": sent, "failed": failed}

    def reconcile(self):
        """Re-derive every active budget's running total from its expenses."""
        budgets = self.store.find(Budget, {"is_active": True}, ["id"])
        corrected, failed = 0, 0
        for budget in budgets:
            budget_id = budget.id
            try:
                actual = self.spent_between(budget.owner_id, budget.start_date, budget.end_date)
                cached = round_half_up(budget.current_spending)
                if actual != cached:
                    logger.warning(
                        "Budget %s drifted: cached %s, actual %s", budget_id, cached, actual
                    )
                    self.store.update_by_id(Budget, budget_id, {"current_spending": actual})
                    corrected += 1
                self.store.commit()
            except Exception:
                self.store.rollback()
                failed += 1
                logger.exception("Reconciliation failed for budget %s", budget_id)
        logger.info("Reconciled %d budgets: %d corrected, %d failed", len(budgets), corrected, failed)
        return {"checked": len(budgets), "corrected": corrected, "failed": failed}
