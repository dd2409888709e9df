import logging
import math
from datetime import timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from budget_engine import as_decimal, round_half_up
from database import Subscription, User, utcnow
from errors import ValidationError
from schemas import SubscriptionCategory, SubscriptionStatus
from store import load_owned

logger = logging.getLogger(__name__)

# relativedelta clamps to the last day of a shorter month: Jan 31 + 1 month is Feb 28 (29)
BILLING_STEPS = {
    "Daily": relativedelta(days=+1),
    "Weekly": relativedelta(weeks=+1),
    "Monthly": relativedelta(months=+1),
    "Quarterly": relativedelta(months=+3),
    "Yearly": relativedelta(years=+1),
}

# (multiplier, divisor) turning one cycle's cost into a monthly cost
MONTHLY_FACTORS = {
    "Daily": (30, 1),
    "Weekly": (4, 1),
    "Monthly": (1, 1),
    "Quarterly": (1, 3),
    "Yearly": (1, 12),
}

REQUIRED_FIELDS = ("service_name", "cost", "billing_cycle", "start_date", "next_billing_date")

CHOICES = {
    "billing_cycle": ("billingCycle", set(BILLING_STEPS)),
    "status": ("status", {s.value for s in SubscriptionStatus}),
    "category": ("category", {c.value for c in SubscriptionCategory}),
}


def check_choices(values):
    for name, (field, allowed) in CHOICES.items():
        if name in values and values[name] not in allowed:
            raise ValidationError(f"Unknown {field} '{values[name]}'", field=field)


def next_billing_date(current, billing_cycle):
    try:
        return current + BILLING_STEPS[billing_cycle]
    except KeyError:
        raise ValidationError(f"Unknown billing cycle '{billing_cycle}'", field="billingCycle") from None


def monthly_cost(cost, billing_cycle):
    multiplier, divisor = MONTHLY_FACTORS[billing_cycle]
    return as_decimal(cost) * multiplier / divisor


def days_until(moment, now):
    return math.ceil((moment - now) / timedelta(days=1))


class SubscriptionRegistry:
    def __init__(self, store, notifier=None):
        self.store = store
        self.notifier = notifier

    def list(self, owner_id, status=None, category=None):
        filters = {"owner_id": owner_id}
        if status:
            filters["status"] = status
        if category:
            filters["category"] = category
        return self.store.find(Subscription, filters, ["next_billing_date"])

    def get(self, subscription_id, owner_id):
        return load_owned(self.store, Subscription, subscription_id, owner_id, "Subscription")

    def create(self, owner_id, fields):
        values = {k: v for k, v in fields.items() if v is not None}
        for name in REQUIRED_FIELDS:
            if name not in values:
                raise ValidationError(f"Please provide {name.replace('_', ' ')}", field=name)
        if as_decimal(values["cost"]) < 0:
            raise ValidationError("Cost cannot be negative", field="cost")
        check_choices(values)
        values["owner_id"] = owner_id
        subscription = self.store.insert(Subscription, values)
        self.store.commit()
        return subscription

    def update(self, subscription_id, owner_id, fields):
        subscription = self.get(subscription_id, owner_id)
        values = {k: v for k, v in fields.items() if v is not None}
        if "cost" in values and as_decimal(values["cost"]) < 0:
            raise ValidationError("Cost cannot be negative", field="cost")
        check_choices(values)
        subscription = self.store.update_by_id(Subscription, subscription.id, values)
        self.store.commit()
        return subscription

    def delete(self, subscription_id, owner_id):
        subscription = self.get(subscription_id, owner_id)
        self.store.delete_by_id(Subscription, subscription.id)
        self.store.commit()

    def list_upcoming(self, owner_id, window_days, now=None):
        if window_days < 0:
            raise ValidationError("Days must not be negative", field="days")
        now = now or utcnow()
        return self.store.find(
            Subscription,
            {
                "owner_id": owner_id,
                "status": "Active",
                "next_billing_date__gte": now,
                "next_billing_date__lte": now + timedelta(days=window_days),
            },
            ["next_billing_date"],
        )

    def renew(self, subscription_id, owner_id):
        """Advance the next billing date by one cycle from its current value."""
        subscription = self.get(subscription_id, owner_id)
        advanced = next_billing_date(subscription.next_billing_date, subscription.billing_cycle)
        subscription = self.store.update_by_id(
            Subscription, subscription.id, {"next_billing_date": advanced}
        )
        self.store.commit()
        logger.info("Renewed subscription %s until %s", subscription.id, advanced)
        return subscription

    def cost_analysis(self, owner_id):
        subscriptions = self.store.find(
            Subscription, {"owner_id": owner_id, "status": "Active"}, ["next_billing_date"]
        )
        monthly_total = Decimal(0)
        by_category = {}
        by_billing_cycle = {}
        for sub in subscriptions:
            monthly = monthly_cost(sub.cost, sub.billing_cycle)
            monthly_total += monthly
            by_category[sub.category] = by_category.get(sub.category, Decimal(0)) + monthly
            cycle = by_billing_cycle.setdefault(
                sub.billing_cycle, {"count": 0, "total": Decimal(0)}
            )
            cycle["count"] += 1
            cycle["total"] += as_decimal(sub.cost)

        return {
            "total_subscriptions": len(subscriptions),
            "monthly_total": round_half_up(monthly_total),
            "yearly_total": round_half_up(monthly_total * 12),
            "by_category": {k: round_half_up(v) for k, v in by_category.items()},
            "by_billing_cycle": by_billing_cycle,
            "subscriptions": subscriptions,
        }

    def sweep_reminders(self, now=None):
        """Remind owners of auto-renewing subscriptions inside their reminder window.

        Nothing records that a reminder went out, so a daily run repeats the
        reminder on every day the subscription stays inside the window.
        """
        now = now or utcnow()
        subscriptions = self.store.find(
            Subscription, {"status": "Active", "auto_renew": True}, ["next_billing_date"]
        )
        logger.info("Running renewal reminder sweep over %d subscriptions", len(subscriptions))
        sent, failed = [], 0
        for sub in subscriptions:
            subscription_id = sub.id
            try:
                days = days_until(sub.next_billing_date, now)
                if 0 < days <= sub.reminder_days:
                    if self.notifier is not None:
                        user = self.store.get(User, sub.owner_id)
                        self.notifier.subscription_reminder(user, sub, days)
                    sent.append((subscription_id, days))
            except Exception:
                self.store.rollback()
                failed += 1
                logger.exception("Reminder check failed for subscription %s", subscription_id)
        logger.info("Renewal reminder sweep done: %d sent, %d failed", len(sent), failed)
        return {"checked": len(subscriptions), "sent": sent, "failed": failed}
