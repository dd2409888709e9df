import logging

from apscheduler.schedulers.background import BackgroundScheduler

from budget_engine import BudgetEngine
from config import Config
from database import SessionLocal
from notifier import get_notifier
from store import LedgerStore
from subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)


def run_budget_alert_sweep(session_factory=SessionLocal, notifier=None):
    with session_factory() as db:
        engine = BudgetEngine(LedgerStore(db), notifier or get_notifier())
        return engine.sweep_alerts()


def run_renewal_reminder_sweep(session_factory=SessionLocal, notifier=None):
    with session_factory() as db:
        registry = SubscriptionRegistry(LedgerStore(db), notifier or get_notifier())
        return registry.sweep_reminders()


def run_budget_reconciliation(session_factory=SessionLocal):
    with session_factory() as db:
        return BudgetEngine(LedgerStore(db)).reconcile()


def _guarded(job):
    def run():
        try:
            job()
        except Exception:
            logger.exception("Scheduled job %s failed", job.__name__)

    run.__name__ = job.__name__
    return run


def create_scheduler():
    scheduler = BackgroundScheduler(
        timezone="UTC", job_defaults={"coalesce": True, "max_instances": 1}
    )
    scheduler.add_job(
        _guarded(run_budget_alert_sweep), "cron",
        hour=Config.BUDGET_ALERT_HOUR, minute=0, id="budget_alerts",
    )  # daily alert sweep
    scheduler.add_job(
        _guarded(run_renewal_reminder_sweep), "cron",
        hour=Config.REMINDER_HOUR, minute=0, id="renewal_reminders",
    )  # daily reminder sweep
    scheduler.add_job(
        _guarded(run_budget_reconciliation), "cron",
        hour=Config.RECONCILE_HOUR, minute=0, id="budget_reconciliation",
    )
    return scheduler
