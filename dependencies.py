from fastapi import Depends
from sqlalchemy.orm import Session

from budget_engine import BudgetEngine
from database import get_db
from expenses import ExpenseLedger
from notifier import Notifier, get_notifier
from store import LedgerStore
from subscriptions import SubscriptionRegistry


def get_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def get_budget_engine(
    store: LedgerStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> BudgetEngine:
    return BudgetEngine(store, notifier)


def get_expense_ledger(
    store: LedgerStore = Depends(get_store),
    budgets: BudgetEngine = Depends(get_budget_engine),
) -> ExpenseLedger:
    return ExpenseLedger(store, budgets)


def get_subscription_registry(
    store: LedgerStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> SubscriptionRegistry:
    return SubscriptionRegistry(store, notifier)
