from fastapi import APIRouter, Depends, status
from typing import Optional

from auth import get_current_user
from budget_engine import BudgetEngine
from database import User
from dependencies import get_budget_engine
from schemas import (
    BudgetCreate,
    BudgetResponse,
    BudgetStatus,
    BudgetUpdate,
    BudgetWithTotals,
    dump,
    envelope,
)

budget_router = APIRouter()


def _budget(record):
    return dump(BudgetResponse.model_validate(record))


@budget_router.get("/budgets/current/status")
async def get_current_budget_status(
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    budget_status = engine.current_status(current_user.username)
    if budget_status is None:
        return {
            "success": True,
            "data": None,
            "message": "No active budget found for current period",
        }
    return envelope(data=dump(BudgetStatus.model_validate(budget_status)))


@budget_router.get("/budgets/check-alerts")
async def check_budget_alerts(
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    sent = engine.check_alerts(current_user.username)
    if sent is None:
        return envelope(message="No active budget found", alertsSent=[])
    return envelope(
        message="Alerts sent" if sent else "No alerts needed", alertsSent=sent
    )


@budget_router.get("/budgets")
async def get_budgets(
    isActive: Optional[bool] = None,
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    rows = engine.list(current_user.username, is_active=isActive)
    data = [
        dump(
            BudgetWithTotals.model_validate({
                **BudgetResponse.model_validate(row["budget"]).model_dump(),
                "total_spent": row["total_spent"],
                "remaining": row["remaining"],
            })
        )
        for row in rows
    ]
    return envelope(data=data, count=len(data))


@budget_router.post("/budgets", status_code=status.HTTP_201_CREATED)
async def create_budget(
    budget: BudgetCreate,
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    record = engine.create(current_user.username, budget.model_dump())
    return envelope(data=_budget(record))


@budget_router.get("/budgets/{budget_id}")
async def get_budget(
    budget_id: int,
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    return envelope(data=_budget(engine.get(budget_id, current_user.username)))


@budget_router.put("/budgets/{budget_id}")
async def update_budget(
    budget_id: int,
    budget: BudgetUpdate,
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    record = engine.update(
        budget_id, current_user.username, budget.model_dump(exclude_unset=True)
    )
    return envelope(data=_budget(record))


@budget_router.delete("/budgets/{budget_id}")
async def delete_budget(
    budget_id: int,
    engine: BudgetEngine = Depends(get_budget_engine),
    current_user: User = Depends(get_current_user),
):
    engine.delete(budget_id, current_user.username)
    return envelope(message="Budget deleted successfully")
