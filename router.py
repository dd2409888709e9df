from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from datetime import datetime
from typing import Optional

from auth import get_current_user
from database import User
from dependencies import get_expense_ledger
from expenses import ExpenseLedger
from schemas import (
    ExpenseCategory,
    ExpenseCreate,
    ExpenseResponse,
    ExpenseUpdate,
    dump,
    envelope,
    to_naive_utc,
)


router = APIRouter()


def _expenses(records):
    return dump([ExpenseResponse.model_validate(r) for r in records], many=True)


@router.get("/expenses/summary/{period}")
async def get_expense_summary(
    period: str,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    summary = ledger.summary(current_user.username, period)
    return envelope(
        data=jsonable_encoder({
            "period": summary["period"],
            "startDate": summary["start_date"],
            "endDate": summary["end_date"],
            "total": summary["total"],
            "count": summary["count"],
            "byCategory": summary["by_category"],
            "byPaymentMethod": summary["by_payment_method"],
            "expenses": _expenses(summary["expenses"]),
        })
    )


@router.get("/expenses/export/csv")
async def export_expenses_csv(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    content = ledger.export_csv(
        current_user.username, to_naive_utc(startDate), to_naive_utc(endDate)
    )
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=expenses.csv"},
    )


@router.get("/expenses")
async def get_expenses(
    category: Optional[ExpenseCategory] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    sortBy: str = "-date",
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    expenses = ledger.list(
        current_user.username,
        category=category.value if category else None,
        start=to_naive_utc(startDate),
        end=to_naive_utc(endDate),
        sort_by=sortBy,
    )
    return envelope(data=_expenses(expenses), count=len(expenses))


@router.post("/expenses", status_code=status.HTTP_201_CREATED)
async def create_expense(
    expense: ExpenseCreate,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    record = ledger.create(current_user.username, expense.model_dump())
    return envelope(data=dump(ExpenseResponse.model_validate(record)))


@router.get("/expenses/{expense_id}")
async def get_expense(
    expense_id: int,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    record = ledger.get(expense_id, current_user.username)
    return envelope(data=dump(ExpenseResponse.model_validate(record)))


@router.put("/expenses/{expense_id}")
async def update_expense(
    expense_id: int,
    expense: ExpenseUpdate,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    record = ledger.update(
        expense_id, current_user.username, expense.model_dump(exclude_unset=True)
    )
    return envelope(data=dump(ExpenseResponse.model_validate(record)))


@router.delete("/expenses/{expense_id}")
async def delete_expense(
    expense_id: int,
    ledger: ExpenseLedger = Depends(get_expense_ledger),
    current_user: User = Depends(get_current_user),
):
    ledger.delete(expense_id, current_user.username)
    return envelope(message="Expense deleted successfully")
