from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from typing import Optional

from auth import get_current_user
from database import User
from dependencies import get_subscription_registry
from schemas import (
    SubscriptionCategory,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionStatus,
    SubscriptionUpdate,
    dump,
    envelope,
)
from subscriptions import SubscriptionRegistry

subscription_router = APIRouter()


def _subscription(record):
    return dump(SubscriptionResponse.model_validate(record))


@subscription_router.get("/subscriptions/upcoming/{days}")
async def get_upcoming_renewals(
    days: int,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    records = registry.list_upcoming(current_user.username, days)
    return envelope(data=[_subscription(r) for r in records], count=len(records))


@subscription_router.get("/subscriptions/analysis/cost")
async def get_cost_analysis(
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    analysis = registry.cost_analysis(current_user.username)
    return envelope(
        data=jsonable_encoder({
            "totalSubscriptions": analysis["total_subscriptions"],
            "monthlyTotal": analysis["monthly_total"],
            "yearlyTotal": analysis["yearly_total"],
            "byCategory": analysis["by_category"],
            "byBillingCycle": analysis["by_billing_cycle"],
            "subscriptions": [_subscription(r) for r in analysis["subscriptions"]],
        })
    )


@subscription_router.get("/subscriptions")
async def get_subscriptions(
    subscription_status: Optional[SubscriptionStatus] = Query(None, alias="status"),
    category: Optional[SubscriptionCategory] = None,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    records = registry.list(
        current_user.username,
        status=subscription_status.value if subscription_status else None,
        category=category.value if category else None,
    )
    return envelope(data=[_subscription(r) for r in records], count=len(records))


@subscription_router.post("/subscriptions", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    subscription: SubscriptionCreate,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    record = registry.create(current_user.username, subscription.model_dump())
    return envelope(data=_subscription(record))


@subscription_router.post("/subscriptions/{subscription_id}/renew")
async def renew_subscription(
    subscription_id: int,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    record = registry.renew(subscription_id, current_user.username)
    return envelope(data=_subscription(record))


@subscription_router.get("/subscriptions/{subscription_id}")
async def get_subscription(
    subscription_id: int,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    return envelope(data=_subscription(registry.get(subscription_id, current_user.username)))


@subscription_router.put("/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: int,
    subscription: SubscriptionUpdate,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    record = registry.update(
        subscription_id, current_user.username, subscription.model_dump(exclude_unset=True)
    )
    return envelope(data=_subscription(record))


@subscription_router.delete("/subscriptions/{subscription_id}")
async def delete_subscription(
    subscription_id: int,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
    current_user: User = Depends(get_current_user),
):
    registry.delete(subscription_id, current_user.username)
    return envelope(message="Subscription deleted successfully")
