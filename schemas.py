from datetime import datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, List, Optional

from pydantic import (
    BaseModel,
    Field,
    PlainSerializer,
    constr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Money travels as a JSON number, not the string pydantic uses for Decimal
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]
NonNegativeMoney = Annotated[Money, Field(ge=0, max_digits=12, decimal_places=2)]


def to_naive_utc(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def clean_tags(tags):
    """Trimmed, non-empty tags in first-seen order."""
    if tags is None:
        return None
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class ExpenseCategory(str, Enum):
    FOOD = "Food & Dining"
    TRANSPORTATION = "Transportation"
    SHOPPING = "Shopping"
    ENTERTAINMENT = "Entertainment"
    BILLS = "Bills & Utilities"
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    GROCERIES = "Groceries"
    RENT = "Rent"
    INSURANCE = "Insurance"
    PERSONAL_CARE = "Personal Care"
    GIFTS = "Gifts & Donations"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    UPI = "UPI"
    NET_BANKING = "Net Banking"
    OTHER = "Other"


class BillingCycle(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    PAUSED = "Paused"


class SubscriptionCategory(str, Enum):
    ENTERTAINMENT = "Entertainment"
    MUSIC = "Music"
    VIDEO_STREAMING = "Video Streaming"
    GAMING = "Gaming"
    SOFTWARE = "Software"
    CLOUD_STORAGE = "Cloud Storage"
    NEWS = "News & Magazines"
    FITNESS = "Fitness"
    EDUCATION = "Education"
    PRODUCTIVITY = "Productivity"
    OTHER = "Other"


class BudgetPeriod(str, Enum):
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class AlertKind(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
        use_enum_values = True

    @field_validator("*", mode="after")
    @classmethod
    def naive_utc(cls, value):
        return to_naive_utc(value)


# --- Users / auth ---
class UserBase(BaseModel):
    username: constr(min_length=3, max_length=50)


class UserCreate(UserBase):
    name: constr(min_length=1, max_length=120)
    email: constr(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: constr(min_length=6)


class UserLogin(UserBase):
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# --- Expenses ---
class ExpenseCreate(CamelModel):
    amount: NonNegativeMoney
    category: ExpenseCategory
    description: constr(strip_whitespace=True, min_length=1)
    date: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    tags: List[str] = []

    @field_validator("tags")
    @classmethod
    def tidy_tags(cls, tags):
        return clean_tags(tags)


class ExpenseUpdate(CamelModel):
    amount: Optional[NonNegativeMoney] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[constr(strip_whitespace=True, min_length=1)] = None
    date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def tidy_tags(cls, tags):
        return clean_tags(tags)


class ExpenseResponse(CamelModel):
    id: int
    owner_id: str
    amount: Money
    category: str
    description: str
    date: datetime
    payment_method: str
    tags: List[str]
    created_at: datetime


# --- Subscriptions ---
class SubscriptionCreate(CamelModel):
    service_name: constr(strip_whitespace=True, min_length=1)
    cost: NonNegativeMoney
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    start_date: datetime
    next_billing_date: datetime
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    category: SubscriptionCategory = SubscriptionCategory.OTHER
    reminder_days: int = Field(3, ge=0)
    auto_renew: bool = True
    notes: Optional[str] = None


class SubscriptionUpdate(CamelModel):
    service_name: Optional[constr(strip_whitespace=True, min_length=1)] = None
    cost: Optional[NonNegativeMoney] = None
    billing_cycle: Optional[BillingCycle] = None
    start_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    status: Optional[SubscriptionStatus] = None
    category: Optional[SubscriptionCategory] = None
    reminder_days: Optional[int] = Field(None, ge=0)
    auto_renew: Optional[bool] = None
    notes: Optional[str] = None


class SubscriptionResponse(CamelModel):
    id: int
    owner_id: str
    service_name: str
    cost: Money
    billing_cycle: str
    start_date: datetime
    next_billing_date: datetime
    status: str
    category: str
    reminder_days: int
    auto_renew: bool
    notes: Optional[str] = None
    created_at: datetime


# --- Budgets ---
class CategoryLimit(CamelModel):
    category: ExpenseCategory
    limit: NonNegativeMoney


class AlertThresholds(CamelModel):
    warning: int = Field(80, ge=0, le=100)
    critical: int = Field(100, ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self):
        if self.warning > self.critical:
            raise ValueError("warning threshold cannot exceed critical threshold")
        return self


class LastAlertSent(CamelModel):
    warning: Optional[datetime] = None
    critical: Optional[datetime] = None


def end_of_day(value):
    """A bare date (midnight) as an end bound covers that whole day."""
    if value is not None and value.time() == time(0, 0):
        return datetime.combine(value.date(), time.max)
    return value


class BudgetCreate(CamelModel):
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    total_limit: NonNegativeMoney
    category_limits: List[CategoryLimit] = []
    alert_thresholds: AlertThresholds = AlertThresholds()
    start_date: datetime
    end_date: datetime

    @field_validator("end_date", mode="after")
    @classmethod
    def end_bound_covers_day(cls, value):
        return end_of_day(to_naive_utc(value))


class BudgetUpdate(CamelModel):
    period: Optional[BudgetPeriod] = None
    total_limit: Optional[NonNegativeMoney] = None
    category_limits: Optional[List[CategoryLimit]] = None
    alert_thresholds: Optional[AlertThresholds] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("end_date", mode="after")
    @classmethod
    def end_bound_covers_day(cls, value):
        return end_of_day(to_naive_utc(value))


class BudgetResponse(CamelModel):
    id: int
    owner_id: str
    period: str
    total_limit: Money
    category_limits: List[Any]
    alert_thresholds: AlertThresholds
    start_date: datetime
    end_date: datetime
    current_spending: Money
    last_alert_sent: LastAlertSent
    is_active: bool
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def flatten_record(cls, data):
        # ORM rows keep thresholds and alert stamps as flat columns
        if hasattr(data, "warning_threshold"):
            return {
                "id": data.id,
                "owner_id": data.owner_id,
                "period": data.period,
                "total_limit": data.total_limit,
                "category_limits": data.category_limits or [],
                "alert_thresholds": {
                    "warning": data.warning_threshold,
                    "critical": data.critical_threshold,
                },
                "start_date": data.start_date,
                "end_date": data.end_date,
                "current_spending": data.current_spending,
                "last_alert_sent": {
                    "warning": data.last_warning_alert,
                    "critical": data.last_critical_alert,
                },
                "is_active": data.is_active,
                "created_at": data.created_at,
            }
        return data


class BudgetWithTotals(BudgetResponse):
    total_spent: Money
    remaining: Money


class BudgetStatus(CamelModel):
    budget: BudgetResponse
    current_spending: Money
    total_limit: Money
    remaining: Money
    spending_percentage: Optional[Money] = None
    alert_level: Optional[AlertKind] = None
    is_over_budget: bool


# --- Envelope ---
def dump(model, many=False):
    if many:
        return [dump(item) for item in model]
    return model.model_dump(mode="json", by_alias=True)


def envelope(data=None, message=None, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    body.update(extra)
    return body
