from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    JSON,
    Text,
    Index,
)
from sqlalchemy.orm import sessionmaker, declarative_base
from datetime import datetime, timezone

from config import Config


def utcnow():
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(url):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": Config.DB_TIMEOUT_SECONDS,
        }
    return create_engine(url, connect_args=connect_args)


engine = make_engine(Config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

MONEY = Numeric(12, 2)


class User(Base):
    __tablename__ = "users"
    username = Column(String, primary_key=True, unique=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    email_notifications = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String, ForeignKey("users.username"), nullable=False)
    amount = Column(MONEY, nullable=False)
    category = Column(String, nullable=False)
    description = Column(String, nullable=False)
    date = Column(DateTime, nullable=False, default=utcnow)
    payment_method = Column(String, nullable=False, default="Cash")
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_expenses_owner_date", "owner_id", "date"),
        Index("ix_expenses_owner_category", "owner_id", "category"),
    )


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String, ForeignKey("users.username"), nullable=False)
    service_name = Column(String, nullable=False)
    cost = Column(MONEY, nullable=False)
    billing_cycle = Column(String, nullable=False, default="Monthly")
    start_date = Column(DateTime, nullable=False)
    next_billing_date = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="Active")
    category = Column(String, nullable=False, default="Other")
    reminder_days = Column(Integer, nullable=False, default=3)
    auto_renew = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_subscriptions_owner_next", "owner_id", "next_billing_date"),
        Index("ix_subscriptions_owner_status", "owner_id", "status"),
    )


class Budget(Base):
    __tablename__ = "budgets"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String, ForeignKey("users.username"), nullable=False)
    period = Column(String, nullable=False, default="Monthly")
    total_limit = Column(MONEY, nullable=False)
    category_limits = Column(JSON, nullable=False, default=list)
    warning_threshold = Column(Integer, nullable=False, default=80)
    critical_threshold = Column(Integer, nullable=False, default=100)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    current_spending = Column(MONEY, nullable=False, default=0)
    last_warning_alert = Column(DateTime, nullable=True)
    last_critical_alert = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_budgets_owner_active", "owner_id", "is_active"),)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
