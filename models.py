from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


DEFAULT_CATEGORY_EMOJI = "📝"
DEFAULT_CATEGORY_COLOR = "#6366F1"
DEFAULT_EXPENSE_EMOJI = "💰"


def name_key(name: str) -> str:
    return name.strip().casefold()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_number: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    profile_image: Mapped[str] = mapped_column(
        String(500), default="", nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name_key", name="uq_category_user_name_key"),
        Index("ix_categories_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    name_key: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[str] = mapped_column(
        String(16), default=DEFAULT_CATEGORY_EMOJI, nullable=False
    )
    color: Mapped[str] = mapped_column(
        String(7), default=DEFAULT_CATEGORY_COLOR, nullable=False
    )


class Expense(Base, TimestampMixin):
    """A dated spending record.

    ``category`` holds the category *name*, not an id; rename and delete keep
    it consistent through ``ConsistencyService``.
    """

    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_expense_amount_positive"),
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category", "user_id", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[str] = mapped_column(
        String(16), default=DEFAULT_EXPENSE_EMOJI, nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)


class PendingPropagation(Base):
    __tablename__ = "pending_propagations"
    __table_args__ = (Index("ix_pending_propagations_user_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    old_name: Mapped[str] = mapped_column(String(100), nullable=False)
    new_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
