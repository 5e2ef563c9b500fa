from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import bcrypt
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from analytics import AnalyticsReport, CategoryRecord, ExpenseRecord, build_report
from config import get_settings
from errors import (
    AuthError,
    DuplicateError,
    NotFoundOrUnauthorized,
    OperationTimeout,
    PartialPropagationError,
    UnexpectedError,
    ValidationError,
)
from models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_EMOJI,
    DEFAULT_EXPENSE_EMOJI,
    Category,
    Expense,
    PendingPropagation,
    User,
    name_key,
)
from money import parse_amount
from periods import PeriodFilter, period_bounds
from schemas import (
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    LoginIn,
    ProfileIn,
    SignupIn,
)

logger = logging.getLogger(__name__)

STRONG_PASSWORD = re.compile(
    r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[@$!%*#?&])[A-Za-z\d@$!%*#?&]{8,}$"
)

DEFAULT_CATEGORIES = (
    ("Food & Dining", "🍽️", "#FF6B6B"),
    ("Transportation", "🚗", "#4ECDC4"),
    ("Shopping", "🛍️", "#45B7D1"),
    ("Entertainment", "🎬", "#96CEB4"),
    ("Healthcare", "🏥", "#FFEAA7"),
    ("Utilities", "💡", "#DDA0DD"),
)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def deadline_passed(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def _require_text(value: Optional[str], message: str) -> str:
    clean = (value or "").strip()
    if not clean:
        raise ValidationError(message)
    return clean


def _check_password_strength(password: str) -> None:
    if not STRONG_PASSWORD.match(password):
        raise ValidationError(
            "Password must be at least 8 characters, include a number and a special character"
        )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundOrUnauthorized("User not found")
        return user

    def signup(self, data: SignupIn, *, seed_defaults: Optional[bool] = None) -> User:
        fields = (
            data.first_name,
            data.last_name,
            data.email,
            data.password,
            data.confirm_password,
        )
        if any(not (value or "").strip() for value in fields):
            raise ValidationError("All fields are required")
        if data.password != data.confirm_password:
            raise ValidationError("Passwords do not match")
        _check_password_strength(data.password)

        email = data.email.strip().lower()
        if self._by_email(email):
            raise DuplicateError("User already exists")

        user = User(
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            email=email,
            password_hash=hash_password(data.password),
            contact_number=(data.contact_number or "").strip(),
            profile_image="",
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateError("User already exists") from exc

        if seed_defaults is None:
            seed_defaults = get_settings().seed_default_categories
        if seed_defaults:
            for name, emoji, color in DEFAULT_CATEGORIES:
                self.session.add(
                    Category(
                        user_id=user.id,
                        name=name,
                        name_key=name_key(name),
                        emoji=emoji,
                        color=color,
                    )
                )
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_signup: user_id={user.id} seeded_defaults={bool(seed_defaults)}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        if not (data.email or "").strip() or not data.password:
            raise ValidationError("Email and password are required")
        user = self._by_email(data.email.strip().lower())
        if not user or not verify_password(data.password, user.password_hash):
            logger.info("user_login_failed")
            raise AuthError("Invalid credentials")
        logger.info(f"user_login: user_id={user.id}")
        return user

    def update_profile(self, user_id: int, data: ProfileIn) -> User:
        first_name = _require_text(data.first_name, "Required fields missing")
        last_name = _require_text(data.last_name, "Required fields missing")
        email = _require_text(data.email, "Required fields missing").lower()

        user = self.get(user_id)

        if email != user.email:
            other = self._by_email(email)
            if other and other.id != user.id:
                raise DuplicateError("Email already in use")

        if data.new_password:
            if not data.old_password:
                raise ValidationError("Old password required")
            if not verify_password(data.old_password, user.password_hash):
                raise AuthError("Current password is incorrect")
            _check_password_strength(data.new_password)
            user.password_hash = hash_password(data.new_password)

        user.first_name = first_name
        user.last_name = last_name
        user.email = email
        if data.profile_image is not None:
            user.profile_image = data.profile_image
        self.session.commit()
        logger.info(f"user_profile_updated: user_id={user.id}")
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.created_at.desc(), Category.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )
        if not category:
            raise NotFoundOrUnauthorized("Category not found")
        return category

    @staticmethod
    def clean_name(name: Optional[str]) -> str:
        return _require_text(name, "Category name is required")

    def is_duplicate(self, name: str, exclude_id: Optional[int] = None) -> bool:
        """True if ``name`` is taken by another category of this user.

        Old names of unfinished renames stay reserved until their expenses
        have been moved, otherwise a new category would inherit them.
        """
        key = name_key(self.clean_name(name))
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.name_key == key,
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt.limit(1)) is not None:
            return True

        pending = select(PendingPropagation.old_name).where(
            PendingPropagation.user_id == self.user_id
        )
        if exclude_id is not None:
            pending = pending.where(PendingPropagation.category_id != exclude_id)
        return any(name_key(old) == key for old in self.session.scalars(pending))

    def create(self, data: CategoryIn) -> Category:
        name = self.clean_name(data.name)
        if self.is_duplicate(name):
            raise DuplicateError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=name,
            name_key=name_key(name),
            emoji=data.emoji or DEFAULT_CATEGORY_EMOJI,
            color=data.color or DEFAULT_CATEGORY_COLOR,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateError("Category with this name already exists") from exc
        self.session.refresh(category)
        return category

    def usage(self) -> dict[str, dict[str, object]]:
        """Expense count, total and share of overall spending per category name."""
        rows = self.session.execute(
            select(
                Expense.category,
                func.count(Expense.id).label("count"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(Expense.user_id == self.user_id)
            .group_by(Expense.category)
        ).all()
        overall = sum(int(row.total or 0) for row in rows)
        stats: dict[str, dict[str, object]] = {}
        for row in rows:
            total = int(row.total or 0)
            percent = round(total / overall * 100, 1) if overall else 0.0
            stats[row.category] = {
                "expenses": int(row.count or 0),
                "total_spent_cents": total,
                "percentage": percent,
            }
        return stats

    def records(self) -> list[CategoryRecord]:
        return [
            CategoryRecord(name=cat.name, color=cat.color, emoji=cat.emoji)
            for cat in self.list_all()
        ]


@dataclass
class ExpenseFilters:
    period: PeriodFilter = PeriodFilter.all
    category: Optional[str] = None
    query: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(
        self,
        filters: Optional[ExpenseFilters] = None,
        *,
        today: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        bounds = period_bounds(filters.period, today or date.today())
        if bounds:
            stmt = stmt.where(Expense.date.between(*bounds))
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.query:
            term = filters.query.strip().lower()
            for char in ("\\", "%", "_"):
                term = term.replace(char, "\\" + char)
            stmt = stmt.where(
                func.lower(Expense.description).like(f"%{term}%", escape="\\")
            )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if not expense:
            raise NotFoundOrUnauthorized("Expense not found or unauthorized")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=parse_amount(data.amount),
            date=data.date,
            category=_require_text(data.category, "Category is required"),
            emoji=data.emoji or DEFAULT_EXPENSE_EMOJI,
            description=_require_text(data.description, "Description is required"),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseUpdateIn) -> Expense:
        expense = self.get(expense_id)
        provided = data.model_fields_set

        # validate everything before touching the record
        changes: dict[str, object] = {}
        if "amount" in provided:
            if data.amount is None:
                raise ValidationError("Amount must be greater than 0")
            changes["amount_cents"] = parse_amount(data.amount)
        if "date" in provided:
            if data.date is None:
                raise ValidationError("Date is required")
            changes["date"] = data.date
        if "category" in provided:
            changes["category"] = _require_text(data.category, "Category is required")
        if "emoji" in provided:
            changes["emoji"] = data.emoji or DEFAULT_EXPENSE_EMOJI
        if "description" in provided:
            changes["description"] = _require_text(
                data.description, "Description is required"
            )

        for attr, value in changes.items():
            setattr(expense, attr, value)
        self.session.commit()
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()

    def records(self) -> list[ExpenseRecord]:
        return [
            ExpenseRecord(
                amount_cents=exp.amount_cents, date=exp.date, category=exp.category
            )
            for exp in self.list()
        ]


class ConsistencyService:
    """Keeps expenses in step with renamed or deleted categories.

    Expenses reference categories by name, so a rename rewrites the name on
    every matching expense and a delete removes them. Renames commit the
    category first and record a ``PendingPropagation`` row in the same
    transaction; the row is cleared once expenses have been rewritten, so an
    interrupted rename can be detected and replayed.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)

    def update_category(
        self,
        category_id: int,
        data: CategoryUpdateIn,
        *,
        deadline: Optional[float] = None,
    ) -> Category:
        category = self.categories.get(category_id)
        old_name = category.name

        new_name: Optional[str] = None
        if data.name is not None:
            candidate = self.categories.clean_name(data.name)
            if candidate != old_name:
                if self.categories.is_duplicate(candidate, exclude_id=category.id):
                    raise DuplicateError("Category with this name already exists")
                new_name = candidate

        if deadline_passed(deadline):
            raise OperationTimeout("Deadline passed before category update")

        if new_name is not None:
            category.name = new_name
            category.name_key = name_key(new_name)
            self.session.add(
                PendingPropagation(
                    user_id=self.user_id,
                    category_id=category.id,
                    old_name=old_name,
                    new_name=new_name,
                )
            )
        if data.emoji:
            category.emoji = data.emoji
        if data.color:
            category.color = data.color
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateError("Category with this name already exists") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"category_update_failed: category_id={category_id}")
            raise UnexpectedError("Failed to update category") from exc

        if new_name is None:
            return category

        logger.info(
            f"category_renamed: user_id={self.user_id} category_id={category.id} "
            f"old={old_name!r} new={new_name!r}"
        )
        if deadline_passed(deadline):
            logger.warning(
                f"propagation_deferred: category_id={category.id} reason=deadline"
            )
            raise PartialPropagationError(
                "Category renamed but expenses were not updated before the deadline",
                category_id=category.id,
                old_name=old_name,
                new_name=new_name,
            )
        try:
            self._propagate_pending(category.id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"propagation_failed: category_id={category.id}")
            raise PartialPropagationError(
                "Category renamed but expenses could not be updated",
                category_id=category.id,
                old_name=old_name,
                new_name=new_name,
            ) from exc
        return category

    def _pending_for(self, category_id: Optional[int] = None) -> list[PendingPropagation]:
        stmt = (
            select(PendingPropagation)
            .where(PendingPropagation.user_id == self.user_id)
            .order_by(PendingPropagation.id)
        )
        if category_id is not None:
            stmt = stmt.where(PendingPropagation.category_id == category_id)
        return list(self.session.scalars(stmt).all())

    def _propagate_pending(self, category_id: int) -> int:
        """Apply every outstanding rename of ``category_id`` in order, one commit."""
        updated = 0
        for pending in self._pending_for(category_id):
            result = self.session.execute(
                update(Expense)
                .where(
                    Expense.user_id == self.user_id,
                    Expense.category == pending.old_name,
                )
                .values(category=pending.new_name, updated_at=datetime.utcnow())
            )
            updated += result.rowcount or 0
            self.session.delete(pending)
        self.session.commit()
        logger.info(
            f"propagation_done: user_id={self.user_id} category_id={category_id} "
            f"expenses_updated={updated}"
        )
        return updated

    def pending(self) -> list[PendingPropagation]:
        return self._pending_for()

    def retry_propagation(self, category_id: int) -> int:
        category = self.categories.get(category_id)
        try:
            return self._propagate_pending(category.id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"propagation_retry_failed: category_id={category.id}")
            raise UnexpectedError("Failed to update expenses") from exc

    def resume_pending(self) -> int:
        category_ids = []
        for pending in self._pending_for():
            if pending.category_id not in category_ids:
                category_ids.append(pending.category_id)
        return sum(self._propagate_pending(cid) for cid in category_ids)

    def delete_category(
        self, category_id: int, *, deadline: Optional[float] = None
    ) -> int:
        """Delete a category and every expense filed under it, atomically.

        Returns the number of expenses removed.
        """
        category = self.categories.get(category_id)
        names = {category.name}
        names.update(pending.old_name for pending in self._pending_for(category.id))

        if deadline_passed(deadline):
            raise OperationTimeout("Deadline passed before category delete")

        try:
            result = self.session.execute(
                delete(Expense).where(
                    Expense.user_id == self.user_id,
                    Expense.category.in_(sorted(names)),
                )
            )
            self.session.execute(
                delete(PendingPropagation).where(
                    PendingPropagation.user_id == self.user_id,
                    PendingPropagation.category_id == category.id,
                )
            )
            self.session.delete(category)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"category_delete_failed: category_id={category_id}")
            raise UnexpectedError("Failed to delete category") from exc

        removed = result.rowcount or 0
        logger.info(
            f"category_deleted: user_id={self.user_id} category_id={category_id} "
            f"expenses_removed={removed}"
        )
        return removed


def resume_all_pending(session: Session) -> int:
    user_ids = session.scalars(select(PendingPropagation.user_id).distinct()).all()
    return sum(ConsistencyService(session, uid).resume_pending() for uid in user_ids)


class AnalyticsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def report(self, period: PeriodFilter, now: datetime) -> AnalyticsReport:
        expenses = ExpenseService(self.session, self.user_id).records()
        categories = CategoryService(self.session, self.user_id).records()
        return build_report(expenses, categories, period, now)
