import time
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from database import init_db, make_engine, session_factory
from errors import (
    DuplicateError,
    NotFoundOrUnauthorized,
    OperationTimeout,
    PartialPropagationError,
    ValidationError,
)
from models import Category, Expense, PendingPropagation
from schemas import CategoryIn, CategoryUpdateIn, ExpenseIn
from services import (
    CategoryService,
    ConsistencyService,
    ExpenseService,
    resume_all_pending,
)


def make_session():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    return session_factory(engine)()


def add_expense(session, user_id: int, category: str, amount: str = "10") -> Expense:
    return ExpenseService(session, user_id).create(
        ExpenseIn(
            amount=amount,
            date=date(2024, 1, 5),
            category=category,
            description=f"{category} purchase",
        )
    )


def categories_of(session, user_id: int) -> list[str]:
    return sorted(
        session.scalars(
            select(Expense.category).where(Expense.user_id == user_id)
        ).all()
    )


def test_rename_propagates_to_every_matching_expense() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")
    add_expense(session, 1, "Food", "5")
    add_expense(session, 1, "Transport")

    renamed = ConsistencyService(session, 1).update_category(
        food.id, CategoryUpdateIn(name=" Groceries ")
    )

    assert renamed.name == "Groceries"
    assert categories_of(session, 1) == ["Groceries", "Groceries", "Transport"]
    assert session.scalars(select(PendingPropagation)).all() == []


def test_rename_does_not_touch_other_users_expenses() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")
    add_expense(session, 2, "Food")

    ConsistencyService(session, 1).update_category(
        food.id, CategoryUpdateIn(name="Groceries")
    )

    assert categories_of(session, 1) == ["Groceries"]
    assert categories_of(session, 2) == ["Food"]


def test_rename_matches_old_name_exactly() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")
    add_expense(session, 1, "food")

    ConsistencyService(session, 1).update_category(
        food.id, CategoryUpdateIn(name="Groceries")
    )

    assert categories_of(session, 1) == ["Groceries", "food"]


def test_case_only_rename_is_allowed_and_propagated() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="food"))
    add_expense(session, 1, "food")

    ConsistencyService(session, 1).update_category(food.id, CategoryUpdateIn(name="Food"))

    assert categories_of(session, 1) == ["Food"]


def test_rename_to_existing_name_fails_without_mutation() -> None:
    session = make_session()
    service = CategoryService(session, 1)
    food = service.create(CategoryIn(name="Food"))
    service.create(CategoryIn(name="Rent"))
    add_expense(session, 1, "Food")

    with pytest.raises(DuplicateError):
        ConsistencyService(session, 1).update_category(
            food.id, CategoryUpdateIn(name="RENT")
        )

    assert service.get(food.id).name == "Food"
    assert categories_of(session, 1) == ["Food"]


def test_blank_rename_is_a_validation_error() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))

    with pytest.raises(ValidationError):
        ConsistencyService(session, 1).update_category(
            food.id, CategoryUpdateIn(name="  ")
        )


def test_color_and_emoji_update_does_not_propagate() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    updated = ConsistencyService(session, 1).update_category(
        food.id, CategoryUpdateIn(emoji="🍕", color="#123ABC")
    )

    assert (updated.name, updated.emoji, updated.color) == ("Food", "🍕", "#123ABC")
    assert categories_of(session, 1) == ["Food"]
    assert session.scalars(select(PendingPropagation)).all() == []


def test_failed_propagation_is_reported_and_can_be_retried(monkeypatch) -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    def broken(self, category_id):
        raise OperationalError("UPDATE expenses", {}, Exception("database is locked"))

    with monkeypatch.context() as patch:
        patch.setattr(ConsistencyService, "_propagate_pending", broken)
        with pytest.raises(PartialPropagationError) as info:
            ConsistencyService(session, 1).update_category(
                food.id, CategoryUpdateIn(name="Groceries")
            )

    assert info.value.category_id == food.id
    assert (info.value.old_name, info.value.new_name) == ("Food", "Groceries")
    assert CategoryService(session, 1).get(food.id).name == "Groceries"
    assert categories_of(session, 1) == ["Food"]
    assert len(ConsistencyService(session, 1).pending()) == 1

    updated = ConsistencyService(session, 1).retry_propagation(food.id)

    assert updated == 1
    assert categories_of(session, 1) == ["Groceries"]
    assert ConsistencyService(session, 1).pending() == []


def test_chained_renames_replay_in_order(monkeypatch) -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    def broken(self, category_id):
        raise OperationalError("UPDATE expenses", {}, Exception("disk I/O error"))

    with monkeypatch.context() as patch:
        patch.setattr(ConsistencyService, "_propagate_pending", broken)
        with pytest.raises(PartialPropagationError):
            ConsistencyService(session, 1).update_category(
                food.id, CategoryUpdateIn(name="Groceries")
            )

    ConsistencyService(session, 1).update_category(
        food.id, CategoryUpdateIn(name="Supermarket")
    )

    assert categories_of(session, 1) == ["Supermarket"]


def test_resume_all_pending_finishes_interrupted_renames() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Groceries"))
    add_expense(session, 1, "Food")
    add_expense(session, 2, "Food")
    session.add(
        PendingPropagation(
            user_id=1, category_id=food.id, old_name="Food", new_name="Groceries"
        )
    )
    session.commit()

    assert resume_all_pending(session) == 1
    assert categories_of(session, 1) == ["Groceries"]
    assert categories_of(session, 2) == ["Food"]


def test_expired_deadline_aborts_rename_before_any_change() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    with pytest.raises(OperationTimeout):
        ConsistencyService(session, 1).update_category(
            food.id,
            CategoryUpdateIn(name="Groceries"),
            deadline=time.monotonic() - 1,
        )

    assert CategoryService(session, 1).get(food.id).name == "Food"
    assert categories_of(session, 1) == ["Food"]


def test_delete_cascades_to_matching_expenses() -> None:
    session = make_session()
    transport = CategoryService(session, 1).create(CategoryIn(name="Transport"))
    add_expense(session, 1, "Food")
    add_expense(session, 1, "Transport")
    add_expense(session, 1, "Transport", "3.50")
    add_expense(session, 2, "Transport")

    removed = ConsistencyService(session, 1).delete_category(transport.id)

    assert removed == 2
    assert categories_of(session, 1) == ["Food"]
    assert categories_of(session, 2) == ["Transport"]
    with pytest.raises(NotFoundOrUnauthorized):
        CategoryService(session, 1).get(transport.id)


def test_delete_also_removes_expenses_still_under_a_pending_old_name() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Groceries"))
    add_expense(session, 1, "Food")
    add_expense(session, 1, "Groceries")
    session.add(
        PendingPropagation(
            user_id=1, category_id=food.id, old_name="Food", new_name="Groceries"
        )
    )
    session.commit()

    removed = ConsistencyService(session, 1).delete_category(food.id)

    assert removed == 2
    assert categories_of(session, 1) == []
    assert session.scalars(select(PendingPropagation)).all() == []


def test_delete_with_expired_deadline_changes_nothing() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    with pytest.raises(OperationTimeout):
        ConsistencyService(session, 1).delete_category(
            food.id, deadline=time.monotonic() - 1
        )

    assert categories_of(session, 1) == ["Food"]
    assert session.get(Category, food.id) is not None


def test_other_users_cannot_rename_or_delete() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")
    intruder = ConsistencyService(session, 2)

    with pytest.raises(NotFoundOrUnauthorized):
        intruder.update_category(food.id, CategoryUpdateIn(name="Mine"))
    with pytest.raises(NotFoundOrUnauthorized):
        intruder.delete_category(food.id)
    with pytest.raises(NotFoundOrUnauthorized):
        intruder.retry_propagation(food.id)

    assert CategoryService(session, 1).get(food.id).name == "Food"
    assert categories_of(session, 1) == ["Food"]


def test_old_name_of_unfinished_rename_stays_reserved() -> None:
    session = make_session()
    categories = CategoryService(session, 1)
    groceries = categories.create(CategoryIn(name="Groceries"))
    rent = categories.create(CategoryIn(name="Rent"))
    add_expense(session, 1, "Food")
    session.add(
        PendingPropagation(
            user_id=1, category_id=groceries.id, old_name="Food", new_name="Groceries"
        )
    )
    session.commit()

    with pytest.raises(DuplicateError):
        categories.create(CategoryIn(name="food"))
    with pytest.raises(DuplicateError):
        ConsistencyService(session, 1).update_category(
            rent.id, CategoryUpdateIn(name="Food")
        )
    assert not categories.is_duplicate("Food", exclude_id=groceries.id)
    assert not CategoryService(session, 2).is_duplicate("Food")

    ConsistencyService(session, 1).retry_propagation(groceries.id)
    food = categories.create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    removed = ConsistencyService(session, 1).delete_category(groceries.id)

    assert removed == 1
    assert categories_of(session, 1) == ["Food"]
    assert categories.get(food.id).name == "Food"


def test_renaming_back_to_own_pending_name_is_allowed(monkeypatch) -> None:
    session = make_session()
    food = CategoryService(session, 1).create(CategoryIn(name="Food"))
    add_expense(session, 1, "Food")

    def broken(self, category_id):
        raise OperationalError("UPDATE expenses", {}, Exception("database is locked"))

    with monkeypatch.context() as patch:
        patch.setattr(ConsistencyService, "_propagate_pending", broken)
        with pytest.raises(PartialPropagationError):
            ConsistencyService(session, 1).update_category(
                food.id, CategoryUpdateIn(name="Groceries")
            )

    ConsistencyService(session, 1).update_category(food.id, CategoryUpdateIn(name="Food"))

    assert categories_of(session, 1) == ["Food"]
    assert ConsistencyService(session, 1).pending() == []
