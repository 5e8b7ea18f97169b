from datetime import date
from decimal import Decimal

import pytest

from conftest import seed_user
from errors import NotFoundError, ValidationError
from models import Budget, BudgetPeriod, BudgetStatus, Expense
from schemas import BudgetIn, BudgetUpdateIn, ExpenseIn
from services import BudgetService, ExpenseService


def _budget_in(**overrides) -> BudgetIn:
    data = {
        "name": "Groceries",
        "category": "Food",
        "amount": Decimal("300.00"),
        "period": BudgetPeriod.monthly,
        "start_date": date(2024, 3, 1),
        "end_date": date(2024, 3, 31),
        "is_recurring": True,
    }
    data.update(overrides)
    return BudgetIn(**data)


def _spend(session, user_id: int, amount: str, budget_id=None, category="Food"):
    return ExpenseService(session, user_id).create(
        ExpenseIn(
            amount=Decimal(amount),
            description="Purchase",
            category=category,
            date=date(2024, 3, 10),
            budget_id=budget_id,
        )
    )


def test_create_budget_starts_active(session) -> None:
    user = seed_user(session)
    budget = BudgetService(session, user.id).create(_budget_in(name="  Groceries "))

    assert budget.id is not None
    assert budget.name == "Groceries"
    assert budget.status == BudgetStatus.active
    assert budget.amount == Decimal("300.00")
    assert budget.created_at is not None


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
def test_create_budget_rejects_non_positive_amount(session, amount) -> None:
    user = seed_user(session)
    with pytest.raises(ValidationError, match="Amount must be greater than 0"):
        BudgetService(session, user.id).create(_budget_in(amount=amount))


@pytest.mark.parametrize("end", [date(2024, 3, 1), date(2024, 2, 1)])
def test_create_budget_rejects_end_not_after_start(session, end) -> None:
    user = seed_user(session)
    with pytest.raises(ValidationError, match="End date must be after start date"):
        BudgetService(session, user.id).create(_budget_in(end_date=end))


def test_budgets_are_scoped_to_their_owner(session) -> None:
    owner = seed_user(session)
    other = seed_user(session, email="bob@example.com", name="Bob")
    budget = BudgetService(session, owner.id).create(_budget_in())

    service = BudgetService(session, other.id)
    with pytest.raises(NotFoundError):
        service.get(budget.id)
    with pytest.raises(NotFoundError):
        service.delete(budget.id)
    assert service.list(None) == []


def test_update_budget_replaces_fields(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    budget = service.create(_budget_in())

    updated = service.update(
        budget.id,
        BudgetUpdateIn(
            name="Eating out",
            category="Restaurants",
            amount=Decimal("120.50"),
            period=BudgetPeriod.weekly,
            start_date=date(2024, 3, 4),
            end_date=date(2024, 3, 10),
            is_recurring=False,
            status=BudgetStatus.paused,
        ),
    )

    assert updated.name == "Eating out"
    assert updated.amount == Decimal("120.50")
    assert updated.period == BudgetPeriod.weekly
    assert updated.status == BudgetStatus.paused
    assert updated.is_recurring is False


def test_delete_budget_keeps_expenses_unassigned(session) -> None:
    user = seed_user(session)
    budget = BudgetService(session, user.id).create(_budget_in())
    expense = _spend(session, user.id, "25.00", budget.id)

    BudgetService(session, user.id).delete(budget.id)

    session.expire_all()
    assert session.get(Budget, budget.id) is None
    kept = session.get(Expense, expense.id)
    assert kept is not None
    assert kept.budget_id is None


def test_toggle_pause_flips_between_active_and_paused(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    budget = service.create(_budget_in())

    assert service.toggle_pause(budget.id).status == BudgetStatus.paused
    assert service.toggle_pause(budget.id).status == BudgetStatus.active


def test_toggle_pause_refuses_completed_budget(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    budget = service.create(_budget_in())
    service.budgets.update(budget, {"status": BudgetStatus.completed})
    session.commit()

    with pytest.raises(ValidationError):
        service.toggle_pause(budget.id)


def test_summary_covers_active_budgets_only(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    food = service.create(_budget_in(amount=Decimal("200.00")))
    paused = service.create(_budget_in(name="Hobby", category="Fun"))
    service.toggle_pause(paused.id)
    _spend(session, user.id, "50.00", food.id)
    _spend(session, user.id, "80.00", paused.id, category="Fun")
    _spend(session, user.id, "9.00")

    views = service.summary()

    assert [view.id for view in views] == [food.id]
    assert views[0].total_spent == Decimal("50.00")
    assert views[0].remaining == Decimal("150.00")
    assert views[0].progress_percentage == Decimal("25")


def test_get_with_expenses_lists_attached_expenses(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    budget = service.create(_budget_in(amount=Decimal("100.00")))
    first = _spend(session, user.id, "10.00", budget.id)
    second = _spend(session, user.id, "15.00", budget.id)

    view = service.get_with_expenses(budget.id)

    assert view.total_spent == Decimal("25.00")
    assert {expense.id for expense in view.expenses} == {first.id, second.id}


def test_category_summary_groups_active_budgets(session) -> None:
    user = seed_user(session)
    service = BudgetService(session, user.id)
    groceries = service.create(_budget_in(amount=Decimal("200.00")))
    service.create(_budget_in(name="Snacks", amount=Decimal("50.00")))
    service.create(_budget_in(name="Rent", category="Housing", amount=Decimal("900.00")))
    _spend(session, user.id, "60.00", groceries.id)

    rollup = service.category_summary()

    assert [row.category for row in rollup] == ["Housing", "Food"]
    assert rollup[1].budget_count == 2
    assert rollup[1].total_budgeted == Decimal("250.00")
    assert rollup[1].total_spent == Decimal("60.00")
