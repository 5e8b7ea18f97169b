"""Spent/remaining/progress figures for budgets.

Pure functions over rows that were already fetched. Nothing here touches the
session, so the same code serves a single budget page, the dashboard summary
and the category rollup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from models import Budget, BudgetPeriod, BudgetStatus, Expense


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BudgetView:
    id: int
    user_id: int
    name: str
    category: str
    amount: Decimal
    period: BudgetPeriod
    start_date: date
    end_date: date
    is_recurring: bool
    status: BudgetStatus
    created_at: Optional[datetime]
    total_spent: Decimal
    remaining: Decimal
    progress_percentage: Decimal
    expenses: list[Expense] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryRollup:
    category: str
    budget_count: int
    total_budgeted: Decimal
    total_spent: Decimal


def _as_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def progress_percentage(spent: Decimal, amount: Decimal) -> Decimal:
    if amount <= ZERO:
        return ZERO
    return spent / amount * HUNDRED


def _sum_amounts(expenses: Iterable[Expense]) -> Decimal:
    total = ZERO
    for expense in expenses:
        total += _as_decimal(expense.amount)
    return total


def _view(
    budget: Budget, spent: Decimal, expenses: Optional[list[Expense]] = None
) -> BudgetView:
    amount = _as_decimal(budget.amount)
    return BudgetView(
        id=budget.id,
        user_id=budget.user_id,
        name=budget.name,
        category=budget.category,
        amount=amount,
        period=budget.period,
        start_date=budget.start_date,
        end_date=budget.end_date,
        is_recurring=budget.is_recurring,
        status=budget.status,
        created_at=budget.created_at,
        total_spent=spent,
        remaining=amount - spent,
        progress_percentage=progress_percentage(spent, amount),
        expenses=expenses or [],
    )


def _belongs_to(expense: Expense, budget: Budget) -> bool:
    return expense.budget_id == budget.id and expense.user_id == budget.user_id


def compute_budget_view(
    budget: Budget, expenses: Iterable[Expense], *, include_expenses: bool = False
) -> BudgetView:
    """Derive ``total_spent``, ``remaining`` and ``progress_percentage``.

    Expenses that are not attached to ``budget`` or that belong to another
    user are ignored, so callers may pass a superset.
    """
    own = [expense for expense in expenses if _belongs_to(expense, budget)]
    return _view(budget, _sum_amounts(own), own if include_expenses else None)


def _spent_by_budget(expenses: Iterable[Expense]) -> dict[tuple[int, int], Decimal]:
    spent: dict[tuple[int, int], Decimal] = {}
    for expense in expenses:
        if expense.budget_id is None:
            continue
        key = (expense.budget_id, expense.user_id)
        spent[key] = spent.get(key, ZERO) + _as_decimal(expense.amount)
    return spent


def _newest_first(budget: Budget) -> tuple[datetime, int]:
    return (budget.created_at or datetime.min, budget.id or 0)


def compute_budget_views(
    budgets: Sequence[Budget], expenses: Iterable[Expense]
) -> list[BudgetView]:
    spent = _spent_by_budget(expenses)
    ordered = sorted(budgets, key=_newest_first, reverse=True)
    return [
        _view(budget, spent.get((budget.id, budget.user_id), ZERO))
        for budget in ordered
    ]


def compute_category_rollup(
    budgets: Sequence[Budget], expenses: Iterable[Expense]
) -> list[CategoryRollup]:
    spent = _spent_by_budget(expenses)
    counts: dict[str, int] = {}
    budgeted: dict[str, Decimal] = {}
    spent_by_category: dict[str, Decimal] = {}
    for budget in budgets:
        key = budget.category
        counts[key] = counts.get(key, 0) + 1
        budgeted[key] = budgeted.get(key, ZERO) + _as_decimal(budget.amount)
        spent_by_category[key] = spent_by_category.get(key, ZERO) + spent.get(
            (budget.id, budget.user_id), ZERO
        )

    rollup = [
        CategoryRollup(
            category=category,
            budget_count=counts[category],
            total_budgeted=budgeted[category],
            total_spent=spent_by_category[category],
        )
        for category in counts
    ]
    rollup.sort(key=lambda row: row.category)
    rollup.sort(key=lambda row: row.total_budgeted, reverse=True)
    return rollup
