"""Parameterized queries over the users, budgets and expenses tables.

Nothing in here makes decisions: callers get rows or mutation counts back and
every SQLAlchemy failure is re-raised as ``PersistenceError``. Writes are
flushed, never committed; the unit of work belongs to the caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from errors import PersistenceError
from models import Budget, BudgetStatus, Expense, User


logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(f"persistence_error: action={action} error={exc}")
        raise PersistenceError(f"Database error while trying to {action}") from exc


def to_money(value: object) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1) - date.resolution
    else:
        end = date(year, month + 1, 1) - date.resolution
    return start, end


class UserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        with translate_errors("load user"):
            return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        with translate_errors("load user by email"):
            return self.session.scalar(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )

    def insert(self, *, name: str, email: str, password_hash: str) -> User:
        with translate_errors("create user"):
            user = User(name=name, email=email, password_hash=password_hash)
            self.session.add(user)
            self.session.flush()
            return user


class BudgetRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_user(
        self, user_id: int, status: Optional[BudgetStatus] = None
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        if status is not None:
            stmt = stmt.where(Budget.status == status)
        with translate_errors("list budgets"):
            return list(self.session.scalars(stmt).all())

    def list_active_for_user(self, user_id: int) -> list[Budget]:
        return self.list_for_user(user_id, BudgetStatus.active)

    def get(self, budget_id: int, user_id: int) -> Optional[Budget]:
        stmt = select(Budget).where(Budget.id == budget_id, Budget.user_id == user_id)
        with translate_errors("load budget"):
            return self.session.scalar(stmt)

    def list_expired_recurring(self, as_of: date) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.is_recurring.is_(True),
                Budget.status == BudgetStatus.active,
                Budget.end_date < as_of,
            )
            .order_by(Budget.end_date, Budget.id)
        )
        with translate_errors("list expired recurring budgets"):
            return list(self.session.scalars(stmt).all())

    def insert(self, fields: dict[str, Any]) -> Budget:
        with translate_errors("create budget"):
            budget = Budget(**fields)
            self.session.add(budget)
            self.session.flush()
            return budget

    def update(self, budget: Budget, fields: dict[str, Any]) -> Budget:
        with translate_errors("update budget"):
            for field, value in fields.items():
                setattr(budget, field, value)
            self.session.flush()
            return budget

    def mark_status(
        self,
        budget_id: int,
        status: BudgetStatus,
        *,
        expected: Optional[BudgetStatus] = None,
    ) -> int:
        """Set a budget's status and return the number of rows changed.

        With ``expected`` the update only applies while the row still holds
        that status, so two writers racing on the same budget cannot both
        see a rowcount of one.
        """
        stmt = update(Budget).where(Budget.id == budget_id).values(status=status)
        if expected is not None:
            stmt = stmt.where(Budget.status == expected)
        with translate_errors("update budget status"):
            result = self.session.execute(
                stmt.execution_options(synchronize_session="fetch")
            )
            return result.rowcount or 0

    def delete(self, budget_id: int, user_id: int) -> int:
        with translate_errors("delete budget"):
            self.session.execute(
                update(Expense)
                .where(Expense.budget_id == budget_id, Expense.user_id == user_id)
                .values(budget_id=None)
                .execution_options(synchronize_session="fetch")
            )
            result = self.session.execute(
                delete(Budget)
                .where(Budget.id == budget_id, Budget.user_id == user_id)
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount or 0


class ExpenseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_budget(self, budget_id: int, user_id: int) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.budget_id == budget_id, Expense.user_id == user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        with translate_errors("list budget expenses"):
            return list(self.session.scalars(stmt).all())

    def list_for_budgets(
        self, budget_ids: Iterable[int], user_id: int
    ) -> list[Expense]:
        ids = list(budget_ids)
        if not ids:
            return []
        stmt = select(Expense).where(
            Expense.user_id == user_id, Expense.budget_id.in_(ids)
        )
        with translate_errors("list expenses for budgets"):
            return list(self.session.scalars(stmt).all())

    def list_for_user(self, user_id: int, *, limit: int, offset: int) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.budget))
            .where(Expense.user_id == user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with translate_errors("list expenses"):
            return list(self.session.scalars(stmt).all())

    def get(self, expense_id: int, user_id: int) -> Optional[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.budget))
            .where(Expense.id == expense_id, Expense.user_id == user_id)
        )
        with translate_errors("load expense"):
            return self.session.scalar(stmt)

    def insert(self, fields: dict[str, Any]) -> Expense:
        with translate_errors("create expense"):
            expense = Expense(**fields)
            self.session.add(expense)
            self.session.flush()
            return expense

    def update(self, expense: Expense, fields: dict[str, Any]) -> Expense:
        with translate_errors("update expense"):
            for field, value in fields.items():
                setattr(expense, field, value)
            self.session.flush()
            return expense

    def delete(self, expense_id: int, user_id: int) -> int:
        with translate_errors("delete expense"):
            result = self.session.execute(
                delete(Expense)
                .where(Expense.id == expense_id, Expense.user_id == user_id)
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount or 0

    def monthly_total(self, user_id: int, year: int, month: int) -> Decimal:
        start, end = month_bounds(year, month)
        stmt = select(func.coalesce(func.sum(Expense.amount), 0)).where(
            Expense.user_id == user_id, Expense.date.between(start, end)
        )
        with translate_errors("sum monthly expenses"):
            total = self.session.execute(stmt).scalar_one()
        return to_money(total)

    def category_totals(
        self, user_id: int, start: date, end: date
    ) -> list[tuple[str, Decimal]]:
        total = func.coalesce(func.sum(Expense.amount), 0).label("total")
        stmt = (
            select(Expense.category, total)
            .where(Expense.user_id == user_id, Expense.date.between(start, end))
            .group_by(Expense.category)
            .order_by(total.desc(), Expense.category)
        )
        with translate_errors("sum expenses by category"):
            rows = self.session.execute(stmt).all()
        return [(row.category, to_money(row.total)) for row in rows]
