from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from aggregation import (
    BudgetView,
    CategoryRollup,
    compute_budget_view,
    compute_budget_views,
    compute_category_rollup,
)
from errors import AuthenticationError, NotFoundError, ValidationError
from models import Budget, BudgetStatus, Expense, User
from periods import Period
from recurrence import BudgetRoller, RolloverResult
from repository import (
    BudgetRepository,
    ExpenseRepository,
    UserRepository,
    translate_errors,
)
from schemas import BudgetIn, BudgetUpdateIn, ExpenseIn, LoginIn, UserRegisterIn
from security import hash_password, verify_password


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _commit(session: Session, action: str) -> None:
    with translate_errors(action):
        session.commit()


def validate_budget_fields(amount: Decimal, start_date: date, end_date: date) -> None:
    if amount is None or amount <= ZERO:
        raise ValidationError("Amount must be greater than 0")
    if start_date >= end_date:
        raise ValidationError("End date must be after start date")


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.users = UserRepository(session)

    def register(self, data: UserRegisterIn) -> User:
        email = data.email.strip().lower()
        if self.users.get_by_email(email):
            raise ValidationError("User already exists")
        user = self.users.insert(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
        )
        _commit(self.session, "create user")
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self.users.get_by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.budgets = BudgetRepository(session)
        self.expenses = ExpenseRepository(session)

    def get(self, budget_id: int) -> Budget:
        budget = self.budgets.get(budget_id, self.user_id)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def list(self, status: Optional[BudgetStatus] = BudgetStatus.active) -> list[Budget]:
        return self.budgets.list_for_user(self.user_id, status)

    def create(self, data: BudgetIn) -> Budget:
        validate_budget_fields(data.amount, data.start_date, data.end_date)
        budget = self.budgets.insert(
            {
                "user_id": self.user_id,
                "name": data.name.strip(),
                "category": data.category.strip(),
                "amount": data.amount,
                "period": data.period,
                "start_date": data.start_date,
                "end_date": data.end_date,
                "is_recurring": data.is_recurring,
                "status": BudgetStatus.active,
            }
        )
        _commit(self.session, "create budget")
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        validate_budget_fields(data.amount, data.start_date, data.end_date)
        budget = self.get(budget_id)
        fields = data.model_dump()
        fields["name"] = fields["name"].strip()
        fields["category"] = fields["category"].strip()
        self.budgets.update(budget, fields)
        _commit(self.session, "update budget")
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        """Delete a budget; its expenses stay and become unassigned."""
        if not self.budgets.delete(budget_id, self.user_id):
            raise NotFoundError("Budget not found")
        _commit(self.session, "delete budget")

    def toggle_pause(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        if budget.status == BudgetStatus.completed:
            raise ValidationError("Completed budgets cannot be paused")
        new_status = (
            BudgetStatus.paused
            if budget.status == BudgetStatus.active
            else BudgetStatus.active
        )
        self.budgets.update(budget, {"status": new_status})
        _commit(self.session, "update budget status")
        self.session.refresh(budget)
        return budget

    def get_with_expenses(self, budget_id: int) -> BudgetView:
        budget = self.get(budget_id)
        expenses = self.expenses.list_for_budget(budget.id, self.user_id)
        return compute_budget_view(budget, expenses, include_expenses=True)

    def summary(self) -> list[BudgetView]:
        budgets = self.budgets.list_active_for_user(self.user_id)
        expenses = self.expenses.list_for_budgets(
            (budget.id for budget in budgets), self.user_id
        )
        return compute_budget_views(budgets, expenses)

    def category_summary(self) -> list[CategoryRollup]:
        budgets = self.budgets.list_active_for_user(self.user_id)
        expenses = self.expenses.list_for_budgets(
            (budget.id for budget in budgets), self.user_id
        )
        return compute_category_rollup(budgets, expenses)


def roll_recurring_budgets(
    session: Session, as_of: Optional[date] = None
) -> RolloverResult:
    """Roll every expired recurring budget, across all users, and commit."""
    result = BudgetRoller(session).roll_expired(as_of)
    _commit(session, "roll recurring budgets")
    for budget in result.created:
        session.refresh(budget)
    logger.info(
        f"rollover_run: created={len(result.created)} "
        f"failed={len(result.failures)} skipped={len(result.skipped)}"
    )
    return result


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.expenses = ExpenseRepository(session)
        self.budgets = BudgetRepository(session)

    def _check_budget(self, budget_id: Optional[int]) -> None:
        if budget_id is None:
            return
        if not self.budgets.get(budget_id, self.user_id):
            raise ValidationError("Budget not found")

    def _fields(self, data: ExpenseIn) -> dict[str, object]:
        if data.amount is None or data.amount <= ZERO:
            raise ValidationError("Amount must be greater than 0")
        self._check_budget(data.budget_id)
        return {
            "amount": data.amount,
            "description": data.description.strip(),
            "category": data.category.strip(),
            "date": data.date,
            "budget_id": data.budget_id,
        }

    def get(self, expense_id: int) -> Expense:
        expense = self.expenses.get(expense_id, self.user_id)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list(self, page: int = 1, limit: int = 50) -> list[Expense]:
        page = max(page, 1)
        limit = min(max(limit, 1), 500)
        return self.expenses.list_for_user(
            self.user_id, limit=limit, offset=(page - 1) * limit
        )

    def create(self, data: ExpenseIn) -> Expense:
        fields = self._fields(data)
        fields["user_id"] = self.user_id
        expense = self.expenses.insert(fields)
        _commit(self.session, "create expense")
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        self.expenses.update(expense, self._fields(data))
        _commit(self.session, "update expense")
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        if not self.expenses.delete(expense_id, self.user_id):
            raise NotFoundError("Expense not found")
        _commit(self.session, "delete expense")

    def monthly_total(self, year: int, month: int) -> Decimal:
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        return self.expenses.monthly_total(self.user_id, year, month)

    def category_summary(self, period: Period) -> list[tuple[str, Decimal]]:
        return self.expenses.category_totals(self.user_id, period.start, period.end)
