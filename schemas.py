from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from models import BudgetPeriod, BudgetStatus


Money = Annotated[
    Decimal, PlainSerializer(lambda value: float(value), return_type=float, when_used="json")
]
Percentage = Annotated[
    Decimal,
    PlainSerializer(
        lambda value: round(float(value), 2), return_type=float, when_used="json"
    ),
]


class UserRegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(
        ..., min_length=3, max_length=100, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be empty")
        return value

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: datetime


class AuthOut(BaseModel):
    token: str
    user: UserOut


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: date
    is_recurring: bool = False


class BudgetUpdateIn(BudgetIn):
    status: BudgetStatus = BudgetStatus.active


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    category: str
    amount: Money
    period: BudgetPeriod
    start_date: date
    end_date: date
    is_recurring: bool
    status: BudgetStatus
    created_at: Optional[datetime]


class ExpenseIn(BaseModel):
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    date: date
    budget_id: Optional[int] = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount: Money
    description: str
    category: str
    date: date
    budget_id: Optional[int]
    created_at: Optional[datetime]


class ExpenseListItemOut(ExpenseOut):
    budget_name: Optional[str] = None
    budget_category: Optional[str] = None


class BudgetViewOut(BudgetOut):
    total_spent: Money
    remaining: Money
    progress_percentage: Percentage
    expenses: list[ExpenseOut] = Field(default_factory=list)


class CategoryRollupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    budget_count: int
    total_budgeted: Money
    total_spent: Money


class MonthlyTotalOut(BaseModel):
    year: int
    month: int
    total: Money


class CategoryTotalOut(BaseModel):
    category: str
    total: Money


class RolloverFailureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    budget_id: int
    error: str


class RolloverOut(BaseModel):
    message: str
    budgets: list[BudgetOut]
    failures: list[RolloverFailureOut] = Field(default_factory=list)


class MessageOut(BaseModel):
    msg: str
