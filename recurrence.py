import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import get_settings
from errors import FinanceError
from models import Budget, BudgetPeriod, BudgetStatus
from repository import BudgetRepository, translate_errors


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    if not settings.timezone:
        return date.today()
    return datetime.now(ZoneInfo(settings.timezone)).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole calendar months, clamping to the month end.

    Jan 31 + 1 month is Feb 29 in a leap year and Feb 28 otherwise; Feb 29
    + 12 months is Feb 28 of the following year. The day never spills into
    the next month.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def next_period(period: BudgetPeriod, previous_end: date) -> tuple[date, date]:
    start = previous_end + timedelta(days=1)
    if period == BudgetPeriod.weekly:
        end = start + timedelta(days=6)
    elif period == BudgetPeriod.monthly:
        end = add_months(previous_end, 1)
    elif period == BudgetPeriod.yearly:
        end = add_months(previous_end, 12)
    else:
        raise ValueError(f"Unsupported budget period: {period}")
    return start, end


def successor_fields(budget: Budget) -> dict[str, object]:
    start, end = next_period(budget.period, budget.end_date)
    return {
        "user_id": budget.user_id,
        "name": budget.name,
        "category": budget.category,
        "amount": budget.amount,
        "period": budget.period,
        "start_date": start,
        "end_date": end,
        "is_recurring": True,
        "status": BudgetStatus.active,
    }


@dataclass(frozen=True)
class RolloverFailure:
    budget_id: int
    error: str


@dataclass
class RolloverResult:
    created: list[Budget] = field(default_factory=list)
    failures: list[RolloverFailure] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


class BudgetRoller:
    """Closes expired recurring budgets and opens their next period.

    Each budget is handled inside its own savepoint. The old budget is
    claimed by flipping it from ``active`` to ``completed`` with a guarded
    update; a roller that loses that race skips the budget instead of
    creating a second successor. A failing budget is rolled back on its own
    and reported in the result, the rest of the batch still runs. The
    caller owns the outer transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.budgets = BudgetRepository(session)

    def roll_budget(self, budget: Budget) -> Optional[Budget]:
        fields = successor_fields(budget)
        with translate_errors("roll budget"), self.session.begin_nested():
            claimed = self.budgets.mark_status(
                budget.id, BudgetStatus.completed, expected=BudgetStatus.active
            )
            if claimed != 1:
                return None
            return self.budgets.insert(fields)

    def roll_expired(self, as_of: Optional[date] = None) -> RolloverResult:
        as_of = as_of or local_today()
        result = RolloverResult()
        for budget in self.budgets.list_expired_recurring(as_of):
            budget_id = budget.id
            try:
                successor = self.roll_budget(budget)
            except (FinanceError, ValueError) as exc:
                logger.exception(f"rollover_failed: budget_id={budget_id}")
                result.failures.append(RolloverFailure(budget_id, str(exc)))
                continue
            if successor is None:
                logger.info(f"rollover_skipped: budget_id={budget_id} reason=claimed")
                result.skipped.append(budget_id)
                continue
            logger.info(
                f"rollover_created: budget_id={budget_id} successor_id={successor.id} "
                f"start={successor.start_date} end={successor.end_date}"
            )
            result.created.append(successor)
        return result
