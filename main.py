import logging
import secrets
from datetime import date
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import get_database
from errors import AuthenticationError, NotFoundError, PersistenceError, ValidationError
from models import BudgetStatus, Expense
from periods import resolve_period
from scheduler import SchedulerManager
from schemas import (
    AuthOut,
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    BudgetViewOut,
    CategoryRollupOut,
    CategoryTotalOut,
    ExpenseIn,
    ExpenseListItemOut,
    ExpenseOut,
    LoginIn,
    MessageOut,
    MonthlyTotalOut,
    RolloverFailureOut,
    RolloverOut,
    UserOut,
    UserRegisterIn,
)
from security import issue_token, read_token
from services import BudgetService, ExpenseService, UserService, roll_recurring_budgets


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Personal Finance Tracker", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db() -> Iterator[Session]:
    db = get_database().session()
    try:
        yield db
    finally:
        db.close()


scheduler_manager: Optional[SchedulerManager] = None


@app.on_event("startup")
def startup_event():
    global scheduler_manager
    database = get_database().open()
    if get_settings().scheduler_enabled:
        scheduler_manager = SchedulerManager(database)
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler_manager is not None:
        scheduler_manager.stop()
    get_database().close()


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthenticationError)
def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"detail": "Server error"})


def current_user_id(
    x_auth_token: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> int:
    token = x_auth_token
    if not token and authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = value.strip()
    if not token:
        raise AuthenticationError("No token, authorization denied")
    user_id = read_token(token)
    try:
        UserService(db).get(user_id)
    except NotFoundError as exc:
        raise AuthenticationError("Token is not valid") from exc
    return user_id


def require_rollover_key(x_api_key: Optional[str] = Header(None)) -> None:
    expected = get_settings().rollover_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Rollover endpoint is disabled")
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")


def _expense_item(expense: Expense) -> ExpenseListItemOut:
    item = ExpenseListItemOut.model_validate(expense)
    if expense.budget is not None:
        item.budget_name = expense.budget.name
        item.budget_category = expense.budget.category
    return item


@app.get("/api/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/auth/register", response_model=AuthOut)
def register(data: UserRegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(data)
    return AuthOut(token=issue_token(user.id), user=UserOut.model_validate(user))


@app.post("/api/auth/login", response_model=AuthOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data)
    except AuthenticationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AuthOut(token=issue_token(user.id), user=UserOut.model_validate(user))


@app.get("/api/auth/user", response_model=UserOut)
def auth_user(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return UserService(db).get(user_id)


@app.post("/api/expenses", response_model=ExpenseOut)
def create_expense(
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user_id).create(data)


@app.get("/api/expenses", response_model=list[ExpenseListItemOut])
def list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expenses = ExpenseService(db, user_id).list(page=page, limit=limit)
    return [_expense_item(expense) for expense in expenses]


@app.get("/api/expenses/summary/monthly", response_model=MonthlyTotalOut)
def expenses_monthly_total(
    year: int = Query(..., ge=1970, le=3000),
    month: int = Query(..., ge=1, le=12),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    total = ExpenseService(db, user_id).monthly_total(year, month)
    return MonthlyTotalOut(year=year, month=month, total=total)


@app.get("/api/expenses/summary/category", response_model=list[CategoryTotalOut])
def expenses_category_summary(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    period: Optional[str] = Query(None),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    resolved = resolve_period(period, start_date, end_date)
    rows = ExpenseService(db, user_id).category_summary(resolved)
    return [CategoryTotalOut(category=category, total=total) for category, total in rows]


@app.get("/api/expenses/{expense_id}", response_model=ExpenseListItemOut)
def get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _expense_item(ExpenseService(db, user_id).get(expense_id))


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user_id).update(expense_id, data)


@app.delete("/api/expenses/{expense_id}", response_model=MessageOut)
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user_id).delete(expense_id)
    return MessageOut(msg="Expense removed")


@app.post("/api/budgets", response_model=BudgetOut)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetService(db, user_id).create(data)


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(
    status: str = Query("active"),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if status == "all":
        wanted = None
    else:
        try:
            wanted = BudgetStatus(status)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown status") from exc
    return BudgetService(db, user_id).list(wanted)


@app.get("/api/budgets/summary", response_model=list[BudgetViewOut])
def budgets_summary(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return [
        BudgetViewOut.model_validate(view)
        for view in BudgetService(db, user_id).summary()
    ]


@app.get("/api/budgets/category-summary", response_model=list[CategoryRollupOut])
def budgets_category_summary(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return [
        CategoryRollupOut.model_validate(row)
        for row in BudgetService(db, user_id).category_summary()
    ]


@app.post(
    "/api/budgets/create-recurring",
    response_model=RolloverOut,
    dependencies=[Depends(require_rollover_key)],
)
def create_recurring_budgets(
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    result = roll_recurring_budgets(db, as_of)
    return RolloverOut(
        message=f"Created {len(result.created)} recurring budgets",
        budgets=[BudgetOut.model_validate(budget) for budget in result.created],
        failures=[
            RolloverFailureOut(budget_id=failure.budget_id, error=failure.error)
            for failure in result.failures
        ],
    )


@app.get("/api/budgets/{budget_id}", response_model=BudgetViewOut)
def get_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    view = BudgetService(db, user_id).get_with_expenses(budget_id)
    return BudgetViewOut.model_validate(view)


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetService(db, user_id).update(budget_id, data)


@app.delete("/api/budgets/{budget_id}", response_model=MessageOut)
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    BudgetService(db, user_id).delete(budget_id)
    return MessageOut(msg="Budget removed")


@app.post("/api/budgets/{budget_id}/pause", response_model=BudgetOut)
def toggle_budget_pause(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return BudgetService(db, user_id).toggle_pause(budget_id)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
