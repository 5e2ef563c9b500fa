import logging
import time
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db, session_scope
from errors import (
    ExpenseTrackerError,
    PartialPropagationError,
    UnexpectedError,
    ValidationError,
)
from models import Category, Expense, User
from money import cents_to_units
from periods import PeriodFilter, resolve_period_filter
from schemas import (
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    LoginIn,
    ProfileIn,
    SignupIn,
)
from services import (
    AnalyticsService,
    CategoryService,
    ConsistencyService,
    ExpenseFilters,
    ExpenseService,
    UserService,
    resume_all_pending,
)
from tokens import bearer_token, issue_token, verify_token


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone))


def get_deadline() -> float:
    return time.monotonic() + get_settings().request_timeout_secs


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    return verify_token(bearer_token(authorization))


def period_from_query(value: Optional[str]) -> PeriodFilter:
    try:
        return resolve_period_filter(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        resumed = resume_all_pending(session)
    if resumed:
        logger.info(f"startup_propagation_resumed: expenses_updated={resumed}")


@app.exception_handler(ExpenseTrackerError)
async def domain_error_handler(request: Request, exc: ExpenseTrackerError):
    if isinstance(exc, UnexpectedError):
        logger.error(f"request_failed: path={request.url.path} detail={exc.message}")
    body: dict[str, object] = {"error": exc.client_message}
    if isinstance(exc, PartialPropagationError):
        body.update(
            {
                "category_id": exc.category_id,
                "old_name": exc.old_name,
                "new_name": exc.new_name,
            }
        )
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"request_failed: path={request.url.path}")
    return JSONResponse({"error": UnexpectedError.public_message}, status_code=500)


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "contact_number": user.contact_number,
        "profile_image": user.profile_image or "",
    }


def category_payload(
    category: Category, stats: Optional[dict[str, object]] = None
) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": category.id,
        "name": category.name,
        "emoji": category.emoji,
        "color": category.color,
        "created_at": category.created_at.isoformat() if category.created_at else None,
    }
    if stats is not None:
        payload.update(stats)
    return payload


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": cents_to_units(expense.amount_cents),
        "amount_cents": expense.amount_cents,
        "date": expense.date.isoformat(),
        "category": expense.category,
        "emoji": expense.emoji,
        "description": expense.description,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/auth/signup", status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    user = UserService(db).signup(payload)
    return {"message": "User registered successfully", "user": {"email": user.email}}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(payload)
    return {
        "message": "Login successful",
        "token": issue_token(user.id, user.email),
        "user": user_payload(user),
    }


@app.get("/user/profile")
def get_profile(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return {"user": user_payload(UserService(db).get(user_id))}


@app.put("/user/profile")
def update_profile(
    payload: ProfileIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    user = UserService(db).update_profile(user_id, payload)
    return {"message": "Profile updated successfully", "user": user_payload(user)}


@app.get("/categories")
def list_categories(
    with_stats: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = CategoryService(db, user_id)
    categories = service.list_all()
    if not with_stats:
        return {"categories": [category_payload(cat) for cat in categories]}
    usage = service.usage()
    empty = {"expenses": 0, "total_spent_cents": 0, "percentage": 0.0}
    return {
        "categories": [
            category_payload(cat, usage.get(cat.name, empty)) for cat in categories
        ]
    }


@app.post("/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).create(payload)
    return {
        "message": "Category created successfully",
        "category": category_payload(category),
    }


@app.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdateIn,
    user_id: int = Depends(current_user_id),
    deadline: float = Depends(get_deadline),
    db: Session = Depends(get_db),
):
    category = ConsistencyService(db, user_id).update_category(
        category_id, payload, deadline=deadline
    )
    return {"message": "Category updated", "category": category_payload(category)}


@app.post("/categories/{category_id}/propagate")
def retry_category_propagation(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    updated = ConsistencyService(db, user_id).retry_propagation(category_id)
    return {"message": "Expenses updated", "expenses_updated": updated}


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    deadline: float = Depends(get_deadline),
    db: Session = Depends(get_db),
):
    removed = ConsistencyService(db, user_id).delete_category(
        category_id, deadline=deadline
    )
    return {
        "message": "Category and related expenses deleted",
        "expenses_deleted": removed,
    }


@app.get("/expenses")
def list_expenses(
    period: Optional[str] = None,
    category: Optional[str] = None,
    q: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    filters = ExpenseFilters(
        period=period_from_query(period), category=category or None, query=q or None
    )
    items = ExpenseService(db, user_id).list(filters, today=now.date())
    return {"expenses": [expense_payload(exp) for exp in items]}


@app.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).create(payload)
    return {
        "message": "Expense created successfully",
        "expense": expense_payload(expense),
    }


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).update(expense_id, payload)
    return {
        "message": "Expense updated successfully",
        "expense": expense_payload(expense),
    }


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user_id).delete(expense_id)
    return {"message": "Expense deleted successfully"}


@app.get("/analytics")
def analytics(
    period: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    report = AnalyticsService(db, user_id).report(period_from_query(period), now)
    return report.to_dict()
