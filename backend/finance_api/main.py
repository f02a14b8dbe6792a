import time
from datetime import date
from typing import Any
from uuid import UUID

from fastapi import Cookie, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .errors import ProblemError, InternalProblem, UnauthorizedProblem, ValidationProblem
from .logging_config import configure_logging, get_logger
from .persistence import get_persistence
from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    AuthResponse,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    DescriptionsResponse,
    EntryType,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SortDirection,
    SubcategoryCreate,
    SubcategoryResponse,
    SubcategoryUpdate,
    SummaryResponse,
    TopCategoriesGroupBy,
    TopCategoryItem,
    TransactionCreate,
    TransactionFilters,
    TransactionListItem,
    TransactionListResponse,
    TransactionResponse,
    TransactionSort,
    TransactionUpdate,
    TransferCreate,
    TransferResponse,
    UserPasswordChange,
    UserProfileResponse,
    UserProfileUpdate,
)
from .seed import seed_system_categories
from .services.accounts import AccountService
from .services.amounts import to_number
from .services.auth import AuthService
from .services.categories import CategoryService, SubcategoryService
from .services.reports import ReportService
from .services.transactions import TransactionService
from .services.transfers import TransferService

configure_logging(settings.log_level)
logger = get_logger(__name__)

app = FastAPI(
    title="Opa Finance API",
    version="0.1.0",
    description="Personal finance API: accounts, categories, transactions, transfers and reports.",
)

persistence = get_persistence()
auth_service = AuthService(persistence)
account_service = AccountService(persistence)
category_service = CategoryService(persistence)
subcategory_service = SubcategoryService(persistence)
transaction_service = TransactionService(persistence)
transfer_service = TransferService(persistence)
report_service = ReportService(persistence)


def _problem_response(request: Request, problem: ProblemError) -> JSONResponse:
    body = problem.to_dict()
    body.setdefault("instance", request.url.path)
    return JSONResponse(status_code=problem.status, content=body, media_type="application/problem+json")


def _describe_errors(errors: list[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(item) for item in err.get("loc", []) if item not in ("body", "query", "path"))
        message = err.get("msg", "validation error")
        parts.append(f"{loc}: {message}" if loc else message)
    return "; ".join(parts) or "Invalid request."


@app.exception_handler(ProblemError)
async def problem_exception_handler(request: Request, exc: ProblemError) -> JSONResponse:
    return _problem_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _problem_response(request, ValidationProblem(_describe_errors(exc.errors())))


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        detail = _describe_errors(exc.errors())
    else:
        detail = str(exc)
    return _problem_response(request, ValidationProblem(detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request.failed", method=request.method, path=request.url.path, exc_info=exc)
    return _problem_response(request, InternalProblem("Unexpected error."))


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request.completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


@app.on_event("startup")
async def on_startup() -> None:
    if settings.seed_on_startup:
        seed_system_categories(persistence)


def _token_from_header(authorization: str | None) -> str:
    if not authorization:
        raise UnauthorizedProblem("Missing Authorization header.")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise UnauthorizedProblem("Invalid Authorization header.")
    return parts[1].strip()


def _require_user(authorization: str | None) -> UUID:
    return auth_service.authenticate(_token_from_header(authorization))


def _user_out(row: dict[str, Any]) -> UserProfileResponse:
    return UserProfileResponse(id=row["id"], name=row["name"], email=row["email"], createdAt=row["created_at"])


def _account_out(row: dict[str, Any]) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        userId=row["user_id"],
        name=row["name"],
        type=row["type"],
        initialBalance=to_number(row["initial_balance"]),
        currentBalance=to_number(row["current_balance"]),
        color=row.get("color"),
        icon=row.get("icon"),
        createdAt=row["created_at"],
    )


def _category_out(row: dict[str, Any]) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        userId=row.get("user_id"),
        name=row["name"],
        type=row["type"],
        color=row.get("color"),
        system=bool(row.get("system")),
        createdAt=row["created_at"],
    )


def _subcategory_out(row: dict[str, Any]) -> SubcategoryResponse:
    return SubcategoryResponse(
        id=row["id"],
        userId=row["user_id"],
        categoryId=row["category_id"],
        name=row["name"],
        color=row.get("color"),
        createdAt=row["created_at"],
    )


def _transaction_fields(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "accountId": row["account_id"],
        "categoryId": row["category_id"],
        "subcategoryId": row.get("subcategory_id"),
        "type": row["type"],
        "amount": to_number(row["amount"]),
        "date": row["date"],
        "description": row.get("description"),
        "notes": row.get("notes"),
        "transferId": row.get("transfer_id"),
        "createdAt": row["created_at"],
        "updatedAt": row.get("updated_at"),
    }


def _transaction_out(row: dict[str, Any]) -> TransactionResponse:
    return TransactionResponse(**_transaction_fields(row))


def _transaction_item(row: dict[str, Any]) -> TransactionListItem:
    return TransactionListItem(
        **_transaction_fields(row),
        accountName=row.get("account_name"),
        categoryName=row.get("category_name"),
        subcategoryName=row.get("subcategory_name"),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


# --- auth & users ---------------------------------------------------------


REFRESH_COOKIE = "refreshToken"


def _with_refresh_cookie(response: Response, tokens: dict[str, str]) -> AuthResponse:
    response.set_cookie(
        REFRESH_COOKIE,
        tokens["refresh_token"],
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.app_env == "production",
        samesite="strict",
    )
    return AuthResponse(accessToken=tokens["access_token"])


@app.post("/auth/register", response_model=AuthResponse, status_code=201)
async def auth_register(payload: RegisterRequest, response: Response) -> AuthResponse:
    return _with_refresh_cookie(response, auth_service.register(payload))


@app.post("/auth/login", response_model=AuthResponse)
async def auth_login(payload: LoginRequest, response: Response) -> AuthResponse:
    return _with_refresh_cookie(response, auth_service.login(payload))


@app.post("/auth/refresh", response_model=AuthResponse)
async def auth_refresh(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
) -> AuthResponse:
    return _with_refresh_cookie(response, auth_service.refresh(refresh_token))


@app.post("/auth/logout", response_model=MessageResponse)
async def auth_logout(response: Response) -> MessageResponse:
    response.delete_cookie(REFRESH_COOKIE, path="/")
    return MessageResponse(message="Logged out successfully.")


@app.post("/auth/check-password-strength", response_model=PasswordStrengthResponse)
async def auth_check_password_strength(payload: PasswordStrengthRequest) -> PasswordStrengthResponse:
    return PasswordStrengthResponse(**auth_service.check_password_strength(payload.password))


@app.post("/auth/forgot-password", response_model=ForgotPasswordResponse, response_model_exclude_none=True)
async def auth_forgot_password(payload: ForgotPasswordRequest) -> ForgotPasswordResponse:
    result = auth_service.forgot_password(payload.email)
    return ForgotPasswordResponse(message=result["message"], resetToken=result.get("reset_token"))


@app.post("/auth/reset-password", response_model=MessageResponse)
async def auth_reset_password(payload: ResetPasswordRequest) -> MessageResponse:
    return MessageResponse(**auth_service.reset_password(payload))

@app.get("/auth/me", response_model=UserProfileResponse)
async def auth_me(authorization: str | None = Header(default=None)) -> UserProfileResponse:
    user_id = _require_user(authorization)
    return _user_out(auth_service.get_profile(user_id))


@app.get("/users/me", response_model=UserProfileResponse)
async def get_user_profile(authorization: str | None = Header(default=None)) -> UserProfileResponse:
    user_id = _require_user(authorization)
    return _user_out(auth_service.get_profile(user_id))


@app.put("/users/me", response_model=UserProfileResponse)
async def update_user_profile(
    payload: UserProfileUpdate,
    authorization: str | None = Header(default=None),
) -> UserProfileResponse:
    user_id = _require_user(authorization)
    return _user_out(auth_service.update_profile(user_id, payload))


@app.post("/users/me/change-password", response_model=MessageResponse)
async def change_user_password(
    payload: UserPasswordChange,
    authorization: str | None = Header(default=None),
) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**auth_service.change_password(user_id, payload))


@app.delete("/users/me", response_model=MessageResponse)
async def delete_my_user(authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**auth_service.delete_user(user_id))


# --- accounts -------------------------------------------------------------


@app.post("/accounts", response_model=AccountResponse, status_code=201)
async def create_account(payload: AccountCreate, authorization: str | None = Header(default=None)) -> AccountResponse:
    user_id = _require_user(authorization)
    return _account_out(account_service.create(user_id, payload))


@app.get("/accounts", response_model=list[AccountResponse])
async def list_accounts(authorization: str | None = Header(default=None)) -> list[AccountResponse]:
    user_id = _require_user(authorization)
    return [_account_out(row) for row in account_service.list_all(user_id)]


@app.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(account_id: UUID, authorization: str | None = Header(default=None)) -> AccountResponse:
    user_id = _require_user(authorization)
    return _account_out(account_service.get_one(account_id, user_id))


@app.put("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: UUID,
    payload: AccountUpdate,
    authorization: str | None = Header(default=None),
) -> AccountResponse:
    user_id = _require_user(authorization)
    return _account_out(account_service.update(account_id, user_id, payload))


@app.delete("/accounts/{account_id}", response_model=MessageResponse)
async def delete_account(account_id: UUID, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**account_service.delete(account_id, user_id))


# --- categories & subcategories -------------------------------------------


@app.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(payload: CategoryCreate, authorization: str | None = Header(default=None)) -> CategoryResponse:
    user_id = _require_user(authorization)
    return _category_out(category_service.create(user_id, payload))


@app.get("/categories", response_model=list[CategoryResponse])
async def list_categories(authorization: str | None = Header(default=None)) -> list[CategoryResponse]:
    user_id = _require_user(authorization)
    return [_category_out(row) for row in category_service.list_all(user_id)]


@app.get("/categories/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: UUID, authorization: str | None = Header(default=None)) -> CategoryResponse:
    user_id = _require_user(authorization)
    return _category_out(category_service.get_one(category_id, user_id))


@app.put("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: UUID,
    payload: CategoryUpdate,
    authorization: str | None = Header(default=None),
) -> CategoryResponse:
    user_id = _require_user(authorization)
    return _category_out(category_service.update(category_id, user_id, payload))


@app.delete("/categories/{category_id}", response_model=MessageResponse)
async def delete_category(category_id: UUID, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**category_service.delete(category_id, user_id))


@app.get("/categories/{category_id}/subcategories", response_model=list[SubcategoryResponse])
async def list_category_subcategories(
    category_id: UUID,
    authorization: str | None = Header(default=None),
) -> list[SubcategoryResponse]:
    user_id = _require_user(authorization)
    return [_subcategory_out(row) for row in subcategory_service.list_for_category(category_id, user_id)]


@app.post("/subcategories", response_model=SubcategoryResponse, status_code=201)
async def create_subcategory(
    payload: SubcategoryCreate,
    authorization: str | None = Header(default=None),
) -> SubcategoryResponse:
    user_id = _require_user(authorization)
    return _subcategory_out(subcategory_service.create(user_id, payload))


@app.get("/subcategories/{subcategory_id}", response_model=SubcategoryResponse)
async def get_subcategory(subcategory_id: UUID, authorization: str | None = Header(default=None)) -> SubcategoryResponse:
    user_id = _require_user(authorization)
    return _subcategory_out(subcategory_service.get_one(subcategory_id, user_id))


@app.put("/subcategories/{subcategory_id}", response_model=SubcategoryResponse)
async def update_subcategory(
    subcategory_id: UUID,
    payload: SubcategoryUpdate,
    authorization: str | None = Header(default=None),
) -> SubcategoryResponse:
    user_id = _require_user(authorization)
    return _subcategory_out(subcategory_service.update(subcategory_id, user_id, payload))


@app.delete("/subcategories/{subcategory_id}", response_model=MessageResponse)
async def delete_subcategory(subcategory_id: UUID, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**subcategory_service.delete(subcategory_id, user_id))


# --- transactions ---------------------------------------------------------


@app.post("/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(
    payload: TransactionCreate,
    authorization: str | None = Header(default=None),
) -> TransactionResponse:
    user_id = _require_user(authorization)
    return _transaction_out(transaction_service.create(user_id, payload))


@app.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    startDate: date | None = Query(default=None),
    endDate: date | None = Query(default=None),
    accountId: UUID | None = Query(default=None),
    categoryId: UUID | None = Query(default=None),
    subcategoryId: UUID | None = Query(default=None),
    entry_type: EntryType | None = Query(default=None, alias="type"),
    description: str | None = Query(default=None),
    notes: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort: TransactionSort = Query(default=TransactionSort.date),
    direction: SortDirection = Query(default=SortDirection.desc, alias="dir"),
    authorization: str | None = Header(default=None),
) -> TransactionListResponse:
    user_id = _require_user(authorization)
    filters = TransactionFilters(
        startDate=startDate,
        endDate=endDate,
        accountId=accountId,
        categoryId=categoryId,
        subcategoryId=subcategoryId,
        type=entry_type,
        description=description,
        notes=notes,
    )
    result = transaction_service.list_page(
        user_id, filters, page=page, limit=limit, sort=sort.value, direction=direction.value
    )
    return TransactionListResponse(
        data=[_transaction_item(row) for row in result["data"]],
        page=result["page"],
        limit=result["limit"],
        total=result["total"],
    )


@app.get("/transactions/summary", response_model=SummaryResponse)
async def transactions_summary(
    startDate: date | None = Query(default=None),
    endDate: date | None = Query(default=None),
    accountId: UUID | None = Query(default=None),
    categoryId: UUID | None = Query(default=None),
    subcategoryId: UUID | None = Query(default=None),
    authorization: str | None = Header(default=None),
) -> SummaryResponse:
    user_id = _require_user(authorization)
    filters = TransactionFilters(
        startDate=startDate,
        endDate=endDate,
        accountId=accountId,
        categoryId=categoryId,
        subcategoryId=subcategoryId,
    )
    totals = report_service.summary(user_id, filters)
    return SummaryResponse(
        income=to_number(totals["income"]),
        expense=to_number(totals["expense"]),
        balance=to_number(totals["balance"]),
    )


@app.get("/transactions/top-categories", response_model=list[TopCategoryItem], response_model_exclude_none=True)
async def transactions_top_categories(
    startDate: date | None = Query(default=None),
    endDate: date | None = Query(default=None),
    accountId: UUID | None = Query(default=None),
    groupBy: TopCategoriesGroupBy = Query(default=TopCategoriesGroupBy.category),
    limit: int = Query(default=5, ge=1, le=20),
    authorization: str | None = Header(default=None),
) -> list[TopCategoryItem]:
    user_id = _require_user(authorization)
    filters = TransactionFilters(startDate=startDate, endDate=endDate, accountId=accountId)
    items = report_service.top_categories(user_id, filters, group_by=groupBy.value, limit=limit)
    return [
        TopCategoryItem(
            id=item["id"],
            name=item["name"],
            totalAmount=to_number(item["total_amount"]),
            percentage=item["percentage"],
            categoryId=item.get("category_id"),
            categoryName=item.get("category_name"),
        )
        for item in items
    ]


@app.get("/transactions/descriptions", response_model=DescriptionsResponse)
async def transactions_descriptions(
    accountId: UUID = Query(...),
    q: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=10, ge=1, le=50),
    authorization: str | None = Header(default=None),
) -> DescriptionsResponse:
    user_id = _require_user(authorization)
    return DescriptionsResponse(items=report_service.descriptions(user_id, accountId, q=q, limit=limit))


@app.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: UUID, authorization: str | None = Header(default=None)) -> TransactionResponse:
    user_id = _require_user(authorization)
    return _transaction_out(transaction_service.get_one(transaction_id, user_id))


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdate,
    authorization: str | None = Header(default=None),
) -> TransactionResponse:
    user_id = _require_user(authorization)
    return _transaction_out(transaction_service.update(transaction_id, user_id, payload))


@app.delete("/transactions/{transaction_id}", response_model=MessageResponse)
async def delete_transaction(transaction_id: UUID, authorization: str | None = Header(default=None)) -> MessageResponse:
    user_id = _require_user(authorization)
    return MessageResponse(**transaction_service.delete(transaction_id, user_id))


# --- transfers ------------------------------------------------------------


@app.post("/transfers", response_model=TransferResponse, status_code=201)
async def create_transfer(payload: TransferCreate, authorization: str | None = Header(default=None)) -> TransferResponse:
    user_id = _require_user(authorization)
    result = transfer_service.create(user_id, payload)
    return TransferResponse(
        id=result["id"],
        fromAccount=_transaction_out(result["from_account"]),
        toAccount=_transaction_out(result["to_account"]),
    )
