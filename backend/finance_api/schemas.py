import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
AT_LEAST_ONE_FIELD = "At least one field must be updated."

Number = Union[int, float]
CalendarDate = date


class AccountType(str, Enum):
    cash = "cash"
    checking = "checking"
    savings = "savings"
    credit_card = "credit_card"
    investment = "investment"


class EntryType(str, Enum):
    income = "income"
    expense = "expense"


class TopCategoriesGroupBy(str, Enum):
    category = "category"
    subcategory = "subcategory"


class TransactionSort(str, Enum):
    date = "date"
    amount = "amount"
    type = "type"
    description = "description"
    account = "account"
    category = "category"
    subcategory = "subcategory"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


def _validate_hex_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not HEX_COLOR_RE.match(value):
        raise ValueError("invalid color, use HEX format (#FFF or #FFFFFF)")
    return value


def _require_any_field(model: BaseModel) -> None:
    if not model.model_fields_set:
        raise ValueError(AT_LEAST_ONE_FIELD)


class ProblemDetails(BaseModel):
    type: str
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str


# --- auth & users ---------------------------------------------------------


class RegisterRequest(BaseModel):
    name: str = Field(min_length=3, max_length=255)
    email: str = Field(max_length=255)
    password: str = Field(min_length=6, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=6, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthResponse(BaseModel):
    accessToken: str


class UserProfileResponse(BaseModel):
    id: UUID
    name: str
    email: str
    createdAt: datetime


class UserProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v

    @model_validator(mode="after")
    def validate_not_empty(self) -> "UserProfileUpdate":
        _require_any_field(self)
        return self


class UserPasswordChange(BaseModel):
    currentPassword: str = Field(min_length=6, max_length=255)
    newPassword: str = Field(min_length=6, max_length=255)


class PasswordStrengthRequest(BaseModel):
    password: str = Field(min_length=1, max_length=255)


class PasswordStrengthResponse(BaseModel):
    score: int
    strength: str


class ForgotPasswordRequest(BaseModel):
    email: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v


class ForgotPasswordResponse(BaseModel):
    message: str
    resetToken: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    newPassword: str = Field(min_length=6, max_length=255)
    confirmNewPassword: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def validate_confirmation(self) -> "ResetPasswordRequest":
        if self.newPassword != self.confirmNewPassword:
            raise ValueError("Passwords do not match.")
        return self


# --- accounts -------------------------------------------------------------


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: AccountType
    initialBalance: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=100)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[AccountType] = None
    initialBalance: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=100)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)

    @model_validator(mode="after")
    def validate_not_empty(self) -> "AccountUpdate":
        _require_any_field(self)
        return self


class AccountResponse(BaseModel):
    id: UUID
    userId: UUID
    name: str
    type: AccountType
    initialBalance: Number
    currentBalance: Number
    color: Optional[str] = None
    icon: Optional[str] = None
    createdAt: datetime


# --- categories -----------------------------------------------------------


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: EntryType
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        v = value.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[EntryType] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        v = value.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)

    @model_validator(mode="after")
    def validate_not_empty(self) -> "CategoryUpdate":
        _require_any_field(self)
        return self


class CategoryResponse(BaseModel):
    id: UUID
    userId: Optional[UUID] = None
    name: str
    type: EntryType
    color: Optional[str] = None
    system: bool
    createdAt: datetime


class SubcategoryCreate(BaseModel):
    categoryId: UUID
    name: str = Field(min_length=1, max_length=255)
    color: Optional[str] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)


class SubcategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    color: Optional[str] = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_hex_color(value)

    @model_validator(mode="after")
    def validate_not_empty(self) -> "SubcategoryUpdate":
        _require_any_field(self)
        return self


class SubcategoryResponse(BaseModel):
    id: UUID
    userId: UUID
    categoryId: UUID
    name: str
    color: Optional[str] = None
    createdAt: datetime


# --- transactions ---------------------------------------------------------


class TransactionCreate(BaseModel):
    accountId: UUID
    categoryId: UUID
    subcategoryId: Optional[UUID] = None
    type: EntryType
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    date: CalendarDate
    description: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class TransactionUpdate(BaseModel):
    accountId: Optional[UUID] = None
    categoryId: Optional[UUID] = None
    subcategoryId: Optional[UUID] = None
    type: Optional[EntryType] = None
    amount: Optional[Decimal] = Field(default=None, gt=Decimal("0"), max_digits=12, decimal_places=2)
    date: Optional[CalendarDate] = None
    description: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> "TransactionUpdate":
        _require_any_field(self)
        return self

    def to_patch(self) -> dict[str, Any]:
        """Supplied fields keyed by row column; ``null`` only clears the optional links and texts."""
        clearable = {"subcategoryId", "description", "notes"}
        columns = {
            "accountId": "account_id",
            "categoryId": "category_id",
            "subcategoryId": "subcategory_id",
            "type": "type",
            "amount": "amount",
            "date": "date",
            "description": "description",
            "notes": "notes",
        }
        patch: dict[str, Any] = {}
        for field in self.model_fields_set:
            value = getattr(self, field)
            if value is None and field not in clearable:
                continue
            patch[columns[field]] = value.value if isinstance(value, Enum) else value
        return patch


class TransactionResponse(BaseModel):
    id: UUID
    userId: UUID
    accountId: UUID
    categoryId: UUID
    subcategoryId: Optional[UUID] = None
    type: EntryType
    amount: Number
    date: CalendarDate
    description: Optional[str] = None
    notes: Optional[str] = None
    transferId: Optional[UUID] = None
    createdAt: datetime
    updatedAt: Optional[datetime] = None


class TransactionListItem(TransactionResponse):
    accountName: Optional[str] = None
    categoryName: Optional[str] = None
    subcategoryName: Optional[str] = None


class TransactionListResponse(BaseModel):
    data: list[TransactionListItem]
    page: int
    limit: int
    total: int


class TransactionFilters(BaseModel):
    """Row filters shared by listing and the reports."""

    startDate: Optional[date] = None
    endDate: Optional[date] = None
    accountId: Optional[UUID] = None
    categoryId: Optional[UUID] = None
    subcategoryId: Optional[UUID] = None
    type: Optional[EntryType] = None
    description: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_period(self) -> "TransactionFilters":
        if self.startDate and self.endDate and self.endDate < self.startDate:
            raise ValueError("startDate must be <= endDate")
        return self


class SummaryResponse(BaseModel):
    income: Number
    expense: Number
    balance: Number


class TopCategoryItem(BaseModel):
    id: UUID
    name: str
    totalAmount: Number
    percentage: float
    categoryId: Optional[UUID] = None
    categoryName: Optional[str] = None


class DescriptionsResponse(BaseModel):
    items: list[str]


# --- transfers ------------------------------------------------------------


class TransferCreate(BaseModel):
    fromAccountId: UUID
    toAccountId: UUID
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    date: CalendarDate
    description: Optional[str] = Field(default=None, max_length=255)


class TransferResponse(BaseModel):
    id: UUID
    fromAccount: TransactionResponse
    toAccount: TransactionResponse
