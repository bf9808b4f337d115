import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import ExpenseCategory, IncomeSource
from money import MAX_AMOUNT_CENTS, parse_amount


class InvalidQuery(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


def _amount_to_cents(value: object) -> object:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return parse_amount(value)
    return value


def _strip(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


class SignupIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        local, _, domain = value.partition("@")
        if not local or not domain:
            raise ValueError("Enter a valid email address")
        return value


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class ExpenseIn(BaseModel):
    # owner ids sent by clients are dropped; ownership comes from the session
    model_config = ConfigDict(extra="ignore")

    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS, validation_alias="amount")
    description: str = Field(..., min_length=1, max_length=200)
    category: ExpenseCategory
    date: dt.date

    @field_validator("amount_cents", mode="before")
    @classmethod
    def amount_to_cents(cls, value: object) -> object:
        return _amount_to_cents(value)

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, value: object) -> object:
        return _strip(value)


class IncomeIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS, validation_alias="amount")
    description: str = Field(..., min_length=1, max_length=200)
    source: IncomeSource
    date: dt.date

    @field_validator("amount_cents", mode="before")
    @classmethod
    def amount_to_cents(cls, value: object) -> object:
        return _amount_to_cents(value)

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, value: object) -> object:
        return _strip(value)


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: ExpenseCategory
    limit_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS, validation_alias="limit")
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)

    @field_validator("limit_cents", mode="before")
    @classmethod
    def limit_to_cents(cls, value: object) -> object:
        return _amount_to_cents(value)
