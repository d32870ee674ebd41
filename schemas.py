import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import BillStatus, ReminderType, TransactionType


class UtilityIn(BaseModel):
    provider: str = Field(..., min_length=1, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=60)
    default_day: Optional[int] = Field(default=None, ge=1, le=31)
    default_amount_cents: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    active: bool = True

    @field_validator("provider")
    @classmethod
    def _strip_provider(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Provider cannot be empty")
        return value


class BillIn(BaseModel):
    utility_id: int = Field(..., gt=0)
    due_date: date
    amount_cents: int = Field(..., ge=0)
    notes: Optional[str] = None


class BillUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    due_date: date
    amount_cents: int = Field(..., ge=0)
    status: Optional[BillStatus] = None
    paid_date: Optional[date] = None
    notes: Optional[str] = None


class ReminderIn(BaseModel):
    bill_id: int = Field(..., gt=0)
    trigger_date: Optional[date] = None
    type: ReminderType = ReminderType.before


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=2, max_length=100)
    amount_limit_cents: int = Field(..., ge=0)
    start_date: date
    end_date: date
    active: bool = True

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Category must be at least 2 characters")
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "BudgetIn":
        if self.start_date >= self.end_date:
            raise ValueError("End date must be after the start date")
        return self


class TransactionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    date: dt.date
    notes: Optional[str] = None

    @field_validator("title", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Value cannot be empty")
        return value
