from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import Frequency, IntervalUnit, OwnerKind, TransactionType


class BalanceIn(BaseModel):
    value: float = Field(..., ge=0)
    parts: float = Field(default=0.0, ge=0)
    labor: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)
    interest: float = Field(default=0.0, ge=0)
    discount_percentage: float = Field(default=0.0, ge=0, le=100)
    interest_percentage: float = Field(default=0.0, ge=0, le=100)


class RepeatSettingsIn(BaseModel):
    initial_installment: int = Field(default=1, ge=1)
    count: Optional[int] = Field(default=None, gt=0)
    interval: IntervalUnit = IntervalUnit.month
    custom_day: Optional[int] = Field(default=None, gt=0)


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=255)
    type: TransactionType
    balance: BalanceIn
    frequency: Frequency = Frequency.none
    repeat_settings: Optional[RepeatSettingsIn] = None
    due_date: datetime
    registration_date: datetime
    is_confirmed: bool = False
    confirmation_date: Optional[datetime] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_shape(self) -> "TransactionIn":
        if self.frequency == Frequency.repeat:
            if self.repeat_settings is None or self.repeat_settings.count is None:
                raise ValueError("Repeating transactions need an installment count")
            if self.repeat_settings.initial_installment > self.repeat_settings.count:
                raise ValueError("Initial installment exceeds installment count")
        elif self.frequency == Frequency.none and self.repeat_settings is not None:
            raise ValueError("Only repeating transactions take repeat settings")
        if self.is_confirmed and self.confirmation_date is None:
            raise ValueError("Confirmed transactions need a confirmation date")
        if not self.is_confirmed and self.confirmation_date is not None:
            raise ValueError("Unconfirmed transactions cannot have a confirmation date")
        if self.sub_category_id is not None and self.category_id is None:
            raise ValueError("Subcategory requires a category")
        return self


class EditTransactionIn(BaseModel):
    """Override for one installment; fields left unset keep the template's."""

    model_config = ConfigDict(extra="forbid")

    main_id: int
    main_count: int = Field(..., ge=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=255)
    type: Optional[TransactionType] = None
    balance: Optional[BalanceIn] = None
    due_date: Optional[datetime] = None
    registration_date: Optional[datetime] = None
    is_confirmed: Optional[bool] = None
    confirmation_date: Optional[datetime] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    tags: Optional[list[str]] = None

    @model_validator(mode="after")
    def check_confirmation(self) -> "EditTransactionIn":
        if self.is_confirmed and self.confirmation_date is None:
            raise ValueError("Confirmed installments need a confirmation date")
        if self.is_confirmed is False and self.confirmation_date is not None:
            raise ValueError("Unconfirmed installments cannot have a confirmation date")
        return self


class InstallmentRef(BaseModel):
    main_id: int
    main_count: int = Field(..., ge=1)


class DeleteInstallmentsIn(BaseModel):
    installments: list[InstallmentRef] = Field(..., min_length=1)


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: float
    parts: float
    labor: float
    discount: float
    interest: float
    discount_percentage: float
    interest_percentage: float
    net: float


class RepeatSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    initial_installment: int
    count: Optional[int]
    interval: Optional[IntervalUnit]
    custom_day: Optional[int]


class OccurrenceOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    type: TransactionType
    frequency: Frequency
    balance: BalanceOut
    total_balance: Optional[float]
    repeat_settings: Optional[RepeatSettingsOut]
    installment: int
    schedule_position: int
    due_date: datetime
    registration_date: datetime
    is_confirmed: bool
    confirmation_date: Optional[datetime]
    is_overdue: bool
    account_id: Optional[int]
    category_id: Optional[int]
    sub_category_id: Optional[int]
    tags: list[str]


class AggregateBalanceOut(BaseModel):
    owner: OwnerKind
    owner_id: int
    total: float
    current: float


class AccountBalanceOut(BaseModel):
    id: int
    name: str
    opening_balance: float
    total: float
    current: float


class EditTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    main_id: int
    main_count: int
    name: str
    type: TransactionType
    due_date: datetime
    is_confirmed: bool
    confirmation_date: Optional[datetime]
    is_deleted: bool


class CurrentInstallmentOut(BaseModel):
    transaction_id: int
    year: int
    month: int
    installment: int
