from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models import Frequency, IntervalUnit, OwnerKind, TransactionType


class LedgerError(ValueError):
    pass


class NotFoundError(LedgerError):
    pass


@dataclass(frozen=True)
class Balance:
    value: float = 0.0
    parts: float = 0.0
    labor: float = 0.0
    discount: float = 0.0
    interest: float = 0.0
    discount_percentage: float = 0.0
    interest_percentage: float = 0.0


@dataclass(frozen=True)
class RepeatSettings:
    initial_installment: int = 1
    count: Optional[int] = None
    interval: Optional[IntervalUnit] = None
    custom_day: Optional[int] = None


@dataclass(frozen=True)
class TransactionTemplate:
    id: int
    workspace_id: int
    name: str
    type: TransactionType
    balance: Balance
    frequency: Frequency
    due_date: datetime
    registration_date: datetime
    is_confirmed: bool = False
    confirmation_date: Optional[datetime] = None
    repeat_settings: Optional[RepeatSettings] = None
    description: Optional[str] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    tags: tuple[str, ...] = ()

    @property
    def anchor_date(self) -> datetime:
        if self.is_confirmed and self.confirmation_date is not None:
            return self.confirmation_date
        return self.due_date


@dataclass(frozen=True)
class EditRecord:
    id: int
    workspace_id: int
    main_id: int
    main_count: int
    name: str
    type: TransactionType
    balance: Balance
    due_date: datetime
    registration_date: datetime
    is_confirmed: bool = False
    confirmation_date: Optional[datetime] = None
    description: Optional[str] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    tags: tuple[str, ...] = ()
    is_deleted: bool = False


@dataclass(frozen=True)
class Occurrence:
    template_id: int
    workspace_id: int
    name: str
    type: TransactionType
    frequency: Frequency
    balance: Balance
    due_date: datetime
    registration_date: datetime
    # display sequence within one expansion result, starts at 1
    installment: int
    # absolute slot in the template's schedule; edit records are keyed on it
    schedule_position: int
    is_confirmed: bool = False
    confirmation_date: Optional[datetime] = None
    repeat_settings: Optional[RepeatSettings] = None
    total_balance: Optional[float] = None
    description: Optional[str] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    sub_category_id: Optional[int] = None
    tags: tuple[str, ...] = ()
    is_overdue: bool = False

    @property
    def reference_date(self) -> datetime:
        if self.is_confirmed and self.confirmation_date is not None:
            return self.confirmation_date
        return self.due_date

    @property
    def slot(self) -> tuple[int, int]:
        return (self.template_id, self.schedule_position)


@dataclass(frozen=True)
class AggregateBalance:
    total: float = 0.0
    current: float = 0.0


@dataclass(frozen=True)
class OwnerFilter:
    kind: OwnerKind
    ids: tuple[int, ...] = field(default_factory=tuple)