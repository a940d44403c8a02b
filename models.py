from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    none = "none"
    recurring = "recurring"
    repeat = "repeat"


class IntervalUnit(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    quarter = "quarter"
    year = "year"
    custom = "custom"


class OwnerKind(str, Enum):
    account = "account"
    category = "category"
    sub_category = "sub_category"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    opening_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uq_account_workspace_name"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="category", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "type", "name", name="uq_category_workspace_type_name"
        ),
    )


class SubCategory(Base, TimestampMixin):
    __tablename__ = "sub_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="sub_categories"
    )


class TransactionContentMixin:
    """Columns shared by templates and their per-installment edits."""

    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    frequency: Mapped[Frequency] = mapped_column(
        SAEnum(Frequency), nullable=False, default=Frequency.none
    )

    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    parts: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    labor: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    interest: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_percentage: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    interest_percentage: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )

    repeat_initial_installment: Mapped[Optional[int]] = mapped_column(Integer)
    repeat_count: Mapped[Optional[int]] = mapped_column(Integer)
    repeat_interval: Mapped[Optional[IntervalUnit]] = mapped_column(
        SAEnum(IntervalUnit)
    )
    repeat_custom_day: Mapped[Optional[int]] = mapped_column(Integer)

    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    registration_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmation_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    sub_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sub_categories.id")
    )
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class Transaction(Base, TransactionContentMixin, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    __table_args__ = (
        Index("ix_transactions_workspace_account", "workspace_id", "account_id"),
        Index("ix_transactions_workspace_category", "workspace_id", "category_id"),
        Index(
            "ix_transactions_workspace_frequency", "workspace_id", "frequency"
        ),
        CheckConstraint("value >= 0", name="ck_transactions_value_positive"),
    )


class EditTransaction(Base, TransactionContentMixin, TimestampMixin):
    __tablename__ = "edit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    main_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    main_count: Mapped[int] = mapped_column(Integer, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "main_id",
            "main_count",
            name="uq_edit_transaction_slot",
        ),
        CheckConstraint("main_count >= 1", name="ck_edit_transaction_count_positive"),
    )
