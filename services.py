from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from functools import partial
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from database import session_scope
from expander import current_installment, expand_window, occurrence_at
from ledger import (
    AggregateBalance,
    LedgerError,
    NotFoundError,
    Occurrence,
    OwnerFilter,
    TransactionTemplate,
)
from balances import sum_net
from models import (
    Category,
    EditTransaction,
    Frequency,
    OwnerKind,
    Transaction,
    TransactionType,
)
from overlay import EditOverlayResolver
from periods import Period, month_period
from repository import LedgerRepository, template_from_row
from schemas import EditTransactionIn, InstallmentRef, TransactionIn
from validation import run_checks, run_checks_inline

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = (
    "workspace_id",
    "name",
    "description",
    "type",
    "frequency",
    "value",
    "parts",
    "labor",
    "discount",
    "interest",
    "discount_percentage",
    "interest_percentage",
    "repeat_initial_installment",
    "repeat_count",
    "repeat_interval",
    "repeat_custom_day",
    "due_date",
    "registration_date",
    "is_confirmed",
    "confirmation_date",
    "account_id",
    "category_id",
    "sub_category_id",
    "tags",
)

REQUIRED_EDIT_FIELDS = (
    "name",
    "type",
    "balance",
    "due_date",
    "registration_date",
    "is_confirmed",
)


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def owner_id_of(template: TransactionTemplate, owner: OwnerKind) -> Optional[int]:
    return getattr(template, f"{owner.value}_id")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    account_ids: Optional[list[int]] = None


class TransactionService:
    def __init__(self, session: Session, workspace_id: int) -> None:
        self.session = session
        self.workspace_id = workspace_id
        self.repository = LedgerRepository(session)

    def get(self, transaction_id: int) -> TransactionTemplate:
        template = self.repository.get_template(self.workspace_id, transaction_id)
        if template is None:
            raise NotFoundError("Transaction not found")
        return template

    def create(self, data: TransactionIn) -> Transaction:
        if data.account_id is not None and not self.repository.account_exists(
            self.workspace_id, data.account_id
        ):
            raise NotFoundError("Account not found")
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.workspace_id != self.workspace_id:
                raise NotFoundError("Category not found")
            if category.type != data.type:
                raise LedgerError("Category type mismatch")
            if data.sub_category_id is not None and not (
                self.repository.sub_category_exists(
                    self.workspace_id, data.category_id, data.sub_category_id
                )
            ):
                raise NotFoundError("Subcategory not found")

        repeat = data.repeat_settings
        txn = Transaction(
            workspace_id=self.workspace_id,
            name=data.name.strip(),
            description=data.description,
            type=data.type,
            frequency=data.frequency,
            **data.balance.model_dump(),
            repeat_initial_installment=repeat.initial_installment if repeat else None,
            repeat_count=repeat.count if repeat else None,
            repeat_interval=repeat.interval if repeat else None,
            repeat_custom_day=repeat.custom_day if repeat else None,
            due_date=data.due_date,
            registration_date=data.registration_date,
            is_confirmed=data.is_confirmed,
            confirmation_date=data.confirmation_date,
            account_id=data.account_id,
            category_id=data.category_id,
            sub_category_id=data.sub_category_id,
            tags=_clean_tags(data.tags),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: workspace_id={self.workspace_id} id={txn.id} frequency={txn.frequency.value}"
        )
        return txn

    def current_installment(self, transaction_id: int, year: int, month: int) -> int:
        return current_installment(self.get(transaction_id), year, month)


class LedgerService:
    def __init__(self, session: Session, workspace_id: int) -> None:
        self.session = session
        self.workspace_id = workspace_id
        self.repository = LedgerRepository(session)
        self.resolver = EditOverlayResolver(self.repository)

    def list_transactions(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        now: Optional[datetime] = None,
    ) -> list[Occurrence]:
        filters = filters or TransactionFilters()
        # type and account can be changed by an edit, so filter after the overlay
        templates = self.repository.fetch_templates(
            self.workspace_id, reference_before=period.end
        )

        occurrences: list[Occurrence] = []
        for template in templates:
            occurrences.extend(expand_window(template, period.start, period.end))
        occurrences = self.resolver.apply(occurrences, self.workspace_id)
        if filters.type is not None:
            occurrences = [occ for occ in occurrences if occ.type == filters.type]
        if filters.account_ids:
            account_ids = set(filters.account_ids)
            occurrences = [occ for occ in occurrences if occ.account_id in account_ids]

        now = now or local_now()
        flagged = [
            replace(occ, is_overdue=not occ.is_confirmed and occ.due_date < now)
            for occ in occurrences
        ]
        flagged.sort(
            key=lambda occ: (occ.due_date, occ.template_id, occ.schedule_position),
            reverse=True,
        )
        return flagged


class AggregationService:
    def __init__(self, session: Session, workspace_id: int) -> None:
        self.session = session
        self.workspace_id = workspace_id
        self.repository = LedgerRepository(session)
        self.resolver = EditOverlayResolver(self.repository)

    def aggregate(
        self,
        owner_ids: Iterable[int],
        year: int,
        month: int,
        owner: OwnerKind = OwnerKind.account,
    ) -> dict[int, AggregateBalance]:
        period = month_period(year, month)
        owner_ids = list(dict.fromkeys(owner_ids))
        if not owner_ids:
            return {}

        try:
            templates = self.repository.fetch_templates(
                self.workspace_id,
                owner_filter=OwnerFilter(owner, tuple(owner_ids)),
                reference_before=period.end,
            )
            owners = {
                template.id: owner_id_of(template, owner) for template in templates
            }
            occurrences: list[Occurrence] = []
            for template in templates:
                occurrences.extend(expand_window(template, None, period.end))
            occurrences = self.resolver.apply(occurrences, self.workspace_id)
        except SQLAlchemyError:
            logger.exception(
                f"aggregate_failed: workspace_id={self.workspace_id} owner={owner.value} year={year} month={month}"
            )
            raise

        groups: dict[tuple[int, Frequency], list[Occurrence]] = defaultdict(list)
        for occ in occurrences:
            groups[(owners[occ.template_id], occ.frequency)].append(occ)

        totals: dict[int, list[float]] = defaultdict(list)
        currents: dict[int, list[float]] = defaultdict(list)
        for (owner_id, _frequency), group in groups.items():
            due = [occ for occ in group if occ.reference_date < period.end]
            totals[owner_id].append(sum_net(due))
            currents[owner_id].append(sum_net(occ for occ in due if occ.is_confirmed))

        logger.info(
            f"aggregate: workspace_id={self.workspace_id} owner={owner.value} period={period.slug} templates={len(templates)} occurrences={len(occurrences)}"
        )
        return {
            owner_id: AggregateBalance(
                total=math.fsum(totals[owner_id]),
                current=math.fsum(currents[owner_id]),
            )
            for owner_id in owner_ids
        }


class AccountService:
    def __init__(self, session: Session, workspace_id: int) -> None:
        self.session = session
        self.workspace_id = workspace_id
        self.repository = LedgerRepository(session)

    def balances(self, year: int, month: int) -> list[dict[str, object]]:
        accounts = self.repository.list_accounts(self.workspace_id)
        aggregates = AggregationService(self.session, self.workspace_id).aggregate(
            [account.id for account in accounts], year, month, OwnerKind.account
        )
        rows: list[dict[str, object]] = []
        for account in accounts:
            aggregate = aggregates.get(account.id, AggregateBalance())
            rows.append(
                {
                    "id": account.id,
                    "name": account.name,
                    "opening_balance": account.opening_balance,
                    "total": account.opening_balance + aggregate.total,
                    "current": account.opening_balance + aggregate.current,
                }
            )
        return rows


class EditTransactionService:
    def __init__(
        self,
        session: Session,
        workspace_id: int,
        session_factory: Optional[sessionmaker] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.session = session
        self.workspace_id = workspace_id
        self.repository = LedgerRepository(session)
        self.session_factory = session_factory
        self.max_workers = max_workers or get_settings().validation_workers

    def save(self, data: EditTransactionIn) -> EditTransaction:
        template = self.repository.get_template_row(self.workspace_id, data.main_id)
        if template is None:
            raise NotFoundError("Transaction not found")
        if template.frequency == Frequency.none:
            raise LedgerError("Transaction does not repeat")
        if (
            template.frequency == Frequency.repeat
            and template.repeat_count is not None
            and data.main_count > template.repeat_count
        ):
            raise LedgerError("Installment exceeds the transaction's installment count")

        changes = _edit_changes(data)
        edit = self.repository.find_edit_row(
            self.workspace_id, data.main_id, data.main_count
        )
        self._validate_references(edit or template, changes)

        created = edit is None
        if edit is None:
            edit = _copy_template(template, data.main_count)
            self.session.add(edit)
        for field, value in changes.items():
            setattr(edit, field, value)
        if not edit.is_confirmed:
            edit.confirmation_date = None
        elif edit.confirmation_date is None:
            raise LedgerError("Confirmed installments need a confirmation date")

        self.session.commit()
        self.session.refresh(edit)
        logger.info(
            f"edit_saved: workspace_id={self.workspace_id} main_id={edit.main_id} main_count={edit.main_count} created={created}"
        )
        return edit

    def delete_installments(self, refs: Iterable[InstallmentRef]) -> int:
        # resolve every slot before touching any of them
        pending: list[EditTransaction] = []
        seen: set[tuple[int, int]] = set()
        for ref in refs:
            key = (ref.main_id, ref.main_count)
            if key in seen:
                continue
            seen.add(key)

            edit = self.repository.find_edit_row(
                self.workspace_id, ref.main_id, ref.main_count
            )
            if edit is None:
                template = self.repository.get_template_row(
                    self.workspace_id, ref.main_id
                )
                if template is None:
                    raise NotFoundError("Transaction not found")
                edit = _copy_template(template, ref.main_count)
            pending.append(edit)

        for edit in pending:
            edit.is_deleted = True
            self.session.add(edit)
        self.session.commit()
        logger.info(
            f"installments_deleted: workspace_id={self.workspace_id} marked={len(pending)}"
        )
        return len(pending)

    def _validate_references(
        self,
        current: Union[Transaction, EditTransaction],
        changes: dict[str, object],
    ) -> None:
        account_id = changes.get("account_id")
        category_id = changes.get("category_id", current.category_id)
        sub_category_id = changes.get("sub_category_id")
        transaction_type = changes.get("type", current.type)

        checks = []
        if account_id is not None:
            checks.append(partial(self._check_account, account_id))
        if category_id is not None and ("category_id" in changes or "type" in changes):
            checks.append(partial(self._check_category, category_id, transaction_type))
        if sub_category_id is not None:
            if category_id is None:
                raise LedgerError("Subcategory requires a category")
            checks.append(partial(self._check_sub_category, category_id, sub_category_id))

        if self.session_factory is None:
            run_checks_inline(checks)
        else:
            run_checks(checks, max_workers=self.max_workers)

    def _lookup(self, query):
        if self.session_factory is None:
            return query(self.repository)
        with session_scope(self.session_factory) as session:
            return query(LedgerRepository(session))

    def _check_account(self, account_id: int) -> None:
        if not self._lookup(
            lambda repo: repo.account_exists(self.workspace_id, account_id)
        ):
            raise NotFoundError("Account not found")

    def _check_category(
        self, category_id: int, transaction_type: TransactionType
    ) -> None:
        category_type = self._lookup(
            lambda repo: repo.category_type(self.workspace_id, category_id)
        )
        if category_type is None:
            raise NotFoundError("Category not found")
        if category_type != transaction_type:
            raise LedgerError("Category type mismatch")

    def _check_sub_category(self, category_id: int, sub_category_id: int) -> None:
        if not self._lookup(
            lambda repo: repo.sub_category_exists(
                self.workspace_id, category_id, sub_category_id
            )
        ):
            raise NotFoundError("Subcategory not found")


def _clean_tags(tags: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        name = tag.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        cleaned.append(name)
    return cleaned


def _edit_changes(data: EditTransactionIn) -> dict[str, object]:
    changes = data.model_dump(exclude_unset=True, exclude={"main_id", "main_count"})
    for field in REQUIRED_EDIT_FIELDS:
        if field in changes and changes[field] is None:
            del changes[field]
    balance = changes.pop("balance", None)
    if balance is not None:
        changes.update(balance)
    if "category_id" in changes:
        # a subcategory only ever belongs to the category it was picked under
        changes.setdefault("sub_category_id", None)
    if "tags" in changes:
        changes["tags"] = _clean_tags(changes["tags"] or [])
    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
    return changes


def _copy_template(template: Transaction, main_count: int) -> EditTransaction:
    values = {column: getattr(template, column) for column in CONTENT_COLUMNS}
    values["tags"] = list(template.tags or [])
    # amounts and dates as the installment would be listed without an edit
    slot = occurrence_at(template_from_row(template), main_count)
    values.update(asdict(slot.balance))
    values.update(
        due_date=slot.due_date,
        registration_date=slot.registration_date,
        is_confirmed=slot.is_confirmed,
        confirmation_date=slot.confirmation_date,
    )
    return EditTransaction(
        **values,
        main_id=template.id,
        main_count=main_count,
        is_deleted=False,
    )
