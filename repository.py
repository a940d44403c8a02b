from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy import and_, or_, select, tuple_
from sqlalchemy.orm import Session

from ledger import (
    Balance,
    EditRecord,
    OwnerFilter,
    RepeatSettings,
    TransactionTemplate,
)
from models import (
    Account,
    Category,
    EditTransaction,
    OwnerKind,
    SubCategory,
    Transaction,
    TransactionType,
)

OWNER_COLUMNS = {
    OwnerKind.account: Transaction.account_id,
    OwnerKind.category: Transaction.category_id,
    OwnerKind.sub_category: Transaction.sub_category_id,
}


def balance_from_row(row: Union[Transaction, EditTransaction]) -> Balance:
    return Balance(
        value=row.value or 0.0,
        parts=row.parts or 0.0,
        labor=row.labor or 0.0,
        discount=row.discount or 0.0,
        interest=row.interest or 0.0,
        discount_percentage=row.discount_percentage or 0.0,
        interest_percentage=row.interest_percentage or 0.0,
    )


def repeat_settings_from_row(row: Transaction) -> Optional[RepeatSettings]:
    if (
        row.repeat_count is None
        and row.repeat_interval is None
        and row.repeat_initial_installment is None
    ):
        return None
    return RepeatSettings(
        initial_installment=row.repeat_initial_installment or 1,
        count=row.repeat_count,
        interval=row.repeat_interval,
        custom_day=row.repeat_custom_day,
    )


def template_from_row(row: Transaction) -> TransactionTemplate:
    return TransactionTemplate(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        type=row.type,
        balance=balance_from_row(row),
        frequency=row.frequency,
        due_date=row.due_date,
        registration_date=row.registration_date,
        is_confirmed=row.is_confirmed,
        confirmation_date=row.confirmation_date if row.is_confirmed else None,
        repeat_settings=repeat_settings_from_row(row),
        description=row.description,
        account_id=row.account_id,
        category_id=row.category_id,
        sub_category_id=row.sub_category_id,
        tags=tuple(row.tags or ()),
    )


def edit_record_from_row(row: EditTransaction) -> EditRecord:
    return EditRecord(
        id=row.id,
        workspace_id=row.workspace_id,
        main_id=row.main_id,
        main_count=row.main_count,
        name=row.name,
        type=row.type,
        balance=balance_from_row(row),
        due_date=row.due_date,
        registration_date=row.registration_date,
        is_confirmed=row.is_confirmed,
        confirmation_date=row.confirmation_date if row.is_confirmed else None,
        description=row.description,
        account_id=row.account_id,
        category_id=row.category_id,
        sub_category_id=row.sub_category_id,
        tags=tuple(row.tags or ()),
        is_deleted=row.is_deleted,
    )


class LedgerRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def fetch_templates(
        self,
        workspace_id: int,
        owner_filter: Optional[OwnerFilter] = None,
        reference_before: Optional[datetime] = None,
    ) -> list[TransactionTemplate]:
        stmt = select(Transaction).where(Transaction.workspace_id == workspace_id)
        if owner_filter is not None:
            column = OWNER_COLUMNS[owner_filter.kind]
            stmt = stmt.where(column.in_(owner_filter.ids))
        if reference_before is not None:
            stmt = stmt.where(
                or_(
                    and_(
                        Transaction.is_confirmed.is_(False),
                        Transaction.due_date < reference_before,
                    ),
                    and_(
                        Transaction.is_confirmed.is_(True),
                        Transaction.confirmation_date < reference_before,
                    ),
                )
            )
        stmt = stmt.order_by(Transaction.id)
        return [template_from_row(row) for row in self.session.scalars(stmt)]

    def get_template(
        self, workspace_id: int, template_id: int
    ) -> Optional[TransactionTemplate]:
        row = self.get_template_row(workspace_id, template_id)
        if row is None:
            return None
        return template_from_row(row)

    def get_template_row(
        self, workspace_id: int, template_id: int
    ) -> Optional[Transaction]:
        row = self.session.get(Transaction, template_id)
        if row is None or row.workspace_id != workspace_id:
            return None
        return row

    def fetch_edit_records(
        self, workspace_id: int, pairs: Iterable[tuple[int, int]]
    ) -> list[EditRecord]:
        keys = sorted(set(pairs))
        if not keys:
            return []
        stmt = select(EditTransaction).where(
            EditTransaction.workspace_id == workspace_id,
            tuple_(EditTransaction.main_id, EditTransaction.main_count).in_(keys),
        )
        return [edit_record_from_row(row) for row in self.session.scalars(stmt)]

    def find_edit_record(
        self, workspace_id: int, template_id: int, main_count: int
    ) -> Optional[EditRecord]:
        row = self.find_edit_row(workspace_id, template_id, main_count)
        if row is None:
            return None
        return edit_record_from_row(row)

    def find_edit_row(
        self, workspace_id: int, template_id: int, main_count: int
    ) -> Optional[EditTransaction]:
        stmt = select(EditTransaction).where(
            EditTransaction.workspace_id == workspace_id,
            EditTransaction.main_id == template_id,
            EditTransaction.main_count == main_count,
        )
        return self.session.scalar(stmt)

    def list_accounts(
        self, workspace_id: int, account_ids: Optional[Iterable[int]] = None
    ) -> list[Account]:
        stmt = select(Account).where(Account.workspace_id == workspace_id)
        if account_ids is not None:
            stmt = stmt.where(Account.id.in_(list(account_ids)))
        return self.session.scalars(stmt.order_by(Account.name)).all()

    def account_exists(self, workspace_id: int, account_id: int) -> bool:
        return self._exists(Account, workspace_id, account_id)

    def category_type(
        self, workspace_id: int, category_id: int
    ) -> Optional[TransactionType]:
        stmt = select(Category.type).where(
            Category.id == category_id, Category.workspace_id == workspace_id
        )
        return self.session.scalar(stmt.limit(1))

    def sub_category_exists(
        self, workspace_id: int, category_id: int, sub_category_id: int
    ) -> bool:
        stmt = select(SubCategory.id).where(
            SubCategory.id == sub_category_id,
            SubCategory.workspace_id == workspace_id,
            SubCategory.category_id == category_id,
        )
        return self.session.scalar(stmt.limit(1)) is not None

    def _exists(self, model, workspace_id: int, entity_id: int) -> bool:
        stmt = select(model.id).where(
            model.id == entity_id, model.workspace_id == workspace_id
        )
        return self.session.scalar(stmt.limit(1)) is not None
