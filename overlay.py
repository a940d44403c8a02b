import logging
from dataclasses import replace
from typing import Iterable, Optional

from ledger import EditRecord, Occurrence
from models import Frequency
from repository import LedgerRepository

logger = logging.getLogger(__name__)


def merge_edit(occurrence: Occurrence, edit: EditRecord) -> Optional[Occurrence]:
    """Lay an edit record over an expanded occurrence.

    Returns None when the edit soft-deletes the slot. Identity, frequency,
    repeat settings and installment bookkeeping always come from the
    occurrence; so does the balance of a non-repeating occurrence.
    """
    if edit.is_deleted:
        return None
    balance = edit.balance
    if occurrence.frequency == Frequency.none:
        balance = occurrence.balance
    return replace(
        occurrence,
        name=edit.name,
        description=edit.description,
        type=edit.type,
        balance=balance,
        due_date=edit.due_date,
        registration_date=edit.registration_date,
        is_confirmed=edit.is_confirmed,
        confirmation_date=edit.confirmation_date if edit.is_confirmed else None,
        account_id=edit.account_id,
        category_id=edit.category_id,
        sub_category_id=edit.sub_category_id,
        tags=edit.tags,
    )


class EditOverlayResolver:
    def __init__(self, repository: LedgerRepository) -> None:
        self.repository = repository

    def resolve(
        self, template_id: int, installment: int, workspace_id: int
    ) -> Optional[EditRecord]:
        return self.repository.find_edit_record(workspace_id, template_id, installment)

    def apply(
        self, occurrences: Iterable[Occurrence], workspace_id: int
    ) -> list[Occurrence]:
        occurrences = list(occurrences)
        if not occurrences:
            return []
        edits = {
            (edit.main_id, edit.main_count): edit
            for edit in self.repository.fetch_edit_records(
                workspace_id, [occ.slot for occ in occurrences]
            )
        }
        if not edits:
            return occurrences

        resolved: list[Occurrence] = []
        suppressed = 0
        for occurrence in occurrences:
            edit = edits.get(occurrence.slot)
            if edit is None:
                resolved.append(occurrence)
                continue
            merged = merge_edit(occurrence, edit)
            if merged is None:
                suppressed += 1
                continue
            resolved.append(merged)
        logger.debug(
            f"overlay_applied: workspace_id={workspace_id} edits={len(edits)} suppressed={suppressed}"
        )
        return resolved
