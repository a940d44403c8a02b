from datetime import datetime
from typing import Optional

from balances import net_of, split_balance
from ledger import Balance, LedgerError, Occurrence, RepeatSettings, TransactionTemplate
from models import Frequency, IntervalUnit
from periods import month_period
from recurrence import (
    add_interval,
    iter_month_starts,
    month_start,
    periods_between,
    project_onto_month,
)


class ExpansionError(LedgerError):
    pass


class MalformedTemplateError(ExpansionError):
    pass


class UnknownFrequencyError(ExpansionError):
    pass


class UnboundedWindowError(ExpansionError):
    pass


DEFAULT_RECURRING_SETTINGS = RepeatSettings(interval=IntervalUnit.month)


def _in_window(
    moment: datetime, start: Optional[datetime], end: Optional[datetime]
) -> bool:
    if start is not None and moment < start:
        return False
    if end is not None and moment >= end:
        return False
    return True


def _check_confirmation(template: TransactionTemplate) -> None:
    if template.is_confirmed and template.confirmation_date is None:
        raise MalformedTemplateError(
            f"Transaction {template.id} is confirmed without a confirmation date"
        )


def _repeat_settings(template: TransactionTemplate) -> RepeatSettings:
    settings = template.repeat_settings
    if settings is None:
        raise MalformedTemplateError(
            f"Transaction {template.id} repeats without repeat settings"
        )
    if settings.count is None or settings.count <= 0:
        raise MalformedTemplateError(
            f"Transaction {template.id} has a non-positive installment count"
        )
    if settings.initial_installment < 1:
        raise MalformedTemplateError(
            f"Transaction {template.id} has an initial installment below 1"
        )
    return settings


def _occurrence(
    template: TransactionTemplate,
    *,
    due_date: datetime,
    installment: int,
    schedule_position: int,
    balance: Balance,
    repeat_settings: Optional[RepeatSettings],
    total_balance: Optional[float] = None,
) -> Occurrence:
    registration_date = project_onto_month(
        template.registration_date, due_date.year, due_date.month
    )
    confirmation_date = None
    if template.is_confirmed:
        confirmation_date = template.confirmation_date.replace(
            year=due_date.year, month=due_date.month, day=due_date.day
        )
    return Occurrence(
        template_id=template.id,
        workspace_id=template.workspace_id,
        name=template.name,
        type=template.type,
        frequency=template.frequency,
        balance=balance,
        due_date=due_date,
        registration_date=registration_date,
        installment=installment,
        schedule_position=schedule_position,
        is_confirmed=template.is_confirmed,
        confirmation_date=confirmation_date,
        repeat_settings=repeat_settings,
        total_balance=total_balance,
        description=template.description,
        account_id=template.account_id,
        category_id=template.category_id,
        sub_category_id=template.sub_category_id,
        tags=template.tags,
    )


def _expand_single(
    template: TransactionTemplate,
    window_start: Optional[datetime],
    window_end: Optional[datetime],
) -> list[Occurrence]:
    if not _in_window(template.anchor_date, window_start, window_end):
        return []
    return [
        Occurrence(
            template_id=template.id,
            workspace_id=template.workspace_id,
            name=template.name,
            type=template.type,
            frequency=template.frequency,
            balance=template.balance,
            due_date=template.due_date,
            registration_date=template.registration_date,
            installment=1,
            schedule_position=1,
            is_confirmed=template.is_confirmed,
            confirmation_date=template.confirmation_date,
            description=template.description,
            account_id=template.account_id,
            category_id=template.category_id,
            sub_category_id=template.sub_category_id,
            tags=template.tags,
        )
    ]


def _expand_recurring(
    template: TransactionTemplate,
    window_start: Optional[datetime],
    window_end: Optional[datetime],
) -> list[Occurrence]:
    if window_end is None:
        raise UnboundedWindowError(
            f"Recurring transaction {template.id} needs a window end to expand"
        )
    anchor = template.anchor_date
    settings = template.repeat_settings or DEFAULT_RECURRING_SETTINGS
    first_month = month_start(anchor)
    if window_start is not None and window_start > first_month:
        first_month = window_start

    occurrences: list[Occurrence] = []
    for month in iter_month_starts(first_month, window_end):
        due_date = project_onto_month(anchor, month.year, month.month)
        if not _in_window(due_date, window_start, window_end):
            continue
        occurrences.append(
            _occurrence(
                template,
                due_date=due_date,
                installment=len(occurrences) + 1,
                schedule_position=periods_between(anchor, month.year, month.month)
                + 1,
                balance=template.balance,
                repeat_settings=settings,
            )
        )
    return occurrences


def _expand_repeat(
    template: TransactionTemplate,
    window_start: Optional[datetime],
    window_end: Optional[datetime],
) -> list[Occurrence]:
    settings = _repeat_settings(template)
    anchor = template.anchor_date

    scheduled: list[tuple[datetime, int]] = []
    for position in range(settings.initial_installment, settings.count + 1):
        due_date = add_interval(
            anchor, settings.interval, position - 1, settings.custom_day
        )
        if _in_window(due_date, window_start, window_end):
            scheduled.append((due_date, position))
    if not scheduled:
        return []

    scheduled.sort()
    share = split_balance(template.balance, settings.count)
    total_balance = net_of(template)
    return [
        _occurrence(
            template,
            due_date=due_date,
            installment=index,
            schedule_position=position,
            balance=share,
            repeat_settings=settings,
            total_balance=total_balance,
        )
        for index, (due_date, position) in enumerate(scheduled, start=1)
    ]


def expand_window(
    template: TransactionTemplate,
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
) -> list[Occurrence]:
    _check_confirmation(template)
    frequency = template.frequency
    if frequency == Frequency.none:
        return _expand_single(template, window_start, window_end)
    elif frequency == Frequency.recurring:
        return _expand_recurring(template, window_start, window_end)
    elif frequency == Frequency.repeat:
        return _expand_repeat(template, window_start, window_end)
    raise UnknownFrequencyError(
        f"Unknown frequency {frequency!r} for transaction {template.id}"
    )


def occurrence_at(template: TransactionTemplate, schedule_position: int) -> Occurrence:
    _check_confirmation(template)
    frequency = template.frequency
    anchor = template.anchor_date
    if frequency == Frequency.none:
        if schedule_position != 1:
            raise ExpansionError(
                f"Transaction {template.id} has a single installment"
            )
        return _expand_single(template, None, None)[0]
    elif frequency == Frequency.recurring:
        if schedule_position < 1:
            raise ExpansionError("Installment must be at least 1")
        return _occurrence(
            template,
            due_date=add_interval(anchor, IntervalUnit.month, schedule_position - 1),
            installment=schedule_position,
            schedule_position=schedule_position,
            balance=template.balance,
            repeat_settings=template.repeat_settings or DEFAULT_RECURRING_SETTINGS,
        )
    elif frequency == Frequency.repeat:
        settings = _repeat_settings(template)
        if not settings.initial_installment <= schedule_position <= settings.count:
            raise ExpansionError(
                f"Installment {schedule_position} is outside the schedule of transaction {template.id}"
            )
        return _occurrence(
            template,
            due_date=add_interval(
                anchor, settings.interval, schedule_position - 1, settings.custom_day
            ),
            installment=schedule_position - settings.initial_installment + 1,
            schedule_position=schedule_position,
            balance=split_balance(template.balance, settings.count),
            repeat_settings=settings,
            total_balance=net_of(template),
        )
    raise UnknownFrequencyError(
        f"Unknown frequency {frequency!r} for transaction {template.id}"
    )


def current_installment(template: TransactionTemplate, year: int, month: int) -> int:
    _check_confirmation(template)
    frequency = template.frequency
    anchor = template.anchor_date
    if frequency == Frequency.none:
        return 0
    elif frequency == Frequency.recurring:
        months = (year - anchor.year) * 12 + (month - anchor.month)
        if months < 0:
            return 0
        return months + 1
    elif frequency == Frequency.repeat:
        settings = _repeat_settings(template)
        period = month_period(year, month)
        last_before: Optional[int] = None
        for position in range(settings.initial_installment, settings.count + 1):
            due_date = add_interval(
                anchor, settings.interval, position - 1, settings.custom_day
            )
            if due_date < period.start:
                last_before = position
            elif due_date < period.end:
                return position
        if last_before is None:
            return settings.initial_installment
        return min(last_before + 1, settings.count)
    raise UnknownFrequencyError(
        f"Unknown frequency {frequency!r} for transaction {template.id}"
    )
