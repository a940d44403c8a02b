from dataclasses import FrozenInstanceError, replace
from datetime import datetime

import pytest

from balances import net_of, sum_net
from expander import (
    ExpansionError,
    MalformedTemplateError,
    UnboundedWindowError,
    UnknownFrequencyError,
    current_installment,
    expand_window,
    occurrence_at,
)
from ledger import Balance, LedgerError, RepeatSettings, TransactionTemplate
from models import Frequency, IntervalUnit, TransactionType


def _template(**overrides):
    values = dict(
        id=1,
        workspace_id=1,
        name="Rent",
        type=TransactionType.expense,
        balance=Balance(value=100),
        frequency=Frequency.none,
        due_date=datetime(2024, 1, 15, 9, 0),
        registration_date=datetime(2024, 1, 5, 10, 0),
        account_id=7,
    )
    values.update(overrides)
    return TransactionTemplate(**values)


def _installments(count=12, initial=1, interval=IntervalUnit.month, **overrides):
    return _template(
        frequency=Frequency.repeat,
        balance=Balance(value=1200),
        due_date=datetime(2024, 1, 10),
        repeat_settings=RepeatSettings(
            initial_installment=initial, count=count, interval=interval
        ),
        **overrides,
    )


def test_single_transaction_in_window() -> None:
    template = _template()
    occurrences = expand_window(
        template, datetime(2024, 1, 1), datetime(2024, 2, 1)
    )
    assert len(occurrences) == 1
    occ = occurrences[0]
    assert occ.due_date == template.due_date
    assert occ.registration_date == template.registration_date
    assert occ.balance == template.balance
    assert occ.installment == 1
    assert occ.schedule_position == 1
    assert occ.total_balance is None


def test_single_transaction_outside_window() -> None:
    template = _template()
    assert expand_window(template, datetime(2024, 2, 1), datetime(2024, 3, 1)) == []
    assert expand_window(template, None, datetime(2024, 1, 15, 9, 0)) == []


def test_single_confirmed_transaction_uses_confirmation_date_for_window() -> None:
    template = _template(
        is_confirmed=True, confirmation_date=datetime(2024, 2, 2, 12, 0)
    )
    assert expand_window(template, datetime(2024, 1, 1), datetime(2024, 2, 1)) == []
    occurrences = expand_window(template, datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert occurrences[0].due_date == datetime(2024, 1, 15, 9, 0)
    assert occurrences[0].confirmation_date == datetime(2024, 2, 2, 12, 0)


def test_repeat_twelve_monthly_shares_sum_to_value() -> None:
    template = _installments()
    occurrences = expand_window(template)
    assert len(occurrences) == 12
    assert [occ.installment for occ in occurrences] == list(range(1, 13))
    assert [occ.schedule_position for occ in occurrences] == list(range(1, 13))
    assert all(occ.balance.value == pytest.approx(100) for occ in occurrences)
    assert sum(occ.balance.value for occ in occurrences) == pytest.approx(1200)
    assert sum_net(occurrences) == pytest.approx(net_of(template))
    assert all(occ.total_balance == pytest.approx(-1200) for occ in occurrences)
    assert occurrences[0].due_date == datetime(2024, 1, 10)
    assert occurrences[-1].due_date == datetime(2024, 12, 10)


def test_repeat_window_keeps_absolute_positions() -> None:
    template = _installments()
    occurrences = expand_window(template, datetime(2024, 3, 1), datetime(2024, 5, 1))
    assert [occ.due_date for occ in occurrences] == [
        datetime(2024, 3, 10),
        datetime(2024, 4, 10),
    ]
    assert [occ.installment for occ in occurrences] == [1, 2]
    assert [occ.schedule_position for occ in occurrences] == [3, 4]


def test_repeat_starts_at_initial_installment() -> None:
    template = _installments(count=6, initial=4)
    occurrences = expand_window(template)
    assert [occ.schedule_position for occ in occurrences] == [4, 5, 6]
    assert occurrences[0].due_date == datetime(2024, 4, 10)
    assert occurrences[0].balance.value == pytest.approx(200)


def test_repeat_custom_day_interval() -> None:
    template = _installments(count=3, interval=IntervalUnit.custom)
    template = replace(
        template,
        repeat_settings=replace(template.repeat_settings, custom_day=10),
    )
    occurrences = expand_window(template)
    assert [occ.due_date for occ in occurrences] == [
        datetime(2024, 1, 10),
        datetime(2024, 1, 20),
        datetime(2024, 1, 30),
    ]


def test_repeat_without_interval_falls_back_to_monthly() -> None:
    template = _installments(count=3, interval=None)
    occurrences = expand_window(template)
    assert [occ.due_date.month for occ in occurrences] == [1, 2, 3]


def test_recurring_monthly_window() -> None:
    template = _template(frequency=Frequency.recurring)
    occurrences = expand_window(template, datetime(2024, 1, 1), datetime(2024, 4, 1))
    assert [occ.due_date for occ in occurrences] == [
        datetime(2024, 1, 15, 9, 0),
        datetime(2024, 2, 15, 9, 0),
        datetime(2024, 3, 15, 9, 0),
    ]
    assert [occ.installment for occ in occurrences] == [1, 2, 3]
    assert all(occ.balance == template.balance for occ in occurrences)
    assert occurrences[0].repeat_settings.interval == IntervalUnit.month


def test_recurring_registration_date_follows_due_month() -> None:
    template = _template(frequency=Frequency.recurring)
    occurrences = expand_window(template, datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert occurrences[0].registration_date == datetime(2024, 2, 5, 10, 0)


def test_recurring_positions_count_from_anchor() -> None:
    template = _template(frequency=Frequency.recurring)
    occurrences = expand_window(template, datetime(2024, 3, 1), datetime(2024, 5, 1))
    assert [occ.installment for occ in occurrences] == [1, 2]
    assert [occ.schedule_position for occ in occurrences] == [3, 4]


def test_recurring_skips_anchor_day_before_window_start() -> None:
    template = _template(frequency=Frequency.recurring)
    occurrences = expand_window(template, datetime(2024, 1, 20), datetime(2024, 3, 1))
    assert [occ.due_date.month for occ in occurrences] == [2]


def test_recurring_nothing_before_anchor() -> None:
    template = _template(frequency=Frequency.recurring)
    assert expand_window(template, datetime(2023, 10, 1), datetime(2024, 1, 1)) == []


@pytest.mark.parametrize(
    "year,expected_day",
    [(2024, 29), (2023, 28)],
)
def test_recurring_day_31_clamps_to_february(year, expected_day) -> None:
    template = _template(
        frequency=Frequency.recurring,
        due_date=datetime(year, 1, 31),
        registration_date=datetime(year, 1, 31),
    )
    occurrences = expand_window(template, datetime(year, 2, 1), datetime(year, 3, 1))
    assert occurrences[0].due_date == datetime(year, 2, expected_day)
    assert occurrences[0].registration_date == datetime(year, 2, expected_day)


def test_recurring_confirmed_template_moves_confirmation_date() -> None:
    template = _template(
        frequency=Frequency.recurring,
        is_confirmed=True,
        confirmation_date=datetime(2024, 1, 16, 8, 0),
    )
    occurrences = expand_window(template, datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert occurrences[0].due_date == datetime(2024, 2, 16, 8, 0)
    assert occurrences[0].confirmation_date == datetime(2024, 2, 16, 8, 0)
    assert occurrences[0].is_confirmed


def test_recurring_requires_window_end() -> None:
    template = _template(frequency=Frequency.recurring)
    with pytest.raises(UnboundedWindowError):
        expand_window(template, datetime(2024, 1, 1), None)


def test_expansion_is_idempotent() -> None:
    template = _installments()
    window = (datetime(2024, 2, 1), datetime(2024, 7, 1))
    assert expand_window(template, *window) == expand_window(template, *window)

    recurring = _template(frequency=Frequency.recurring)
    assert expand_window(recurring, *window) == expand_window(recurring, *window)


def test_occurrences_are_immutable() -> None:
    occurrences = expand_window(_installments(count=2))
    with pytest.raises(FrozenInstanceError):
        occurrences[0].name = "Changed"
    assert occurrences[1].name == "Rent"


def test_repeat_without_settings_is_malformed() -> None:
    template = _template(frequency=Frequency.repeat)
    with pytest.raises(MalformedTemplateError):
        expand_window(template)


def test_repeat_with_zero_count_is_malformed() -> None:
    template = _template(
        frequency=Frequency.repeat, repeat_settings=RepeatSettings(count=0)
    )
    with pytest.raises(MalformedTemplateError):
        expand_window(template)


def test_confirmed_without_date_is_malformed() -> None:
    template = _template(is_confirmed=True)
    with pytest.raises(MalformedTemplateError) as exc_info:
        expand_window(template)
    assert isinstance(exc_info.value, LedgerError)


def test_unknown_frequency_is_an_error() -> None:
    template = _template(frequency="weekly")
    with pytest.raises(UnknownFrequencyError):
        expand_window(template, datetime(2024, 1, 1), datetime(2024, 2, 1))
    with pytest.raises(UnknownFrequencyError):
        current_installment(template, 2024, 1)


def test_current_installment_for_installments() -> None:
    template = _installments()
    assert current_installment(template, 2024, 3) == 3
    assert current_installment(template, 2023, 12) == 1
    assert current_installment(template, 2025, 6) == 12


def test_current_installment_respects_initial_installment() -> None:
    template = _installments(count=12, initial=4)
    assert current_installment(template, 2024, 2) == 4
    assert current_installment(template, 2024, 4) == 4
    assert current_installment(template, 2024, 6) == 6


def test_current_installment_between_due_dates() -> None:
    template = _installments(count=4, interval=IntervalUnit.quarter)
    # due Jan, Apr, Jul, Oct
    assert current_installment(template, 2024, 2) == 2
    assert current_installment(template, 2024, 4) == 2


def test_current_installment_for_recurring_and_single() -> None:
    recurring = _template(frequency=Frequency.recurring)
    assert current_installment(recurring, 2024, 3) == 3
    assert current_installment(recurring, 2023, 12) == 0
    assert current_installment(_template(), 2024, 1) == 0


def test_occurrence_at_matches_expanded_slot() -> None:
    template = _installments()
    expanded = {occ.schedule_position: occ for occ in expand_window(template)}
    slot = occurrence_at(template, 7)
    assert slot.due_date == expanded[7].due_date
    assert slot.balance == expanded[7].balance
    assert slot.installment == 7

    recurring = _template(frequency=Frequency.recurring)
    assert occurrence_at(recurring, 14).due_date == datetime(2025, 2, 15, 9, 0)
    assert occurrence_at(_template(), 1).due_date == datetime(2024, 1, 15, 9, 0)


def test_occurrence_at_rejects_positions_outside_schedule() -> None:
    with pytest.raises(ExpansionError):
        occurrence_at(_installments(count=3), 4)
    with pytest.raises(ExpansionError):
        occurrence_at(_installments(count=6, initial=3), 2)
    with pytest.raises(ExpansionError):
        occurrence_at(_template(), 2)
