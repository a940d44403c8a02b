import math
from dataclasses import replace
from typing import Iterable

from ledger import Balance
from models import TransactionType


def gross_of(balance: Balance) -> float:
    return (
        balance.value
        + balance.parts
        + balance.labor
        - balance.discount
        + balance.interest
    )


def net_of(item) -> float:
    """Signed contribution of anything carrying ``type`` and ``balance``.

    Discount shrinks and interest grows the magnitude for both directions;
    expenses count negative, income positive, any other type counts zero.
    """
    if item.type == TransactionType.expense:
        return -gross_of(item.balance)
    if item.type == TransactionType.income:
        return gross_of(item.balance)
    return 0.0


def sum_net(items: Iterable) -> float:
    return math.fsum(net_of(item) for item in items)


def split_balance(balance: Balance, count: int) -> Balance:
    if count <= 0:
        raise ValueError("Installment count must be positive")
    return replace(
        balance,
        value=balance.value / count,
        parts=balance.parts / count,
        labor=balance.labor / count,
        discount=balance.discount / count,
        interest=balance.interest / count,
    )
