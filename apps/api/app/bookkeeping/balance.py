from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any, Protocol


BALANCE_TOLERANCE = Decimal("0.01")


class HasAmounts(Protocol):
    debit_amount: Any
    credit_amount: Any


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value instead of binary noise.
    return Decimal(str(value))


def line_totals(lines: Iterable[HasAmounts]) -> tuple[Decimal, Decimal]:
    total_debit = Decimal("0")
    total_credit = Decimal("0")
    for line in lines:
        total_debit += _to_decimal(line.debit_amount)
        total_credit += _to_decimal(line.credit_amount)
    return total_debit, total_credit


def validate_balance(lines: Iterable[HasAmounts]) -> bool:
    """Return True when total debits equal total credits within `BALANCE_TOLERANCE`.

    An empty line set is never balanced.
    """
    materialized = list(lines)
    if not materialized:
        return False
    total_debit, total_credit = line_totals(materialized)
    return abs(total_debit - total_credit) < BALANCE_TOLERANCE
