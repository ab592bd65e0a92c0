"""
Exact numeric handling for coverage percentages and monetary amounts.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from consortium_api.cache import config_cache
from consortium_api.errors import InvalidRange

MONEY_PLACES = 2
# SQLite keeps Numeric as REAL; below this a 2dp value survives the float round-trip
MAX_MONEY = Decimal("9999999999999.99")


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidRange(f"{field} must be a number", field=field)
    try:
        # str() keeps 33.3 as Decimal("33.3") rather than its binary expansion
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRange(f"{field} must be a number", field=field)
    if not number.is_finite():
        raise InvalidRange(f"{field} must be a finite number", field=field)
    return number


def _check_places(number: Decimal, places: int, field: str) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    try:
        exact = number == number.quantize(quantum)
    except InvalidOperation:
        raise InvalidRange(f"{field} is out of range", field=field, value=str(number))
    if not exact:
        raise InvalidRange(
            f"{field} supports at most {places} decimal places",
            field=field,
            value=str(number),
        )
    return number.quantize(quantum)


def _check_money(number: Decimal, field: str) -> Decimal:
    number = _check_places(number, MONEY_PLACES, field)
    if number > MAX_MONEY:
        raise InvalidRange(
            f"{field} must not exceed {MAX_MONEY}", field=field, value=str(number)
        )
    return number


def to_coverage(value: Any, field: str = "coverage_percent") -> Decimal:
    """
    Parse a coverage percentage in [1, 100].

    Values with more precision than configured are rejected instead of
    rounded so that sums stay exact.
    """
    number = _check_places(_to_decimal(value, field), config_cache.coverage_decimal_places, field)
    if number < 1 or number > 100:
        raise InvalidRange(f"{field} must be between 1 and 100", field=field, value=float(number))
    return number


def to_premium(value: Any, field: str = "premium") -> Decimal:
    number = _check_money(_to_decimal(value, field), field)
    if number < 0:
        raise InvalidRange(f"{field} must not be negative", field=field, value=float(number))
    return number


def to_sum_insured(value: Any, field: str = "sum_insured") -> Decimal:
    number = _check_money(_to_decimal(value, field), field)
    if number <= 0:
        raise InvalidRange(f"{field} must be positive", field=field, value=float(number))
    return number


def to_currency(value: Any, field: str = "currency") -> str:
    code = (value or config_cache.default_currency).strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise InvalidRange(f"{field} must be a three-letter ISO 4217 code", field=field, value=value)
    return code


def total_coverage(percentages: Iterable[Decimal]) -> Decimal:
    return sum((Decimal(p) for p in percentages), Decimal("0"))


def format_percent(value: Decimal) -> str:
    """Render a percentage without trailing zeros: 12.5000 -> '12.5'."""
    text = format(value.normalize(), "f")
    return text
