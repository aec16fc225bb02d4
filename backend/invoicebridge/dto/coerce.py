# Overview: Tolerant value coercion for decode; problems are collected, not raised.

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from ..time_utils import coerce_datetime
from .aliases import FieldAliases


ZERO = Decimal("0.00")
ONE = Decimal("1.00")
CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a numeric value into a 2-place Decimal.

    Accepts int, float, Decimal and strings with either "." or "," as the
    decimal separator. Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        text = str(value).strip().replace(" ", "")
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"{value!r} is not a number") from None
    if not result.is_finite():
        raise ValueError(f"{value!r} is not a number")
    return quantize(result)


def parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not an integer")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        # "12.0" style values written by older code
        number = Decimal(text)
        if number != number.to_integral_value():
            raise ValueError(f"{value!r} is not an integer") from None
        return int(number)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class FieldReader:
    """Reads canonical fields out of a raw map through an alias table."""

    def __init__(self, raw: Mapping[str, Any], aliases: FieldAliases):
        self.raw = raw
        self.aliases = aliases
        self.errors: list[str] = []

    def present(self, field: str) -> bool:
        return self.aliases.resolve(self.raw, field)[0] is not None

    def raw_value(self, field: str) -> Any:
        return self.aliases.value(self.raw, field)

    def _convert(self, field: str, default: Any, converter, label: str) -> Any:
        key, value = self.aliases.resolve(self.raw, field)
        if key is None:
            return default
        try:
            return converter(value)
        except (TypeError, ValueError, InvalidOperation):
            self.errors.append(f"{field}: {value!r} is not a valid {label}")
            return default

    def text(self, field: str, default: str = "") -> str:
        key, value = self.aliases.resolve(self.raw, field)
        if key is None:
            return default
        return str(value).strip()

    def money(self, field: str, default: Decimal = ZERO) -> Decimal:
        return self._convert(field, default, parse_decimal, "number")

    def integer(self, field: str, default: int | None = None) -> int | None:
        return self._convert(field, default, parse_int, "integer")

    def boolean(self, field: str, default: bool = False) -> bool:
        return self._convert(field, default, parse_bool, "boolean")

    def timestamp(self, field: str, default: datetime | None = None) -> datetime | None:
        value = self._convert(field, default, coerce_datetime, "timestamp")
        return default if value is None else value

    def calendar_date(self, field: str, default: date | None = None) -> date | None:
        value = self.timestamp(field)
        if value is None:
            return default
        # Truncation to the calendar date is the defined behavior
        return value.date()
