"""Parsing helpers shared by the source adapters.

Every numeric field coming off the wire goes through ``to_decimal`` so that
an unparsable value surfaces as DataIntegrityError instead of a stray
ValueError deep in the reconciler.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from ratewatch.exceptions import DataIntegrityError


def to_decimal(value: Any, source: str, field: str) -> Decimal:
    """Convert a raw upstream value to Decimal.

    Accepts numbers and numeric strings. A comma is treated as the decimal
    separator when it is the last separator (``"240,50"`` and
    ``"1.240,50"`` both parse), otherwise as a thousands separator.

    Raises:
        DataIntegrityError: The value is missing, non-numeric or not finite.
    """
    if value is None or isinstance(value, bool):
        raise DataIntegrityError(source, f"missing numeric field {field!r}")
    text = str(value).strip()
    if "," in text:
        if "." not in text:
            text = text.replace(",", ".")
        elif text.rfind(",") > text.rfind("."):
            # "1.234,56": dots group thousands
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    try:
        result = Decimal(text)
    except InvalidOperation as exc:
        raise DataIntegrityError(source, f"unparsable {field!r}: {value!r}") from exc
    if not result.is_finite():
        raise DataIntegrityError(source, f"non-finite {field!r}: {value!r}")
    return result


def to_decimal_or_default(
    value: Any, source: str, field: str, default: Decimal = Decimal("0")
) -> Decimal:
    """Like ``to_decimal`` but returns ``default`` for missing or empty values."""
    if value is None or value == "":
        return default
    return to_decimal(value, source, field)


def to_int(value: Any, default: int = 0) -> int:
    """Best-effort int conversion for informational counters."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
