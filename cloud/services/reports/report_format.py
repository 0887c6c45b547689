from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from report_kinds import (
    COORDINATE,
    COUNT,
    DATE,
    DATE_TIME,
    DECIMAL_2,
    UP_TO_1_DECIMAL,
    UP_TO_2_DECIMALS,
    ReportKind,
    get_report_kind,
)

PLACEHOLDER = "-"

DATE_FORMAT = "%Y-%m-%d"
DATE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _rounded(number: float, decimals: int) -> Decimal:
    # halves round away from zero, on the shortest decimal form of the float
    with localcontext() as ctx:
        ctx.prec = 400
        return Decimal(repr(number)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def _grouped(number: float, max_decimals: int, min_decimals: int = 0) -> str:
    text = f"{_rounded(number, max_decimals):,.{max_decimals}f}"
    if max_decimals > min_decimals and "." in text:
        whole, fraction = text.split(".")
        fraction = fraction.rstrip("0")
        if len(fraction) < min_decimals:
            fraction = fraction.ljust(min_decimals, "0")
        text = f"{whole}.{fraction}" if fraction else whole
    if text.startswith("-") and _is_zero(text):
        text = text[1:]
    return text


def _is_zero(text: str) -> bool:
    return all(char in "-0.," for char in text)


def parse_instant(value: Any) -> Optional[datetime]:
    """ISO-8601 strings (``Z`` allowed) or epoch milliseconds to an aware datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_instant(value: Any, pattern: str, tz: Optional[tzinfo]) -> str:
    parsed = parse_instant(value)
    if parsed is None:
        return str(value)
    return parsed.astimezone(tz or timezone.utc).strftime(pattern)


def _format_number(value: Any, fmt: str) -> str:
    number = _as_number(value)
    if number is None:
        return str(value)
    if fmt == COUNT:
        return _grouped(number, 0)
    if fmt == DECIMAL_2:
        return _grouped(number, 2, 2)
    if fmt == UP_TO_1_DECIMAL:
        return _grouped(number, 1)
    if fmt == UP_TO_2_DECIMALS:
        return _grouped(number, 2)
    return f"{number:.5f}"


def format_value(
    row: Mapping[str, Any],
    column_key: str,
    kind: Union[str, ReportKind],
    tz: Optional[tzinfo] = None,
) -> str:
    kind = get_report_kind(kind)
    value = row.get(column_key)
    if value is None:
        return PLACEHOLDER

    fmt = kind.column_format(column_key)
    if fmt in (COUNT, DECIMAL_2, UP_TO_1_DECIMAL, UP_TO_2_DECIMALS, COORDINATE):
        return _format_number(value, fmt)
    if fmt == DATE:
        return _format_instant(value, DATE_FORMAT, tz)
    if fmt == DATE_TIME:
        return _format_instant(value, DATE_TIME_FORMAT, tz)

    text = value if isinstance(value, str) else str(value)
    if fmt is not None and kind.blank_as_placeholder and not text.strip():
        return PLACEHOLDER
    return text


def format_row(
    row: Mapping[str, Any],
    kind: Union[str, ReportKind],
    tz: Optional[tzinfo] = None,
) -> Dict[str, str]:
    kind = get_report_kind(kind)
    return {key: format_value(row, key, kind, tz) for key in kind.column_keys}


def format_rows(
    rows: Iterable[Mapping[str, Any]],
    kind: Union[str, ReportKind],
    tz: Optional[tzinfo] = None,
) -> List[Dict[str, str]]:
    kind = get_report_kind(kind)
    return [format_row(row, kind, tz) for row in rows]
