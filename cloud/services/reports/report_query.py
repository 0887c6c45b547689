from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

from report_kinds import COUNTER, FREE_TEXT, FilterField, FilterValue, ReportKind, get_report_kind

logger = logging.getLogger(__name__)

Timestamp = Union[datetime, str]


@dataclass(frozen=True)
class FilterState:
    device_ids: Sequence[Any] = ()
    group_ids: Sequence[Any] = ()
    from_time: Optional[Timestamp] = None
    to_time: Optional[Timestamp] = None
    fields: Dict[str, FilterValue] = field(default_factory=dict)


class Query:
    """Ordered multi-valued query parameters, fixed at construction."""

    __slots__ = ("_pairs",)

    def __init__(self, pairs: Iterable[Tuple[str, str]] = ()):
        self._pairs = tuple((str(key), str(value)) for key, value in pairs)

    @property
    def pairs(self) -> Tuple[Tuple[str, str], ...]:
        return self._pairs

    def get_all(self, key: str) -> List[str]:
        return [value for name, value in self._pairs if name == key]

    def keys(self) -> List[str]:
        return [name for name, _ in self._pairs]

    def encode(self) -> str:
        return urlencode(self._pairs)

    def __iter__(self):
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return self._pairs == other._pairs

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __repr__(self) -> str:
        return f"Query({self.encode()!r})"


def format_timestamp(value: Timestamp) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
    return str(value).strip()


def _render_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _counter_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number) or number < 0:
            return None
        return text
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            return None
        return _render_number(value)
    return None


def _text_value(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def filter_value(item: FilterField, value: Any) -> Optional[str]:
    """Wire form of a report filter value, or None when it must be omitted."""
    if value is None:
        return None
    if item.kind == COUNTER:
        return _counter_value(value)
    if item.kind == FREE_TEXT:
        return _text_value(value)
    return None


def effective_group_ids(kind: ReportKind, group_ids: Sequence[Any]) -> List[Any]:
    """Single-group report kinds only accept the first selected group."""
    groups = list(group_ids or ())
    if kind.single_group and len(groups) > 1:
        logger.debug(f"{kind.name} report accepts one group, dropping {groups[1:]}")
        return groups[:1]
    return groups


def build_query(state: FilterState, kind: Union[str, ReportKind]) -> Query:
    kind = get_report_kind(kind)
    pairs: List[Tuple[str, str]] = []

    for device_id in state.device_ids or ():
        pairs.append(("deviceId", str(device_id)))
    for group_id in effective_group_ids(kind, state.group_ids):
        pairs.append(("groupId", str(group_id)))

    if not kind.ignore_date_range:
        if state.from_time:
            pairs.append(("from", format_timestamp(state.from_time)))
        if state.to_time:
            pairs.append(("to", format_timestamp(state.to_time)))

    fields = state.fields or {}
    for item in kind.filters:
        if item.name not in fields:
            continue
        value = filter_value(item, fields[item.name])
        if value is None:
            logger.debug(f"Skipping {kind.name} filter {item.name}={fields[item.name]!r}")
            continue
        pairs.append((item.name, value))

    return Query(pairs)
