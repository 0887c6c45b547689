from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from report_errors import SchedulePersistFailure
from report_kinds import COUNTER, ReportKind, get_report_kind
from report_query import effective_group_ids, filter_value

logger = logging.getLogger(__name__)

# Schedule form fields forwarded to the backend as-is
REPORT_FIELDS = ("description", "calendarId")


@dataclass(frozen=True)
class ScheduleRequest:
    device_ids: List[Any]
    group_ids: List[Any]
    type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    report_fields: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.report_fields)
        payload["type"] = self.type
        payload["attributes"] = dict(self.attributes)
        return payload


def _attribute_value(kind: ReportKind, name: str, value: Any) -> Any:
    item = kind.filter_field(name)
    if item is None:
        return value
    if item.kind == COUNTER:
        # scheduled re-runs keep the counter even when it would be skipped in a query
        return value
    return filter_value(item, value)


def to_schedule_request(
    device_ids: Sequence[Any],
    group_ids: Sequence[Any],
    kind: Union[str, ReportKind],
    base_attributes: Optional[Mapping[str, Any]] = None,
    report_state: Optional[Mapping[str, Any]] = None,
    report_fields: Optional[Mapping[str, Any]] = None,
) -> ScheduleRequest:
    kind = get_report_kind(kind)
    attributes: Dict[str, Any] = dict(base_attributes or {})

    for name, value in (report_state or {}).items():
        if kind.filter_field(name) is None:
            if name not in attributes and value is not None:
                attributes[name] = value
            continue
        value = _attribute_value(kind, name, value)
        if value is None:
            attributes.pop(name, None)
        else:
            attributes[name] = value

    groups = effective_group_ids(kind, group_ids)
    if kind.single_group and groups:
        attributes["groupId"] = groups[0]

    fields = {
        key: value
        for key, value in (report_fields or {}).items()
        if key in REPORT_FIELDS and value is not None
    }
    return ScheduleRequest(
        device_ids=list(device_ids or ()),
        group_ids=groups,
        type=kind.name,
        attributes=attributes,
        report_fields=fields,
    )


async def schedule_report(client, request: ScheduleRequest) -> None:
    """Persist ``request`` through the scheduler; its error text is raised verbatim."""
    error = await client.schedule_report(request.device_ids, request.group_ids, request.to_payload())
    if error:
        logger.warning(f"Scheduling {request.type} report failed: {error}")
        raise SchedulePersistFailure(error)
    logger.info(f"Scheduled {request.type} report for {len(request.device_ids)} devices")
