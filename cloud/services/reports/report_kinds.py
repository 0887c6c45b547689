"""
Report kind descriptors.

Each report screen differs only in data: backend path, columns and how each
column is rendered, the extra filter inputs it offers, and two backend
policies (single group id, no date range). Everything else in the pipeline is
generic and reads from these descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from report_errors import ReportKindError

# Column formats
TEXT = "text"
COUNT = "count"
DECIMAL_2 = "decimal2"
UP_TO_1_DECIMAL = "upto1"
UP_TO_2_DECIMALS = "upto2"
COORDINATE = "coordinate"
DATE = "date"
DATE_TIME = "datetime"

# Filter field kinds
COUNTER = "counter"
FREE_TEXT = "text"

FilterValue = Union[str, int, float]


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    fmt: str = TEXT


@dataclass(frozen=True)
class FilterField:
    name: str
    kind: str
    initial: Optional[FilterValue] = None


@dataclass(frozen=True)
class ReportKind:
    name: str
    path: str
    columns: Tuple[Column, ...]
    filters: Tuple[FilterField, ...] = ()
    single_group: bool = False
    ignore_date_range: bool = False
    blank_as_placeholder: bool = False
    # formatted on request but not part of the displayed column set
    hidden: Tuple[Column, ...] = ()

    @property
    def column_keys(self) -> Tuple[str, ...]:
        return tuple(column.key for column in self.columns)

    def column_format(self, key: str) -> Optional[str]:
        for column in self.columns + self.hidden:
            if column.key == key:
                return column.fmt
        return None

    def filter_field(self, name: str) -> Optional[FilterField]:
        for item in self.filters:
            if item.name == name:
                return item
        return None

    def initial_filters(self) -> Dict[str, FilterValue]:
        return {item.name: item.initial for item in self.filters if item.initial is not None}


FUEL = ReportKind(
    name="fuel",
    path="/api/reports/fuel",
    columns=(
        Column("deviceName", "Device Name"),
        Column("groupName", "Group"),
        Column("totalMileage", "Distance (km)", DECIMAL_2),
        Column("averageSpeed", "Avg Speed (km/h)", DECIMAL_2),
        Column("totalFuelUsed", "Fuel Used (L)", DECIMAL_2),
        Column("avgFuelPer100Km", "Avg Fuel (L/100km)", DECIMAL_2),
        Column("fuelRefillEvents", "Refill Events", COUNT),
        Column("fuelRefilled", "Fuel Refilled (L)", DECIMAL_2),
        Column("fuelTheftEvents", "Theft Events", COUNT),
        Column("fuelStolen", "Fuel Stolen (L)", DECIMAL_2),
    ),
    hidden=(Column("distance", "Distance (km)", DECIMAL_2),),
)

INSURANCE = ReportKind(
    name="insurance",
    path="/api/reports/insurance",
    columns=(
        Column("deviceName", "Device Name"),
        Column("groupName", "Group"),
        Column("insuranceCompany", "Insurance Company"),
        Column("insurancePolicyNumber", "Policy Number"),
        Column("insuranceAmount", "Insurance Amount", DECIMAL_2),
        Column("insuranceExpiryDate", "Expiry Date", DATE),
        Column("daysRemaining", "Days Remaining"),
    ),
    filters=(FilterField("expiryWithinDays", COUNTER, 30),),
    ignore_date_range=True,
    blank_as_placeholder=True,
)

MAINTENANCE = ReportKind(
    name="maintenance",
    path="/api/reports/maintenance",
    columns=(
        Column("deviceName", "Vehicle Name"),
        Column("groupName", "Group"),
        Column("maintenanceTask", "Maintenance Task"),
        Column("scheduledMileage", "Scheduled Mileage", UP_TO_1_DECIMAL),
        Column("currentMileage", "Current Mileage", UP_TO_1_DECIMAL),
        Column("status", "Status"),
        Column("mileageRemaining", "Mileage Remaining"),
    ),
    filters=(
        FilterField("dueWithinKm", COUNTER, 1000),
        FilterField("status", FREE_TEXT, ""),
    ),
    ignore_date_range=True,
    blank_as_placeholder=True,
    hidden=(Column("scheduledDate", "Scheduled Date", DATE),),
)

BEHAVIOR = ReportKind(
    name="behavior",
    path="/api/reports/behavior",
    columns=(
        Column("deviceName", "Device Name"),
        Column("driverName", "Driver Name"),
        Column("harshAccelerationCount", "Harsh Accel", COUNT),
        Column("harshBrakingCount", "Harsh Brake", COUNT),
        Column("overspeedCount", "Overspeed", COUNT),
        Column("sharpTurnCount", "Sharp Turn", COUNT),
        Column("idleMinutes", "Idle (min)", UP_TO_2_DECIMALS),
        Column("lastEventType", "Last Event Type"),
        Column("lastEventTime", "Last Event Time", DATE_TIME),
        Column("severity", "Severity"),
    ),
    filters=(FilterField("driverId", FREE_TEXT, ""),),
    single_group=True,
    hidden=(
        Column("tripDate", "Trip Date", DATE_TIME),
        Column("accCycleCount", "ACC Cycles", COUNT),
        Column("speedAtEvent", "Speed at Event", UP_TO_2_DECIMALS),
        Column("speedLimit", "Speed Limit", UP_TO_2_DECIMALS),
        Column("lastEventLatitude", "Last Event Lat", COORDINATE),
        Column("lastEventLongitude", "Last Event Lon", COORDINATE),
    ),
)

REPORT_KINDS: Dict[str, ReportKind] = {
    kind.name: kind for kind in (FUEL, INSURANCE, MAINTENANCE, BEHAVIOR)
}


def get_report_kind(name: Union[str, ReportKind]) -> ReportKind:
    if isinstance(name, ReportKind):
        return name
    kind = REPORT_KINDS.get((name or "").strip().lower())
    if kind is None:
        raise ReportKindError(f"unknown report kind: {name}")
    return kind
