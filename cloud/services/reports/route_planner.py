"""
Route planning screen state.

Fetches alternative routes for a device between two places, decodes each
route's encoded path and derives per-route figures (fuel estimate, path
length, average speed). Every alternative is kept so all of them can be drawn
at once, colour-coded by route type. A failed planning request leaves the
previously planned routes in place.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from report_errors import DecodeFailure, NetworkFailure, RoutePlanningError, error_message_from_body
from report_query import Query
from route_geometry import Point, bounds, decode_polyline, path_length_m

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


class RouteType(enum.Enum):
    FASTEST = "Fastest"
    SHORTEST = "Shortest"
    FUEL_OPTIMAL = "FuelOptimal"

    @classmethod
    def parse(cls, value: Any) -> "RouteType":
        key = "".join(ch for ch in str(value or "") if ch.isalnum()).lower()
        for item in cls:
            if item.value.lower() == key:
                return item
        raise DecodeFailure(f"unknown route type: {value!r}")


ROUTE_COLORS = {
    RouteType.FASTEST: "#1976d2",
    RouteType.SHORTEST: "#2e7d32",
    RouteType.FUEL_OPTIMAL: "#ef6c00",
}


class PlannerState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    RENDERED = "rendered"
    FAILED = "failed"


class DeviceStatus(enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    position: Optional[Point] = None
    status: DeviceStatus = DeviceStatus.UNKNOWN
    fuel_consumption_rate: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Device":
        if payload.get("id") is None:
            raise ValueError("device without id")
        attributes = payload.get("attributes") or {}
        position = None
        raw_position = payload.get("position") or {}
        lat = _finite(payload.get("latitude", raw_position.get("lat")))
        lng = _finite(payload.get("longitude", raw_position.get("lng")))
        if lat is not None and lng is not None:
            position = (lat, lng)
        rate = _finite(payload.get("fuelConsumptionRate", attributes.get("fuelConsumptionRate")))
        if rate is not None and rate < 0:
            rate = None
        try:
            status = DeviceStatus(str(payload.get("status") or "unknown").lower())
        except ValueError:
            status = DeviceStatus.UNKNOWN
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            position=position,
            status=status,
            fuel_consumption_rate=rate,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "position": {"lat": self.position[0], "lng": self.position[1]} if self.position else None,
            "status": self.status.value,
            "fuelConsumptionRate": self.fuel_consumption_rate,
        }


def estimate_fuel_liters(distance_km: float, consumption_rate: Optional[float]) -> str:
    """Fuel for ``distance_km`` at ``consumption_rate`` litres per 100 km."""
    if consumption_rate is None:
        return NOT_AVAILABLE
    return f"{distance_km * consumption_rate / 100:.2f}"


@dataclass(frozen=True)
class RouteAlternative:
    route_type: RouteType
    distance_km: float
    duration_min: float
    encoded_path: str
    estimated_fuel_liters: str
    points: Tuple[Point, ...] = field(default_factory=tuple)

    @property
    def color(self) -> str:
        return ROUTE_COLORS[self.route_type]

    @property
    def path_length_km(self) -> float:
        return path_length_m(self.points) / 1000.0

    @property
    def average_speed_kmh(self) -> Optional[float]:
        if self.duration_min <= 0:
            return None
        return self.distance_km / (self.duration_min / 60.0)

    def to_dict(self) -> Dict[str, Any]:
        speed = self.average_speed_kmh
        box = bounds(self.points)
        return {
            "routeType": self.route_type.value,
            "distanceKm": self.distance_km,
            "durationMin": self.duration_min,
            "encodedPath": self.encoded_path,
            "estimatedFuelLiters": self.estimated_fuel_liters,
            "pathLengthKm": round(self.path_length_km, 3),
            "averageSpeedKmh": round(speed, 2) if speed is not None else None,
            "color": self.color,
            "points": [list(point) for point in self.points],
            "bounds": [list(corner) for corner in box] if box else None,
        }


def enrich_route(raw: Mapping[str, Any], device: Device) -> RouteAlternative:
    if not isinstance(raw, Mapping):
        raise DecodeFailure("route record is not an object")
    route_type = RouteType.parse(raw.get("routeType"))
    distance_km = _finite(raw.get("distanceKm"))
    duration_min = _finite(raw.get("durationMin"))
    if distance_km is None or duration_min is None:
        raise DecodeFailure("route record without distance or duration")
    encoded = raw.get("polyline", raw.get("encodedPath"))
    points = decode_polyline(encoded)
    return RouteAlternative(
        route_type=route_type,
        distance_km=distance_km,
        duration_min=duration_min,
        encoded_path=encoded,
        estimated_fuel_liters=estimate_fuel_liters(distance_km, device.fuel_consumption_rate),
        points=tuple(points),
    )


def require_places(start: Any, end: Any) -> Tuple[str, str]:
    start = (start or "").strip()
    end = (end or "").strip()
    if not start or not end:
        raise RoutePlanningError("start and end places are required")
    return start, end


class RoutePlanner:
    def __init__(self, client):
        self.client = client
        self.devices: Dict[str, Device] = {}
        self.map_ready = False
        self.state = PlannerState.IDLE
        self.error: Optional[str] = None
        self.routes: List[RouteAlternative] = []
        self.selected_route: Optional[int] = None
        self.selected_device_id: Optional[str] = None
        self.marker: Optional[Point] = None
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def mark_map_ready(self) -> None:
        self.map_ready = True

    async def load_devices(self) -> List[Device]:
        payload = await self.client.fetch_devices()
        devices: Dict[str, Device] = {}
        for item in payload or []:
            try:
                device = Device.from_payload(item)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning(f"Skipping device record {item!r}: {exc}")
                continue
            devices[device.id] = device
        if not self.closed:
            self.devices = devices
        return list(devices.values())

    def select_device(self, device_id: Any) -> Device:
        device = self.devices.get(str(device_id))
        if device is None:
            raise RoutePlanningError(f"unknown device: {device_id}")
        self.selected_device_id = device.id
        self.marker = device.position
        return device

    def select_route(self, index: int) -> RouteAlternative:
        if index < 0 or index >= len(self.routes):
            raise RoutePlanningError(f"no route alternative {index}")
        self.selected_route = index
        return self.routes[index]

    async def plan_routes(self, device_id: Any, start: str, end: str) -> List[RouteAlternative]:
        start, end = require_places(start, end)
        if not self.map_ready:
            raise RoutePlanningError("map is not ready")
        device = self.devices.get(str(device_id))
        if device is None:
            raise RoutePlanningError(f"unknown device: {device_id}")
        if device.position is None:
            raise RoutePlanningError(f"device {device.name} has no known position")

        self._apply(state=PlannerState.LOADING)
        query = Query([("deviceId", device.id), ("start", start), ("end", end)])
        try:
            resp = await self.client.get("/api/route", query, accept_json=True)
        except NetworkFailure as exc:
            self._apply(state=PlannerState.FAILED, error=exc.message)
            raise
        except Exception:
            self._apply(state=PlannerState.FAILED, error="route planning failed")
            raise

        if not resp.ok:
            message = error_message_from_body(resp.text)
            logger.warning(f"Route planning failed ({resp.status_code}): {message}")
            self._apply(state=PlannerState.FAILED, error=message)
            raise NetworkFailure(message, resp.status_code)

        try:
            payload = resp.json() or []
        except ValueError:
            payload = None
        if not isinstance(payload, list):
            message = "Invalid route payload"
            self._apply(state=PlannerState.FAILED, error=message)
            raise NetworkFailure(message, resp.status_code)

        routes: List[RouteAlternative] = []
        for index, raw in enumerate(payload):
            try:
                routes.append(enrich_route(raw, device))
            except DecodeFailure as exc:
                logger.warning(f"Dropping route alternative {index} for device {device.id}: {exc}")

        logger.info(f"Planned {len(routes)} routes for device {device.id}")
        self._apply(state=PlannerState.RENDERED, error=None, routes=routes)
        return routes

    def _apply(self, **changes: Any) -> None:
        if self.closed:
            return
        if "routes" in changes:
            self.routes = changes.pop("routes")
            self.selected_route = 0 if self.routes else None
        for name, value in changes.items():
            setattr(self, name, value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "error": self.error,
            "selectedDeviceId": self.selected_device_id,
            "marker": {"lat": self.marker[0], "lng": self.marker[1]} if self.marker else None,
            "selectedRoute": self.selected_route,
            "routes": [route.to_dict() for route in self.routes],
        }
