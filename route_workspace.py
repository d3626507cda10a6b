"""
Route Workspace draft model

In-memory representation of a route group being composed in the workspace:
one or more directional routes, each an ordered list of stop references. A
stop reference is either EXISTING (carries a backend id) or NEW (no id yet).

Drafts are plain dataclasses. Every helper in this module returns new objects
instead of mutating its input, so a draft handed to a submission attempt is
never changed underneath the caller.

Document format
---------------
``draft_to_dict`` / ``draft_from_dict`` map a draft to and from the workspace's
textual document (snake_case keys, ``route`` / ``route_stop`` wrappers);
``draft_to_yaml`` / ``draft_from_yaml`` read and write it as YAML::

    route_group:
      name: ...
      routes:
        - route:
            name: ...
            direction: OUTBOUND
            route_stops:
              - route_stop:
                  order_number: 0
                  distance_from_start: 0.0
                  stop_type: S
                  stop: {id: "", name: ..., type: new, location: {...}}
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml


class StopState(str, Enum):
    EXISTING = "existing"
    NEW = "new"


class Direction(str, Enum):
    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"


class RoadType(str, Enum):
    NORMALWAY = "NORMALWAY"
    EXPRESSWAY = "EXPRESSWAY"


class StopType(str, Enum):
    START = "S"
    END = "E"
    INTERMEDIATE = "I"


# (attribute, document key, API key) for the optional location text fields
LOCATION_TEXT_FIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("address", "address", "address"),
    ("city", "city", "city"),
    ("state", "state", "state"),
    ("zip_code", "zip_code", "zipCode"),
    ("country", "country", "country"),
    ("address_sinhala", "address_sinhala", "addressSinhala"),
    ("city_sinhala", "city_sinhala", "citySinhala"),
    ("state_sinhala", "state_sinhala", "stateSinhala"),
    ("country_sinhala", "country_sinhala", "countrySinhala"),
    ("address_tamil", "address_tamil", "addressTamil"),
    ("city_tamil", "city_tamil", "cityTamil"),
    ("state_tamil", "state_tamil", "stateTamil"),
    ("country_tamil", "country_tamil", "countryTamil"),
)


def stop_key(name: Optional[str]) -> str:
    """Normalise a stop name into the key used to match stops across routes.

    Whitespace runs collapse to one space and case is folded, mirroring the
    case-insensitive name matching of the stop directory.
    """
    if not name:
        return ""
    return " ".join(str(name).split()).casefold()


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Location:
    latitude: float = 0.0
    longitude: float = 0.0
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    address_sinhala: Optional[str] = None
    city_sinhala: Optional[str] = None
    state_sinhala: Optional[str] = None
    country_sinhala: Optional[str] = None
    address_tamil: Optional[str] = None
    city_tamil: Optional[str] = None
    state_tamil: Optional[str] = None
    country_tamil: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        """True when both latitude and longitude are set (non-zero)."""
        return bool(self.latitude) and bool(self.longitude)

    def to_api(self) -> Dict[str, Any]:
        """Location block of a stop creation request (camelCase, no empty fields)."""
        payload: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
        for attr, _doc_key, api_key in LOCATION_TEXT_FIELDS:
            value = getattr(self, attr)
            if value:
                payload[api_key] = value
        return payload

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {}
        if self.latitude:
            doc["latitude"] = self.latitude
        if self.longitude:
            doc["longitude"] = self.longitude
        for attr, doc_key, _api_key in LOCATION_TEXT_FIELDS:
            value = getattr(self, attr)
            if value:
                doc[doc_key] = value
        return doc

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Location":
        kwargs: Dict[str, Any] = {
            "latitude": _to_float(data.get("latitude")),
            "longitude": _to_float(data.get("longitude")),
        }
        for attr, doc_key, _api_key in LOCATION_TEXT_FIELDS:
            kwargs[attr] = _clean_text(data.get(doc_key))
        return cls(**kwargs)

    @classmethod
    def from_api(cls, data: Any) -> "Location":
        if not isinstance(data, Mapping):
            data = {}
        kwargs: Dict[str, Any] = {
            "latitude": _to_float(data.get("latitude")),
            "longitude": _to_float(data.get("longitude")),
        }
        for attr, _doc_key, api_key in LOCATION_TEXT_FIELDS:
            kwargs[attr] = _clean_text(data.get(api_key))
        return cls(**kwargs)


@dataclass
class StopDraft:
    """A stop reference inside a draft route.

    ``state`` EXISTING implies a non-empty ``id``; NEW implies an empty one.
    """
    name: str
    id: str = ""
    name_sinhala: Optional[str] = None
    name_tamil: Optional[str] = None
    description: Optional[str] = None
    location: Location = field(default_factory=Location)
    is_accessible: bool = True
    state: StopState = StopState.NEW

    @property
    def local_key(self) -> str:
        """Draft identity used before the stop has a backend id."""
        return stop_key(self.name)

    @property
    def is_existing(self) -> bool:
        return self.state == StopState.EXISTING and bool(self.id)

    def label(self) -> str:
        return self.name or self.id or "<unnamed stop>"

    def invariant_problem(self) -> Optional[str]:
        if self.state == StopState.EXISTING and not self.id:
            return f"stop '{self.label()}' is marked existing but has no id"
        if self.state == StopState.NEW and self.id:
            return f"stop '{self.label()}' is marked new but carries id {self.id}"
        return None

    def as_new(self) -> "StopDraft":
        return replace(self, id="", state=StopState.NEW, location=copy.copy(self.location))

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "id": self.id or "",
            "name": self.name or "",
            "name_sinhala": self.name_sinhala or "",
            "name_tamil": self.name_tamil or "",
            "type": self.state.value,
        }
        if self.description:
            doc["description"] = self.description
        doc["is_accessible"] = self.is_accessible
        location = self.location.to_document()
        if location:
            doc["location"] = location
        return doc

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "StopDraft":
        raw_type = str(data.get("type") or StopState.NEW.value).lower()
        try:
            state = StopState(raw_type)
        except ValueError:
            state = StopState.NEW
        location_data = data.get("location")
        accessible = data.get("is_accessible")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            name_sinhala=_clean_text(data.get("name_sinhala")),
            name_tamil=_clean_text(data.get("name_tamil")),
            description=_clean_text(data.get("description")),
            location=Location.from_document(location_data) if isinstance(location_data, Mapping) else Location(),
            is_accessible=True if accessible is None else bool(accessible),
            state=state,
        )


def stop_from_api(payload: Mapping[str, Any]) -> StopDraft:
    """Map a stop returned by the route-management API to an EXISTING draft stop."""
    accessible = payload.get("isAccessible")
    return StopDraft(
        id=str(payload.get("id") or ""),
        name=str(payload.get("name") or ""),
        name_sinhala=_clean_text(payload.get("nameSinhala")),
        name_tamil=_clean_text(payload.get("nameTamil")),
        description=_clean_text(payload.get("description")),
        location=Location.from_api(payload.get("location")),
        is_accessible=True if accessible is None else bool(accessible),
        state=StopState.EXISTING,
    )


@dataclass
class RouteStopDraft:
    order_number: int
    stop: StopDraft
    distance_from_start: float = 0.0

    def copy(self) -> "RouteStopDraft":
        # Stops are held by value: each route owns its own copy.
        return RouteStopDraft(
            order_number=self.order_number,
            stop=replace(self.stop, location=copy.copy(self.stop.location)),
            distance_from_start=self.distance_from_start,
        )


@dataclass
class RouteDraft:
    name: str
    direction: Direction = Direction.OUTBOUND
    road_type: RoadType = RoadType.NORMALWAY
    route_stops: List[RouteStopDraft] = field(default_factory=list)
    name_sinhala: Optional[str] = None
    name_tamil: Optional[str] = None
    route_number: Optional[str] = None
    description: Optional[str] = None
    route_through: Optional[str] = None
    route_through_sinhala: Optional[str] = None
    route_through_tamil: Optional[str] = None
    distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None

    def label(self) -> str:
        return f"{self.name or '<unnamed route>'} ({self.direction.value})"

    def order_problem(self) -> Optional[str]:
        previous: Optional[int] = None
        for route_stop in self.route_stops:
            if previous is not None and route_stop.order_number <= previous:
                return (
                    f"Route '{self.label()}' has stop order {route_stop.order_number} "
                    f"after {previous}; order numbers must strictly increase"
                )
            previous = route_stop.order_number
        return None

    def with_stops(self, route_stops: Iterable[RouteStopDraft]) -> "RouteDraft":
        return replace(self, route_stops=[rs.copy() for rs in route_stops])

    def copy(self) -> "RouteDraft":
        return self.with_stops(self.route_stops)


@dataclass
class RouteGroupDraft:
    name: str
    routes: List[RouteDraft] = field(default_factory=list)
    name_sinhala: Optional[str] = None
    name_tamil: Optional[str] = None
    description: Optional[str] = None
    id: Optional[str] = None

    def iter_route_stops(self) -> Iterable[Tuple[int, int, RouteStopDraft]]:
        for route_index, route in enumerate(self.routes):
            for stop_index, route_stop in enumerate(route.route_stops):
                yield route_index, stop_index, route_stop

    def copy(self) -> "RouteGroupDraft":
        return replace(self, routes=[route.copy() for route in self.routes])

    def summary(self) -> Dict[str, Any]:
        """Counts shown on the confirmation step before a submission starts."""
        total = 0
        existing = 0
        new_keys = set()
        for _r, _s, route_stop in self.iter_route_stops():
            total += 1
            if route_stop.stop.is_existing:
                existing += 1
            else:
                new_keys.add(route_stop.stop.local_key or f"#{id(route_stop)}")
        return {
            "name": self.name,
            "route_count": len(self.routes),
            "routes": [
                {
                    "name": route.name,
                    "direction": route.direction.value,
                    "stop_count": len(route.route_stops),
                }
                for route in self.routes
            ],
            "total_stops": total,
            "existing_stops": existing,
            "new_stop_references": total - existing,
            "distinct_new_stops": len(new_keys),
        }


# ---------------------------------------------------------------------------
# Route helpers
# ---------------------------------------------------------------------------

def make_route_stops(
    stops: Iterable[StopDraft], distances: Optional[Iterable[float]] = None
) -> List[RouteStopDraft]:
    """Wrap stops into route stops with order numbers 0..n-1."""
    stop_list = list(stops)
    distance_list = list(distances) if distances is not None else [0.0] * len(stop_list)
    if len(distance_list) != len(stop_list):
        raise ValueError("distances must match the number of stops")
    return [
        RouteStopDraft(
            order_number=index,
            stop=replace(stop, location=copy.copy(stop.location)),
            distance_from_start=float(distance),
        )
        for index, (stop, distance) in enumerate(zip(stop_list, distance_list))
    ]


def stop_type_for(index: int, total: int) -> StopType:
    if index == 0:
        return StopType.START
    if index == total - 1:
        return StopType.END
    return StopType.INTERMEDIATE


def total_distance(route_stops: List[RouteStopDraft]) -> float:
    if not route_stops:
        return 0.0
    return max(rs.distance_from_start for rs in route_stops)


def apply_resolved_stops(
    draft: RouteGroupDraft, resolved: Mapping[str, StopDraft]
) -> RouteGroupDraft:
    """Return a copy of ``draft`` with resolved stops folded in.

    ``resolved`` maps a stop's local key to the authoritative EXISTING stop
    (found in the directory or created during a submission attempt). Stops
    without a matching key are copied unchanged.
    """
    updated = draft.copy()
    for route in updated.routes:
        for route_stop in route.route_stops:
            target = resolved.get(route_stop.stop.local_key)
            if target is not None and target.id:
                route_stop.stop = replace(target, location=copy.copy(target.location))
    return updated


# ---------------------------------------------------------------------------
# Document import / export
# ---------------------------------------------------------------------------

def route_to_document(route: RouteDraft) -> Dict[str, Any]:
    total = len(route.route_stops)
    first = route.route_stops[0].stop.id if route.route_stops else ""
    last = route.route_stops[-1].stop.id if route.route_stops else ""
    return {
        "name": route.name or "",
        "name_sinhala": route.name_sinhala or "",
        "name_tamil": route.name_tamil or "",
        "route_number": route.route_number or "",
        "description": route.description or "",
        "direction": route.direction.value,
        "road_type": route.road_type.value,
        "route_through": route.route_through or "",
        "route_through_sinhala": route.route_through_sinhala or "",
        "route_through_tamil": route.route_through_tamil or "",
        "distance_km": route.distance_km or 0,
        "estimated_duration_minutes": route.estimated_duration_minutes or 0,
        "start_stop_id": first,
        "end_stop_id": last,
        "route_stops": [
            {
                "route_stop": {
                    "order_number": rs.order_number,
                    "distance_from_start": rs.distance_from_start,
                    "stop_type": stop_type_for(index, total).value,
                    "stop": rs.stop.to_document(),
                }
            }
            for index, rs in enumerate(route.route_stops)
        ],
    }


def draft_to_dict(draft: RouteGroupDraft) -> Dict[str, Any]:
    group: Dict[str, Any] = {
        "name": draft.name or "",
        "name_sinhala": draft.name_sinhala or "",
        "name_tamil": draft.name_tamil or "",
        "description": draft.description or "",
    }
    if draft.id:
        group["id"] = draft.id
    if draft.routes:
        group["routes"] = [{"route": route_to_document(route)} for route in draft.routes]
    return {"route_group": group}


def _parse_enum(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    try:
        return enum_cls(str(value).upper())
    except ValueError as exc:
        raise ValueError(f"invalid {enum_cls.__name__} value: {value!r}") from exc


def route_from_document(data: Mapping[str, Any]) -> RouteDraft:
    route_stops: List[RouteStopDraft] = []
    raw_stops = data.get("route_stops") or []
    if not isinstance(raw_stops, list):
        raise ValueError("route_stops must be a list")
    for index, wrapper in enumerate(raw_stops):
        entry = wrapper.get("route_stop") if isinstance(wrapper, Mapping) else None
        if not isinstance(entry, Mapping):
            raise ValueError(f"route_stops[{index}] is missing a route_stop entry")
        stop_data = entry.get("stop")
        if not isinstance(stop_data, Mapping):
            raise ValueError(f"route_stops[{index}] is missing its stop")
        order = entry.get("order_number")
        distance = entry.get("distance_from_start")
        if distance is None:
            distance = entry.get("distance_from_start_km")
        route_stops.append(
            RouteStopDraft(
                order_number=int(order) if order is not None else index,
                stop=StopDraft.from_document(stop_data),
                distance_from_start=_to_float(distance),
            )
        )
    duration = data.get("estimated_duration_minutes")
    return RouteDraft(
        name=str(data.get("name") or ""),
        name_sinhala=_clean_text(data.get("name_sinhala")),
        name_tamil=_clean_text(data.get("name_tamil")),
        route_number=_clean_text(data.get("route_number")),
        description=_clean_text(data.get("description")),
        direction=_parse_enum(Direction, data.get("direction"), Direction.OUTBOUND),
        road_type=_parse_enum(RoadType, data.get("road_type"), RoadType.NORMALWAY),
        route_through=_clean_text(data.get("route_through")),
        route_through_sinhala=_clean_text(data.get("route_through_sinhala")),
        route_through_tamil=_clean_text(data.get("route_through_tamil")),
        distance_km=_to_float(data.get("distance_km")) or None,
        estimated_duration_minutes=int(duration) if duration else None,
        route_stops=route_stops,
    )


def draft_from_dict(data: Mapping[str, Any]) -> RouteGroupDraft:
    """Parse a workspace document into a draft.

    Raises ``ValueError`` when the document does not have the expected shape.
    """
    if not isinstance(data, Mapping):
        raise ValueError("document must be an object")
    group = data.get("route_group")
    if not isinstance(group, Mapping):
        raise ValueError("document is missing route_group")
    raw_routes = group.get("routes") or []
    if not isinstance(raw_routes, list):
        raise ValueError("route_group.routes must be a list")
    routes: List[RouteDraft] = []
    for index, wrapper in enumerate(raw_routes):
        route_data = wrapper.get("route") if isinstance(wrapper, Mapping) else None
        if not isinstance(route_data, Mapping):
            raise ValueError(f"routes[{index}] is missing a route entry")
        routes.append(route_from_document(route_data))
    group_id = _clean_text(group.get("id"))
    return RouteGroupDraft(
        id=group_id,
        name=str(group.get("name") or ""),
        name_sinhala=_clean_text(group.get("name_sinhala")),
        name_tamil=_clean_text(group.get("name_tamil")),
        description=_clean_text(group.get("description")),
        routes=routes,
    )


def draft_to_yaml(draft: RouteGroupDraft) -> str:
    return yaml.safe_dump(draft_to_dict(draft), sort_keys=False, allow_unicode=True)


def draft_from_yaml(text: str) -> RouteGroupDraft:
    """Parse a YAML workspace document. Raises ``ValueError`` on bad YAML or shape."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid YAML: {exc}") from exc
    return draft_from_dict(data)


__all__ = [
    "StopState",
    "Direction",
    "RoadType",
    "StopType",
    "Location",
    "StopDraft",
    "RouteStopDraft",
    "RouteDraft",
    "RouteGroupDraft",
    "stop_key",
    "stop_from_api",
    "make_route_stops",
    "stop_type_for",
    "total_distance",
    "apply_resolved_stops",
    "draft_to_dict",
    "draft_from_dict",
    "draft_to_yaml",
    "draft_from_yaml",
    "route_to_document",
    "route_from_document",
]
