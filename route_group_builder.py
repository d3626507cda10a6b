"""
Identity Mapper and Route Group Builder

Turns the resolved routes into one RouteGroupRequest and submits it.

Every route stop must resolve to a backend stop id: first through the stops
created during this attempt (keyed by the draft's local key), then through
the stop's own id. A route stop that resolves to nothing fails the build
before any request is sent; ids are never defaulted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from paced_pipeline import PhaseStatusValue
from route_management import RouteGroupRepository, RouteManagementError
from route_workspace import RouteDraft, RouteGroupDraft, StopDraft
from stop_creation import CreatedStop
from submission_errors import BuildError, SubmissionError, SubmissionFailure


class IdentityMap:
    """Draft stop identity (local key) -> durable backend stop id."""

    def __init__(self) -> None:
        self._created: Dict[str, str] = {}

    @classmethod
    def from_created(cls, created_stops: Iterable[CreatedStop]) -> "IdentityMap":
        identity = cls()
        for pair in created_stops:
            identity.add_created(pair.original.local_key, pair.created.id)
        return identity

    def add_created(self, key: str, stop_id: str) -> None:
        if not key or not stop_id:
            return
        if key in self._created and self._created[key] != stop_id:
            raise ValueError(f"stop '{key}' was created twice ({self._created[key]}, {stop_id})")
        self._created[key] = stop_id

    def get_stop_id(self, stop: StopDraft) -> str:
        created_id = self._created.get(stop.local_key)
        if created_id:
            return created_id
        return stop.id or ""

    @property
    def created_count(self) -> int:
        return len(self._created)


def find_unresolved(routes: Sequence[RouteDraft], identity: IdentityMap) -> List[str]:
    """One message per route stop that has no backend id."""
    missing: List[str] = []
    for route in routes:
        if not route.route_stops:
            missing.append(f"Route '{route.label()}' has no stops")
            continue
        for position, route_stop in enumerate(route.route_stops):
            if not identity.get_stop_id(route_stop.stop):
                missing.append(
                    f"Route '{route.label()}' stop #{position + 1} "
                    f"'{route_stop.stop.label()}' has no stop id"
                )
    return missing


def build_route_payload(route: RouteDraft, identity: IdentityMap) -> Dict[str, Any]:
    stop_ids = [identity.get_stop_id(rs.stop) for rs in route.route_stops]
    payload: Dict[str, Any] = {
        "name": route.name,
        "direction": route.direction.value,
        "roadType": route.road_type.value,
        "startStopId": stop_ids[0],
        "endStopId": stop_ids[-1],
        "routeStops": [
            {
                "stopId": stop_id,
                "stopOrder": position,
                "distanceFromStartKm": route_stop.distance_from_start,
            }
            for position, (route_stop, stop_id) in enumerate(zip(route.route_stops, stop_ids))
        ],
    }
    optional = {
        "nameSinhala": route.name_sinhala,
        "nameTamil": route.name_tamil,
        "routeNumber": route.route_number,
        "description": route.description,
        "routeThrough": route.route_through,
        "routeThroughSinhala": route.route_through_sinhala,
        "routeThroughTamil": route.route_through_tamil,
        "distanceKm": route.distance_km,
        "estimatedDurationMinutes": route.estimated_duration_minutes,
    }
    for key, value in optional.items():
        if value not in (None, ""):
            payload[key] = value
    return payload


def build_route_group_request(
    draft: RouteGroupDraft,
    routes: Sequence[RouteDraft],
    identity: IdentityMap,
) -> Dict[str, Any]:
    """Assemble the RouteGroupRequest.

    Raises ``BuildError`` listing every route stop that has no backend id.
    """
    missing = find_unresolved(routes, identity)
    if missing:
        raise BuildError(
            f"{len(missing)} route stop(s) could not be resolved to a stop id", missing
        )

    request: Dict[str, Any] = {
        "name": draft.name,
        "routes": [build_route_payload(route, identity) for route in routes],
    }
    if draft.name_sinhala:
        request["nameSinhala"] = draft.name_sinhala
    if draft.name_tamil:
        request["nameTamil"] = draft.name_tamil
    if draft.description:
        request["description"] = draft.description
    return request


@dataclass
class BuildResult:
    status: PhaseStatusValue
    message: str
    details: List[str] = field(default_factory=list)
    request: Optional[Dict[str, Any]] = None
    route_group: Optional[Dict[str, Any]] = None
    summary: Dict[str, Any] = field(default_factory=dict)
    failure: Optional[SubmissionFailure] = None

    @property
    def route_group_id(self) -> Optional[str]:
        if self.route_group:
            return str(self.route_group.get("id") or "") or None
        return None


class RouteGroupBuilder:
    def __init__(self, repository: RouteGroupRepository) -> None:
        self._repository = repository

    async def build_and_submit(
        self,
        draft: RouteGroupDraft,
        routes: Sequence[RouteDraft],
        identity: IdentityMap,
    ) -> BuildResult:
        try:
            request = build_route_group_request(draft, routes, identity)
        except BuildError as exc:
            print(f"[route_group_builder] build failed: {exc.message}")
            return BuildResult(
                status=PhaseStatusValue.FAILED,
                message=exc.message,
                details=exc.details,
                failure=exc,
            )

        route_count = len(request["routes"])
        stop_count = sum(len(route["routeStops"]) for route in request["routes"])
        details = [
            f"{route['name']} ({route['direction']}): {len(route['routeStops'])} stop(s), "
            f"{route['startStopId']} -> {route['endStopId']}"
            for route in request["routes"]
        ]

        try:
            route_group = await self._repository.create_route_group(request)
        except RouteManagementError as exc:
            message = f"Route group creation failed: {exc}"
            print(f"[route_group_builder] {message}")
            return BuildResult(
                status=PhaseStatusValue.FAILED,
                message=message,
                details=details,
                request=request,
                failure=SubmissionError(message, details),
            )

        route_group_id = ""
        if isinstance(route_group, dict):
            route_group_id = str(route_group.get("id") or "")
        if not route_group_id:
            message = "Route group creation failed: backend returned no route group id"
            print(f"[route_group_builder] {message}")
            return BuildResult(
                status=PhaseStatusValue.FAILED,
                message=message,
                details=details,
                request=request,
                failure=SubmissionError(message, details),
            )

        summary = {
            "route_group_id": route_group_id,
            "route_count": route_count,
            "total_stops": stop_count,
            "new_stops_created": identity.created_count,
        }
        message = (
            f"Created route group {route_group_id} with {route_count} route(s) "
            f"and {stop_count} stop(s)"
        )
        print(f"[route_group_builder] {message}")
        return BuildResult(
            status=PhaseStatusValue.COMPLETED,
            message=message,
            details=details,
            request=request,
            route_group=route_group,
            summary=summary,
        )


__all__ = [
    "IdentityMap",
    "BuildResult",
    "RouteGroupBuilder",
    "find_unresolved",
    "build_route_payload",
    "build_route_group_request",
]
