import asyncio

import pytest

from backend_fakes import FakeBackend, existing_stop, new_stop, route

from paced_pipeline import PhaseStatusValue
from route_group_builder import (
    IdentityMap,
    RouteGroupBuilder,
    build_route_group_request,
    find_unresolved,
)
from route_workspace import Direction, RoadType, RouteGroupDraft
from stop_creation import StopCreationExecutor
from submission_errors import BuildError, SubmissionError


def _draft():
    a = existing_stop("stop-a", "Kandy")
    c = existing_stop("stop-c", "Colombo Fort")
    outbound = route("Kandy to Colombo", Direction.OUTBOUND, [a, new_stop("Kadugannawa"), c])
    outbound.road_type = RoadType.EXPRESSWAY
    outbound.route_through = "Kadugannawa"
    return RouteGroupDraft(name="R138", name_sinhala="R138 (si)", routes=[outbound])


def test_identity_map_prefers_created_ids():
    identity = IdentityMap()
    identity.add_created("kadugannawa", "stop-7")
    assert identity.get_stop_id(new_stop("Kadugannawa")) == "stop-7"
    assert identity.get_stop_id(existing_stop("stop-a", "Kandy")) == "stop-a"
    assert identity.get_stop_id(new_stop("Unknown")) == ""
    assert identity.created_count == 1


def test_identity_map_rejects_conflicting_creations():
    identity = IdentityMap()
    identity.add_created("kandy", "stop-1")
    identity.add_created("kandy", "stop-1")
    with pytest.raises(ValueError):
        identity.add_created("kandy", "stop-2")


def test_request_shape():
    draft = _draft()
    identity = IdentityMap()
    identity.add_created("kadugannawa", "stop-7")

    request = build_route_group_request(draft, draft.routes, identity)

    assert request["name"] == "R138"
    assert request["nameSinhala"] == "R138 (si)"
    payload = request["routes"][0]
    assert payload["direction"] == "OUTBOUND"
    assert payload["roadType"] == "EXPRESSWAY"
    assert payload["routeThrough"] == "Kadugannawa"
    assert payload["routeNumber"] == "138"
    assert payload["startStopId"] == "stop-a"
    assert payload["endStopId"] == "stop-c"
    assert payload["routeStops"] == [
        {"stopId": "stop-a", "stopOrder": 0, "distanceFromStartKm": 0.0},
        {"stopId": "stop-7", "stopOrder": 1, "distanceFromStartKm": 2.5},
        {"stopId": "stop-c", "stopOrder": 2, "distanceFromStartKm": 5.0},
    ]
    assert "description" not in payload


def test_unresolved_stop_fails_the_build():
    draft = _draft()
    missing = find_unresolved(draft.routes, IdentityMap())
    assert missing == ["Route 'Kandy to Colombo (OUTBOUND)' stop #2 'Kadugannawa' has no stop id"]
    with pytest.raises(BuildError) as excinfo:
        build_route_group_request(draft, draft.routes, IdentityMap())
    assert excinfo.value.details == missing


def test_builder_never_calls_backend_with_missing_ids():
    draft = _draft()
    backend = FakeBackend()
    result = asyncio.run(RouteGroupBuilder(backend).build_and_submit(draft, draft.routes, IdentityMap()))
    assert result.status == PhaseStatusValue.FAILED
    assert isinstance(result.failure, BuildError)
    assert backend.calls == []


def test_builder_submits_once_and_summarises():
    draft = _draft()
    backend = FakeBackend()
    identity = IdentityMap()
    identity.add_created("kadugannawa", "stop-7")

    result = asyncio.run(RouteGroupBuilder(backend).build_and_submit(draft, draft.routes, identity))

    assert result.status == PhaseStatusValue.COMPLETED
    assert result.route_group_id == "rg-1"
    assert result.summary == {
        "route_group_id": "rg-1",
        "route_count": 1,
        "total_stops": 3,
        "new_stops_created": 1,
    }
    assert len(backend.calls_named("create_route_group")) == 1
    assert result.details == ["Kandy to Colombo (OUTBOUND): 3 stop(s), stop-a -> stop-c"]


def test_backend_rejection_becomes_submission_error():
    draft = _draft()
    backend = FakeBackend()
    backend.fail_route_group = True
    identity = IdentityMap()
    identity.add_created("kadugannawa", "stop-7")

    result = asyncio.run(RouteGroupBuilder(backend).build_and_submit(draft, draft.routes, identity))

    assert result.status == PhaseStatusValue.FAILED
    assert isinstance(result.failure, SubmissionError)
    assert result.request is not None
    assert result.message == "Route group creation failed: Invalid input data (HTTP 400)"


def test_route_group_without_an_id_is_a_submission_error():
    draft = _draft()
    backend = FakeBackend()
    backend.omit_route_group_id = True
    identity = IdentityMap()
    identity.add_created("kadugannawa", "stop-7")

    result = asyncio.run(RouteGroupBuilder(backend).build_and_submit(draft, draft.routes, identity))

    assert result.status == PhaseStatusValue.FAILED
    assert isinstance(result.failure, SubmissionError)
    assert result.message == "Route group creation failed: backend returned no route group id"
    assert result.route_group_id is None
    assert result.summary == {}
    assert len(backend.calls_named("create_route_group")) == 1


def test_identity_map_from_created_stops():
    draft = _draft()
    created = asyncio.run(
        StopCreationExecutor(FakeBackend(), delay_s=0).create_all([new_stop("Kadugannawa")])
    ).created
    identity = IdentityMap.from_created(created)

    assert identity.created_count == 1
    assert identity.get_stop_id(draft.routes[0].route_stops[1].stop) == "stop-1"
    assert identity.get_stop_id(draft.routes[0].route_stops[0].stop) == "stop-a"
