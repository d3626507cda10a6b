import pytest

from backend_fakes import existing_stop, new_stop, r138_draft, route

from route_workspace import (
    Direction,
    Location,
    RouteDraft,
    RouteStopDraft,
    StopDraft,
    StopState,
    apply_resolved_stops,
    draft_from_dict,
    draft_from_yaml,
    draft_to_dict,
    draft_to_yaml,
    make_route_stops,
    stop_from_api,
    stop_key,
)


def test_stop_key_normalises_whitespace_and_case():
    assert stop_key("  Kandy   Clock Tower ") == "kandy clock tower"
    assert stop_key("KANDY") == stop_key("kandy")
    assert stop_key(None) == ""


def test_stop_state_invariant():
    assert StopDraft(name="A", state=StopState.EXISTING).invariant_problem() is not None
    assert StopDraft(name="A", id="x", state=StopState.NEW).invariant_problem() is not None
    assert existing_stop("stop-a", "A").invariant_problem() is None
    assert new_stop("B").invariant_problem() is None


def test_summary_counts_distinct_new_stops():
    draft, _backend = r138_draft()
    summary = draft.summary()
    assert summary["route_count"] == 2
    assert summary["total_stops"] == 6
    assert summary["existing_stops"] == 4
    assert summary["new_stop_references"] == 2
    assert summary["distinct_new_stops"] == 1
    assert summary["routes"][1] == {"name": "Colombo to Kandy", "direction": "INBOUND", "stop_count": 3}


def test_order_problem():
    ordered = route("Out", Direction.OUTBOUND, [new_stop("A"), new_stop("B")])
    assert ordered.order_problem() is None
    backwards = RouteDraft(
        name="Back",
        route_stops=[
            RouteStopDraft(order_number=2, stop=new_stop("A")),
            RouteStopDraft(order_number=1, stop=new_stop("B")),
        ],
    )
    assert "strictly increase" in backwards.order_problem()


def test_make_route_stops_checks_distance_count():
    with pytest.raises(ValueError):
        make_route_stops([new_stop("A")], [0.0, 1.0])


def test_route_stops_are_held_by_value():
    shared = new_stop("Kadugannawa")
    first = route("Out", Direction.OUTBOUND, [shared])
    second = route("In", Direction.INBOUND, [shared])
    first.route_stops[0].stop.location.latitude = 1.0
    assert second.route_stops[0].stop.location.latitude == 7.1
    assert shared.location.latitude == 7.1


def test_apply_resolved_stops_returns_a_new_draft():
    draft, _backend = r138_draft()
    created = existing_stop("stop-9", "Kadugannawa")
    updated = apply_resolved_stops(draft, {"kadugannawa": created})

    for updated_route in updated.routes:
        assert updated_route.route_stops[1].stop.id == "stop-9"
        assert updated_route.route_stops[1].stop.is_existing
    assert draft.routes[0].route_stops[1].stop.id == ""


def test_document_round_trip_keeps_state_and_languages():
    draft, _backend = r138_draft()
    document = draft_to_dict(draft)

    group = document["route_group"]
    first_route = group["routes"][0]["route"]
    assert first_route["start_stop_id"] == "stop-a"
    assert first_route["end_stop_id"] == "stop-c"
    stop_types = [entry["route_stop"]["stop_type"] for entry in first_route["route_stops"]]
    assert stop_types == ["S", "I", "E"]
    new_entry = first_route["route_stops"][1]["route_stop"]["stop"]
    assert new_entry["type"] == "new"
    assert new_entry["name_sinhala"] == "Kadugannawa (si)"

    parsed = draft_from_dict(document)
    assert parsed.name == "R138"
    assert parsed.routes[1].direction == Direction.INBOUND
    assert parsed.routes[0].route_stops[1].stop.state == StopState.NEW
    assert parsed.routes[0].route_stops[0].stop.id == "stop-a"
    assert parsed.routes[0].route_stops[2].distance_from_start == 5.0
    assert parsed.routes[0].route_stops[0].stop.location.city == "Kandy"


@pytest.mark.parametrize(
    "document",
    [
        [],
        {},
        {"route_group": {"routes": "nope"}},
        {"route_group": {"routes": [{"not_route": {}}]}},
        {"route_group": {"routes": [{"route": {"route_stops": [{"route_stop": {}}]}}]}},
        {"route_group": {"routes": [{"route": {"direction": "SIDEWAYS"}}]}},
    ],
)
def test_malformed_documents_raise_value_error(document):
    with pytest.raises(ValueError):
        draft_from_dict(document)


def test_stop_from_api_maps_camel_case():
    stop = stop_from_api(
        {
            "id": "stop-1",
            "name": "Kandy",
            "nameTamil": "கண்டி",
            "isAccessible": False,
            "location": {"latitude": "7.29", "longitude": 80.63, "citySinhala": "මහනුවර"},
        }
    )
    assert stop.is_existing
    assert stop.name_tamil == "கண்டி"
    assert stop.is_accessible is False
    assert stop.location.latitude == 7.29
    assert stop.location.city_sinhala == "මහනුවර"


@pytest.mark.parametrize("location", ["Kandy", ["bad"], None, 7.29])
def test_stop_from_api_tolerates_a_malformed_location(location):
    stop = stop_from_api({"id": "stop-9", "name": "Gampola", "location": location})
    assert stop.is_existing
    assert stop.id == "stop-9"
    assert stop.location == Location()


def test_yaml_round_trip_keeps_state_languages_and_distances():
    draft, _backend = r138_draft()
    draft.name_sinhala = "මාර්ග 138"
    draft.routes[0].route_stops[1].stop.name_tamil = "கடுகண்ணாவை"

    text = draft_to_yaml(draft)
    assert text.startswith("route_group:")
    # Non-ASCII names are written as-is, not escaped.
    assert "මාර්ග 138" in text
    assert "கடுகண்ணாவை" in text

    parsed = draft_from_yaml(text)
    assert parsed.name == "R138"
    assert parsed.name_sinhala == "මාර්ග 138"
    assert parsed.routes[1].direction == Direction.INBOUND
    kadugannawa = parsed.routes[0].route_stops[1].stop
    assert kadugannawa.state == StopState.NEW
    assert kadugannawa.name_tamil == "கடுகண்ணாவை"
    assert parsed.routes[0].route_stops[0].stop.id == "stop-a"
    assert [rs.distance_from_start for rs in parsed.routes[0].route_stops] == [0.0, 2.5, 5.0]
    assert draft_to_dict(parsed) == draft_to_dict(draft)


@pytest.mark.parametrize(
    "text",
    [
        "route_group: [",
        "",
        "- just\n- a list\n",
        "route_group:\n  routes: nope\n",
    ],
)
def test_malformed_yaml_raises_value_error(text):
    with pytest.raises(ValueError):
        draft_from_yaml(text)
