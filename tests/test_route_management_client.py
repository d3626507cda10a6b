import asyncio
import json
import os
from typing import Any, Dict, List
from unittest.mock import patch

import httpx
import pytest

from backend_fakes import ROOT_DIR  # noqa: F401

from route_management import RouteManagementError
from route_management.http import RouteManagementClient
from route_workspace import StopState


def _client(handler, token: str = "secret") -> RouteManagementClient:
    return RouteManagementClient(
        base_url="https://routes.example.lk/",
        token=token,
        transport=httpx.MockTransport(handler),
    )


def _run(client: RouteManagementClient, coro):
    async def _inner():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(_inner())


def test_find_by_name_returns_existing_stop():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "exists": True,
                "searchValue": "Kandy",
                "stop": {
                    "id": "stop-a",
                    "name": "Kandy",
                    "nameSinhala": "මහනුවර",
                    "location": {"latitude": 7.29, "longitude": 80.63, "zipCode": "20000"},
                },
            },
        )

    client = _client(handler)
    stop = _run(client, client.find_by_name("Kandy"))

    assert stop is not None
    assert stop.id == "stop-a"
    assert stop.state == StopState.EXISTING
    assert stop.name_sinhala == "මහනුවර"
    assert stop.location.zip_code == "20000"
    assert seen[0].url.path == "/api/stops/exists"
    assert seen[0].url.params["name"] == "Kandy"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_find_by_id_not_found_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["id"] == "missing"
        return httpx.Response(200, json={"exists": False, "searchValue": "missing"})

    client = _client(handler)
    assert _run(client, client.find_by_id("missing")) is None


def test_check_stop_exists_requires_id_or_name():
    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ValueError):
        _run(client, client.check_stop_exists())


def test_create_stop_posts_request_and_maps_response():
    bodies: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/stops"
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(201, json={"id": "stop-9", **body})

    client = _client(handler)
    created = _run(
        client,
        client.create_stop(
            {"name": "Kadugannawa", "location": {"latitude": 7.25, "longitude": 80.52}}
        ),
    )

    assert created.id == "stop-9"
    assert created.is_existing
    assert created.location.latitude == 7.25
    assert bodies[0]["name"] == "Kadugannawa"


def test_backend_conflict_is_wrapped_with_message_and_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"message": "Stop already exists in the same city"})

    client = _client(handler)
    with pytest.raises(RouteManagementError) as excinfo:
        _run(client, client.create_stop({"name": "Kandy", "location": {}}))

    assert excinfo.value.status_code == 409
    assert excinfo.value.message == "Stop already exists in the same city"
    assert "HTTP 409" in str(excinfo.value)


def test_plain_text_error_body_is_used_as_message():
    client = _client(lambda request: httpx.Response(500, text="upstream exploded"))
    with pytest.raises(RouteManagementError) as excinfo:
        _run(client, client.find_by_name("Kandy"))
    assert excinfo.value.message == "upstream exploded"


def test_transport_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(RouteManagementError) as excinfo:
        _run(client, client.find_by_id("stop-a"))
    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)


def test_create_route_group_requires_an_id_in_the_response():
    client = _client(lambda request: httpx.Response(201, json={"name": "R138"}))
    with pytest.raises(RouteManagementError):
        _run(client, client.create_route_group({"name": "R138", "routes": []}))


def test_create_and_fetch_route_group():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/api/routes/groups"
            return httpx.Response(201, json={"id": "rg-1", **json.loads(request.content)})
        assert request.url.path == "/api/routes/groups/rg-1"
        return httpx.Response(200, json={"id": "rg-1", "name": "R138"})

    client = _client(handler, token="")

    async def _flow():
        try:
            created = await client.create_route_group({"name": "R138", "routes": []})
            fetched = await client.get_route_group("rg-1")
            return created, fetched
        finally:
            await client.aclose()

    created, fetched = asyncio.run(_flow())
    assert created["id"] == "rg-1"
    assert fetched["name"] == "R138"


def test_no_authorization_header_without_token():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"exists": False})

    client = _client(handler, token="")
    _run(client, client.find_by_name("Kandy"))
    assert "Authorization" not in seen[0].headers


def test_from_env_requires_base_url():
    with patch.dict(os.environ, {"ROUTE_MANAGEMENT_BASE_URL": ""}, clear=False):
        with pytest.raises(RuntimeError) as excinfo:
            RouteManagementClient.from_env()
    assert "ROUTE_MANAGEMENT_BASE_URL" in str(excinfo.value)


def test_from_env_reads_token_and_timeout():
    env = {
        "ROUTE_MANAGEMENT_BASE_URL": "https://routes.example.lk",
        "ROUTE_MANAGEMENT_TOKEN": "abc",
        "ROUTE_MANAGEMENT_TIMEOUT_S": "3.5",
    }
    with patch.dict(os.environ, env, clear=False):
        client = RouteManagementClient.from_env()
    assert client._token == "abc"
    assert client._timeout == 3.5


def test_from_env_rejects_bad_timeout():
    env = {"ROUTE_MANAGEMENT_BASE_URL": "https://routes.example.lk", "ROUTE_MANAGEMENT_TIMEOUT_S": "soon"}
    with patch.dict(os.environ, env, clear=False):
        with pytest.raises(RuntimeError):
            RouteManagementClient.from_env()


def test_created_stop_with_a_malformed_location_still_maps():
    responses = iter(
        [
            {"id": "stop-1", "name": "Peradeniya", "location": {"latitude": 7.26, "longitude": 80.59}},
            {"id": "stop-2", "name": "Gampola", "location": "Kandy"},
        ]
    )
    client = _client(lambda request: httpx.Response(201, json=next(responses)))

    async def _create_both():
        first = await client.create_stop({"name": "Peradeniya"})
        second = await client.create_stop({"name": "Gampola"})
        return first, second

    first, second = _run(client, _create_both())

    assert first.location.latitude == 7.26
    assert second.id == "stop-2"
    assert second.is_existing
    assert second.location.latitude == 0.0
    assert second.location.city is None
