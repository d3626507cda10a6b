"""Async client for the route-management REST API (stops and route groups)."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx

from route_workspace import StopDraft, stop_from_api

from . import (
    RouteGroupRepository,
    RouteManagementError,
    StopDirectory,
    StopRepository,
)


def _error_message(response: httpx.Response) -> str:
    """Pull the backend's message out of an error response."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    if text:
        return text[:300]
    return response.reason_phrase or "request failed"


class RouteManagementClient(StopDirectory, StopRepository, RouteGroupRepository):
    """Minimal client for the stop existence, stop creation and route group endpoints."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_env(cls) -> "RouteManagementClient":
        """Build a ``RouteManagementClient`` using environment configuration.

        * ``ROUTE_MANAGEMENT_BASE_URL`` - required. Example: ``https://api.example.lk``
        * ``ROUTE_MANAGEMENT_TOKEN`` - optional bearer token.
        * ``ROUTE_MANAGEMENT_TIMEOUT_S`` - optional request timeout, default 15.
        """

        base_url = (os.getenv("ROUTE_MANAGEMENT_BASE_URL") or "").strip()
        token = (os.getenv("ROUTE_MANAGEMENT_TOKEN") or "").strip()
        timeout_raw = (os.getenv("ROUTE_MANAGEMENT_TIMEOUT_S") or "").strip()

        missing: List[str] = []
        if not base_url:
            missing.append("ROUTE_MANAGEMENT_BASE_URL")
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            timeout = float(timeout_raw) if timeout_raw else 15.0
        except ValueError as exc:
            raise RuntimeError(f"Invalid ROUTE_MANAGEMENT_TIMEOUT_S: {timeout_raw!r}") from exc

        return cls(base_url=base_url, token=token or None, timeout=timeout)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._ensure_client()
        try:
            response = await client.request(
                method, path, params=params, json=json, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            print(f"[route_management] {method} {path} failed: {exc}")
            raise RouteManagementError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            print(f"[route_management] {method} {path} -> {response.status_code}: {message}")
            raise RouteManagementError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RouteManagementError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from exc

    async def check_stop_exists(
        self, stop_id: Optional[str] = None, name: Optional[str] = None
    ) -> Optional[StopDraft]:
        """Call ``GET /api/stops/exists``; the id takes precedence over the name."""
        params: Dict[str, str] = {}
        if stop_id:
            params["id"] = stop_id
        elif name:
            params["name"] = name
        else:
            raise ValueError("either stop_id or name is required")

        data = await self._request("GET", "/api/stops/exists", params=params)
        if not isinstance(data, dict):
            raise RouteManagementError("unexpected response from /api/stops/exists")
        stop_payload = data.get("stop")
        if data.get("exists") and isinstance(stop_payload, dict):
            return stop_from_api(stop_payload)
        return None

    async def find_by_id(self, stop_id: str) -> Optional[StopDraft]:
        return await self.check_stop_exists(stop_id=stop_id)

    async def find_by_name(self, name: str) -> Optional[StopDraft]:
        return await self.check_stop_exists(name=name)

    async def create_stop(self, request: Dict[str, Any]) -> StopDraft:
        data = await self._request("POST", "/api/stops", json=request)
        if not isinstance(data, dict) or not data.get("id"):
            raise RouteManagementError("stop created but no id was returned")
        return stop_from_api(data)

    async def create_route_group(self, request: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/api/routes/groups", json=request)
        if not isinstance(data, dict) or not data.get("id"):
            raise RouteManagementError("route group created but no id was returned")
        return data

    async def get_route_group(self, route_group_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/api/routes/groups/{route_group_id}")
        if not isinstance(data, dict):
            raise RouteManagementError("unexpected response for route group")
        return data
