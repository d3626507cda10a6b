"""
Route Management collaborators

This package defines the backend interfaces the route group submission flow
depends on. The HTTP implementation against the route-management REST API
lives in ``route_management.http``; tests substitute in-memory fakes.

Example usage:
    from route_management.http import RouteManagementClient

    client = RouteManagementClient.from_env()
    stop = await client.find_by_name("Kandy Clock Tower")
    # Returns: StopDraft(state=EXISTING, id=...) or None

Interfaces:
    StopDirectory        - existence lookups by id or by (multilingual) name
    StopRepository       - stop creation
    RouteGroupRepository - route group creation
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from route_workspace import StopDraft


class RouteManagementError(RuntimeError):
    """A route-management call failed (HTTP error status or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class StopDirectory(ABC):
    """Read-only stop lookups."""

    @abstractmethod
    async def find_by_id(self, stop_id: str) -> Optional[StopDraft]:
        """
        Look up a stop by its backend id.

        Returns the stop (state EXISTING) or None when no stop has that id.
        Raises RouteManagementError when the lookup itself fails.
        """

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[StopDraft]:
        """
        Look up a stop by name.

        The match is case-insensitive against the English, Sinhala and Tamil
        names. Returns the stop (state EXISTING) or None.
        """


class StopRepository(ABC):
    @abstractmethod
    async def create_stop(self, request: Dict[str, Any]) -> StopDraft:
        """Create a stop from a StopRequest payload and return it with its new id."""


class RouteGroupRepository(ABC):
    @abstractmethod
    async def create_route_group(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Create a route group from a RouteGroupRequest payload.

        Returns the created route group as sent back by the backend; it must
        contain the new ``id``.
        """


__all__ = [
    "RouteManagementError",
    "StopDirectory",
    "StopRepository",
    "RouteGroupRepository",
]
