"""
Stop Creation Executor

Creates every NEW stop on the create-list exactly once, one request at a time
in list order, with a fixed pause between requests. Each stop is validated
locally first; a stop that fails validation is recorded as failed without a
network call. Stops created before a failure stay created: nothing is rolled
back.

The phase hands back the explicit ``{original, created}`` pairs so the route
builder never needs to re-read any shared draft state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from paced_pipeline import ItemFailure, ItemRejected, PhaseItems, PhaseStatusValue, gate, run_paced
from route_management import RouteManagementError, StopRepository
from route_workspace import StopDraft

DEFAULT_CREATION_DELAY_S = 0.5


@dataclass
class CreatedStop:
    original: StopDraft
    created: StopDraft


@dataclass
class StopCreationResult:
    status: PhaseStatusValue
    message: str
    details: List[str] = field(default_factory=list)
    items: PhaseItems[StopDraft, CreatedStop] = field(default_factory=PhaseItems)

    @property
    def created(self) -> List[CreatedStop]:
        return list(self.items.succeeded)

    @property
    def failed(self) -> List[ItemFailure[StopDraft]]:
        return list(self.items.failed)

    def created_by_key(self) -> Dict[str, StopDraft]:
        """Original local key -> created stop."""
        return {pair.original.local_key: pair.created for pair in self.items.succeeded}


def validate_new_stop(stop: StopDraft) -> Optional[str]:
    """Return the reason a stop cannot be sent for creation, or None."""
    if not (stop.name or "").strip():
        return "name is required"
    location = stop.location
    if location is None or not location.latitude or not location.longitude:
        return "location must have non-zero latitude and longitude"
    return None


def build_stop_request(stop: StopDraft) -> Dict[str, Any]:
    """StopRequest payload with every language variant the draft carries."""
    request: Dict[str, Any] = {
        "name": stop.name.strip(),
        "location": stop.location.to_api(),
        "isAccessible": bool(stop.is_accessible),
    }
    if stop.name_sinhala:
        request["nameSinhala"] = stop.name_sinhala
    if stop.name_tamil:
        request["nameTamil"] = stop.name_tamil
    if stop.description:
        request["description"] = stop.description
    return request


class StopCreationExecutor:
    def __init__(
        self,
        repository: StopRepository,
        delay_s: float = DEFAULT_CREATION_DELAY_S,
    ) -> None:
        self._repository = repository
        self._delay_s = delay_s

    async def create_all(self, create_list: Sequence[StopDraft]) -> StopCreationResult:
        if not create_list:
            print("[stop_creation] nothing to create; phase skipped")
            return StopCreationResult(
                status=PhaseStatusValue.SKIPPED,
                message="All stops already exist; no stops to create",
            )

        print(f"[stop_creation] creating {len(create_list)} stop(s)")
        items = await run_paced(list(create_list), self._create_one, delay_s=self._delay_s)
        status = gate(items)

        details = [
            f"Created {pair.original.label()} -> {pair.created.id}" for pair in items.succeeded
        ]
        details.extend(
            f"Failed {failure.item.label()}: {failure.reason}" for failure in items.failed
        )

        if status == PhaseStatusValue.COMPLETED:
            message = f"Created {len(items.succeeded)} new stop(s)"
        else:
            message = (
                f"Stop creation failed: {len(items.succeeded)} created, "
                f"{len(items.failed)} failed"
            )
        print(f"[stop_creation] {message}")
        return StopCreationResult(status=status, message=message, details=details, items=items)

    async def _create_one(self, stop: StopDraft) -> CreatedStop:
        problem = validate_new_stop(stop)
        if problem:
            print(f"[stop_creation] {stop.label()} rejected locally: {problem}")
            raise ItemRejected(problem)

        try:
            created = await self._repository.create_stop(build_stop_request(stop))
        except RouteManagementError as exc:
            print(f"[stop_creation] {stop.label()} rejected by backend: {exc}")
            raise ItemRejected(str(exc)) from exc
        except Exception as exc:
            # Keep going: stops created earlier in the loop must still be reported.
            print(f"[stop_creation] {stop.label()} failed unexpectedly: {exc!r}")
            raise ItemRejected(f"unexpected error: {exc}") from exc

        if not created.id:
            raise ItemRejected("backend returned a stop without an id")
        print(f"[stop_creation] created {stop.label()} as {created.id}")
        return CreatedStop(original=stop, created=created)


__all__ = [
    "DEFAULT_CREATION_DELAY_S",
    "CreatedStop",
    "StopCreationResult",
    "StopCreationExecutor",
    "validate_new_stop",
    "build_stop_request",
]
