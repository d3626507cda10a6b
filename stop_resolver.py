"""
Stop Existence Resolver

Classifies every stop reference of a route group draft against the stop
directory before anything is created:

- FOUND      the stop exists; the directory's record becomes authoritative
- NOT_FOUND  the stop must be created
- ERROR      the stop could not be checked (no id/name, or the lookup failed)

Lookup rules:
- A stop marked EXISTING with an id is trusted as-is unless the resolver is
  built with ``verify_existing=True``, in which case it is looked up by id.
- Any other stop carrying an id is looked up by id. If the directory does not
  know the id, the stop is NOT_FOUND and its annotated copy loses the id.
- Otherwise the stop is looked up by name (English/Sinhala/Tamil,
  case-insensitive on the directory side).

A route with no stops fails validation for the whole draft before any lookup
is made. ERROR results fail the phase too, but only after every other stop
has been classified so the caller sees the complete picture.

NOT_FOUND stops sharing a name (after ``stop_key`` normalisation) produce a
single create-list entry; the first occurrence supplies the stop's data.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from paced_pipeline import PhaseStatusValue, run_paced
from route_management import RouteManagementError, StopDirectory
from route_workspace import RouteDraft, RouteGroupDraft, RouteStopDraft, StopDraft

DEFAULT_LOOKUP_DELAY_S = 0.1


class ExistenceOutcome(str, Enum):
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"


@dataclass
class ExistenceResult:
    """Existence check outcome for one route stop."""
    route_index: int
    stop_index: int
    route_stop: RouteStopDraft
    outcome: ExistenceOutcome
    searched_by: str  # "id", "name", "draft" (trusted) or "" (not searchable)
    search_value: str = ""
    stop: Optional[StopDraft] = None  # authoritative stop when FOUND
    message: Optional[str] = None  # error text when ERROR

    @property
    def local_key(self) -> str:
        return self.route_stop.stop.local_key

    def annotated_stop(self) -> StopDraft:
        original = self.route_stop.stop
        if self.outcome == ExistenceOutcome.FOUND and self.stop is not None:
            return replace(self.stop, location=copy.copy(self.stop.location))
        if self.outcome == ExistenceOutcome.NOT_FOUND:
            return original.as_new()
        return replace(original, location=copy.copy(original.location))

    def describe(self) -> str:
        label = self.route_stop.stop.label()
        problem = self.route_stop.stop.invariant_problem()
        if problem:
            label = f"{label} ({problem})"
        if self.outcome == ExistenceOutcome.FOUND:
            found_id = self.stop.id if self.stop is not None else ""
            return f"{label}: existing ({found_id})"
        if self.outcome == ExistenceOutcome.NOT_FOUND:
            return f"{label}: new"
        return f"{label}: error - {self.message}"


@dataclass
class ResolutionResult:
    """Output of the validation phase."""
    status: PhaseStatusValue
    message: str
    details: List[str] = field(default_factory=list)
    results: List[ExistenceResult] = field(default_factory=list)
    routes: List[RouteDraft] = field(default_factory=list)
    create_list: List[StopDraft] = field(default_factory=list)

    def _count(self, outcome: ExistenceOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def found_count(self) -> int:
        return self._count(ExistenceOutcome.FOUND)

    @property
    def not_found_count(self) -> int:
        return self._count(ExistenceOutcome.NOT_FOUND)

    @property
    def error_count(self) -> int:
        return self._count(ExistenceOutcome.ERROR)

    @property
    def ok(self) -> bool:
        return self.status == PhaseStatusValue.COMPLETED

    def found_stops(self) -> Dict[str, StopDraft]:
        """Local key -> authoritative stop, for every FOUND result."""
        found: Dict[str, StopDraft] = {}
        for result in self.results:
            if result.outcome == ExistenceOutcome.FOUND and result.stop is not None:
                key = result.local_key
                if key and key not in found:
                    found[key] = result.stop
        return found


def structural_problems(draft: RouteGroupDraft) -> List[str]:
    """Problems that stop a draft from being checked at all."""
    problems: List[str] = []
    if not draft.routes:
        problems.append(f"Route group '{draft.name}' has no routes")
        return problems
    for route in draft.routes:
        if not route.route_stops:
            problems.append(f"Route '{route.label()}' has no stops")
            continue
        order_problem = route.order_problem()
        if order_problem:
            problems.append(order_problem)
    return problems


class StopExistenceResolver:
    def __init__(
        self,
        directory: StopDirectory,
        delay_s: float = DEFAULT_LOOKUP_DELAY_S,
        verify_existing: bool = False,
    ) -> None:
        self._directory = directory
        self._delay_s = delay_s
        self._verify_existing = verify_existing

    async def resolve(self, draft: RouteGroupDraft) -> ResolutionResult:
        problems = structural_problems(draft)
        if problems:
            print(f"[stop_resolver] draft rejected: {'; '.join(problems)}")
            return ResolutionResult(
                status=PhaseStatusValue.FAILED,
                message=problems[0],
                details=problems,
                routes=[route.copy() for route in draft.routes],
            )

        results: Dict[Tuple[int, int], ExistenceResult] = {}
        to_check: List[Tuple[int, int, RouteStopDraft]] = []

        for route_index, stop_index, route_stop in draft.iter_route_stops():
            stop = route_stop.stop
            if stop.is_existing and not self._verify_existing:
                results[(route_index, stop_index)] = ExistenceResult(
                    route_index=route_index,
                    stop_index=stop_index,
                    route_stop=route_stop.copy(),
                    outcome=ExistenceOutcome.FOUND,
                    searched_by="draft",
                    search_value=stop.id,
                    stop=replace(stop, location=copy.copy(stop.location)),
                )
            elif not stop.id.strip() and not stop.name.strip():
                results[(route_index, stop_index)] = ExistenceResult(
                    route_index=route_index,
                    stop_index=stop_index,
                    route_stop=route_stop.copy(),
                    outcome=ExistenceOutcome.ERROR,
                    searched_by="",
                    message="Stop has no ID or name to search",
                )
            else:
                to_check.append((route_index, stop_index, route_stop))

        if to_check:
            print(f"[stop_resolver] checking {len(to_check)} stop(s) against the directory")
        checked = await run_paced(to_check, self._check, delay_s=self._delay_s)
        for result in checked.succeeded:
            results[(result.route_index, result.stop_index)] = result

        ordered = [results[key] for key in sorted(results)]
        return self._summarise(draft, ordered)

    async def _check(self, entry: Tuple[int, int, RouteStopDraft]) -> ExistenceResult:
        route_index, stop_index, route_stop = entry
        stop = route_stop.stop
        stop_id = stop.id.strip()
        if stop_id:
            searched_by, search_value = "id", stop_id
        else:
            searched_by, search_value = "name", stop.name.strip()

        base = dict(
            route_index=route_index,
            stop_index=stop_index,
            route_stop=route_stop.copy(),
            searched_by=searched_by,
            search_value=search_value,
        )
        try:
            if searched_by == "id":
                found = await self._directory.find_by_id(search_value)
            else:
                found = await self._directory.find_by_name(search_value)
        except RouteManagementError as exc:
            print(f"[stop_resolver] lookup by {searched_by} '{search_value}' failed: {exc}")
            return ExistenceResult(outcome=ExistenceOutcome.ERROR, message=str(exc), **base)
        except Exception as exc:
            print(f"[stop_resolver] lookup by {searched_by} '{search_value}' crashed: {exc!r}")
            return ExistenceResult(
                outcome=ExistenceOutcome.ERROR, message=f"unexpected error: {exc}", **base
            )

        if found is not None and found.id:
            return ExistenceResult(outcome=ExistenceOutcome.FOUND, stop=found, **base)
        return ExistenceResult(outcome=ExistenceOutcome.NOT_FOUND, **base)

    def _summarise(
        self, draft: RouteGroupDraft, results: List[ExistenceResult]
    ) -> ResolutionResult:
        routes = [route.copy() for route in draft.routes]
        for result in results:
            routes[result.route_index].route_stops[result.stop_index].stop = result.annotated_stop()

        create_list: List[StopDraft] = []
        seen: Dict[str, StopDraft] = {}
        details: List[str] = []
        for result in results:
            route = draft.routes[result.route_index]
            details.append(f"{route.label()} #{result.stop_index + 1} {result.describe()}")
            if result.outcome != ExistenceOutcome.NOT_FOUND:
                continue
            key = result.local_key
            if key in seen:
                continue
            new_stop = result.annotated_stop()
            seen[key] = new_stop
            create_list.append(new_stop)

        resolution = ResolutionResult(
            status=PhaseStatusValue.COMPLETED,
            message="",
            details=details,
            results=results,
            routes=routes,
            create_list=create_list,
        )
        if resolution.error_count:
            resolution.status = PhaseStatusValue.FAILED
            resolution.message = (
                f"{resolution.error_count} of {len(results)} stop(s) could not be checked"
            )
        else:
            resolution.message = (
                f"Checked {len(results)} stop(s): {resolution.found_count} existing, "
                f"{resolution.not_found_count} new ({len(create_list)} to create)"
            )
        print(f"[stop_resolver] {resolution.message}")
        return resolution


__all__ = [
    "DEFAULT_LOOKUP_DELAY_S",
    "ExistenceOutcome",
    "ExistenceResult",
    "ResolutionResult",
    "StopExistenceResolver",
    "structural_problems",
]
