"""
Route Group Submission Orchestrator

Drives one submission attempt of a route group draft through its phases:

    CONFIRMATION -> VALIDATING -> CREATING_STOPS -> BUILDING_ROUTE -> COMPLETED
                         |              |                 |
                         +--------------+-----------------+--> FAILED

- VALIDATING      stop existence resolution (stop_resolver)
- CREATING_STOPS  creation of the stops that do not exist yet (stop_creation);
                  an empty create-list marks the phase ``skipped`` and the
                  attempt still moves on
- BUILDING_ROUTE  identity mapping, payload assembly and the single route
                  group creation call (route_group_builder)

Phases run strictly in sequence; a ``failed`` phase ends the attempt and no
later phase runs. The route group creation call is only ever made after both
earlier phases reported ``completed`` or ``skipped``. There are no retries:
a new attempt starts from CONFIRMATION and re-validates from scratch. Stops
created by a failed attempt stay created; ``SubmissionResult.resolved_stops``
hands them back so the caller can fold them into the draft
(``route_workspace.apply_resolved_stops``).

The draft is read, never modified. Callers should keep it from being edited
while an attempt is running.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from paced_pipeline import PhaseStatusValue
from route_group_builder import BuildResult, IdentityMap, RouteGroupBuilder
from route_management import RouteGroupRepository, StopDirectory, StopRepository
from route_workspace import RouteGroupDraft, StopDraft
from stop_creation import (
    DEFAULT_CREATION_DELAY_S,
    CreatedStop,
    StopCreationExecutor,
    StopCreationResult,
)
from stop_resolver import DEFAULT_LOOKUP_DELAY_S, ResolutionResult, StopExistenceResolver
from submission_errors import (
    CreationError,
    SubmissionError,
    SubmissionFailure,
    ValidationError,
)


class SubmissionPhase(str, Enum):
    CONFIRMATION = "CONFIRMATION"
    VALIDATING = "VALIDATING"
    CREATING_STOPS = "CREATING_STOPS"
    BUILDING_ROUTE = "BUILDING_ROUTE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_PHASES = frozenset({SubmissionPhase.COMPLETED, SubmissionPhase.FAILED})

# phase -> {phase result -> next phase}
_TRANSITIONS: Dict[SubmissionPhase, Dict[PhaseStatusValue, SubmissionPhase]] = {
    SubmissionPhase.CONFIRMATION: {
        PhaseStatusValue.COMPLETED: SubmissionPhase.VALIDATING,
    },
    SubmissionPhase.VALIDATING: {
        PhaseStatusValue.COMPLETED: SubmissionPhase.CREATING_STOPS,
        PhaseStatusValue.FAILED: SubmissionPhase.FAILED,
    },
    SubmissionPhase.CREATING_STOPS: {
        PhaseStatusValue.COMPLETED: SubmissionPhase.BUILDING_ROUTE,
        PhaseStatusValue.SKIPPED: SubmissionPhase.BUILDING_ROUTE,
        PhaseStatusValue.FAILED: SubmissionPhase.FAILED,
    },
    SubmissionPhase.BUILDING_ROUTE: {
        PhaseStatusValue.COMPLETED: SubmissionPhase.COMPLETED,
        PhaseStatusValue.FAILED: SubmissionPhase.FAILED,
    },
}


def next_phase(phase: SubmissionPhase, result: PhaseStatusValue) -> SubmissionPhase:
    """Pure transition function of the submission state machine.

    For CONFIRMATION, ``completed`` stands for the explicit proceed action.
    Raises ``ValueError`` for results a phase cannot produce and for terminal
    phases.
    """
    outcomes = _TRANSITIONS.get(phase)
    if outcomes is None:
        raise ValueError(f"{phase.value} is terminal")
    try:
        return outcomes[result]
    except KeyError:
        raise ValueError(f"{phase.value} cannot end with '{result.value}'") from None


@dataclass
class PhaseStatus:
    status: PhaseStatusValue = PhaseStatusValue.PENDING
    message: str = ""
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": list(self.details),
        }


@dataclass
class SubmissionState:
    phase: SubmissionPhase = SubmissionPhase.CONFIRMATION
    validation: PhaseStatus = field(default_factory=PhaseStatus)
    stop_creation: PhaseStatus = field(default_factory=PhaseStatus)
    route_building: PhaseStatus = field(default_factory=PhaseStatus)
    error: Optional[str] = None
    created_route_group_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "perPhaseStatus": {
                "validation": self.validation.to_dict(),
                "stopCreation": self.stop_creation.to_dict(),
                "routeBuilding": self.route_building.to_dict(),
            },
            "error": self.error,
            "createdRouteGroupId": self.created_route_group_id,
        }


@dataclass
class SubmissionResult:
    """What one attempt hands back to the caller."""
    state: SubmissionState
    resolution: Optional[ResolutionResult] = None
    creation: Optional[StopCreationResult] = None
    build: Optional[BuildResult] = None
    failure: Optional[SubmissionFailure] = None

    @property
    def ok(self) -> bool:
        return self.state.phase == SubmissionPhase.COMPLETED

    @property
    def route_group_id(self) -> Optional[str]:
        return self.state.created_route_group_id

    @property
    def summary(self) -> Dict[str, Any]:
        if self.build is not None:
            return dict(self.build.summary)
        return {}

    @property
    def created_stops(self) -> List[CreatedStop]:
        if self.creation is None:
            return []
        return self.creation.created

    def resolved_stops(self) -> Dict[str, StopDraft]:
        """Local key -> EXISTING stop for everything found or created this attempt."""
        resolved: Dict[str, StopDraft] = {}
        if self.resolution is not None:
            resolved.update(self.resolution.found_stops())
        if self.creation is not None:
            resolved.update(self.creation.created_by_key())
        return resolved


StateListener = Callable[[SubmissionState], None]


class RouteGroupSubmission:
    """One submission of a route group draft.

    Create it when the confirmation view opens, read ``confirmation_summary``
    to present the draft, then await ``proceed()`` once. ``state`` (or the
    ``on_change`` listener) exposes live progress.
    """

    def __init__(
        self,
        draft: RouteGroupDraft,
        directory: StopDirectory,
        stops: StopRepository,
        route_groups: RouteGroupRepository,
        *,
        lookup_delay_s: float = DEFAULT_LOOKUP_DELAY_S,
        creation_delay_s: float = DEFAULT_CREATION_DELAY_S,
        verify_existing: bool = False,
        on_change: Optional[StateListener] = None,
    ) -> None:
        self._draft = draft
        self._resolver = StopExistenceResolver(
            directory, delay_s=lookup_delay_s, verify_existing=verify_existing
        )
        self._executor = StopCreationExecutor(stops, delay_s=creation_delay_s)
        self._builder = RouteGroupBuilder(route_groups)
        self._on_change = on_change
        self._state = SubmissionState()

    @property
    def state(self) -> SubmissionState:
        return self._state

    def snapshot(self) -> SubmissionState:
        return copy.deepcopy(self._state)

    def confirmation_summary(self) -> Dict[str, Any]:
        return self._draft.summary()

    def reset(self) -> None:
        """Forget local progress (closing the submission view).

        In-flight calls are not cancelled and nothing created is undone.
        """
        self._state = SubmissionState()
        self._notify()

    def _notify(self, state: Optional[SubmissionState] = None) -> None:
        # A reset detaches the running attempt's state; only report the live one.
        if state is not None and state is not self._state:
            return
        if self._on_change is not None:
            self._on_change(self.snapshot())

    def _start(self, state: SubmissionState, status: PhaseStatus, message: str) -> None:
        status.status = PhaseStatusValue.IN_PROGRESS
        status.message = message
        status.details = []
        self._notify(state)

    def _finish(
        self,
        state: SubmissionState,
        status: PhaseStatus,
        result: PhaseStatusValue,
        message: str,
        details: List[str],
    ) -> SubmissionPhase:
        status.status = result
        status.message = message
        status.details = list(details)
        state.phase = next_phase(state.phase, result)
        if state.phase == SubmissionPhase.FAILED and state.error is None:
            state.error = message
        self._notify(state)
        return state.phase

    async def proceed(self) -> SubmissionResult:
        state = self._state
        if state.phase != SubmissionPhase.CONFIRMATION:
            raise RuntimeError(
                f"submission already started (phase {state.phase.value}); "
                "start a new attempt from CONFIRMATION"
            )

        draft = self._draft
        print(f"[submission] submitting route group '{draft.name}' ({len(draft.routes)} route(s))")
        state.phase = next_phase(state.phase, PhaseStatusValue.COMPLETED)
        result = SubmissionResult(state=state)

        # Validation
        self._start(state, state.validation, "Checking which stops already exist")
        try:
            resolution = await self._resolver.resolve(draft)
        except Exception as exc:
            print(f"[submission] validation crashed: {exc}")
            message = f"Stop validation failed: {exc}"
            self._finish(state, state.validation, PhaseStatusValue.FAILED, message, [])
            result.failure = ValidationError(message)
            return self._done(result)
        result.resolution = resolution
        phase = self._finish(
            state, state.validation, resolution.status, resolution.message, resolution.details
        )
        if phase == SubmissionPhase.FAILED:
            result.failure = ValidationError(resolution.message, resolution.details)
            return self._done(result)

        # Stop creation
        self._start(
            state,
            state.stop_creation,
            f"Creating {len(resolution.create_list)} new stop(s)",
        )
        try:
            creation = await self._executor.create_all(resolution.create_list)
        except Exception as exc:
            print(f"[submission] stop creation crashed: {exc}")
            message = f"Stop creation failed: {exc}"
            self._finish(state, state.stop_creation, PhaseStatusValue.FAILED, message, [])
            result.failure = CreationError(message)
            return self._done(result)
        result.creation = creation
        phase = self._finish(
            state, state.stop_creation, creation.status, creation.message, creation.details
        )
        if phase == SubmissionPhase.FAILED:
            result.failure = CreationError(creation.message, creation.details)
            return self._done(result)

        # Route building
        self._start(state, state.route_building, "Building and submitting the route group")
        try:
            identity = IdentityMap.from_created(creation.created)
            build = await self._builder.build_and_submit(draft, resolution.routes, identity)
        except Exception as exc:
            print(f"[submission] route building crashed: {exc}")
            message = f"Route group submission failed: {exc}"
            self._finish(state, state.route_building, PhaseStatusValue.FAILED, message, [])
            result.failure = SubmissionError(message)
            return self._done(result)
        result.build = build
        if build.status == PhaseStatusValue.COMPLETED:
            state.created_route_group_id = build.route_group_id
        phase = self._finish(state, state.route_building, build.status, build.message, build.details)
        if phase == SubmissionPhase.FAILED:
            result.failure = build.failure or SubmissionError(build.message, build.details)
        return self._done(result)

    def _done(self, result: SubmissionResult) -> SubmissionResult:
        result.state = copy.deepcopy(result.state)
        if result.ok:
            print(f"[submission] completed: route group {result.route_group_id}")
        else:
            print(f"[submission] failed: {result.state.error}")
        return result


__all__ = [
    "SubmissionPhase",
    "TERMINAL_PHASES",
    "next_phase",
    "PhaseStatus",
    "SubmissionState",
    "SubmissionResult",
    "RouteGroupSubmission",
]
