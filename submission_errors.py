"""Failure taxonomy for route group submissions."""
from __future__ import annotations

from typing import List, Optional


class SubmissionFailure(Exception):
    """Terminal failure of one submission phase.

    ``details`` holds the per-item lines the phase collected.
    """

    phase: str = ""

    def __init__(self, message: str, details: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class ValidationError(SubmissionFailure):
    """A route has no stops, the draft is malformed, or an existence check errored."""

    phase = "validation"


class CreationError(SubmissionFailure):
    """A stop failed local validation or was rejected by the backend."""

    phase = "stopCreation"


class BuildError(SubmissionFailure):
    """A route stop could not be resolved to a backend id."""

    phase = "routeBuilding"


class SubmissionError(SubmissionFailure):
    """The route group creation call failed."""

    phase = "routeBuilding"
