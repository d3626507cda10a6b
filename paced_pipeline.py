"""Sequential task pipeline with a fixed inter-task delay, plus the phase gate.

Backend calls made on behalf of a submission go through ``run_paced``: items
are processed one at a time, in input order, with ``delay_s`` between
successive tasks. The delay is the back-pressure policy for the backend.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class PhaseStatusValue(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ItemRejected(Exception):
    """Raised by a pipeline task to record a failure for its item.

    Any other exception raised by a task propagates out of ``run_paced``.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class ItemFailure(Generic[T]):
    item: T
    reason: str


@dataclass
class PhaseItems(Generic[T, R]):
    """Per-item outcome of a phase: what succeeded and what failed (with why)."""
    succeeded: List[R] = field(default_factory=list)
    failed: List[ItemFailure[T]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


def gate(items: PhaseItems[Any, Any]) -> PhaseStatusValue:
    """Derive a phase's terminal status from its per-item outcome.

    An empty phase is ``skipped``; any failure makes it ``failed``.
    """
    if items.total == 0:
        return PhaseStatusValue.SKIPPED
    if items.failed:
        return PhaseStatusValue.FAILED
    return PhaseStatusValue.COMPLETED


async def run_paced(
    items: Sequence[T],
    task: Callable[[T], Awaitable[R]],
    delay_s: float = 0.0,
    on_item_done: Optional[Callable[[int, T, Optional[R], Optional[str]], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PhaseItems[T, R]:
    """Run ``task`` for each item strictly one at a time.

    ``delay_s`` is awaited between two successive tasks (not before the first
    nor after the last). A task that raises ``ItemRejected`` records a failure
    for its item and the pipeline moves on to the next item.
    """
    if delay_s < 0:
        raise ValueError("delay_s must be >= 0")

    outcome: PhaseItems[T, R] = PhaseItems()
    for index, item in enumerate(items):
        if index > 0 and delay_s > 0:
            await sleep(delay_s)
        try:
            result = await task(item)
        except ItemRejected as exc:
            outcome.failed.append(ItemFailure(item=item, reason=exc.reason))
            if on_item_done:
                on_item_done(index, item, None, exc.reason)
            continue
        outcome.succeeded.append(result)
        if on_item_done:
            on_item_done(index, item, result, None)
    return outcome


__all__ = [
    "PhaseStatusValue",
    "ItemRejected",
    "ItemFailure",
    "PhaseItems",
    "gate",
    "run_paced",
]
