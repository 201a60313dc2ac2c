from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class RunEventType(str, Enum):
    RUN_STARTED = "run_started"
    STATE_ENTERED = "state_entered"
    STATE_EXITED = "state_exited"
    JOIN_WAITING = "join_waiting"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_SUSPENDED = "run_suspended"
    RUN_RESUMED = "run_resumed"
    RUN_CANCELLED = "run_cancelled"


@dataclass(frozen=True, slots=True)
class RunEvent:
    """A state change emitted by the executor.

    Events are informational: listeners observe runs, they never steer them.
    """

    type: RunEventType
    run_id: str
    workflow_name: str
    state_id: str | None = None
    payload: dict[str, object] = field(default_factory=dict)


RunListener = Callable[[RunEvent], None]
