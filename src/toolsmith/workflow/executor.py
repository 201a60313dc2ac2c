"""Drive workflow runs through a validated definition.

Run lifecycle::

    running -> suspended | completed | cancelled | failed
    suspended -> running | cancelled

Each `advance` moves every occupied state along one transition. Inside a
forked region several states are occupied at once; they are advanced one after
another in a single call, there is no real concurrency. A caller must not
advance the same run from two threads at once.

History records only author states: the Initial pass-through and the arrival at
the Terminal pseudostate are not entries. A run of `[*] --> A --> B --> [*]`
ends with two history entries.

Run-level problems (a state with no satisfied exit, a failing action, a guard
that cannot be evaluated) mark the run `failed` instead of raising.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from toolsmith.errors import (
    ActionError,
    GuardError,
    InvalidStateTransitionError,
    WorkflowValidationError,
)

from .actions import ActionInvoker, BuiltinActionInvoker, RunContext
from .definition import TERMINAL_STATE_ID, State, StateKind, Transition, WorkflowDefinition
from .events import RunEvent, RunEventType, RunListener
from .guards import ExpressionGuardEvaluator, GuardEvaluator
from .validator import Finding, Severity, validate

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


FINISHED_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED})


class RunFailure(BaseModel):
    """Why a run failed, e.g. `StuckState(Review)`."""

    kind: str
    state_id: str | None = None
    message: str = ""

    def __str__(self) -> str:
        text = f"{self.kind}({self.state_id})" if self.state_id else self.kind
        return f"{text}: {self.message}" if self.message else text


class HistoryEntry(BaseModel):
    state_id: str
    entered_at: datetime
    exited_at: datetime | None = None


class WorkflowRun(BaseModel):
    """One execution of a workflow definition."""

    run_id: str
    workflow_name: str
    status: RunStatus = RunStatus.RUNNING
    current_states: list[str] = Field(default_factory=list)
    # Join id -> source states that have arrived while the join waits.
    pending_joins: dict[str, list[str]] = Field(default_factory=dict)
    history: list[HistoryEntry] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    failure: RunFailure | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WorkflowExecutor:
    """Creates runs and moves them through their definition."""

    def __init__(
        self,
        invoker: ActionInvoker | None = None,
        guards: GuardEvaluator | None = None,
        listeners: Iterable[RunListener] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._invoker: ActionInvoker = invoker or BuiltinActionInvoker()
        self._guards: GuardEvaluator = guards or ExpressionGuardEvaluator()
        self._listeners: list[RunListener] = list(listeners)
        self._clock = clock or _utc_now

    # -- lifecycle --------------------------------------------------------

    def start(
        self,
        definition: WorkflowDefinition,
        variables: dict[str, Any] | None = None,
        *,
        run_id: str | None = None,
    ) -> WorkflowRun:
        """Create a run at the Initial state and advance it into the first real state.

        Raises:
            WorkflowValidationError: the definition has Error-severity findings.
        """

        result = validate(definition)
        if result.has_errors:
            raise WorkflowValidationError(definition.name, result.errors)

        initial = definition.initial
        if initial is None:
            missing = Finding(
                Severity.ERROR,
                "no_initial",
                "Workflow has no single initial state",
                workflow=definition.name,
            )
            raise WorkflowValidationError(definition.name, [missing])

        now = self._clock()
        run = WorkflowRun(
            run_id=run_id or uuid.uuid4().hex,
            workflow_name=definition.name,
            current_states=[initial.id],
            variables=dict(variables or {}),
            created_at=now,
            updated_at=now,
        )
        logger.info("Run started", extra={"run_id": run.run_id, "workflow": definition.name})
        self._emit(run, RunEventType.RUN_STARTED)
        return self.advance(definition, run)

    def advance(self, definition: WorkflowDefinition, run: WorkflowRun) -> WorkflowRun:
        """Move every occupied state one step. No-op unless the run is running."""

        if run.workflow_name != definition.name:
            raise ValueError(
                f"Run {run.run_id} belongs to {run.workflow_name!r}, not {definition.name!r}"
            )
        if run.status != RunStatus.RUNNING:
            logger.info(
                "Run not advanced",
                extra={"run_id": run.run_id, "status": run.status.value},
            )
            return run

        snapshot = list(run.current_states)
        progressed = False

        for state_id in snapshot:
            if run.status != RunStatus.RUNNING:
                break

            state = definition.states.get(state_id)
            if state is None:
                self._fail(run, "UnknownState", state_id, "State is not part of the definition")
                break

            if state.kind == StateKind.TERMINAL:
                continue

            if state.kind == StateKind.JOIN and state_id in run.pending_joins:
                if self._join_ready(definition, state_id, snapshot):
                    arrived = run.pending_joins.pop(state_id)
                    logger.debug(
                        "Join fired",
                        extra={"run_id": run.run_id, "state": state_id, "arrived": arrived},
                    )
                    self._enter(run, state)
                    progressed = True
                continue

            if state.kind == StateKind.FORK:
                targets = [t.target for t in definition.outgoing(state_id)]
            else:
                transition = self._select(definition, run, state)
                if run.status != RunStatus.RUNNING:
                    break
                if transition is None:
                    self._fail(
                        run, "StuckState", state_id, "No outgoing transition is satisfied"
                    )
                    break
                targets = [transition.target]

            self._leave(run, state)
            progressed = True
            for target in targets:
                self._arrive(definition, run, state_id, target)
                if run.status != RunStatus.RUNNING:
                    break

        if run.status == RunStatus.RUNNING:
            if run.current_states and all(
                definition.states[s].kind == StateKind.TERMINAL for s in run.current_states
            ):
                self._complete(run)
            elif not progressed:
                # Every occupied state is a join waiting on another waiting join.
                self._fail(
                    run,
                    "Deadlock",
                    None,
                    "Pending joins wait on each other: " + ", ".join(run.current_states),
                )

        run.updated_at = self._clock()
        return run

    def run_until_settled(
        self, definition: WorkflowDefinition, run: WorkflowRun, *, max_steps: int = 1000
    ) -> WorkflowRun:
        """Advance until the run leaves `running` or `max_steps` is exhausted."""

        steps = 0
        while run.status == RunStatus.RUNNING and steps < max_steps:
            self.advance(definition, run)
            steps += 1
        if run.status == RunStatus.RUNNING:
            logger.warning(
                "Run still running after step limit",
                extra={"run_id": run.run_id, "max_steps": max_steps},
            )
        return run

    def suspend(self, run: WorkflowRun) -> WorkflowRun:
        if run.status != RunStatus.RUNNING:
            raise InvalidStateTransitionError(
                f"Cannot suspend run {run.run_id}: status is {run.status.value}"
            )
        run.status = RunStatus.SUSPENDED
        run.updated_at = self._clock()
        self._emit(run, RunEventType.RUN_SUSPENDED)
        return run

    def resume(self, run: WorkflowRun) -> WorkflowRun:
        if run.status != RunStatus.SUSPENDED:
            raise InvalidStateTransitionError(
                f"Cannot resume run {run.run_id}: status is {run.status.value}"
            )
        run.status = RunStatus.RUNNING
        run.updated_at = self._clock()
        self._emit(run, RunEventType.RUN_RESUMED)
        return run

    def cancel(self, run: WorkflowRun) -> WorkflowRun:
        if run.status == RunStatus.CANCELLED:
            return run
        if run.status in FINISHED_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot cancel run {run.run_id}: status is {run.status.value}"
            )
        run.status = RunStatus.CANCELLED
        run.updated_at = self._clock()
        logger.info("Run cancelled", extra={"run_id": run.run_id})
        self._emit(run, RunEventType.RUN_CANCELLED)
        return run

    # -- stepping ---------------------------------------------------------

    def _select(
        self, definition: WorkflowDefinition, run: WorkflowRun, state: State
    ) -> Transition | None:
        """Guarded exits in declaration order, then the unguarded default."""

        default: Transition | None = None
        for t in definition.outgoing(state.id):
            if t.guard is None:
                if default is None:
                    default = t
                continue
            try:
                satisfied = self._guards.evaluate(t.guard, run.variables)
            except GuardError as e:
                self._fail(run, "GuardError", state.id, str(e))
                return None
            if satisfied:
                return t
        return default

    @staticmethod
    def _join_ready(definition: WorkflowDefinition, join_id: str, snapshot: list[str]) -> bool:
        for other in snapshot:
            if other == join_id:
                continue
            other_state = definition.states.get(other)
            if other_state is None or other_state.kind == StateKind.TERMINAL:
                continue
            if definition.can_reach(other, join_id):
                return False
        return True

    def _arrive(
        self, definition: WorkflowDefinition, run: WorkflowRun, source: str, target_id: str
    ) -> None:
        target = definition.states[target_id]

        if target.kind == StateKind.TERMINAL:
            if target_id not in run.current_states:
                run.current_states.append(target_id)
            return

        if target.kind == StateKind.JOIN:
            run.pending_joins.setdefault(target_id, []).append(source)
            if target_id not in run.current_states:
                run.current_states.append(target_id)
            self._emit(
                run,
                RunEventType.JOIN_WAITING,
                target_id,
                {"arrived": list(run.pending_joins[target_id])},
            )
            return

        if target_id not in run.current_states:
            run.current_states.append(target_id)
        self._enter(run, target)

    def _enter(self, run: WorkflowRun, state: State) -> None:
        run.history.append(HistoryEntry(state_id=state.id, entered_at=self._clock()))
        self._emit(run, RunEventType.STATE_ENTERED, state.id)

        context = RunContext(
            run_id=run.run_id,
            workflow_name=run.workflow_name,
            state_id=state.id,
            variables=run.variables,
        )
        for action in state.actions:
            if run.status != RunStatus.RUNNING:
                return
            try:
                result = self._invoker.invoke(action, context)
            except ActionError as e:
                self._fail(run, "ActionFailed", state.id, str(e))
                return
            if not result.ok:
                self._fail(run, "ActionFailed", state.id, result.message)
                return

    def _leave(self, run: WorkflowRun, state: State) -> None:
        if state.id in run.current_states:
            run.current_states.remove(state.id)
        if state.is_pseudo:
            return
        for entry in reversed(run.history):
            if entry.state_id == state.id and entry.exited_at is None:
                entry.exited_at = self._clock()
                break
        self._emit(run, RunEventType.STATE_EXITED, state.id)

    def _complete(self, run: WorkflowRun) -> None:
        run.status = RunStatus.COMPLETED
        run.current_states = [TERMINAL_STATE_ID]
        logger.info("Run completed", extra={"run_id": run.run_id, "workflow": run.workflow_name})
        self._emit(run, RunEventType.RUN_COMPLETED)

    def _fail(self, run: WorkflowRun, kind: str, state_id: str | None, message: str) -> None:
        run.status = RunStatus.FAILED
        run.failure = RunFailure(kind=kind, state_id=state_id, message=message)
        logger.warning(
            "Run failed",
            extra={"run_id": run.run_id, "workflow": run.workflow_name, "reason": str(run.failure)},
        )
        self._emit(run, RunEventType.RUN_FAILED, state_id, {"reason": str(run.failure)})

    def _emit(
        self,
        run: WorkflowRun,
        event_type: RunEventType,
        state_id: str | None = None,
        payload: dict[str, object] | None = None,
    ) -> None:
        if not self._listeners:
            return
        event = RunEvent(
            type=event_type,
            run_id=run.run_id,
            workflow_name=run.workflow_name,
            state_id=state_id,
            payload=payload or {},
        )
        for listener in self._listeners:
            listener(event)
