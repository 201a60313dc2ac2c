"""Unit tests for the workflow executor.

These tests assert that runs move through their definition one step per
`advance`, that run-level problems are recorded on the run, and that misuse of
suspend/resume/cancel fails loudly.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from toolsmith.errors import ActionError, InvalidStateTransitionError, WorkflowValidationError
from toolsmith.prompts.library import Prompt
from toolsmith.resources.builtin import BUILTIN_WORKFLOWS
from toolsmith.workflow.actions import Action, ActionResult, BuiltinActionInvoker, RunContext
from toolsmith.workflow.definition import (
    TERMINAL_STATE_ID,
    State,
    StateKind,
    WorkflowDefinition,
    WorkflowMetadata,
)
from toolsmith.workflow.events import RunEvent, RunEventType
from toolsmith.workflow.executor import RunStatus, WorkflowExecutor, WorkflowRun
from toolsmith.workflow.parser import parse_workflow
from toolsmith.workflow.validator import ValidationResult


class _FailingInvoker:
    def invoke(self, action: Action, context: RunContext) -> ActionResult:
        raise ActionError(f"cannot run {type(action).__name__} in {context.state_id}")


@pytest.fixture
def three(three_state: str) -> WorkflowDefinition:
    return parse_workflow(three_state)


@pytest.fixture
def executor() -> WorkflowExecutor:
    return WorkflowExecutor(invoker=BuiltinActionInvoker(sleep=lambda _s: None))


def test_three_state_run_completes_after_two_advances(
    executor: WorkflowExecutor, three: WorkflowDefinition
) -> None:
    run = executor.start(three)
    assert run.status == RunStatus.RUNNING
    assert run.current_states == ["A"]

    executor.advance(three, run)
    assert run.current_states == ["B"]
    assert run.status == RunStatus.RUNNING

    executor.advance(three, run)
    assert run.status == RunStatus.COMPLETED
    assert run.current_states == [TERMINAL_STATE_ID]

    # Only author states are recorded; the Initial pass-through is not.
    assert [h.state_id for h in run.history] == ["A", "B"]
    assert all(h.exited_at is not None for h in run.history)


def test_advance_on_completed_run_is_a_noop(
    executor: WorkflowExecutor, three: WorkflowDefinition
) -> None:
    run = executor.run_until_settled(three, executor.start(three))
    assert run.status == RunStatus.COMPLETED

    executor.advance(three, run)
    assert run.status == RunStatus.COMPLETED
    assert len(run.history) == 2


def test_guarded_exit_wins_over_default() -> None:
    definition = parse_workflow(BUILTIN_WORKFLOWS["review-loop"], name="review-loop")
    prompts = {"review/code": Prompt(name="review/code", template="Review {{ diff }}")}
    executor = WorkflowExecutor(invoker=BuiltinActionInvoker(prompt_lookup=prompts.get))

    run = executor.start(definition, {"approved": "yes"})
    executor.run_until_settled(definition, run)

    assert run.status == RunStatus.COMPLETED
    assert [h.state_id for h in run.history] == ["Implement", "Review", "Decide", "Ship"]
    assert run.variables["review"] == "Review {{ diff }}"


def test_default_branch_loops_until_guard_holds() -> None:
    definition = parse_workflow(BUILTIN_WORKFLOWS["review-loop"], name="review-loop")
    prompts = {"review/code": Prompt(name="review/code", template="t")}
    executor = WorkflowExecutor(invoker=BuiltinActionInvoker(prompt_lookup=prompts.get))

    run = executor.start(definition)
    for _ in range(3):
        executor.advance(definition, run)
    assert run.current_states == ["Implement"]
    assert run.status == RunStatus.RUNNING

    run.variables["approved"] = "yes"
    executor.run_until_settled(definition, run)
    assert run.status == RunStatus.COMPLETED


def test_no_satisfied_exit_fails_with_stuck_state(executor: WorkflowExecutor) -> None:
    definition = parse_workflow(
        "name: stuck\n\n[*] --> Check\nstate Check <<choice>>\n"
        "Check --> Done {ready == true}\nDone --> [*]\n"
    )
    run = executor.start(definition)
    executor.advance(definition, run)

    assert run.status == RunStatus.FAILED
    assert run.failure is not None
    assert run.failure.kind == "StuckState"
    assert run.failure.state_id == "Check"
    assert str(run.failure).startswith("StuckState(Check)")


def test_guard_error_fails_the_run(executor: WorkflowExecutor) -> None:
    definition = parse_workflow(
        "name: g\n\n[*] --> A\nA --> B {count > 3}\nA --> [*]\nB --> [*]\n"
    )
    run = executor.start(definition, {"count": "many"})
    executor.advance(definition, run)

    assert run.status == RunStatus.FAILED
    assert run.failure.kind == "GuardError"  # type: ignore[union-attr]


def test_failing_action_fails_the_run() -> None:
    definition = parse_workflow(BUILTIN_WORKFLOWS["hello-world"], name="hello-world")
    executor = WorkflowExecutor(invoker=_FailingInvoker())

    run = executor.start(definition)

    assert run.status == RunStatus.FAILED
    assert run.failure.kind == "ActionFailed"  # type: ignore[union-attr]
    assert run.failure.state_id == "Start"  # type: ignore[union-attr]


def test_unknown_prompt_fails_the_run(executor: WorkflowExecutor) -> None:
    definition = parse_workflow(
        'name: p\n\n[*] --> Ask\nAsk --> [*]\n\n## Actions\n- Ask: Execute prompt "nope"\n'
    )
    run = executor.start(definition)

    assert run.status == RunStatus.FAILED
    assert run.failure.kind == "ActionFailed"  # type: ignore[union-attr]


def test_start_rejects_invalid_definition(executor: WorkflowExecutor) -> None:
    definition = parse_workflow("name: forever\n\n[*] --> A\nA --> B\nB --> A\n")
    with pytest.raises(WorkflowValidationError) as excinfo:
        executor.start(definition)
    assert [f.code for f in excinfo.value.findings] == ["no_terminal"]


def test_fork_and_join_run() -> None:
    definition = parse_workflow(BUILTIN_WORKFLOWS["parallel-checks"], name="parallel-checks")
    events: list[RunEvent] = []
    executor = WorkflowExecutor(listeners=[events.append])

    run = executor.start(definition)
    executor.advance(definition, run)  # Prepare -> Split
    executor.advance(definition, run)  # Split -> Lint, Test
    assert run.current_states == ["Lint", "Test"]

    executor.advance(definition, run)  # both branches arrive at Merge
    assert run.current_states == ["Merge"]
    assert sorted(run.pending_joins["Merge"]) == ["Lint", "Test"]

    executor.advance(definition, run)  # Merge fires
    assert run.pending_joins == {}
    assert run.history[-1].state_id == "Merge"

    executor.run_until_settled(definition, run)
    assert run.status == RunStatus.COMPLETED
    assert [h.state_id for h in run.history] == [
        "Prepare",
        "Split",
        "Lint",
        "Test",
        "Merge",
        "Report",
    ]
    assert run.variables == {"lint": "ok", "tests": "ok"}

    types = [e.type for e in events]
    assert types[0] == RunEventType.RUN_STARTED
    assert types[-1] == RunEventType.RUN_COMPLETED
    assert types.count(RunEventType.JOIN_WAITING) == 2


def test_join_waits_for_slower_branch(executor: WorkflowExecutor) -> None:
    definition = parse_workflow(
        """name: uneven

state F <<fork>>
[*] --> F
F --> Fast
F --> Slow1
Slow1 --> Slow2
Fast --> J
Slow2 --> J
state J <<join>>
J --> [*]
"""
    )
    run = executor.start(definition)
    executor.advance(definition, run)  # F -> Fast, Slow1
    executor.advance(definition, run)  # Fast -> J (waiting), Slow1 -> Slow2
    assert run.current_states == ["J", "Slow2"]
    assert run.pending_joins == {"J": ["Fast"]}

    executor.advance(definition, run)  # J still waits, Slow2 -> J
    assert run.current_states == ["J"]
    assert "J" not in [h.state_id for h in run.history]

    executor.run_until_settled(definition, run)
    assert run.status == RunStatus.COMPLETED
    assert [h.state_id for h in run.history].count("J") == 1


def test_suspend_resume_and_cancel(executor: WorkflowExecutor, three: WorkflowDefinition) -> None:
    run = executor.start(three)

    executor.suspend(run)
    assert run.status == RunStatus.SUSPENDED
    with pytest.raises(InvalidStateTransitionError):
        executor.suspend(run)

    executor.advance(three, run)
    assert run.current_states == ["A"]

    executor.resume(run)
    assert run.status == RunStatus.RUNNING
    with pytest.raises(InvalidStateTransitionError):
        executor.resume(run)

    executor.cancel(run)
    assert run.status == RunStatus.CANCELLED
    assert run.current_states == ["A"]
    executor.cancel(run)
    assert run.status == RunStatus.CANCELLED


def test_cancel_completed_run_is_rejected(
    executor: WorkflowExecutor, three: WorkflowDefinition
) -> None:
    run = executor.run_until_settled(three, executor.start(three))

    with pytest.raises(InvalidStateTransitionError):
        executor.cancel(run)
    assert run.status == RunStatus.COMPLETED


def test_advance_rejects_run_of_other_workflow(
    executor: WorkflowExecutor, three: WorkflowDefinition
) -> None:
    other = parse_workflow(BUILTIN_WORKFLOWS["hello-world"], name="hello-world")
    run = executor.start(three)
    with pytest.raises(ValueError):
        executor.advance(other, run)


def _choice_after_set(assignment: str, guard: str) -> WorkflowDefinition:
    return parse_workflow(
        f"""name: decide

[*] --> A
A --> C
state C <<choice>>
C --> Yes {{{guard}}}
C --> No
Yes --> [*]
No --> [*]

## Actions
- A: Set {assignment}
"""
    )


def test_set_false_takes_the_default_branch(executor: WorkflowExecutor) -> None:
    definition = _choice_after_set("approved=false", "approved")

    run = executor.run_until_settled(definition, executor.start(definition))

    assert run.status == RunStatus.COMPLETED
    assert run.variables == {"approved": "false"}
    assert [h.state_id for h in run.history] == ["A", "C", "No"]


def test_set_true_satisfies_boolean_comparison(executor: WorkflowExecutor) -> None:
    definition = _choice_after_set("ready=true", "ready == true")

    run = executor.run_until_settled(definition, executor.start(definition))

    assert run.status == RunStatus.COMPLETED
    assert [h.state_id for h in run.history] == ["A", "C", "Yes"]


def test_string_variable_compares_with_number(executor: WorkflowExecutor) -> None:
    definition = _choice_after_set("retries=3", "retries >= 3")

    run = executor.run_until_settled(definition, executor.start(definition))

    assert [h.state_id for h in run.history] == ["A", "C", "Yes"]


def test_joins_waiting_on_each_other_deadlock(executor: WorkflowExecutor) -> None:
    definition = parse_workflow(
        """name: knot

state F1 <<fork>>
state F2 <<fork>>
state J2 <<join>>
state J1 <<join>>
[*] --> F1
F1 --> A
F1 --> B
A --> J1
B --> J2
J1 --> J2
J2 --> J1
"""
    )
    now = datetime.now(tz=UTC)
    run = WorkflowRun(
        run_id="r1",
        workflow_name=definition.name,
        current_states=["J1", "J2"],
        pending_joins={"J1": ["A"], "J2": ["B"]},
        created_at=now,
        updated_at=now,
    )

    executor.advance(definition, run)

    assert run.status == RunStatus.FAILED
    assert run.failure is not None
    assert run.failure.kind == "Deadlock"
    assert "J1, J2" in run.failure.message


def test_start_without_initial_state_raises(
    executor: WorkflowExecutor, monkeypatch: pytest.MonkeyPatch
) -> None:
    definition = WorkflowDefinition(
        name="headless",
        metadata=WorkflowMetadata(name="headless"),
        states={"A": State(id="A", kind=StateKind.NORMAL)},
        transitions=(),
    )
    monkeypatch.setattr(
        "toolsmith.workflow.executor.validate", lambda _d: ValidationResult(files_checked=1)
    )

    with pytest.raises(WorkflowValidationError) as excinfo:
        executor.start(definition)
    assert [f.code for f in excinfo.value.findings] == ["no_initial"]
