"""Structural checks for workflow definitions.

Every check runs independently and contributes findings to one
`ValidationResult`, so a caller can report all problems at once. Only
Error-severity findings block a run. Cycles are valid workflow patterns and are
never reported.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .definition import StateKind, WorkflowDefinition


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Finding:
    severity: Severity
    code: str
    message: str
    workflow: str | None = None
    state_id: str | None = None

    def __str__(self) -> str:
        where = self.workflow or "-"
        if self.state_id:
            where = f"{where}:{self.state_id}"
        return f"[{self.severity.value.upper()}] {where}: {self.message}"


@dataclass(slots=True)
class ValidationResult:
    findings: list[Finding] = field(default_factory=list)
    files_checked: int = 0

    def add(
        self,
        severity: Severity,
        code: str,
        message: str,
        *,
        workflow: str | None = None,
        state_id: str | None = None,
    ) -> None:
        self.findings.append(
            Finding(
                severity=severity,
                code=code,
                message=message,
                workflow=workflow,
                state_id=state_id,
            )
        )

    def merge(self, other: ValidationResult) -> None:
        self.findings.extend(other.findings)
        self.files_checked += other.files_checked

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(f.severity == Severity.ERROR for f in self.findings)


def validate(definition: WorkflowDefinition) -> ValidationResult:
    result = ValidationResult(files_checked=1)
    for check in _CHECKS:
        check(definition, result)
    return result


def _error(
    result: ValidationResult,
    d: WorkflowDefinition,
    code: str,
    msg: str,
    state_id: str | None = None,
) -> None:
    result.add(Severity.ERROR, code, msg, workflow=d.name, state_id=state_id)


def _warning(
    result: ValidationResult,
    d: WorkflowDefinition,
    code: str,
    msg: str,
    state_id: str | None = None,
) -> None:
    result.add(Severity.WARNING, code, msg, workflow=d.name, state_id=state_id)


def _check_initial(d: WorkflowDefinition, result: ValidationResult) -> None:
    initials = d.states_of_kind(StateKind.INITIAL)
    if not initials:
        _error(result, d, "no_initial", "Workflow has no initial state ([*] --> X)")
        return
    if len(initials) > 1:
        ids = ", ".join(s.id for s in initials)
        _error(result, d, "multiple_initial", f"Workflow has {len(initials)} initial states: {ids}")
        return

    initial = initials[0]
    exits = d.outgoing(initial.id)
    if len(exits) != 1 or exits[0].guard is not None:
        _error(
            result,
            d,
            "initial_exit",
            "Initial state must have exactly one unguarded outgoing transition",
            initial.id,
        )


def _check_references(d: WorkflowDefinition, result: ValidationResult) -> None:
    for t in d.transitions:
        for endpoint in (t.source, t.target):
            if endpoint not in d.states:
                _error(
                    result,
                    d,
                    "undeclared_state",
                    f"Transition {t.source} --> {t.target} references undeclared state "
                    f"{endpoint}",
                    endpoint,
                )


def _check_reachability(d: WorkflowDefinition, result: ValidationResult) -> None:
    initial = d.initial
    if initial is None:
        return

    reachable = d.reachable_from([initial.id])
    for state in d.states.values():
        if state.id not in reachable and state.kind != StateKind.INITIAL:
            if state.kind == StateKind.TERMINAL:
                continue
            _warning(result, d, "unreachable", f"State {state.id} is unreachable", state.id)

    terminals = {s.id for s in d.states_of_kind(StateKind.TERMINAL)}
    if not terminals & reachable:
        _error(
            result,
            d,
            "no_terminal",
            "No terminal state ([*]) is reachable from the initial state",
        )

    for state in d.states.values():
        if state.kind == StateKind.TERMINAL:
            continue
        if not d.outgoing(state.id) and state.id in reachable:
            _warning(
                result,
                d,
                "dead_end",
                f"State {state.id} has no outgoing transitions",
                state.id,
            )


def _check_exits(d: WorkflowDefinition, result: ValidationResult) -> None:
    for state in d.states.values():
        if state.kind in (StateKind.FORK, StateKind.INITIAL, StateKind.TERMINAL):
            continue
        exits = d.outgoing(state.id)
        unguarded = [t for t in exits if t.guard is None]
        if state.kind == StateKind.CHOICE and not exits:
            _error(result, d, "choice_no_exit", f"Choice {state.id} has no branches", state.id)
        if len(unguarded) > 1:
            what = "Choice" if state.kind == StateKind.CHOICE else "State"
            _error(
                result,
                d,
                "ambiguous_exit",
                f"{what} {state.id} has {len(unguarded)} unguarded transitions; "
                "at most one default branch is allowed",
                state.id,
            )


def _matching_join(d: WorkflowDefinition, fork_id: str, branches: Iterable[str]) -> str | None:
    region = d.region_for_fork(fork_id)
    if region is not None:
        return region.join

    branch_reach = [d.reachable_from([b]) for b in branches]
    if not branch_reach:
        return None
    for join in d.states_of_kind(StateKind.JOIN):
        if all(join.id in reach for reach in branch_reach):
            return join.id
    for join in d.states_of_kind(StateKind.JOIN):
        if join.id in branch_reach[0]:
            return join.id
    return None


def _check_forks(d: WorkflowDefinition, result: ValidationResult) -> None:
    for fork in d.states_of_kind(StateKind.FORK):
        exits = d.outgoing(fork.id)
        if len(exits) < 2:
            _error(
                result,
                d,
                "fork_branches",
                f"Fork {fork.id} needs at least two outgoing transitions",
                fork.id,
            )
        for t in exits:
            if t.guard is not None:
                _error(
                    result,
                    d,
                    "fork_guard",
                    f"Fork {fork.id} branch to {t.target} must not have a guard",
                    fork.id,
                )

        branches = [t.target for t in exits]
        join = _matching_join(d, fork.id, branches)
        if join is None:
            _error(result, d, "fork_no_join", f"Fork {fork.id} has no matching join", fork.id)
            continue
        for branch in branches:
            if not d.can_reach(branch, join):
                _error(
                    result,
                    d,
                    "branch_not_joined",
                    f"Branch {branch} of fork {fork.id} never reaches join {join}",
                    branch,
                )


def _check_joins(d: WorkflowDefinition, result: ValidationResult) -> None:
    for join in d.states_of_kind(StateKind.JOIN):
        incoming = d.incoming(join.id)
        if len(incoming) < 2:
            _error(
                result,
                d,
                "join_incoming",
                f"Join {join.id} needs at least two incoming transitions",
                join.id,
            )
        outgoing = d.outgoing(join.id)
        if len(outgoing) != 1:
            _error(
                result,
                d,
                "join_outgoing",
                f"Join {join.id} must have exactly one outgoing transition",
                join.id,
            )


_CHECKS = (
    _check_initial,
    _check_references,
    _check_reachability,
    _check_exits,
    _check_forks,
    _check_joins,
)
