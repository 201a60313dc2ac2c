"""Static workflow graph produced by the diagram parser."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .actions import Action

INITIAL_STATE_ID = "[*]start"
TERMINAL_STATE_ID = "[*]end"


class StateKind(str, Enum):
    NORMAL = "normal"
    CHOICE = "choice"
    FORK = "fork"
    JOIN = "join"
    INITIAL = "initial"
    TERMINAL = "terminal"


@dataclass(frozen=True, slots=True)
class State:
    id: str
    kind: StateKind = StateKind.NORMAL
    actions: tuple[Action, ...] = ()
    description: str = ""
    # Fork id of the innermost parallel region the state was declared in.
    region: str | None = None

    @property
    def is_pseudo(self) -> bool:
        return self.kind in (StateKind.INITIAL, StateKind.TERMINAL)


@dataclass(frozen=True, slots=True)
class Transition:
    source: str
    target: str
    guard: str | None = None
    label: str | None = None
    line: int | None = None


@dataclass(frozen=True, slots=True)
class ParallelRegion:
    fork: str
    join: str


@dataclass(frozen=True, slots=True)
class Note:
    """Diagram annotation; kept for documentation, ignored by execution."""

    text: str
    state_id: str | None = None
    position: str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowMetadata:
    name: str
    description: str = ""
    version: str = "1"
    initial_state: str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    name: str
    metadata: WorkflowMetadata
    states: dict[str, State]
    transitions: tuple[Transition, ...]
    regions: tuple[ParallelRegion, ...] = ()
    notes: tuple[Note, ...] = ()
    _successors: dict[str, tuple[str, ...]] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        succ: dict[str, list[str]] = {}
        for t in self.transitions:
            targets = succ.setdefault(t.source, [])
            if t.target not in targets:
                targets.append(t.target)
        self._successors.update({k: tuple(v) for k, v in succ.items()})

    def state(self, state_id: str) -> State:
        return self.states[state_id]

    def named_states(self) -> dict[str, State]:
        """States declared by the author, without the Initial/Terminal pseudostates."""

        return {sid: s for sid, s in self.states.items() if not s.is_pseudo}

    def states_of_kind(self, kind: StateKind) -> list[State]:
        return [s for s in self.states.values() if s.kind == kind]

    @property
    def initial(self) -> State | None:
        initials = self.states_of_kind(StateKind.INITIAL)
        return initials[0] if len(initials) == 1 else None

    def outgoing(self, state_id: str) -> list[Transition]:
        return [t for t in self.transitions if t.source == state_id]

    def incoming(self, state_id: str) -> list[Transition]:
        return [t for t in self.transitions if t.target == state_id]

    def successors(self, state_id: str) -> tuple[str, ...]:
        return self._successors.get(state_id, ())

    def reachable_from(self, starts: Iterable[str]) -> set[str]:
        """All state ids reachable from `starts` (inclusive) along transitions."""

        seen: set[str] = set()
        queue = deque(starts)
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.successors(current))
        return seen

    def can_reach(self, source: str, target: str) -> bool:
        return target in self.reachable_from([source])

    def region_for_fork(self, fork_id: str) -> ParallelRegion | None:
        for region in self.regions:
            if region.fork == fork_id:
                return region
        return None
