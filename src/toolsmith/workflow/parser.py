"""Parse workflow documents into `WorkflowDefinition` graphs.

A workflow document is Markdown with a metadata header followed by a
Mermaid-style state diagram and an optional `## Actions` section::

    ---
    name: release
    description: Cut a release
    ---

    ```mermaid
    stateDiagram-v2
        [*] --> Build
        Build --> Check
        state Check <<choice>>
        Check --> Publish : green {tests_passed}
        Check --> Fix
        Fix --> Build
        Publish --> [*]
    ```

    ## Actions

    - Build: Log "building"
    - Publish: Execute prompt "release/notes" version="1.2" -> notes

The header may also be a bare `key: value` block ended by the first blank line.
States are declared by appearing in a transition. Fork/join/choice kinds only
come from `state X <<kind>>` markers; a fork marker opens a parallel region that
the next join marker closes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import yaml

from toolsmith.errors import AmbiguousTransitionError, ParseError

from .actions import Action, LogAction, PromptAction, SetVariableAction, WaitAction
from .definition import (
    INITIAL_STATE_ID,
    TERMINAL_STATE_ID,
    Note,
    ParallelRegion,
    State,
    StateKind,
    Transition,
    WorkflowDefinition,
    WorkflowMetadata,
)

logger = logging.getLogger(__name__)

PSEUDO_STATE = "[*]"

_ID = r"[A-Za-z_][A-Za-z0-9_]*"
_ENDPOINT = rf"(?:\[\*\]|{_ID})"

_TRANSITION_RE = re.compile(
    rf"^(?P<src>{_ENDPOINT})\s*-->\s*(?P<dst>{_ENDPOINT})(?P<rest>.*)$"
)
_MARKER_RE = re.compile(rf"^state\s+(?P<id>{_ID})\s*<<\s*(?P<kind>\w+)\s*>>$")
_ALIAS_RE = re.compile(rf'^state\s+"(?P<desc>[^"]*)"\s+as\s+(?P<id>{_ID})$')
_COMPOSITE_RE = re.compile(r"^state\s+.*\{$")
_DESCRIPTION_RE = re.compile(rf"^(?P<id>{_ID})\s*:\s*(?P<desc>.*)$")
_NOTE_INLINE_RE = re.compile(
    rf"^note\s+(?P<pos>left|right)\s+of\s+(?P<id>{_ID})\s*:\s*(?P<text>.*)$", re.IGNORECASE
)
_NOTE_BLOCK_RE = re.compile(rf"^note\s+(?P<pos>left|right)\s+of\s+(?P<id>{_ID})$", re.IGNORECASE)
_GUARD_RE = re.compile(r"\{([^{}]*)\}")
_HEADING_RE = re.compile(r"^#{1,6}\s+")
_ACTIONS_HEADING_RE = re.compile(r"^#{1,6}\s*actions\s*$", re.IGNORECASE)
_ACTION_ITEM_RE = re.compile(rf"^[-*]\s+(?P<id>{_ID})\s*:\s*(?P<action>.+)$")

_LOG_RE = re.compile(
    r"^log(?:\s+(?P<level>debug|info|warning|warn|error))?\s+(?P<message>.+)$", re.IGNORECASE
)
_SET_RE = re.compile(r"^set\s+(?P<name>[A-Za-z_][\w.]*)\s*=\s*(?P<value>.*)$", re.IGNORECASE)
_WAIT_RE = re.compile(
    r"^wait\s+(?P<amount>\d+(?:\.\d+)?)\s*"
    r"(?P<unit>ms|milliseconds?|s|seconds?|m|minutes?)?$",
    re.IGNORECASE,
)
_PROMPT_RE = re.compile(
    r'^execute\s+prompt\s+"(?P<prompt>[^"]+)"(?P<args>.*?)(?:\s*->\s*(?P<var>[A-Za-z_]\w*))?$',
    re.IGNORECASE,
)
_ARG_RE = re.compile(r'(?P<key>[A-Za-z_]\w*)=(?:"(?P<quoted>[^"]*)"|(?P<bare>\S+))')

_MARKER_KINDS = {
    "choice": StateKind.CHOICE,
    "fork": StateKind.FORK,
    "join": StateKind.JOIN,
}


@dataclass(slots=True)
class _StateDraft:
    id: str
    kind: StateKind
    line: int
    region: str | None = None
    description: str = ""
    actions: list[Action] = field(default_factory=list)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def parse_action(text: str, *, line: int | None = None) -> Action:
    """Parse the right-hand side of an `## Actions` entry."""

    text = text.strip()

    match = _LOG_RE.match(text)
    if match:
        level = (match.group("level") or "info").lower()
        if level == "warn":
            level = "warning"
        return LogAction(message=_unquote(match.group("message")), level=level)

    match = _SET_RE.match(text)
    if match:
        return SetVariableAction(name=match.group("name"), value=_unquote(match.group("value")))

    match = _WAIT_RE.match(text)
    if match:
        amount = float(match.group("amount"))
        unit = (match.group("unit") or "s").lower()
        if unit.startswith("ms") or unit.startswith("milli"):
            amount /= 1000.0
        elif unit.startswith("m"):
            amount *= 60.0
        return WaitAction(seconds=amount)

    match = _PROMPT_RE.match(text)
    if match:
        args_text = match.group("args").strip()
        arguments: dict[str, str] = {}
        consumed = 0
        for arg in _ARG_RE.finditer(args_text):
            if args_text[consumed : arg.start()].strip():
                break
            value = arg.group("quoted")
            arguments[arg.group("key")] = value if value is not None else arg.group("bare")
            consumed = arg.end()
        if args_text[consumed:].strip():
            raise ParseError(
                "Malformed prompt arguments", line=line, token=args_text[consumed:].strip()
            )
        return PromptAction(
            prompt=match.group("prompt"),
            arguments=arguments,
            result_variable=match.group("var") or "result",
        )

    raise ParseError("Unknown action", line=line, token=text)


class DiagramParser:
    """Turns one workflow document into an unvalidated definition."""

    def __init__(self, text: str, resource_name: str | None = None) -> None:
        self.text = text
        self.resource_name = resource_name
        self._lines = text.splitlines()
        self._states: dict[str, _StateDraft] = {}
        self._transitions: list[Transition] = []
        self._regions: list[ParallelRegion] = []
        self._open_forks: list[tuple[str, int]] = []
        self._notes: list[Note] = []
        self._initial_line: int | None = None
        self._note_open = False
        self._fenced = False

    def parse(self) -> WorkflowDefinition:
        metadata, body_start = self._parse_header()
        diagram, actions = self._split_body(body_start)

        for number, line in diagram:
            self._parse_statement(number, line)

        if self._open_forks:
            fork_id, fork_line = self._open_forks[-1]
            raise ParseError("Fork marker has no matching join", line=fork_line, token=fork_id)

        self._check_ambiguous_exits()

        for number, line in actions:
            self._parse_action_line(number, line)

        initial_targets = [t.target for t in self._transitions if t.source == INITIAL_STATE_ID]
        metadata = WorkflowMetadata(
            name=metadata.name,
            description=metadata.description,
            version=metadata.version,
            initial_state=initial_targets[0] if initial_targets else None,
        )

        states = {
            sid: State(
                id=draft.id,
                kind=draft.kind,
                actions=tuple(draft.actions),
                description=draft.description,
                region=draft.region,
            )
            for sid, draft in self._states.items()
        }
        definition = WorkflowDefinition(
            name=self.resource_name or metadata.name,
            metadata=metadata,
            states=states,
            transitions=tuple(self._transitions),
            regions=tuple(self._regions),
            notes=tuple(self._notes),
        )
        logger.debug(
            "Workflow parsed",
            extra={
                "workflow": definition.name,
                "states": len(states),
                "transitions": len(self._transitions),
            },
        )
        return definition

    # -- header -----------------------------------------------------------

    def _parse_header(self) -> tuple[WorkflowMetadata, int]:
        """Return the metadata and the index of the first body line."""

        lines = self._lines
        start = 0
        while start < len(lines) and not lines[start].strip():
            start += 1
        if start >= len(lines):
            raise ParseError("Workflow document is empty", line=1)

        if lines[start].strip() == "---":
            end = start + 1
            while end < len(lines) and lines[end].strip() != "---":
                end += 1
            if end >= len(lines):
                raise ParseError("Metadata header fence is not closed", line=start + 1, token="---")
            header_lines = lines[start + 1 : end]
            header_first_line = start + 2
            body_start = end + 1
        else:
            end = start
            while end < len(lines) and lines[end].strip():
                end += 1
            header_lines = lines[start:end]
            header_first_line = start + 1
            body_start = end

        try:
            raw = yaml.safe_load("\n".join(header_lines))
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            line = header_first_line + mark.line if mark is not None else header_first_line
            raise ParseError(f"Malformed metadata header: {e}", line=line) from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ParseError(
                "Metadata header must be key/value pairs",
                line=header_first_line,
                token=header_lines[0].strip() if header_lines else None,
            )

        name = raw.get("name")
        if name is None or not str(name).strip():
            raise ParseError("Metadata header is missing 'name'", line=header_first_line)

        description = raw.get("description")
        version = raw.get("version")
        metadata = WorkflowMetadata(
            name=str(name).strip(),
            description="" if description is None else str(description).strip(),
            version="1" if version is None else str(version),
        )
        return metadata, body_start

    # -- body -------------------------------------------------------------

    def _split_body(self, body_start: int) -> tuple[list[tuple[int, str]], list[tuple[int, str]]]:
        """Split the body into diagram lines and action lines (1-based numbers)."""

        body = [(i + 1, self._lines[i]) for i in range(body_start, len(self._lines))]

        fence_open: int | None = None
        fence_close: int | None = None
        for idx, (_, line) in enumerate(body):
            stripped = line.strip()
            if fence_open is None and stripped.startswith("```mermaid"):
                fence_open = idx
            elif fence_open is not None and stripped == "```":
                fence_close = idx
                break

        self._fenced = fence_open is not None
        if fence_open is not None:
            if fence_close is None:
                raise ParseError(
                    "Diagram code fence is not closed", line=body[fence_open][0], token="```mermaid"
                )
            diagram = body[fence_open + 1 : fence_close]
            rest = body[fence_close + 1 :]
            actions_at = self._find_actions_heading(rest)
            actions = rest[actions_at + 1 :] if actions_at is not None else []
            return diagram, actions

        actions_at = self._find_actions_heading(body)
        if actions_at is None:
            return body, []
        return body[:actions_at], body[actions_at + 1 :]

    @staticmethod
    def _find_actions_heading(lines: list[tuple[int, str]]) -> int | None:
        for idx, (_, line) in enumerate(lines):
            if _ACTIONS_HEADING_RE.match(line.strip()):
                return idx
        return None

    # -- statements -------------------------------------------------------

    def _parse_statement(self, number: int, raw: str) -> None:
        line = raw.strip()

        if self._note_open:
            if line.lower() == "end note":
                self._note_open = False
            else:
                last = self._notes[-1]
                text = f"{last.text}\n{line}" if last.text else line
                self._notes[-1] = Note(text=text, state_id=last.state_id, position=last.position)
            return

        if not line or line.startswith("%%"):
            return
        if line.startswith("stateDiagram") or line.lower().startswith("direction "):
            return
        if _HEADING_RE.match(line):
            return

        match = _TRANSITION_RE.match(line)
        if match:
            self._parse_transition(number, match)
            return

        match = _MARKER_RE.match(line)
        if match:
            self._parse_marker(number, match.group("id"), match.group("kind"))
            return

        match = _ALIAS_RE.match(line)
        if match:
            self._ensure_state(match.group("id"), number).description = match.group("desc")
            return

        if _COMPOSITE_RE.match(line) or line == "}":
            raise ParseError(
                "Composite states are not supported; use <<fork>>/<<join>> markers",
                line=number,
                token=line,
            )

        match = _NOTE_INLINE_RE.match(line)
        if match:
            self._notes.append(
                Note(
                    text=match.group("text").strip(),
                    state_id=match.group("id"),
                    position=match.group("pos").lower(),
                )
            )
            return

        match = _NOTE_BLOCK_RE.match(line)
        if match:
            self._notes.append(
                Note(text="", state_id=match.group("id"), position=match.group("pos").lower())
            )
            self._note_open = True
            return

        match = _DESCRIPTION_RE.match(line)
        if match:
            # Without a fence, `Word: text` is as likely prose as a state
            # description, so it may only describe a state already declared.
            if not self._fenced and match.group("id") not in self._states:
                raise ParseError(
                    "Description for an undeclared state; declare the state first "
                    "or put the diagram in a ```mermaid fence",
                    line=number,
                    token=line,
                )
            draft = self._ensure_state(match.group("id"), number)
            draft.description = match.group("desc").strip()
            return

        raise ParseError("Unrecognised diagram statement", line=number, token=line)

    def _ensure_state(self, state_id: str, number: int) -> _StateDraft:
        draft = self._states.get(state_id)
        if draft is None:
            region = self._open_forks[-1][0] if self._open_forks else None
            draft = _StateDraft(id=state_id, kind=StateKind.NORMAL, line=number, region=region)
            self._states[state_id] = draft
        return draft

    def _parse_transition(self, number: int, match: re.Match[str]) -> None:
        src = match.group("src")
        dst = match.group("dst")
        rest = match.group("rest").strip()

        guards = _GUARD_RE.findall(rest)
        if len(guards) > 1:
            raise ParseError("Transition has more than one guard", line=number, token=rest)
        guard: str | None = None
        if guards:
            guard = guards[0].strip()
            if not guard:
                raise ParseError("Empty guard expression", line=number, token="{}")
            rest = _GUARD_RE.sub("", rest, count=1).strip()

        label: str | None = None
        if rest.startswith(":"):
            label = rest[1:].strip() or None
        elif rest.startswith("[") and rest.endswith("]"):
            label = rest[1:-1].strip() or None
        elif rest:
            raise ParseError("Unexpected text after transition", line=number, token=rest)

        if src == PSEUDO_STATE:
            if self._initial_line is not None:
                raise ParseError(
                    f"Initial pseudostate [*] already used on line {self._initial_line}",
                    line=number,
                    token=src,
                )
            self._initial_line = number
            source = INITIAL_STATE_ID
            self._ensure_pseudo(INITIAL_STATE_ID, StateKind.INITIAL, number)
        else:
            source = src
            self._ensure_state(src, number)

        if dst == PSEUDO_STATE:
            target = TERMINAL_STATE_ID
            self._ensure_pseudo(TERMINAL_STATE_ID, StateKind.TERMINAL, number)
        else:
            target = dst
            self._ensure_state(dst, number)

        self._transitions.append(
            Transition(source=source, target=target, guard=guard, label=label, line=number)
        )

    def _ensure_pseudo(self, state_id: str, kind: StateKind, number: int) -> None:
        if state_id not in self._states:
            self._states[state_id] = _StateDraft(id=state_id, kind=kind, line=number)

    def _parse_marker(self, number: int, state_id: str, kind_text: str) -> None:
        kind = _MARKER_KINDS.get(kind_text.lower())
        if kind is None:
            raise ParseError("Unknown state marker", line=number, token=f"<<{kind_text}>>")

        draft = self._ensure_state(state_id, number)
        if draft.kind not in (StateKind.NORMAL, kind):
            raise ParseError(
                f"State {state_id} is already declared as {draft.kind.value}",
                line=number,
                token=state_id,
            )
        draft.kind = kind

        if kind == StateKind.FORK:
            self._open_forks.append((state_id, number))
        elif kind == StateKind.JOIN:
            if not self._open_forks:
                raise ParseError("Join marker without an open fork", line=number, token=state_id)
            fork_id, _ = self._open_forks.pop()
            self._regions.append(ParallelRegion(fork=fork_id, join=state_id))
            # The join closes the region it is declared in.
            draft.region = self._open_forks[-1][0] if self._open_forks else None

    def _check_ambiguous_exits(self) -> None:
        unguarded: dict[str, list[Transition]] = {}
        for t in self._transitions:
            if t.guard is None:
                unguarded.setdefault(t.source, []).append(t)

        for state_id, exits in unguarded.items():
            if len(exits) < 2:
                continue
            if self._states[state_id].kind == StateKind.FORK:
                continue
            raise AmbiguousTransitionError(
                f"State {state_id} has {len(exits)} unguarded transitions; "
                "mark it <<fork>> for parallel branches or add guards",
                line=exits[1].line,
                token=state_id,
            )

    # -- actions ----------------------------------------------------------

    def _parse_action_line(self, number: int, raw: str) -> None:
        line = raw.strip()
        if not line or line[0] not in "-*":
            return
        match = _ACTION_ITEM_RE.match(line)
        if match is None:
            raise ParseError("Malformed action entry", line=number, token=line)
        state_id = match.group("id")
        draft = self._states.get(state_id)
        if draft is None or draft.kind in (StateKind.INITIAL, StateKind.TERMINAL):
            raise ParseError("Action refers to an unknown state", line=number, token=state_id)
        draft.actions.append(parse_action(match.group("action"), line=number))


def parse_workflow(text: str, name: str | None = None) -> WorkflowDefinition:
    """Parse a workflow document; `name` overrides the header name as the key."""

    return DiagramParser(text, resource_name=name).parse()
