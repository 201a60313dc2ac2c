"""State entry actions and the invoker capability that runs them.

Actions are a closed set of kinds known at parse time. The executor never
interprets them; it hands each one to an `ActionInvoker` and waits for the
result before advancing.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, Union

if TYPE_CHECKING:
    from toolsmith.prompts.library import Prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LogAction:
    message: str
    level: str = "info"


@dataclass(frozen=True, slots=True)
class SetVariableAction:
    name: str
    value: str


@dataclass(frozen=True, slots=True)
class WaitAction:
    seconds: float


@dataclass(frozen=True, slots=True)
class PromptAction:
    """Hand a resolved prompt to the caller; rendering happens outside the core."""

    prompt: str
    arguments: dict[str, str] = field(default_factory=dict)
    result_variable: str = "result"


Action = Union[LogAction, SetVariableAction, WaitAction, PromptAction]


@dataclass(frozen=True, slots=True)
class ActionResult:
    ok: bool
    message: str
    details: dict[str, object] | None = None


@dataclass(slots=True)
class RunContext:
    """What an action may see of the run it belongs to.

    `variables` is the run's own mapping, so writes are visible to later guards.
    """

    run_id: str
    workflow_name: str
    state_id: str
    variables: dict[str, object]


class ActionInvoker(Protocol):
    """Runs one action; must be safe to call again for caller-driven retries."""

    def invoke(self, action: Action, context: RunContext) -> ActionResult: ...


class BuiltinActionInvoker:
    """Default invoker covering every action kind.

    Prompt actions look the prompt up in the library and store its raw template
    in a run variable. Rendering is left to the template engine.
    """

    def __init__(
        self,
        prompt_lookup: Callable[[str], Prompt | None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._prompt_lookup = prompt_lookup
        self._sleep = sleep

    def invoke(self, action: Action, context: RunContext) -> ActionResult:
        if isinstance(action, LogAction):
            level = logging.getLevelName(action.level.upper())
            if not isinstance(level, int):
                level = logging.INFO
            logger.log(
                level,
                action.message,
                extra={"run_id": context.run_id, "state": context.state_id},
            )
            return ActionResult(ok=True, message="Logged")

        if isinstance(action, SetVariableAction):
            context.variables[action.name] = action.value
            return ActionResult(ok=True, message="Set", details={action.name: action.value})

        if isinstance(action, WaitAction):
            self._sleep(action.seconds)
            return ActionResult(ok=True, message="Waited", details={"seconds": action.seconds})

        if isinstance(action, PromptAction):
            if self._prompt_lookup is None:
                return ActionResult(ok=False, message="No prompt library configured")
            prompt = self._prompt_lookup(action.prompt)
            if prompt is None:
                return ActionResult(ok=False, message=f"Unknown prompt: {action.prompt}")
            context.variables[action.result_variable] = prompt.template
            return ActionResult(
                ok=True,
                message="Prompt resolved",
                details={"prompt": prompt.name, "arguments": dict(action.arguments)},
            )

        raise TypeError(f"Unsupported action: {action!r}")
