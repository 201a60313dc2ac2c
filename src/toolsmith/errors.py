"""Error taxonomy shared by resource resolution and the workflow engine.

Resolution errors (`ResourceIOError`, `ParseError`) propagate to the caller and
abort a load. Validation findings are batched in a `ValidationResult`; only
`WorkflowValidationError` turns them into an exception when a run is started.
Run-time failures (stuck states, failing actions) are recorded on the run
itself and are not raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolsmith.resources.models import Provenance
    from toolsmith.workflow.validator import Finding


class ToolsmithError(Exception):
    """Base class for all toolsmith errors."""


class ResourceIOError(ToolsmithError, OSError):
    """A resource root exists but could not be read."""


class ParseError(ToolsmithError, ValueError):
    """Malformed metadata header or diagram syntax."""

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        token: str | None = None,
        resource: str | None = None,
        tier: Provenance | None = None,
    ) -> None:
        self.message = message
        self.line = line
        self.token = token
        self.resource = resource
        self.tier = tier
        super().__init__(str(self))

    def __str__(self) -> str:
        parts: list[str] = []
        if self.resource is not None:
            where = self.resource
            if self.tier is not None:
                where = f"{where} ({self.tier.value})"
            parts.append(where)
        if self.line is not None:
            parts.append(f"line {self.line}")
        prefix = ", ".join(parts)
        text = f"{prefix}: {self.message}" if prefix else self.message
        if self.token:
            text = f"{text} (near {self.token!r})"
        return text

    def with_source(self, *, resource: str, tier: Provenance) -> ParseError:
        """Return a copy of this error tagged with the offending resource."""

        return type(self)(
            self.message, line=self.line, token=self.token, resource=resource, tier=tier
        )


class AmbiguousTransitionError(ParseError):
    """A state has several unguarded exits without an explicit fork marker."""


class WorkflowValidationError(ToolsmithError):
    """A workflow definition has Error-severity findings and cannot run."""

    def __init__(self, workflow: str, findings: Sequence[Finding]) -> None:
        self.workflow = workflow
        self.findings = list(findings)
        summary = "; ".join(f.message for f in self.findings)
        super().__init__(f"Workflow {workflow!r} is invalid: {summary}")


class InvalidStateTransitionError(ToolsmithError):
    """suspend/resume/cancel was requested from an incompatible run status."""


class WorkflowNotFoundError(ToolsmithError, KeyError):
    def __str__(self) -> str:
        return f"Workflow not found: {self.args[0]!r}"


class RunNotFoundError(ToolsmithError, KeyError):
    def __str__(self) -> str:
        return f"Run not found: {self.args[0]!r}"


class GuardError(ToolsmithError):
    """A guard expression could not be parsed or evaluated."""


class ActionError(ToolsmithError):
    """Raised by action invokers that prefer exceptions over failed results."""
