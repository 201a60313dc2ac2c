from __future__ import annotations

import logging

from toolsmith.errors import WorkflowNotFoundError

from .definition import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """In-memory store of parsed workflow definitions.

    Filled once by a resolver and read-only afterwards; a reload builds a new
    registry instead of mutating this one.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}

    def add(self, definition: WorkflowDefinition) -> None:
        if definition.name in self._workflows:
            logger.debug("Replacing workflow", extra={"workflow": definition.name})
        self._workflows[definition.name] = definition

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._workflows[name]
        except KeyError:
            raise WorkflowNotFoundError(name) from None

    def list(self) -> list[WorkflowDefinition]:
        return [self._workflows[name] for name in sorted(self._workflows)]

    def __contains__(self, name: object) -> bool:
        return name in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)
