"""Facade used by the CLI: resolved resources plus workflow runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from toolsmith.core.config import ToolkitConfig
from toolsmith.errors import ParseError, RunNotFoundError
from toolsmith.prompts.library import Prompt, PromptLibrary
from toolsmith.resources.models import Provenance
from toolsmith.resources.resolver import PromptResolver, ResourceResolver, WorkflowResolver
from toolsmith.workflow.actions import BuiltinActionInvoker
from toolsmith.workflow.definition import WorkflowDefinition
from toolsmith.workflow.executor import WorkflowExecutor, WorkflowRun
from toolsmith.workflow.registry import WorkflowRegistry
from toolsmith.workflow.run_store import JsonRunStore, MemoryRunStore, RunStore
from toolsmith.workflow.validator import Severity, ValidationResult, validate

logger = logging.getLogger(__name__)

RESOURCE_KINDS = ("prompts", "workflows")


class Toolkit:
    """Loads prompts and workflows from every tier and drives workflow runs.

    The loaded library and registry are replaced wholesale on `reload()`;
    readers holding the previous objects keep a consistent (if stale) view.
    """

    def __init__(
        self,
        config: ToolkitConfig | None = None,
        *,
        executor: WorkflowExecutor | None = None,
        run_store: RunStore | None = None,
        home_dir: Path | None = None,
        start_dir: Path | None = None,
    ) -> None:
        self.config = config or ToolkitConfig()
        home = home_dir if home_dir is not None else self.config.resources.home_dir
        dir_name = self.config.resources.dir_name

        self._resolvers: dict[str, ResourceResolver[Any]] = {
            "prompts": PromptResolver(home_dir=home, start_dir=start_dir, dir_name=dir_name),
            "workflows": WorkflowResolver(home_dir=home, start_dir=start_dir, dir_name=dir_name),
        }
        self.prompts = PromptLibrary()
        self.workflows = WorkflowRegistry()
        self._loaded = False

        if run_store is not None:
            self.run_store: RunStore = run_store
        elif self.config.runs.persist:
            self.run_store = JsonRunStore(self.config.runs.state_path)
        else:
            self.run_store = MemoryRunStore()

        self.executor = executor or WorkflowExecutor(
            invoker=BuiltinActionInvoker(prompt_lookup=self._lookup_prompt)
        )

    # -- resources --------------------------------------------------------

    def load(self) -> None:
        """Resolve prompts and workflows and swap them in.

        Raises:
            ResourceIOError: a resource directory exists but is unreadable.
            ParseError: any resource is malformed; the previous state is kept,
                provenance included.
        """

        # Resolve every kind before committing any, so a failure in one kind
        # leaves both stores and both provenance maps as they were.
        prompt_set = self._resolvers["prompts"].resolve()
        workflow_set = self._resolvers["workflows"].resolve()

        prompts = PromptLibrary()
        workflows = WorkflowRegistry()
        self._resolvers["prompts"].commit(prompt_set, prompts)
        self._resolvers["workflows"].commit(workflow_set, workflows)

        self.prompts = prompts
        self.workflows = workflows
        self._loaded = True
        logger.info(
            "Toolkit loaded",
            extra={"prompts": len(prompts), "workflows": len(workflows)},
        )

    reload = load

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _resolver(self, kind: str) -> ResourceResolver[Any]:
        try:
            return self._resolvers[kind]
        except KeyError:
            raise ValueError(
                f"Unknown resource kind {kind!r}; expected one of {', '.join(RESOURCE_KINDS)}"
            ) from None

    def _lookup_prompt(self, name: str) -> Prompt | None:
        return self.prompts.get(name)

    def list_resources(self, kind: str) -> list[tuple[str, Provenance]]:
        resolver = self._resolver(kind)
        self._ensure_loaded()
        return sorted(resolver.sources.items())

    def get_directories(self, kind: str) -> list[Path]:
        return self._resolver(kind).directories()

    def get_prompt(self, name: str) -> Prompt | None:
        self._ensure_loaded()
        return self.prompts.get(name)

    def get_workflow(self, name: str) -> WorkflowDefinition:
        self._ensure_loaded()
        return self.workflows.get(name)

    def validate_all(self, kind: str = "workflows") -> ValidationResult:
        """Check every resource of `kind`, collecting findings instead of stopping.

        Parse errors become Error findings; workflows that parse are also run
        through the structural validator.
        """

        resolver = self._resolver(kind)
        result = ValidationResult()
        for resource in resolver.scan():
            try:
                item = resolver.parse(resource)
            except ParseError as e:
                result.files_checked += 1
                result.add(Severity.ERROR, "parse_error", str(e), workflow=resource.name)
                continue

            if isinstance(item, WorkflowDefinition):
                result.merge(validate(item))
            else:
                result.files_checked += 1

        logger.info(
            "Validation finished",
            extra={
                "kind": kind,
                "files_checked": result.files_checked,
                "errors": len(result.errors),
                "warnings": len(result.warnings),
            },
        )
        return result

    # -- runs -------------------------------------------------------------

    def _get_stored_run(self, run_id: str) -> WorkflowRun:
        run = self.run_store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def start_run(self, workflow_name: str, variables: dict[str, Any] | None = None) -> str:
        definition = self.get_workflow(workflow_name)
        run = self.executor.start(definition, variables)
        self.run_store.put(run)
        return run.run_id

    def advance(self, run_id: str) -> WorkflowRun:
        run = self._get_stored_run(run_id)
        definition = self.get_workflow(run.workflow_name)
        self.executor.advance(definition, run)
        self.run_store.put(run)
        return run

    def run_to_completion(self, run_id: str, max_steps: int | None = None) -> WorkflowRun:
        run = self._get_stored_run(run_id)
        definition = self.get_workflow(run.workflow_name)
        limit = max_steps if max_steps is not None else self.config.runs.max_steps
        self.executor.run_until_settled(definition, run, max_steps=limit)
        self.run_store.put(run)
        return run

    def suspend(self, run_id: str) -> WorkflowRun:
        run = self.executor.suspend(self._get_stored_run(run_id))
        self.run_store.put(run)
        return run

    def resume(self, run_id: str) -> WorkflowRun:
        run = self.executor.resume(self._get_stored_run(run_id))
        self.run_store.put(run)
        return run

    def cancel(self, run_id: str) -> WorkflowRun:
        run = self.executor.cancel(self._get_stored_run(run_id))
        self.run_store.put(run)
        return run

    def get_run(self, run_id: str) -> WorkflowRun:
        return self._get_stored_run(run_id).model_copy(deep=True)

    def list_runs(self) -> list[WorkflowRun]:
        return self.run_store.list()
