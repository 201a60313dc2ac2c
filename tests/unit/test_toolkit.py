"""Unit tests for the Toolkit facade."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from toolsmith.core.config import ResourceConfig, RunConfig, ToolkitConfig
from toolsmith.core.toolkit import Toolkit
from toolsmith.errors import ParseError, RunNotFoundError, WorkflowNotFoundError
from toolsmith.resources.models import Provenance
from toolsmith.workflow.executor import RunStatus
from toolsmith.workflow.run_store import JsonRunStore

WriteResource = Callable[[Path, str, str, str], Path]


def test_list_resources_reports_provenance(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource, three_state: str
) -> None:
    write_resource(project_dir, "workflows", "mine.md", three_state)

    workflows = dict(toolkit.list_resources("workflows"))
    assert workflows["mine"] == Provenance.LOCAL
    assert workflows["hello-world"] == Provenance.EMBEDDED

    prompts = dict(toolkit.list_resources("prompts"))
    assert prompts["review/code"] == Provenance.EMBEDDED


def test_unknown_kind_is_rejected(toolkit: Toolkit) -> None:
    with pytest.raises(ValueError, match="Unknown resource kind"):
        toolkit.list_resources("themes")
    with pytest.raises(ValueError):
        toolkit.get_directories("themes")


def test_get_directories(
    toolkit: Toolkit, home_dir: Path, project_dir: Path, write_resource: WriteResource
) -> None:
    write_resource(home_dir, "prompts", "a.md", "a")
    write_resource(project_dir, "prompts", "b.md", "b")

    assert toolkit.get_directories("prompts") == [
        (home_dir / ".toolsmith" / "prompts").resolve(),
        (project_dir / ".toolsmith" / "prompts").resolve(),
    ]
    assert toolkit.get_directories("workflows") == []


def test_reload_swaps_registry(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource, three_state: str
) -> None:
    path = write_resource(project_dir, "workflows", "mine.md", three_state)
    toolkit.load()
    before = toolkit.workflows
    assert "mine" in before

    path.unlink()
    toolkit.reload()

    assert toolkit.workflows is not before
    assert "mine" in before
    assert "mine" not in toolkit.workflows
    with pytest.raises(WorkflowNotFoundError):
        toolkit.get_workflow("mine")


def test_failed_reload_keeps_previous_registry(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource
) -> None:
    toolkit.load()
    before = toolkit.workflows

    write_resource(project_dir, "workflows", "broken.md", "description: no name\n\n[*] --> A\n")
    with pytest.raises(ParseError):
        toolkit.reload()

    assert toolkit.workflows is before


def test_failed_reload_keeps_provenance_in_step_with_content(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource
) -> None:
    toolkit.load()
    embedded_help = toolkit.get_prompt("help")
    assert embedded_help is not None

    write_resource(project_dir, "prompts", "help.md", "Project help\n")
    write_resource(project_dir, "workflows", "bad.md", "description: no name\n\n[*] --> A\n")
    with pytest.raises(ParseError):
        toolkit.reload()

    prompts = dict(toolkit.list_resources("prompts"))
    assert prompts["help"] == Provenance.EMBEDDED
    assert toolkit.get_prompt("help") is embedded_help
    assert "bad" not in dict(toolkit.list_resources("workflows"))


def test_validate_all_does_not_change_loaded_view(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource, three_state: str
) -> None:
    toolkit.load()
    write_resource(project_dir, "workflows", "later.md", three_state)

    result = toolkit.validate_all()

    assert result.files_checked == 4
    assert "later" not in dict(toolkit.list_resources("workflows"))
    with pytest.raises(WorkflowNotFoundError):
        toolkit.get_workflow("later")


def test_validate_all_collects_every_finding(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource
) -> None:
    write_resource(project_dir, "workflows", "broken.md", "name: b\n\n[*] --> A\nA ?? B\n")
    write_resource(project_dir, "workflows", "endless.md", "name: e\n\n[*] --> A\nA --> A\n")

    result = toolkit.validate_all()

    assert result.files_checked == 5
    codes = {(f.workflow, f.code) for f in result.errors}
    assert ("broken", "parse_error") in codes
    assert ("endless", "no_terminal") in codes
    assert not any(f.workflow == "hello-world" for f in result.findings)


def test_run_lifecycle(toolkit: Toolkit) -> None:
    run_id = toolkit.start_run("hello-world", {"who": "tests"})

    run = toolkit.get_run(run_id)
    assert run.current_states == ["Start"]

    toolkit.suspend(run_id)
    assert toolkit.get_run(run_id).status == RunStatus.SUSPENDED
    toolkit.resume(run_id)

    toolkit.advance(run_id)
    assert toolkit.get_run(run_id).current_states == ["Greet"]

    finished = toolkit.run_to_completion(run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.variables == {"who": "tests", "greeting": "Hello from toolsmith"}
    assert [r.run_id for r in toolkit.list_runs()] == [run_id]


def test_get_run_returns_snapshot(toolkit: Toolkit) -> None:
    run_id = toolkit.start_run("hello-world")

    snapshot = toolkit.get_run(run_id)
    snapshot.current_states.clear()

    assert toolkit.get_run(run_id).current_states == ["Start"]


def test_unknown_run_and_workflow(toolkit: Toolkit) -> None:
    with pytest.raises(RunNotFoundError):
        toolkit.get_run("nope")
    with pytest.raises(RunNotFoundError):
        toolkit.cancel("nope")
    with pytest.raises(WorkflowNotFoundError):
        toolkit.start_run("nope")


def test_runs_persist_across_toolkits(home_dir: Path, project_dir: Path, tmp_path: Path) -> None:
    config = ToolkitConfig(
        resources=ResourceConfig(home_dir=home_dir),
        runs=RunConfig(state_path=tmp_path / "runs.json", persist=True),
    )
    first = Toolkit(config, start_dir=project_dir)
    assert isinstance(first.run_store, JsonRunStore)
    run_id = first.start_run("hello-world")

    second = Toolkit(config, start_dir=project_dir)
    run = second.run_to_completion(run_id)

    assert run.status == RunStatus.COMPLETED
    assert second.get_run(run_id).status == RunStatus.COMPLETED


def test_prompt_action_uses_reloaded_library(
    toolkit: Toolkit, project_dir: Path, write_resource: WriteResource
) -> None:
    toolkit.load()
    write_resource(
        project_dir, "prompts", "review/code.md", "---\ntitle: mine\n---\nLocal review\n"
    )
    toolkit.reload()

    run_id = toolkit.start_run("review-loop", {"approved": "yes"})
    run = toolkit.run_to_completion(run_id)

    assert run.status == RunStatus.COMPLETED
    assert run.variables["review"] == "Local review\n"
