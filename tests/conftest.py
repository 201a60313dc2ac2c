"""Test configuration and fixtures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from toolsmith.core.config import ResourceConfig, RunConfig, ToolkitConfig
from toolsmith.core.toolkit import Toolkit

THREE_STATE = """name: x

[*] --> A
A --> B
B --> [*]
"""

WriteResource = Callable[[Path, str, str, str], Path]


@pytest.fixture
def three_state() -> str:
    """The smallest valid workflow: two states in sequence."""
    return THREE_STATE


@pytest.fixture
def home_dir(tmp_path: Path) -> Path:
    """Provide an isolated home directory for the user tier."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Provide a project directory outside the home directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def write_resource() -> WriteResource:
    """Write `<base>/.toolsmith/<kind>/<name>` and return its path."""

    def _write(base: Path, kind: str, name: str, content: str) -> Path:
        path = base / ".toolsmith" / kind / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def toolkit_config(tmp_path: Path, home_dir: Path) -> ToolkitConfig:
    """Provide a configuration that keeps runs in memory."""
    return ToolkitConfig(
        log_level="DEBUG",
        resources=ResourceConfig(home_dir=home_dir),
        runs=RunConfig(state_path=tmp_path / "runs.json", persist=False),
    )


@pytest.fixture
def toolkit(toolkit_config: ToolkitConfig, project_dir: Path) -> Toolkit:
    return Toolkit(toolkit_config, start_dir=project_dir)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Undo `configure_logging` calls made by CLI tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    package_level = logging.getLogger("toolsmith").level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("toolsmith").setLevel(package_level)
