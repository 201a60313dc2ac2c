"""Layered resource resolution.

Resources are loaded with the precedence::

    embedded  <  user (~/.toolsmith/<kind>)  <  local (./.toolsmith/<kind>, ...)

where `<` means "is overridden by". Local roots are found by walking up from the
starting directory; deeper directories are more specific and win.

A load is fail-closed: every resource is parsed before anything is handed to
the target store, so a single malformed file leaves the store untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Generic, Protocol, TypeVar

from toolsmith.errors import ParseError
from toolsmith.prompts.library import Prompt, PromptLoader
from toolsmith.workflow.definition import WorkflowDefinition
from toolsmith.workflow.parser import parse_workflow

from .builtin import BUILTIN_PROMPTS, BUILTIN_WORKFLOWS
from .models import Provenance, Resource
from .vfs import VirtualFileSystem

logger = logging.getLogger(__name__)

DEFAULT_DIR_NAME = ".toolsmith"
PROMPT_EXTENSIONS: tuple[str, ...] = (".md", ".markdown", ".liquid", ".md.liquid")
WORKFLOW_EXTENSIONS: tuple[str, ...] = (".md", ".mermaid")

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)


class TargetStore(Protocol[T_contra]):
    def add(self, item: T_contra) -> None: ...


@dataclass(slots=True)
class Resolution(Generic[T]):
    """Parsed items of one kind plus their provenance, not yet committed."""

    items: list[T]
    sources: dict[str, Provenance]
    vfs: VirtualFileSystem


def discover_local_roots(
    start_dir: Path, kind: str, *, dir_name: str = DEFAULT_DIR_NAME, exclude: Iterable[Path] = ()
) -> list[Path]:
    """Every `<ancestor>/<dir_name>/<kind>` above `start_dir`, least specific first."""

    excluded = {p.resolve() for p in exclude}
    found: list[Path] = []
    current = start_dir.resolve()
    for directory in (current, *current.parents):
        candidate = directory / dir_name / kind
        if candidate.is_dir() and candidate.resolve() not in excluded:
            found.append(candidate)
    found.reverse()
    return found


class ResourceResolver(Generic[T]):
    """Populates a store from the three tiers and remembers where each item came from."""

    def __init__(
        self,
        kind: str,
        loader: Callable[[str, str], T],
        builtins: Mapping[str, str] | None = None,
        *,
        extensions: Iterable[str] = (".md",),
        home_dir: Path | None = None,
        start_dir: Path | None = None,
        dir_name: str = DEFAULT_DIR_NAME,
    ) -> None:
        self.kind = kind
        self._loader = loader
        self._builtins = dict(builtins or {})
        self._extensions = tuple(extensions)
        self._home_dir = home_dir
        self._start_dir = start_dir
        self._dir_name = dir_name
        self._vfs = VirtualFileSystem(kind, self._extensions)
        self._sources: dict[str, Provenance] = {}

    @property
    def sources(self) -> Mapping[str, Provenance]:
        """Read-only name -> tier map for the last successful load."""

        return MappingProxyType(self._sources)

    @property
    def user_root(self) -> Path:
        home = self._home_dir if self._home_dir is not None else Path.home()
        return home / self._dir_name / self.kind

    def _register_roots(self) -> VirtualFileSystem:
        vfs = VirtualFileSystem(self.kind, self._extensions)
        for name, content in self._builtins.items():
            vfs.add_builtin(name, content)

        user_root = self.user_root
        vfs.add_root(user_root, Provenance.USER)

        start = self._start_dir if self._start_dir is not None else Path.cwd()
        for local in discover_local_roots(
            start, self.kind, dir_name=self._dir_name, exclude=[user_root]
        ):
            vfs.add_root(local, Provenance.LOCAL)
        return vfs

    def resolve(self) -> Resolution[T]:
        """Read and parse every tier without touching this resolver's state.

        Raises:
            ResourceIOError: an existing root could not be read.
            ParseError: a resource failed to parse.
        """

        vfs = self._register_roots()
        vfs.load_all()

        items: list[T] = []
        sources: dict[str, Provenance] = {}
        for resource in vfs.list():
            try:
                item = self._loader(resource.name, resource.content)
            except ParseError as e:
                logger.error(
                    "Resource failed to parse",
                    extra={
                        "kind": self.kind,
                        "resource": resource.name,
                        "tier": resource.tier.value,
                    },
                )
                raise e.with_source(resource=resource.name, tier=resource.tier) from e
            sources[resource.name] = resource.tier
            items.append(item)
        return Resolution(items=items, sources=sources, vfs=vfs)

    def commit(self, resolution: Resolution[T], target_store: TargetStore[T]) -> None:
        """Hand a resolved set to `target_store` and adopt its provenance map."""

        for item in resolution.items:
            target_store.add(item)

        self._vfs = resolution.vfs
        self._sources = dict(resolution.sources)
        logger.info(
            "Resources resolved",
            extra={
                "kind": self.kind,
                "count": len(resolution.sources),
                "directories": [str(p) for p in resolution.vfs.get_directories()],
            },
        )

    def load_all(self, target_store: TargetStore[T]) -> None:
        """Load every tier into `target_store`.

        Raises:
            ResourceIOError: an existing root could not be read.
            ParseError: a resource failed to parse; the store is left untouched.
        """

        self.commit(self.resolve(), target_store)

    def parse(self, resource: Resource) -> T:
        """Parse a single resource, tagging any ParseError with its origin."""

        try:
            return self._loader(resource.name, resource.content)
        except ParseError as e:
            raise e.with_source(resource=resource.name, tier=resource.tier) from e

    def resources(self) -> list[Resource]:
        """Merged resources from the last committed load."""

        return list(self._vfs.list())

    def scan(self) -> list[Resource]:
        """Fresh merged view of every tier, without parsing or committing it."""

        vfs = self._register_roots()
        vfs.load_all()
        return list(vfs.list())

    def directories(self) -> list[Path]:
        """Directories that contribute resources, in precedence order."""

        if not self._vfs.roots:
            self._vfs = self._register_roots()
        return self._vfs.get_directories()


class PromptResolver(ResourceResolver[Prompt]):
    def __init__(
        self,
        *,
        home_dir: Path | None = None,
        start_dir: Path | None = None,
        dir_name: str = DEFAULT_DIR_NAME,
        builtins: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            "prompts",
            PromptLoader().load_from_string,
            BUILTIN_PROMPTS if builtins is None else builtins,
            extensions=PROMPT_EXTENSIONS,
            home_dir=home_dir,
            start_dir=start_dir,
            dir_name=dir_name,
        )


class WorkflowResolver(ResourceResolver[WorkflowDefinition]):
    def __init__(
        self,
        *,
        home_dir: Path | None = None,
        start_dir: Path | None = None,
        dir_name: str = DEFAULT_DIR_NAME,
        builtins: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            "workflows",
            lambda name, text: parse_workflow(text, name=name),
            BUILTIN_WORKFLOWS if builtins is None else builtins,
            extensions=WORKFLOW_EXTENSIONS,
            home_dir=home_dir,
            start_dir=start_dir,
            dir_name=dir_name,
        )
