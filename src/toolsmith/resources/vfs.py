"""Virtual overlay file system for layered resources.

Resources of one kind are accumulated from an embedded bundle and any number of
directories. Roots are scanned in registration order and a later root replaces
an earlier entry with the same name, so callers register tiers lowest
precedence first (embedded, user, local).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path

from toolsmith.errors import ResourceIOError

from .models import Provenance, Resource, ResourceRoot

logger = logging.getLogger(__name__)


class ResourceListing:
    """Restartable view over the merged resources, ordered by name."""

    def __init__(self, resources: dict[str, Resource]) -> None:
        self._resources = resources

    def __iter__(self) -> Iterator[Resource]:
        for name in sorted(self._resources):
            yield self._resources[name]

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, name: object) -> bool:
        return name in self._resources


def strip_extension(filename: str, extensions: Sequence[str]) -> str | None:
    """Remove the longest matching resource extension, or return None."""

    for ext in sorted(extensions, key=len, reverse=True):
        if filename.endswith(ext) and len(filename) > len(ext):
            return filename[: -len(ext)]
    return None


class VirtualFileSystem:
    """Merges embedded resources and directory trees into one name-keyed set."""

    def __init__(self, kind: str, extensions: Iterable[str] = (".md",)) -> None:
        self.kind = kind
        self.extensions: tuple[str, ...] = tuple(extensions)
        self._embedded: dict[str, Resource] = {}
        self._roots: list[ResourceRoot] = []
        self._resources: dict[str, Resource] = {}

    def add_builtin(self, name: str, content: str) -> None:
        """Register (or replace) an embedded resource."""

        self._embedded[name] = Resource(name=name, content=content, tier=Provenance.EMBEDDED)

    add_embedded = add_builtin

    def add_root(self, path: Path, tier: Provenance) -> None:
        self._roots.append(ResourceRoot(path=Path(path), tier=tier))

    @property
    def roots(self) -> list[ResourceRoot]:
        return list(self._roots)

    def load_all(self) -> None:
        """Rebuild the merged set from the embedded bundle and every root.

        Raises:
            ResourceIOError: a registered root exists but cannot be read.
        """

        merged: dict[str, Resource] = dict(self._embedded)

        for root in self._roots:
            for resource in self._scan_root(root):
                previous = merged.get(resource.name)
                if previous is not None and previous.tier != resource.tier:
                    logger.debug(
                        "Resource overridden",
                        extra={
                            "kind": self.kind,
                            "resource": resource.name,
                            "from_tier": previous.tier.value,
                            "to_tier": resource.tier.value,
                        },
                    )
                merged[resource.name] = resource

        self._resources = merged
        logger.debug(
            "Resources loaded",
            extra={"kind": self.kind, "count": len(merged), "roots": len(self._roots)},
        )

    def _scan_root(self, root: ResourceRoot) -> list[Resource]:
        path = root.path
        if not path.exists():
            return []
        if not path.is_dir():
            raise ResourceIOError(f"Resource root is not a directory: {path}")

        try:
            # iterdir raises for unreadable roots; rglob alone skips them silently.
            next(path.iterdir(), None)
            files = sorted(p for p in path.rglob("*") if p.is_file())
        except OSError as e:
            raise ResourceIOError(f"Cannot read resource root {path}: {e}") from e

        seen: dict[str, Path] = {}
        found: list[Resource] = []
        for file in files:
            stem = strip_extension(file.name, self.extensions)
            if stem is None:
                continue
            relative_parent = file.parent.relative_to(path)
            name = (relative_parent / stem).as_posix()
            if name.startswith("./"):
                name = name[2:]

            if name in seen:
                logger.warning(
                    "Duplicate resource name within one root; last scanned wins",
                    extra={"kind": self.kind, "resource": name, "path": str(file)},
                )

            try:
                content = file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ResourceIOError(f"Cannot read resource file {file}: {e}") from e

            seen[name] = file
            found.append(Resource(name=name, content=content, tier=root.tier, path=file))
        return found

    def list(self) -> ResourceListing:
        return ResourceListing(self._resources)

    def get(self, name: str) -> Resource | None:
        return self._resources.get(name)

    def get_directories(self) -> list[Path]:
        """Distinct existing roots in registration order, as absolute paths."""

        out: list[Path] = []
        for root in self._roots:
            if not root.path.is_dir():
                continue
            resolved = root.path.resolve()
            if resolved not in out:
                out.append(resolved)
        return out
