from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Provenance(str, Enum):
    """Tier that supplied a resource, lowest precedence first."""

    EMBEDDED = "embedded"
    USER = "user"
    LOCAL = "local"


@dataclass(frozen=True, slots=True)
class Resource:
    """A named unit of content plus the tier it came from.

    `name` is hierarchical and slash-separated (`debug/error`). It is the merge
    key: at most one resource per name survives a load.
    """

    name: str
    content: str
    tier: Provenance
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ResourceRoot:
    """A directory registered with the virtual file system."""

    path: Path
    tier: Provenance
