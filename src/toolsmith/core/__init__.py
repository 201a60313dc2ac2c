"""Core package initialization."""

from toolsmith.core.config import ResourceConfig, RunConfig, ToolkitConfig
from toolsmith.core.toolkit import Toolkit

__all__ = [
    "ResourceConfig",
    "RunConfig",
    "Toolkit",
    "ToolkitConfig",
]
