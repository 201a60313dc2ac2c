"""toolsmith.

A local-first toolkit for layered prompts and Mermaid-style workflows:
- prompts and workflows resolved from builtin, user and project directories
- a state-diagram parser and structural validator
- an executor for workflow runs with JSON persistence
"""

__version__ = "0.1.0"

from toolsmith.core.config import ToolkitConfig
from toolsmith.core.toolkit import Toolkit

__all__ = ["__version__", "Toolkit", "ToolkitConfig"]
