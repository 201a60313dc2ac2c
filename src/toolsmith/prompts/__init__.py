"""Prompt library package initialization."""

from toolsmith.prompts.library import Prompt, PromptLibrary, PromptLoader

__all__ = [
    "Prompt",
    "PromptLibrary",
    "PromptLoader",
]
