"""Prompt domain objects.

A prompt file is Markdown with optional YAML front matter::

    ---
    title: Explain an error
    description: Walks through a stack trace
    arguments:
      - name: error
        required: true
    ---

    Explain {{ error }}.

The body is kept verbatim as `template`; expanding it is the template engine's
job, not this package's.
"""

from __future__ import annotations

import logging

import yaml
from pydantic import BaseModel, Field, ValidationError

from toolsmith.errors import ParseError

logger = logging.getLogger(__name__)


class PromptArgument(BaseModel):
    name: str
    description: str = ""
    required: bool = False
    default: str | None = None


class Prompt(BaseModel):
    name: str
    template: str
    title: str | None = None
    description: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    arguments: list[PromptArgument] = Field(default_factory=list)


def split_front_matter(content: str) -> tuple[dict[str, object], str]:
    """Return (front matter mapping, body). Content without a fence has no metadata."""

    lines = content.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return {}, content

    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            header = "".join(lines[1:idx])
            body = "".join(lines[idx + 1 :])
            try:
                raw = yaml.safe_load(header)
            except yaml.YAMLError as e:
                raise ParseError(f"Malformed front matter: {e}", line=1) from e
            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                raise ParseError("Front matter must be key/value pairs", line=2)
            return raw, body.lstrip("\n")

    raise ParseError("Front matter fence is not closed", line=1, token="---")


class PromptLoader:
    """Turns resource text into `Prompt` objects."""

    def load_from_string(self, name: str, content: str) -> Prompt:
        meta, body = split_front_matter(content)
        # The resource path is the prompt's identity; a `name` key in front
        # matter does not rename it.
        meta.pop("name", None)
        meta.pop("template", None)
        try:
            return Prompt(name=name, template=body, **meta)
        except (TypeError, ValidationError) as e:
            raise ParseError(f"Invalid prompt metadata: {e}", line=1) from e


class PromptLibrary:
    """In-memory prompt store keyed by name."""

    def __init__(self) -> None:
        self._prompts: dict[str, Prompt] = {}

    def add(self, prompt: Prompt) -> None:
        if prompt.name in self._prompts:
            logger.debug("Replacing prompt", extra={"prompt": prompt.name})
        self._prompts[prompt.name] = prompt

    def get(self, name: str) -> Prompt | None:
        return self._prompts.get(name)

    def list(self) -> list[Prompt]:
        return [self._prompts[name] for name in sorted(self._prompts)]

    def __contains__(self, name: object) -> bool:
        return name in self._prompts

    def __len__(self) -> int:
        return len(self._prompts)
