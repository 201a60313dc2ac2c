"""Layered resource discovery.

Resources of one kind are merged from three tiers, later tiers overriding
earlier ones by name: embedded, user, local.
"""

from toolsmith.resources.models import Provenance, Resource
from toolsmith.resources.resolver import PromptResolver, ResourceResolver, WorkflowResolver
from toolsmith.resources.vfs import VirtualFileSystem

__all__ = [
    "PromptResolver",
    "Provenance",
    "Resource",
    "ResourceResolver",
    "VirtualFileSystem",
    "WorkflowResolver",
]
