"""Workflow domain concepts.

This package introduces first-class types for:
- Workflow definitions parsed from state diagrams
- Entry actions and guard expressions
- Runs driven by an executor and persisted by a run store
"""

from toolsmith.workflow.definition import WorkflowDefinition
from toolsmith.workflow.executor import RunStatus, WorkflowExecutor, WorkflowRun
from toolsmith.workflow.parser import parse_workflow
from toolsmith.workflow.registry import WorkflowRegistry
from toolsmith.workflow.validator import validate

__all__ = [
    "RunStatus",
    "WorkflowDefinition",
    "WorkflowExecutor",
    "WorkflowRegistry",
    "WorkflowRun",
    "parse_workflow",
    "validate",
]
