"""Unit tests for the guard expression evaluator."""

from __future__ import annotations

import pytest

from toolsmith.errors import GuardError
from toolsmith.workflow.guards import ExpressionGuardEvaluator


@pytest.fixture
def evaluator() -> ExpressionGuardEvaluator:
    return ExpressionGuardEvaluator()


@pytest.mark.parametrize(
    ("expression", "variables", "expected"),
    [
        ("always", {}, True),
        ("never", {}, False),
        ("ready", {"ready": "yes"}, True),
        ("ready", {}, False),
        ('approved == "yes"', {"approved": "yes"}, True),
        ("approved == 'yes'", {"approved": "no"}, False),
        ("count >= 3", {"count": "4"}, True),
        ("count < 3", {"count": 2}, True),
        ("build.status == \"green\"", {"build": {"status": "green"}}, True),
        ("missing == null", {}, True),
        ("a || b && c", {"a": True, "b": False, "c": False}, True),
        ("(a || b) && c", {"a": True, "b": False, "c": False}, False),
        ("!done", {"done": False}, True),
        ("not done and mode != 'fast'", {"done": False, "mode": "slow"}, True),
        ("approved", {"approved": "false"}, False),
        ("approved", {"approved": "0"}, False),
        ("approved", {"approved": ""}, False),
        ("!approved", {"approved": "False"}, True),
        ("ready == true", {"ready": "true"}, True),
        ("ready == false", {"ready": "TRUE"}, False),
        ("ready != true", {"ready": "maybe"}, True),
        ("count == 3", {"count": "3"}, True),
    ],
)
def test_evaluate(
    evaluator: ExpressionGuardEvaluator,
    expression: str,
    variables: dict[str, object],
    expected: bool,
) -> None:
    assert evaluator.evaluate(expression, variables) is expected


@pytest.mark.parametrize("expression", ["a ==", "(a", "a b", "a $ b", ""])
def test_syntax_errors_raise(evaluator: ExpressionGuardEvaluator, expression: str) -> None:
    with pytest.raises(GuardError):
        evaluator.evaluate(expression, {"a": 1, "b": 2})


def test_incomparable_values_raise(evaluator: ExpressionGuardEvaluator) -> None:
    with pytest.raises(GuardError, match="Cannot compare"):
        evaluator.evaluate("name > 3", {"name": "abc"})
