"""Guard expressions on transitions.

Guards are opaque to the parser and validator. At run time the executor asks a
`GuardEvaluator` whether a guard holds for the run's variables.

The default evaluator understands a small expression language::

    always | never | true | false
    ready                      # truthiness of a run variable
    count >= 3 && mode == "fast"
    !(done || skip)            # `not`, `and`, `or` also accepted
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Protocol

from toolsmith.errors import GuardError


class GuardEvaluator(Protocol):
    def evaluate(self, expression: str, variables: Mapping[str, object]) -> bool: ...


_Compiled = Callable[[Mapping[str, object]], object]

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<number>-?\d+(?:\.\d+)?)
      | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!()])
      | (?P<name>[A-Za-z_][A-Za-z0-9_.]*)
    )""",
    re.VERBOSE,
)

_KEYWORD_VALUES: dict[str, object] = {
    "true": True,
    "false": False,
    "always": True,
    "never": False,
    "null": None,
    "none": None,
}

_WORD_OPS = {"and": "&&", "or": "||", "not": "!"}


def _tokenize(expression: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = expression.strip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise GuardError(f"Unexpected character in guard {expression!r} at {pos}")
        pos = match.end()
        kind = match.lastgroup
        value = match.group(kind) if kind else ""
        if kind == "name" and value.lower() in _WORD_OPS:
            tokens.append(("op", _WORD_OPS[value.lower()]))
        else:
            tokens.append((kind or "", value))
    return tokens


def _lookup(variables: Mapping[str, object], dotted: str) -> object:
    current: object = variables
    for part in dotted.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return None
    return current


_FALSY_STRINGS = frozenset({"", "false", "0", "no", "off", "null", "none"})
_BOOL_STRINGS = {"true": True, "false": False}


def _truthy(value: object) -> bool:
    """Truthiness of a run variable; `--var` and `Set` values arrive as strings."""

    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    return bool(value)


def _as_number(value: str) -> object:
    try:
        return float(value)
    except ValueError:
        return value


def _coerce_pair(left: object, right: object) -> tuple[object, object]:
    """Read a string side as the type of the literal it is compared with."""

    if isinstance(left, str) and not isinstance(right, str):
        return _coerce_to(left, right), right
    if isinstance(right, str) and not isinstance(left, str):
        return left, _coerce_to(right, left)
    return left, right


def _coerce_to(text: str, other: object) -> object:
    if isinstance(other, bool):
        return _BOOL_STRINGS.get(text.strip().lower(), text)
    if isinstance(other, (int, float)):
        return _as_number(text)
    return text


def _compare(op: str, left: object, right: object) -> bool:
    left, right = _coerce_pair(left, right)
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    try:
        if op == "<":
            return left < right  # type: ignore[operator]
        if op == "<=":
            return left <= right  # type: ignore[operator]
        if op == ">":
            return left > right  # type: ignore[operator]
        if op == ">=":
            return left >= right  # type: ignore[operator]
    except TypeError as e:
        raise GuardError(f"Cannot compare {left!r} {op} {right!r}") from e
    raise GuardError(f"Unknown operator {op!r}")


class _Parser:
    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = _tokenize(expression)
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take_op(self, *ops: str) -> str | None:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] in ops:
            self.pos += 1
            return token[1]
        return None

    def parse(self) -> _Compiled:
        if not self.tokens:
            raise GuardError("Empty guard expression")
        node = self._or()
        extra = self._peek()
        if extra is not None:
            raise GuardError(f"Unexpected token {extra[1]!r} in guard {self.expression!r}")
        return node

    def _or(self) -> _Compiled:
        left = self._and()
        while self._take_op("||"):
            right = self._and()
            left = (lambda a, b: lambda v: _truthy(a(v)) or _truthy(b(v)))(left, right)
        return left

    def _and(self) -> _Compiled:
        left = self._not()
        while self._take_op("&&"):
            right = self._not()
            left = (lambda a, b: lambda v: _truthy(a(v)) and _truthy(b(v)))(left, right)
        return left

    def _not(self) -> _Compiled:
        if self._take_op("!"):
            inner = self._not()
            return lambda v: not _truthy(inner(v))
        return self._comparison()

    def _comparison(self) -> _Compiled:
        left = self._atom()
        op = self._take_op("==", "!=", "<", "<=", ">", ">=")
        if op is None:
            return left
        right = self._atom()
        return lambda v: _compare(op, left(v), right(v))

    def _atom(self) -> _Compiled:
        token = self._peek()
        if token is None:
            raise GuardError(f"Unexpected end of guard {self.expression!r}")
        kind, value = token
        self.pos += 1

        if kind == "op" and value == "(":
            inner = self._or()
            if not self._take_op(")"):
                raise GuardError(f"Missing ')' in guard {self.expression!r}")
            return inner
        if kind == "number":
            number: object = float(value) if "." in value else int(value)
            return lambda _v: number
        if kind == "string":
            text = re.sub(r"\\(.)", r"\1", value[1:-1])
            return lambda _v: text
        if kind == "name":
            lowered = value.lower()
            if lowered in _KEYWORD_VALUES:
                constant = _KEYWORD_VALUES[lowered]
                return lambda _v: constant
            return lambda v: _lookup(v, value)
        raise GuardError(f"Unexpected token {value!r} in guard {self.expression!r}")


@lru_cache(maxsize=256)
def compile_guard(expression: str) -> _Compiled:
    """Parse a guard once; raises `GuardError` on syntax errors."""

    return _Parser(expression).parse()


class ExpressionGuardEvaluator:
    """Evaluates guards against run variables."""

    def evaluate(self, expression: str, variables: Mapping[str, object]) -> bool:
        return _truthy(compile_guard(expression)(variables))
