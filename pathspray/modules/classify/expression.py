"""Boolean expressions over a baseline (match, filter and recursive rules).

Expressions use Python expression syntax with a single name, `current`,
bound to a read-only view of the baseline:

    current.status != 200
    contains(current.body, 'hello') and current.length > 100
    current.IsDir()

Field names may be written in snake_case or CamelCase. Expressions are
compiled once at setup; evaluation never raises.
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Callable

from pathspray.core.config import ConfigurationError
from pathspray.core.logger import get_logger
from pathspray.models.baseline import Baseline

logger = get_logger(__name__)

Predicate = Callable[[Baseline], bool]


class ExpressionError(ConfigurationError):
    """Raised when an expression cannot be compiled."""
    pass


# Names visible on `current`, mapped to Baseline attributes
VIEW_FIELDS: dict[str, str] = {
    "url": "url",
    "path": "path",
    "host": "hostname",
    "status": "status",
    "length": "length",
    "title": "title",
    "content_type": "content_type",
    "redirect_url": "redirect_url",
    "body": "body",
    "simhash": "simhash",
    "body_signature": "body_signature",
    "is_dir": "is_directory",
    "is_directory": "is_directory",
    "extracts": "extracts",
    "elapsed": "elapsed",
}

FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": lambda v: len(v or ""),
    "contains": lambda haystack, needle: needle in (haystack or ""),
    "startswith": lambda s, prefix: (s or "").startswith(prefix),
    "endswith": lambda s, suffix: (s or "").endswith(suffix),
    "lower": lambda s: (s or "").lower(),
    "matches": lambda s, pattern: re.search(pattern, s or "") is not None,
}

BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_field(name: str) -> str:
    """IsDir -> is_dir, RedirectURL -> redirect_url, status -> status."""
    return _CAMEL.sub("_", name).lower()


class Expression:
    """A compiled, side-effect free predicate over a baseline."""

    def __init__(self, source: str):
        self.source = source
        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionError(f"Invalid expression {source!r}: {e.msg}") from e
        self._validate(tree.body)
        self._tree = tree.body

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"

    def __call__(self, baseline: Baseline) -> bool:
        try:
            return bool(self._eval(self._tree, baseline))
        except (TypeError, ValueError, ZeroDivisionError, KeyError, IndexError, re.error) as e:
            logger.debug("Expression evaluation failed", expression=self.source, error=str(e))
            return False

    def _validate(self, node: ast.AST) -> None:
        """Reject anything outside the supported subset at compile time."""
        if isinstance(node, ast.BoolOp):
            for value in node.values:
                self._validate(value)
        elif isinstance(node, ast.UnaryOp):
            if not isinstance(node.op, (ast.Not, ast.USub, ast.UAdd)):
                raise ExpressionError(f"Unsupported operator in {self.source!r}")
            self._validate(node.operand)
        elif isinstance(node, ast.BinOp):
            if type(node.op) not in BIN_OPS:
                raise ExpressionError(f"Unsupported operator in {self.source!r}")
            self._validate(node.left)
            self._validate(node.right)
        elif isinstance(node, ast.Compare):
            for op in node.ops:
                if type(op) not in COMPARE_OPS:
                    raise ExpressionError(f"Unsupported comparison in {self.source!r}")
            self._validate(node.left)
            for comparator in node.comparators:
                self._validate(comparator)
        elif isinstance(node, ast.Attribute):
            if not (isinstance(node.value, ast.Name) and node.value.id == "current"):
                raise ExpressionError(f"Only fields of 'current' can be accessed in {self.source!r}")
            if normalize_field(node.attr) not in VIEW_FIELDS:
                raise ExpressionError(f"Unknown field {node.attr!r} in {self.source!r}")
        elif isinstance(node, ast.Call):
            if node.keywords:
                raise ExpressionError(f"Keyword arguments are not supported in {self.source!r}")
            if isinstance(node.func, ast.Attribute):
                if node.args:
                    raise ExpressionError(f"Field calls take no arguments in {self.source!r}")
                self._validate(node.func)
            elif isinstance(node.func, ast.Name) and node.func.id in FUNCTIONS:
                for arg in node.args:
                    self._validate(arg)
            else:
                raise ExpressionError(f"Unknown function in {self.source!r}")
        elif isinstance(node, ast.Subscript):
            self._validate(node.value)
            self._validate(node.slice)
        elif isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            for elt in node.elts:
                self._validate(elt)
        elif isinstance(node, ast.Name):
            if node.id not in ("True", "False", "None"):
                raise ExpressionError(f"Unknown name {node.id!r} in {self.source!r}")
        elif not isinstance(node, ast.Constant):
            raise ExpressionError(f"Unsupported syntax {type(node).__name__} in {self.source!r}")

    def _eval(self, node: ast.AST, current: Baseline) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return {"True": True, "False": False, "None": None}[node.id]
        if isinstance(node, ast.Attribute):
            return getattr(current, VIEW_FIELDS[normalize_field(node.attr)])
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(v, current) for v in node.values)
            return any(self._eval(v, current) for v in node.values)
        if isinstance(node, ast.UnaryOp):
            value = self._eval(node.operand, current)
            if isinstance(node.op, ast.Not):
                return not value
            return -value if isinstance(node.op, ast.USub) else +value
        if isinstance(node, ast.BinOp):
            return BIN_OPS[type(node.op)](
                self._eval(node.left, current), self._eval(node.right, current)
            )
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, current)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, current)
                if not COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.Call):
            if isinstance(node.func, ast.Attribute):
                # current.IsDir() reads the same as current.is_dir
                return self._eval(node.func, current)
            args = [self._eval(arg, current) for arg in node.args]
            return FUNCTIONS[node.func.id](*args)
        if isinstance(node, ast.Subscript):
            container = self._eval(node.value, current)
            key = self._eval(node.slice, current)
            if isinstance(container, dict):
                return container.get(key)
            return container[key]
        if isinstance(node, ast.List):
            return [self._eval(e, current) for e in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self._eval(e, current) for e in node.elts)
        if isinstance(node, ast.Set):
            return {self._eval(e, current) for e in node.elts}
        raise TypeError(f"Unsupported node {type(node).__name__}")


def compile_expression(source: str) -> Expression:
    """
    Compile an expression string.

    Raises:
        ExpressionError: On syntax errors, unknown fields or functions
    """
    return Expression(source)
