# expr.py
# SPDX-License-Identifier: MIT
"""Filter expressions, bracket templates, and column resolution.

Column specs use a leading sigil:

* ``@expr``: evaluate a boolean/arithmetic expression against the record,
* ``%text [Tag] text``: expand bracketed tag references inside literal text,
* anything else: the raw value of the named tag.

Expressions are parsed with :mod:`ast` and walked by a small whitelist
evaluator; nothing is passed to :func:`eval`. Tag names that are not Python
identifiers can be written in brackets, e.g. ``[Sys/Name] == "a.jpg"``;
brackets after ``in`` are a list literal (``Make in ["Canon", "Nikon"]``).
``&&``, ``||``, ``!``, ``true``, ``false`` and ``null`` are accepted as
aliases of their Python spellings.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from functools import lru_cache
from typing import Any, Union

from .errors import ExpressionError
from .log import get_logger
from .records import MetadataRecord
from .values import TagValue, format_native

log = get_logger(__name__)

__all__ = [
    "EVAL_SIGIL",
    "TEMPLATE_SIGIL",
    "evaluate",
    "filter_record",
    "expand",
    "resolve",
    "compile_expression",
]

EVAL_SIGIL = "@"
TEMPLATE_SIGIL = "%"

RecordLike = Union[MetadataRecord, Mapping[str, Any]]

_BRACKET_PREFIX = "__tag_"
# A bracket right after ``in`` or ``not in`` opens a list literal.
_LIST_CONTEXT = re.compile(r"\bin\s*$")
_MAX_POWER = 1024
_MAX_SEQUENCE = 10_000

_BIN_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}
_CMP_OPS: dict[type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}
_CONSTANT_NAMES: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "True": True,
    "False": False,
    "None": None,
}


def _year(value: Any) -> int:
    if not isinstance(value, datetime):
        raise TypeError("year() expects a timestamp")
    return value.year


def _match(value: Any, pattern: str) -> bool:
    return re.search(pattern, format_native(value)) is not None


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "contains": lambda value, needle: format_native(needle) in format_native(value),
    "startswith": lambda value, prefix: format_native(value).startswith(format_native(prefix)),
    "endswith": lambda value, suffix: format_native(value).endswith(format_native(suffix)),
    "match": _match,
    "lower": lambda value: format_native(value).lower(),
    "upper": lambda value: format_native(value).upper(),
    "len": len,
    "int": int,
    "float": float,
    "str": format_native,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "year": _year,
}


def _rewrite(expr: str) -> tuple[str, dict[str, str]]:
    """Translate operator aliases and bracketed names outside string literals."""
    out: list[str] = []
    names: dict[str, str] = {}
    i = 0
    n = len(expr)
    while i < n:
        ch = expr[i]
        if ch in "\"'":
            end = i + 1
            while end < n and expr[end] != ch:
                end += 2 if expr[end] == "\\" else 1
            out.append(expr[i : end + 1])
            i = end + 1
        elif ch == "[" and _LIST_CONTEXT.search("".join(out)):
            out.append(ch)
            i += 1
        elif ch == "[":
            close = expr.find("]", i + 1)
            name = expr[i + 1 :] if close == -1 else expr[i + 1 : close]
            placeholder = f"{_BRACKET_PREFIX}{len(names)}"
            names[placeholder] = name.strip()
            out.append(placeholder)
            i = n if close == -1 else close + 1
        elif expr.startswith("&&", i):
            out.append(" and ")
            i += 2
        elif expr.startswith("||", i):
            out.append(" or ")
            i += 2
        elif ch == "!" and not expr.startswith("!=", i):
            out.append(" not ")
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out), names


@lru_cache(maxsize=256)
def compile_expression(expr: str) -> tuple[ast.Expression, tuple[tuple[str, str], ...]]:
    """Parse ``expr`` once and cache the tree with its bracket-name table.

    Raises:
        ExpressionError: If the expression does not parse.
    """
    rewritten, names = _rewrite(expr.strip())
    source = rewritten.strip()
    if not source:
        raise ExpressionError("empty expression")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"invalid expression {expr!r}: {exc.msg}") from exc
    except (RecursionError, MemoryError) as exc:
        raise ExpressionError(f"expression {expr!r} is nested too deeply") from exc
    return tree, tuple(names.items())


def _lookup(record: RecordLike, name: str) -> tuple[bool, Any]:
    if isinstance(record, MetadataRecord):
        value = record.get(name)
        return (value is not None), (value.native if value is not None else None)
    if name not in record:
        return False, None
    value = record[name]
    if isinstance(value, TagValue):
        value = value.native
    return True, value


def _dotted_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted_name(node.value)
        return None if base is None else f"{base}.{node.attr}"
    return None


class _Evaluator:
    def __init__(self, record: RecordLike, names: Mapping[str, str]) -> None:
        self.record = record
        self.names = names

    def variable(self, name: str) -> Any:
        found, value = _lookup(self.record, name)
        if found:
            return value
        if name in _CONSTANT_NAMES:
            return _CONSTANT_NAMES[name]
        raise ExpressionError(f"unknown variable {name!r}")

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant):
            if isinstance(node.value, (str, int, float, bool)) or node.value is None:
                return node.value
            raise ExpressionError(f"unsupported literal {node.value!r}")
        if isinstance(node, ast.Name):
            if node.id in self.names:
                return self.variable(self.names[node.id])
            return self.variable(node.id)
        if isinstance(node, ast.Attribute):
            dotted = _dotted_name(node)
            if dotted is None:
                raise ExpressionError("attribute access is not supported")
            return self.variable(dotted)
        if isinstance(node, ast.BoolOp):
            result: Any = None
            for value_node in node.values:
                result = self.visit(value_node)
                if isinstance(node.op, ast.And) and not result:
                    return result
                if isinstance(node.op, ast.Or) and result:
                    return result
            return result
        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise ExpressionError(f"unsupported operator {type(node.op).__name__}")
            return op(self.visit(node.operand))
        if isinstance(node, ast.BinOp):
            return self.binary(node)
        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op_node, right_node in zip(node.ops, node.comparators):
                op = _CMP_OPS.get(type(op_node))
                if op is None:
                    raise ExpressionError(f"unsupported comparison {type(op_node).__name__}")
                right = self.visit(right_node)
                if not op(left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)
        if isinstance(node, (ast.Tuple, ast.List)):
            return tuple(self.visit(elt) for elt in node.elts)
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.keywords:
                raise ExpressionError("only simple function calls are supported")
            fn = FUNCTIONS.get(node.func.id)
            if fn is None:
                raise ExpressionError(f"unknown function {node.func.id!r}")
            return fn(*(self.visit(arg) for arg in node.args))
        raise ExpressionError(f"unsupported syntax {type(node).__name__}")

    def binary(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"unsupported operator {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > _MAX_POWER:
            raise ExpressionError("exponent too large")
        if isinstance(node.op, ast.Mult) and (isinstance(left, str) or isinstance(right, str)):
            count = right if isinstance(left, str) else left
            if isinstance(count, int) and count > _MAX_SEQUENCE:
                raise ExpressionError("string repetition too large")
        return op(left, right)


def evaluate(expr: str, record: RecordLike) -> Any:
    """Evaluate ``expr`` with the record's tags bound as variables.

    Args:
        expr (str): Expression text, without the ``@`` sigil.
        record (MetadataRecord | Mapping[str, Any]): Values to bind.

    Returns:
        Any: The native result (bool, number, string, timestamp, or None).

    Raises:
        ExpressionError: On syntax errors, unknown variables or functions,
            and type errors raised while evaluating.
    """
    tree, names = compile_expression(expr)
    try:
        return _Evaluator(record, dict(names)).visit(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ArithmeticError, re.error) as exc:
        raise ExpressionError(f"cannot evaluate {expr!r}: {exc}") from exc
    except (RecursionError, MemoryError) as exc:
        raise ExpressionError(f"expression {expr!r} is nested too deeply") from exc


def filter_record(expr: str | None, record: RecordLike) -> bool:
    """Return True when ``expr`` yields boolean True or a non-empty string.

    An empty or missing expression accepts every record. A leading ``@`` is
    tolerated so filters may be written like column specs. Evaluation errors
    reject the record.
    """
    if not expr or not expr.strip():
        return True
    text = expr.strip()
    if text.startswith(EVAL_SIGIL):
        text = text[1:]
    try:
        value = evaluate(text, record)
    except ExpressionError as exc:
        log.debug("Filter %r rejected record: %s", expr, exc)
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value != ""
    return False


def _display(record: RecordLike, name: str) -> str:
    if isinstance(record, MetadataRecord):
        return record.display(name)
    found, value = _lookup(record, name)
    return format_native(value) if found else ""


def expand(template: str, record: RecordLike) -> str:
    """Replace ``[Tag]`` references in ``template`` with display values.

    Text outside brackets is copied unchanged. An unterminated ``[`` takes the
    rest of the string as the tag name. Unknown tags expand to ``""``.
    """
    out: list[str] = []
    i = 0
    n = len(template)
    while i < n:
        ch = template[i]
        if ch != "[":
            out.append(ch)
            i += 1
            continue
        close = template.find("]", i + 1)
        if close == -1:
            out.append(_display(record, template[i + 1 :]))
            break
        out.append(_display(record, template[i + 1 : close]))
        i = close + 1
    return "".join(out)


def resolve(column: str, record: RecordLike) -> tuple[str, Any]:
    """Resolve a column spec to ``(display, native)`` for one record.

    Missing tags and failing expressions give ``("", None)``.
    """
    if column.startswith(EVAL_SIGIL):
        try:
            value = evaluate(column[1:], record)
        except ExpressionError as exc:
            log.debug("Column %r evaluated to empty: %s", column, exc)
            return "", None
        return format_native(value), value
    if column.startswith(TEMPLATE_SIGIL):
        text = expand(column[1:], record)
        return text, text
    found, value = _lookup(record, column)
    if not found:
        return "", None
    return _display(record, column), value
