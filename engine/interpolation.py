"""
Variable interpolation for action configs and step messages.

Placeholders use ``{{expr}}``. An expression is one of:
  - a dotted path into the context (``variables.reps``, ``session.sender_id``)
  - a helper call, with or without parens (``timestamp.now``,
    ``timestamp.daysAgo(7)``, ``math.sum(variables.a, variables.b)``)
  - simple arithmetic over numeric operands (``variables.reps * 2``)

Expressions are tokenized and walked by a small recursive-descent parser.
Nothing is ever handed to eval(). A placeholder that cannot be resolved is
left in the output exactly as written.
"""
from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel

from models.schemas import FlowSession, utcnow

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_SOLE_PLACEHOLDER = re.compile(r"^\{\{([^}]+)\}\}$")

_TOKEN = re.compile(r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?)
      | (?P<string>"[^"]*"|'[^']*')
      | (?P<name>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)
      | (?P<op>[-+*/(),])
    )""", re.VERBOSE)

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


class _Unresolved(Exception):
    """Raised inside the parser when an expression cannot be evaluated."""


# ──────────────────────────────────────────────────────────────
#  Helper namespaces
# ──────────────────────────────────────────────────────────────

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _numbers(values: tuple) -> list[float]:
    if not all(_is_number(v) for v in values):
        raise _Unresolved("non-numeric argument")
    return list(values)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise _Unresolved(str(exc)) from exc


def _format_date(value: Any, pattern: str) -> str:
    d = _to_datetime(value)
    return (str(pattern)
            .replace("YYYY", f"{d.year:04d}")
            .replace("MM", f"{d.month:02d}")
            .replace("DD", f"{d.day:02d}")
            .replace("HH", f"{d.hour:02d}")
            .replace("mm", f"{d.minute:02d}")
            .replace("ss", f"{d.second:02d}"))


def _round(value: Any, decimals: Any = 0) -> float:
    _numbers((value, decimals))
    rounded = round(value, int(decimals))
    return int(rounded) if int(decimals) == 0 else rounded


def _timestamp_helpers(now: Callable[[], datetime]) -> dict[str, Callable]:
    return {
        "now": lambda: now().isoformat(),
        "daysAgo": lambda n: (now() - timedelta(days=_numbers((n,))[0])).isoformat(),
        "hoursAgo": lambda n: (now() - timedelta(hours=_numbers((n,))[0])).isoformat(),
        "format": _format_date,
    }


MATH_HELPERS: dict[str, Callable] = {
    "sum": lambda *v: sum(_numbers(v)),
    "average": lambda *v: sum(_numbers(v)) / len(v) if v else 0,
    "min": lambda *v: min(_numbers(v)),
    "max": lambda *v: max(_numbers(v)),
    "round": _round,
}

STRING_HELPERS: dict[str, Callable] = {
    "upper": lambda s: str(s).upper(),
    "lower": lambda s: str(s).lower(),
    "capitalize": lambda s: str(s).capitalize(),
    "concat": lambda *parts: "".join(str(p) for p in parts),
}


@dataclass
class InterpolationContext:
    """Everything a placeholder may reference."""
    variables: dict[str, Any]
    session: Optional[FlowSession] = None
    env: dict[str, str] = field(default_factory=dict)
    timestamp: dict[str, Callable] = field(default_factory=lambda: _timestamp_helpers(utcnow))
    math: dict[str, Callable] = field(default_factory=lambda: dict(MATH_HELPERS))
    string: dict[str, Callable] = field(default_factory=lambda: dict(STRING_HELPERS))

    def root(self) -> dict[str, Any]:
        return {
            "variables": self.variables,
            "session": self.session,
            "env": self.env,
            "timestamp": self.timestamp,
            "math": self.math,
            "string": self.string,
        }


def create_interpolation_context(
    session: FlowSession,
    env: Mapping[str, str] = None,
    now: Callable[[], datetime] = utcnow,
) -> InterpolationContext:
    return InterpolationContext(
        variables=dict(session.variables),
        session=session,
        env=dict(env or {}),
        timestamp=_timestamp_helpers(now),
    )


# ──────────────────────────────────────────────────────────────
#  Expression evaluation
# ──────────────────────────────────────────────────────────────

def _tokenize(expr: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    expr = expr.rstrip()
    while pos < len(expr):
        match = _TOKEN.match(expr, pos)
        if not match or match.end() == pos:
            raise _Unresolved(f"unexpected character at {pos}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _get_attr(obj: Any, part: str) -> Any:
    if isinstance(obj, Mapping):
        if part in obj:
            return obj[part]
        raise _Unresolved(part)
    if not isinstance(obj, BaseModel) or part.startswith("_"):
        raise _Unresolved(part)
    # only declared fields; methods such as model_dump stay out of reach
    fields = type(obj).model_fields
    for name in (part, _CAMEL.sub("_", part).lower()):
        if name in fields:
            return getattr(obj, name)
    raise _Unresolved(part)


def resolve_path(path: str, context: InterpolationContext) -> Any:
    current: Any = context.root()
    for part in path.split("."):
        current = _get_attr(current, part)
    return current


class _Parser:
    """
    expr   := term (('+' | '-') term)*
    term   := unary (('*' | '/') unary)*
    unary  := '-' unary | atom
    atom   := NUMBER | STRING | NAME ['(' [expr (',' expr)*] ')'] | '(' expr ')'
    """

    def __init__(self, tokens: list[tuple[str, str]], context: InterpolationContext):
        self._tokens = tokens
        self._pos = 0
        self._ctx = context

    def parse(self) -> Any:
        value = self._expr()
        if self._pos != len(self._tokens):
            raise _Unresolved("trailing tokens")
        return value

    def _peek(self) -> Optional[tuple[str, str]]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self, text: str = None) -> tuple[str, str]:
        token = self._peek()
        if token is None or (text is not None and token[1] != text):
            raise _Unresolved(f"expected {text or 'token'}")
        self._pos += 1
        return token

    def _binary(self, left: Any, op: str, right: Any) -> Any:
        if not (_is_number(left) and _is_number(right)):
            raise _Unresolved("arithmetic on non-numeric operand")
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if right == 0:
            raise _Unresolved("division by zero")
        return left / right

    def _expr(self) -> Any:
        value = self._term()
        while (tok := self._peek()) and tok[1] in ("+", "-"):
            self._pos += 1
            value = self._binary(value, tok[1], self._term())
        return value

    def _term(self) -> Any:
        value = self._unary()
        while (tok := self._peek()) and tok[1] in ("*", "/"):
            self._pos += 1
            value = self._binary(value, tok[1], self._unary())
        return value

    def _unary(self) -> Any:
        tok = self._peek()
        if tok and tok[1] == "-":
            self._pos += 1
            return self._binary(0, "-", self._unary())
        return self._atom()

    def _atom(self) -> Any:
        kind, text = self._take()
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "string":
            return text[1:-1]
        if text == "(":
            value = self._expr()
            self._take(")")
            return value
        if kind != "name":
            raise _Unresolved(f"unexpected '{text}'")

        target = resolve_path(text, self._ctx)
        tok = self._peek()
        if tok and tok[1] == "(":
            self._pos += 1
            args: list[Any] = []
            if (nxt := self._peek()) and nxt[1] != ")":
                args.append(self._expr())
                while (nxt := self._peek()) and nxt[1] == ",":
                    self._pos += 1
                    args.append(self._expr())
            self._take(")")
            return self._call(target, args)
        if callable(target):
            return self._call(target, [])
        return target

    @staticmethod
    def _call(fn: Any, args: list[Any]) -> Any:
        if not callable(fn):
            raise _Unresolved("not callable")
        try:
            return fn(*args)
        except _Unresolved:
            raise
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise _Unresolved(str(exc)) from exc


def evaluate_expression(expr: str, context: InterpolationContext) -> Any:
    """Evaluate one placeholder body. Raises LookupError when unresolvable."""
    try:
        value = _Parser(_tokenize(expr.strip()), context).parse()
    except _Unresolved as exc:
        raise LookupError(expr.strip()) from exc
    if value is None:
        raise LookupError(expr.strip())
    return value


def _to_text(value: Any) -> str:
    if isinstance(value, (dict, list, tuple, bool)):
        return json.dumps(value, default=str)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def interpolate(template: str, context: InterpolationContext) -> str:
    """Replace every ``{{expr}}``; unresolvable placeholders stay as written."""
    if "{{" not in template:
        return template

    def replace(match: re.Match) -> str:
        try:
            return _to_text(evaluate_expression(match.group(1), context))
        except LookupError:
            return match.group(0)

    return PLACEHOLDER.sub(replace, template)


def interpolate_value(template: str, context: InterpolationContext) -> Any:
    """Like interpolate(), but a template that is one placeholder keeps its type."""
    sole = _SOLE_PLACEHOLDER.match(template)
    if sole:
        try:
            return evaluate_expression(sole.group(1), context)
        except LookupError:
            return template
    return interpolate(template, context)


def interpolate_config(obj: Any, context: InterpolationContext) -> Any:
    """Deep-copy a config tree, resolving every string leaf."""
    if isinstance(obj, str):
        return interpolate_value(obj, context)
    if isinstance(obj, Mapping):
        return {k: interpolate_config(v, context) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [interpolate_config(v, context) for v in obj]
    return copy.deepcopy(obj)
