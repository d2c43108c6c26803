"""
Filter Predicates

Queries accept either a structured expression or a raw, server-native (OData)
filter string. Structured expressions are rendered to the same string syntax,
and the parser below turns a string back into an expression, so both forms
share one set of semantics.

Supported grammar:

    expr       := or_expr
    or_expr    := and_expr ("or" and_expr)*
    and_expr   := unary ("and" unary)*
    unary      := "not" unary | "(" expr ")" | comparison
    comparison := FIELD OP LITERAL
    OP         := eq | ne | gt | ge | lt | le
    LITERAL    := 'string' | 123 | 123L | 1.5 | true | false
                | datetime'2024-01-01T00:00:00Z' | guid'...' | X'0a0b'

Usage:
    from src.tables.filters import field

    predicate = (field("Category") == "books") & (field("Price") < 20.0)
    predicate.render()
    # "(Category eq 'books') and (Price lt 20.0)"
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from src.exceptions import InvalidArgumentError

OPERATORS = ("eq", "ne", "gt", "ge", "lt", "le")

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

NameResolver = Callable[[str], str]


class Expression:
    """Base class for structured filter expressions."""

    def __and__(self, other: Expression) -> Expression:
        return And(self, _ensure_expression(other))

    def __or__(self, other: Expression) -> Expression:
        return Or(self, _ensure_expression(other))

    def __invert__(self) -> Expression:
        return Not(self)

    def render(self, resolve: NameResolver | None = None) -> str:
        raise NotImplementedError

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True, eq=False)
class Comparison(Expression):
    field: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise InvalidArgumentError("operator", f"unsupported operator '{self.operator}'")
        if self.value is None:
            raise InvalidArgumentError(self.field, "cannot compare against None")

    def render(self, resolve: NameResolver | None = None) -> str:
        name = resolve(self.field) if resolve else self.field
        return f"{name} {self.operator} {format_literal(self.value)}"

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        if self.field not in record:
            return False
        return _compare(record[self.field], self.operator, self.value)


@dataclass(frozen=True, eq=False)
class And(Expression):
    left: Expression
    right: Expression

    def render(self, resolve: NameResolver | None = None) -> str:
        return f"({self.left.render(resolve)}) and ({self.right.render(resolve)})"

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return self.left.evaluate(record) and self.right.evaluate(record)


@dataclass(frozen=True, eq=False)
class Or(Expression):
    left: Expression
    right: Expression

    def render(self, resolve: NameResolver | None = None) -> str:
        return f"({self.left.render(resolve)}) or ({self.right.render(resolve)})"

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return self.left.evaluate(record) or self.right.evaluate(record)


@dataclass(frozen=True, eq=False)
class Not(Expression):
    operand: Expression

    def render(self, resolve: NameResolver | None = None) -> str:
        return f"not ({self.operand.render(resolve)})"

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return not self.operand.evaluate(record)


class FieldRef:
    """Builds comparisons against one field: `field("Age") >= 21`."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, name: str) -> None:
        if not name or not isinstance(name, str):
            raise InvalidArgumentError("field", "must be a non-empty string")
        self.name = name

    def eq(self, value: Any) -> Comparison:
        return Comparison(self.name, "eq", value)

    def ne(self, value: Any) -> Comparison:
        return Comparison(self.name, "ne", value)

    def gt(self, value: Any) -> Comparison:
        return Comparison(self.name, "gt", value)

    def ge(self, value: Any) -> Comparison:
        return Comparison(self.name, "ge", value)

    def lt(self, value: Any) -> Comparison:
        return Comparison(self.name, "lt", value)

    def le(self, value: Any) -> Comparison:
        return Comparison(self.name, "le", value)

    __eq__ = eq  # type: ignore[assignment]
    __ne__ = ne  # type: ignore[assignment]
    __gt__ = gt
    __ge__ = ge
    __lt__ = lt
    __le__ = le

    def __repr__(self) -> str:
        return f"field({self.name!r})"


def field(name: str) -> FieldRef:
    """Reference a field by storage name or entity attribute name."""
    return FieldRef(name)


# A query filter: structured expression or raw server-native string
Filter = Union[Expression, str]


def render_filter(filter: Filter | None, resolve: NameResolver | None = None) -> str | None:
    """Render a filter to its server string; raw strings pass through unchanged."""
    if filter is None:
        return None
    if isinstance(filter, str):
        return filter
    if isinstance(filter, Expression):
        return filter.render(resolve)
    raise InvalidArgumentError("filter", f"unsupported filter type {type(filter).__name__}")


def _ensure_expression(value: Any) -> Expression:
    if not isinstance(value, Expression):
        raise InvalidArgumentError("filter", "can only combine filter expressions")
    return value


# =============================================================================
# Literals
# =============================================================================


def format_literal(value: Any) -> str:
    """Render a Python value as an OData literal."""
    if value is None:
        raise InvalidArgumentError("value", "cannot render None")
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if _INT32_MIN <= value <= _INT32_MAX:
            return str(value)
        return f"{value}L"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        utc = value.astimezone(timezone.utc)
        return f"datetime'{utc.strftime('%Y-%m-%dT%H:%M:%S.%f')}Z'"
    if isinstance(value, uuid.UUID):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    raise InvalidArgumentError("value", f"unsupported literal type {type(value).__name__}")


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    actual, expected = _coerce_pair(actual, expected)
    if actual is None:
        return False
    try:
        if operator == "eq":
            return actual == expected
        if operator == "ne":
            return actual != expected
        if operator == "gt":
            return actual > expected
        if operator == "ge":
            return actual >= expected
        if operator == "lt":
            return actual < expected
        return actual <= expected
    except TypeError:
        # mismatched types never match, as in the service
        return False


def _coerce_pair(actual: Any, expected: Any) -> tuple[Any, Any]:
    if actual is None:
        return None, expected
    if isinstance(expected, bool) or isinstance(actual, bool):
        if isinstance(expected, bool) and isinstance(actual, bool):
            return actual, expected
        return None, expected
    if isinstance(expected, datetime):
        if not isinstance(actual, datetime):
            return None, expected
        return _as_utc(actual), _as_utc(expected)
    if isinstance(expected, (int, float)):
        if not isinstance(actual, (int, float)):
            return None, expected
        return actual, expected
    if isinstance(expected, uuid.UUID):
        if isinstance(actual, str):
            try:
                return uuid.UUID(actual), expected
            except ValueError:
                return None, expected
        return (actual, expected) if isinstance(actual, uuid.UUID) else (None, expected)
    if type(actual) is not type(expected) and not (
        isinstance(actual, (bytes, bytearray)) and isinstance(expected, (bytes, bytearray))
    ):
        return None, expected
    return actual, expected


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Parser
# =============================================================================

_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<lparen>\()
      | (?P<rparen>\))
      | (?P<typed>(?:datetime|guid|X|binary)'[^']*')
      | (?P<string>'(?:[^']|'')*')
      | (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?L?)
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "true", "false", *OPERATORS}


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    stripped_end = len(text.rstrip())
    while position < stripped_end:
        match = _TOKEN_PATTERN.match(text, position)
        if match is None or match.end() == position:
            raise InvalidArgumentError("filter", f"unexpected input at position {position}")
        group = match.lastgroup or ""
        value = match.group(group)
        kind = group
        if kind == "word" and value.lower() in _KEYWORDS:
            kind = value.lower()
        tokens.append(_Token(kind, value, match.start(group)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._index = 0

    def parse(self) -> Expression:
        if not self._tokens:
            raise InvalidArgumentError("filter", "empty filter")
        expression = self._or()
        if self._index != len(self._tokens):
            token = self._tokens[self._index]
            raise InvalidArgumentError(
                "filter", f"unexpected '{token.text}' at position {token.position}"
            )
        return expression

    def _peek(self) -> _Token | None:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def _take(self, *kinds: str) -> _Token:
        token = self._peek()
        if token is None or token.kind not in kinds:
            found = f"'{token.text}'" if token else "end of filter"
            raise InvalidArgumentError("filter", f"expected {' or '.join(kinds)}, found {found}")
        self._index += 1
        return token

    def _or(self) -> Expression:
        expression = self._and()
        while (token := self._peek()) is not None and token.kind == "or":
            self._index += 1
            expression = Or(expression, self._and())
        return expression

    def _and(self) -> Expression:
        expression = self._unary()
        while (token := self._peek()) is not None and token.kind == "and":
            self._index += 1
            expression = And(expression, self._unary())
        return expression

    def _unary(self) -> Expression:
        token = self._peek()
        if token is not None and token.kind == "not":
            self._index += 1
            return Not(self._unary())
        if token is not None and token.kind == "lparen":
            self._index += 1
            expression = self._or()
            self._take("rparen")
            return expression
        return self._comparison()

    def _comparison(self) -> Expression:
        name = self._take("word")
        operator = self._take(*OPERATORS)
        literal = self._take("string", "number", "typed", "true", "false")
        return Comparison(name.text, operator.kind, _parse_literal(literal))


def _parse_literal(token: _Token) -> Any:
    text = token.text
    if token.kind == "true":
        return True
    if token.kind == "false":
        return False
    if token.kind == "string":
        return text[1:-1].replace("''", "'")
    if token.kind == "number":
        if text.endswith("L"):
            return int(text[:-1])
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)

    prefix, _, rest = text.partition("'")
    body = rest[:-1]
    try:
        if prefix == "datetime":
            parsed = datetime.fromisoformat(body.replace("Z", "+00:00"))
            return _as_utc(parsed)
        if prefix == "guid":
            return uuid.UUID(body)
        return bytes.fromhex(body)
    except ValueError as e:
        raise InvalidArgumentError("filter", f"invalid literal {text}: {e}") from e


def parse_filter(text: str) -> Expression:
    """
    Parse a server filter string into an expression.

    Raises:
        InvalidArgumentError: If the string is outside the supported grammar
    """
    if not isinstance(text, str):
        raise InvalidArgumentError("filter", "must be a string")
    return _Parser(text).parse()
