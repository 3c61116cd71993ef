"""Filter expressions and clauses.

One ``filter`` query parameter is one clause: ``attr<op>value[,attr<op>value...]``.
Inside a clause, expressions on the same attribute are ORed and different
attributes are ANDed; repeated ``filter`` parameters are ORed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from xbridge.errors import FilterSyntaxError, MissingNameExpression

NAME_ATTRIBUTE = "name"
OPERATORS = ("=", "!=", "<", "<=", ">", ">=")

_EXPRESSION_RE = re.compile(r"^(?P<attribute>[^=!<>]*?)(?P<operator>!=|<>|>=|<=|=|<|>)(?P<value>.*)$")
_ATTRIBUTE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_$-]+)*$")


@dataclass(frozen=True)
class FilterExpression:
    attribute: str
    operator: str
    value: str

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.value

    @property
    def is_name(self) -> bool:
        return self.attribute == NAME_ATTRIBUTE

    def matches(self, attr_value: Any, case_sensitive: bool = True) -> bool:
        return compare(attr_value, self, case_sensitive)

    def __str__(self) -> str:
        return f"{self.attribute}{self.operator}{self.value}"


@dataclass(frozen=True)
class FilterClause:
    """One ``filter`` parameter."""

    raw: str
    expressions: tuple[FilterExpression, ...]

    @property
    def name_expressions(self) -> list[FilterExpression]:
        return [e for e in self.expressions if e.is_name]

    @property
    def other_expressions(self) -> list[FilterExpression]:
        return [e for e in self.expressions if not e.is_name]

    @property
    def has_metadata_predicates(self) -> bool:
        return any(not e.is_name for e in self.expressions)

    def require_name(self) -> None:
        """Raise :class:`MissingNameExpression` if no ``name`` predicate exists."""
        if not self.name_expressions:
            raise MissingNameExpression(self.raw)

    def matches_name(self, name: str, case_sensitive: bool = True) -> bool:
        return any(e.matches(name, case_sensitive) for e in self.name_expressions)

    def matches_metadata(self, metadata: dict, case_sensitive: bool = True) -> bool:
        """Every non-name attribute must match at least one of its expressions."""
        by_attribute: dict[str, list[FilterExpression]] = {}
        for expr in self.other_expressions:
            by_attribute.setdefault(expr.attribute, []).append(expr)
        return all(
            any(e.matches(get_nested_value(metadata, attr), case_sensitive) for e in exprs)
            for attr, exprs in by_attribute.items()
        )


def parse_expression(text: str) -> FilterExpression:
    match = _EXPRESSION_RE.match(text)
    if match is None:
        raise FilterSyntaxError(f"Filter expression '{text}' has no operator")
    attribute = match.group("attribute").strip()
    if not _ATTRIBUTE_RE.match(attribute):
        raise FilterSyntaxError(f"Invalid attribute name '{attribute}' in '{text}'")
    operator = match.group("operator")
    if operator == "<>":
        operator = "!="
    value = match.group("value")
    if value[:1] in ("=", "<", ">", "!"):
        raise FilterSyntaxError(f"Invalid operator in '{text}'")
    return FilterExpression(attribute=attribute, operator=operator, value=value)


def parse_clause(raw: str) -> FilterClause:
    if raw is None or not raw.strip():
        raise FilterSyntaxError("Empty filter expression")
    parts = raw.split(",")
    if any(not p.strip() for p in parts):
        raise FilterSyntaxError(f"Empty expression in filter '{raw}'")
    return FilterClause(raw=raw, expressions=tuple(parse_expression(p.strip()) for p in parts))


def parse_filters(values: Iterable[str]) -> list[FilterClause]:
    """Parse every ``filter`` parameter; any malformed one rejects the request."""
    return [parse_clause(v) for v in values]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def get_nested_value(obj: Any, path: str) -> Any:
    """Resolve a dotted attribute path such as ``labels.stage``."""
    current = obj
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return None
    return current


@lru_cache(maxsize=512)
def _wildcard_regex(pattern: str, case_sensitive: bool) -> re.Pattern:
    body = ".*".join(re.escape(piece) for piece in pattern.split("*"))
    return re.compile(f"^{body}$", 0 if case_sensitive else re.IGNORECASE)


def wildcard_match(pattern: str, value: str, case_sensitive: bool = True) -> bool:
    """``*`` matches zero or more characters; nothing else is special."""
    return _wildcard_regex(pattern, case_sensitive).match(value) is not None


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _equals(attr_value: Any, filter_value: str, case_sensitive: bool) -> bool:
    if filter_value.lower() == "null":
        return attr_value is None
    if attr_value is None:
        return False
    if filter_value == "*":
        return True

    text = _as_text(attr_value)
    if "*" in filter_value:
        return wildcard_match(filter_value, text, case_sensitive)

    if case_sensitive:
        return text == filter_value
    return text.lower() == filter_value.lower()


def _ordered(attr_value: Any, filter_value: str, operator: str, case_sensitive: bool) -> bool:
    if attr_value is None or filter_value.lower() == "null":
        return False
    left: Any = _as_number(attr_value)
    right: Any = _as_number(filter_value)
    if left is None or right is None:
        left, right = _as_text(attr_value), filter_value
        if not case_sensitive:
            left, right = left.lower(), right.lower()
    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    return left >= right


def compare(attr_value: Any, expr: FilterExpression, case_sensitive: bool = True) -> bool:
    """Evaluate one expression against an attribute value.

    A missing attribute never matches, except under ``!=`` (which is the
    negation of ``=``) and ``=null``.
    """
    if expr.operator == "=":
        return _equals(attr_value, expr.value, case_sensitive)
    if expr.operator == "!=":
        return not _equals(attr_value, expr.value, case_sensitive)
    if expr.operator in ("<", "<=", ">", ">="):
        return _ordered(attr_value, expr.value, expr.operator, case_sensitive)
    raise FilterSyntaxError(f"Unsupported operator '{expr.operator}'")
