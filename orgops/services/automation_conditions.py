"""
Condition evaluator for automation rule filters.

A filter tree maps dotted field paths to either a literal (strict equality)
or an operator object:

    {"amount_cents": {"gte": 100000, "lt": 1000000}, "donor.country": "US"}

Every field must pass. Trees are compiled once into tagged predicates
(Equals, Range, SetMembership, StringMatch); unknown operators are rejected
at compile time. Evaluation itself is pure and never raises: a missing field
simply fails its checks.
"""

import json
import operator
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from orgops.services.automation_errors import MalformedConditionError, UnsupportedOperatorError


class _Undefined:
    """Marker for a field path that does not resolve (distinct from JSON null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()

RANGE_OPERATORS = ("gte", "gt", "lte", "lt")
EQUALITY_OPERATORS = ("eq", "ne")
SET_OPERATORS = ("in", "nin")
STRING_OPERATORS = ("contains", "starts_with", "ends_with")
SUPPORTED_OPERATORS = frozenset(
    RANGE_OPERATORS + EQUALITY_OPERATORS + SET_OPERATORS + STRING_OPERATORS
)

_RANGE_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
}


# =============================================================================
# Value helpers
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """
    JSON-typed equality.

    Booleans never equal numbers, numbers never equal strings, null only
    equals null, and UNDEFINED equals nothing.
    """
    if left is UNDEFINED or right is UNDEFINED:
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) or _is_number(right):
        return _is_number(left) and _is_number(right) and left == right
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) or isinstance(right, str):
        return isinstance(left, str) and isinstance(right, str) and left == right
    return left == right


def coerce_string(value: Any) -> str:
    """String form used by the substring operators."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if _is_number(value):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else coerce_string(item) for item in value)
    if isinstance(value, Mapping):
        try:
            return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def _is_list_index(segment: str, length: int) -> bool:
    # ASCII digits only; "²".isdigit() is True but int("²") fails
    return segment.isascii() and segment.isdecimal() and int(segment) < length


def resolve_path(payload: Any, segments: tuple[str, ...]) -> Any:
    """Walk nested objects (and list indexes) by path segments."""
    current = payload
    for segment in segments:
        if isinstance(current, Mapping):
            if segment not in current:
                return UNDEFINED
            current = current[segment]
        elif isinstance(current, list) and _is_list_index(segment, len(current)):
            current = current[int(segment)]
        else:
            return UNDEFINED
    return current


# =============================================================================
# Predicates
# =============================================================================

@dataclass(frozen=True)
class Equals:
    """Literal value, ``eq`` or (negated) ``ne``."""

    expected: Any
    negate: bool = False

    def test(self, value: Any) -> bool:
        if value is UNDEFINED:
            return False
        matched = strict_equals(value, self.expected)
        return not matched if self.negate else matched


@dataclass(frozen=True)
class Range:
    """Any combination of ``gte``/``gt``/``lte``/``lt``; all present bounds must hold."""

    gte: int | float | str | None = None
    gt: int | float | str | None = None
    lte: int | float | str | None = None
    lt: int | float | str | None = None

    def test(self, value: Any) -> bool:
        for name, compare in _RANGE_COMPARATORS.items():
            bound = getattr(self, name)
            if bound is None:
                continue
            if _is_number(value) and _is_number(bound):
                if not compare(value, bound):
                    return False
            elif isinstance(value, str) and isinstance(bound, str):
                if not compare(value, bound):
                    return False
            else:
                return False
        return True


@dataclass(frozen=True)
class SetMembership:
    """``in`` (or negated ``nin``) against an explicit list."""

    values: tuple
    negate: bool = False

    def test(self, value: Any) -> bool:
        if value is UNDEFINED:
            return False
        found = any(strict_equals(value, candidate) for candidate in self.values)
        return not found if self.negate else found


@dataclass(frozen=True)
class StringMatch:
    """``contains``/``starts_with``/``ends_with`` on the string form of the value."""

    contains: str | None = None
    starts_with: str | None = None
    ends_with: str | None = None

    def test(self, value: Any) -> bool:
        if value is UNDEFINED:
            return False
        text = coerce_string(value)
        if self.contains is not None and self.contains not in text:
            return False
        if self.starts_with is not None and not text.startswith(self.starts_with):
            return False
        if self.ends_with is not None and not text.endswith(self.ends_with):
            return False
        return True


Predicate = Union[Equals, Range, SetMembership, StringMatch]


@dataclass(frozen=True)
class FieldCondition:
    path: str
    segments: tuple[str, ...]
    predicates: tuple[Predicate, ...]

    def test(self, payload: Any) -> bool:
        value = resolve_path(payload, self.segments)
        return all(predicate.test(value) for predicate in self.predicates)


@dataclass(frozen=True)
class CompiledConditions:
    """A compiled filter tree. An empty tree matches every payload."""

    fields: tuple[FieldCondition, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.fields

    def matches(self, payload: Any) -> bool:
        return all(field.test(payload) for field in self.fields)


# =============================================================================
# Compilation
# =============================================================================

def _split_path(path: Any) -> tuple[str, ...]:
    if not isinstance(path, str) or not path.strip():
        raise MalformedConditionError(f"Invalid field path: {path!r}")
    segments = tuple(path.split("."))
    if any(not segment for segment in segments):
        raise MalformedConditionError(f"Invalid field path: {path!r}")
    return segments


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (bool, int, float, str))


def _compile_operators(path: str, operators: Mapping) -> tuple[Predicate, ...]:
    if not operators:
        raise MalformedConditionError(f"Empty operator object for field '{path}'")

    unknown = sorted(str(key) for key in operators if key not in SUPPORTED_OPERATORS)
    if unknown:
        raise UnsupportedOperatorError(path, unknown[0])

    predicates: list[Predicate] = []

    for name in EQUALITY_OPERATORS:
        if name in operators:
            if not _is_scalar(operators[name]):
                raise MalformedConditionError(f"'{name}' for field '{path}' must be a scalar")
            predicates.append(Equals(operators[name], negate=(name == "ne")))

    bounds = {name: operators[name] for name in RANGE_OPERATORS if name in operators}
    if bounds:
        for name, bound in bounds.items():
            if not (_is_number(bound) or isinstance(bound, str)):
                raise MalformedConditionError(
                    f"'{name}' for field '{path}' must be a number or string"
                )
        predicates.append(Range(**bounds))

    for name in SET_OPERATORS:
        if name in operators:
            values = operators[name]
            if not isinstance(values, (list, tuple)):
                raise MalformedConditionError(f"'{name}' for field '{path}' must be a list")
            predicates.append(SetMembership(tuple(values), negate=(name == "nin")))

    patterns = {name: operators[name] for name in STRING_OPERATORS if name in operators}
    if patterns:
        for name, pattern in patterns.items():
            if not isinstance(pattern, str):
                raise MalformedConditionError(f"'{name}' for field '{path}' must be a string")
        predicates.append(StringMatch(**patterns))

    return tuple(predicates)


def compile_conditions(tree: Any) -> CompiledConditions:
    """
    Compile a raw filter tree.

    Raises:
        UnsupportedOperatorError: an operator key is not recognized
        MalformedConditionError: any other structural problem
    """
    if tree is None:
        return CompiledConditions()
    if not isinstance(tree, Mapping):
        raise MalformedConditionError("Filter tree must be an object")

    fields: list[FieldCondition] = []
    for path, operators in tree.items():
        segments = _split_path(path)
        if isinstance(operators, Mapping):
            predicates = _compile_operators(path, operators)
        elif _is_scalar(operators):
            predicates = (Equals(operators),)
        else:
            raise MalformedConditionError(
                f"Field '{path}' must be a scalar or an operator object"
            )
        fields.append(FieldCondition(path=path, segments=segments, predicates=predicates))

    return CompiledConditions(tuple(fields))


def evaluate(conditions: CompiledConditions, payload: Any) -> bool:
    """Evaluate compiled conditions against an event payload. Never raises."""
    return conditions.matches(payload)


def evaluate_filters(tree: Any, payload: Any) -> bool:
    """Compile and evaluate in one step. Raises only MalformedConditionError."""
    return evaluate(compile_conditions(tree), payload)
