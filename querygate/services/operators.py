"""Operator catalog: the closed set of filter operators, grouped by value kind.

This module is the single source of truth consulted both when blueprints are
registered and when client filters are validated.
"""

import enum
from datetime import date, datetime, timezone

from querygate.core.exceptions import IllegalOperatorError


class ValueKind(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ENUM = "enum"
    ARRAY = "array"
    JSON = "json"


class Operator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    IN = "in"
    NOT_IN = "not_in"
    OVERLAPS = "overlaps"
    CONTAINS_ALL = "contains_all"
    JSON_EQUALS = "json_equals"
    JSON_CONTAINS = "json_contains"


class Arity(str, enum.Enum):
    NONE = "none"  # no value
    SCALAR = "scalar"  # one value
    RANGE = "range"  # exactly two ordered bounds
    SET = "set"  # non-empty list of values
    ANY = "any"  # any JSON document


_NULL_CHECKS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})

_COMPARABLE = frozenset({
    Operator.EQUALS, Operator.NOT_EQUALS,
    Operator.GT, Operator.GTE, Operator.LT, Operator.LTE,
    Operator.BETWEEN, Operator.NOT_BETWEEN,
    Operator.IN, Operator.NOT_IN,
}) | _NULL_CHECKS

_KIND_OPERATORS: dict[ValueKind, frozenset[Operator]] = {
    ValueKind.STRING: frozenset({
        Operator.EQUALS, Operator.NOT_EQUALS,
        Operator.CONTAINS, Operator.NOT_CONTAINS,
        Operator.STARTS_WITH, Operator.ENDS_WITH,
        Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
        Operator.IN, Operator.NOT_IN,
    }) | _NULL_CHECKS,
    ValueKind.NUMBER: _COMPARABLE,
    ValueKind.DATE: _COMPARABLE,
    ValueKind.BOOLEAN: frozenset({Operator.EQUALS}) | _NULL_CHECKS,
    ValueKind.ENUM: frozenset({
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN,
    }) | _NULL_CHECKS,
    ValueKind.ARRAY: frozenset({
        Operator.OVERLAPS, Operator.CONTAINS_ALL,
        Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
    }),
    ValueKind.JSON: frozenset({Operator.JSON_EQUALS, Operator.JSON_CONTAINS}),
}

_OPERATOR_ARITY: dict[Operator, Arity] = {
    Operator.IS_EMPTY: Arity.NONE,
    Operator.IS_NOT_EMPTY: Arity.NONE,
    Operator.IS_NULL: Arity.NONE,
    Operator.IS_NOT_NULL: Arity.NONE,
    Operator.BETWEEN: Arity.RANGE,
    Operator.NOT_BETWEEN: Arity.RANGE,
    Operator.IN: Arity.SET,
    Operator.NOT_IN: Arity.SET,
    Operator.OVERLAPS: Arity.SET,
    Operator.CONTAINS_ALL: Arity.SET,
    Operator.JSON_EQUALS: Arity.ANY,
    Operator.JSON_CONTAINS: Arity.ANY,
}

# Alternate spellings accepted from clients (json-logic symbols and the
# legacy array operator name).
_ALIASES: dict[str, Operator] = {
    "==": Operator.EQUALS,
    "!=": Operator.NOT_EQUALS,
    ">": Operator.GT,
    ">=": Operator.GTE,
    "<": Operator.LT,
    "<=": Operator.LTE,
    "array_overlaps": Operator.OVERLAPS,
}


def operators_for(kind: ValueKind) -> frozenset[Operator]:
    """Return the closed set of operators legal for a value kind."""
    return _KIND_OPERATORS[kind]


def arity_of(operator: Operator) -> Arity:
    return _OPERATOR_ARITY.get(operator, Arity.SCALAR)


def is_operator_name(name: object) -> bool:
    return isinstance(name, str) and (name in _ALIASES or name in Operator._value2member_map_)


def parse_operator(name: object, *, path: str | None = None) -> Operator:
    """Map a client-supplied operator name onto the catalog.

    Raises IllegalOperatorError for anything outside the catalog.
    """
    if isinstance(name, Operator):
        return name
    if isinstance(name, str):
        if name in _ALIASES:
            return _ALIASES[name]
        try:
            return Operator(name)
        except ValueError:
            pass
    raise IllegalOperatorError(
        f"Unknown operator '{name}'.",
        path=path,
        operator=str(name),
    )


def _is_iso_date(value: str) -> bool:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
    return True


def scalar_matches_kind(value: object, kind: ValueKind) -> bool:
    """Check that a single scalar value has the shape a value kind expects.

    Enum membership is checked separately against the field's declared values.
    """
    if kind == ValueKind.STRING:
        return isinstance(value, str)
    if kind == ValueKind.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == ValueKind.BOOLEAN:
        return isinstance(value, bool)
    if kind == ValueKind.DATE:
        return isinstance(value, str) and _is_iso_date(value)
    if kind == ValueKind.ENUM:
        return isinstance(value, (str, int, float, bool))
    if kind == ValueKind.ARRAY:
        return isinstance(value, (str, int, float, bool))
    return True


def comparable_key(value: object, kind: ValueKind):
    """Return a sort key used to check range bounds are ordered.

    Dates without an offset are read as UTC so they compare against offset ones.
    """
    if kind == ValueKind.DATE and isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value)
        except ValueError:
            moment = datetime.combine(date.fromisoformat(value), datetime.min.time())
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment
    return value
