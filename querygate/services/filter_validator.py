"""Filter validation and compilation.

Client filters arrive as untrusted JSON. ``parse_filter`` turns them into an
explicit sum type (``Combinator`` or ``Leaf``); ``validate`` checks every
leaf, the projection, and the sort against a blueprint and returns an
immutable ``ValidatedQuery``. Validation is pure and fail-fast: the first
violation is raised, nothing is accumulated.
"""

import enum
from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from querygate.core.exceptions import (
    IllegalOperatorError,
    IllegalValueError,
    MalformedFilterError,
    TooComplexError,
)
from querygate.services.blueprint import Blueprint, FieldDescriptor, SortSpec
from querygate.services.operators import (
    Arity,
    Operator,
    ValueKind,
    arity_of,
    comparable_key,
    is_operator_name,
    parse_operator,
    scalar_matches_kind,
)

DEFAULT_MAX_NODES = 100

_MISSING = object()


class LogicOp(str, enum.Enum):
    AND = "and"
    OR = "or"


class Leaf(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator
    value: Any = None


class Combinator(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: LogicOp
    children: tuple["FilterNode", ...]


FilterNode = Union[Combinator, Leaf]
Combinator.model_rebuild()


def node_to_dict(node: FilterNode) -> dict:
    match node:
        case Combinator(op=op, children=children):
            return {op.value: [node_to_dict(child) for child in children]}
        case Leaf(field=path, operator=operator, value=value):
            return {"field": path, "op": operator.value, "value": value}


class ValidatedQuery(BaseModel):
    """The only query representation handed to the persistence layer.

    Every field/operator/value triple in ``filter`` has been checked against
    ``blueprint``; ``projection`` and ``sort`` are within its whitelists.
    """

    model_config = ConfigDict(frozen=True)

    blueprint: str
    filter: FilterNode | None = None
    projection: frozenset[str]
    sort: tuple[SortSpec, ...]

    def to_dict(self) -> dict:
        return {
            "blueprint": self.blueprint,
            "filter": node_to_dict(self.filter) if self.filter is not None else None,
            "select": sorted(self.projection),
            "sort": [{"field": s.field, "direction": s.direction.value} for s in self.sort],
        }


# ── Parsing ──────────────────────────────────────────────────────────

def parse_filter(payload: Any, *, path: str = "filter", budget: "_Budget | None" = None) -> FilterNode:
    """Convert a client JSON filter into a FilterNode.

    Accepted shapes:
        {"and": [...]} / {"or": [...]}
        {"field": "price", "op": "gte", "value": 10}
        {"gte": ["price", 10]} or {"gte": [{"var": "price"}, 10]}
        {"between": ["price", [0, 100]]} or {"between": ["price", 0, 100]}
    """
    if isinstance(payload, (Combinator, Leaf)):
        return payload
    if not isinstance(payload, Mapping) or not payload:
        raise MalformedFilterError("Filter node must be a non-empty object.", path=path)
    if budget is not None:
        budget.spend(path)

    if "field" in payload:
        return _parse_explicit_leaf(payload, path)

    if len(payload) != 1:
        raise MalformedFilterError(
            f"Filter node must have exactly one key, found: {', '.join(map(str, payload))}.",
            path=path,
        )
    (key, args), = payload.items()
    lowered = key.lower() if isinstance(key, str) else key

    if lowered in (LogicOp.AND.value, LogicOp.OR.value):
        if not isinstance(args, list):
            raise MalformedFilterError(
                f"Arguments for '{key}' must be a list.",
                path=f"{path}.{lowered}",
            )
        return Combinator(
            op=LogicOp(lowered),
            children=tuple(
                parse_filter(child, path=f"{path}.{lowered}[{i}]", budget=budget)
                for i, child in enumerate(args)
            ),
        )

    if is_operator_name(key):
        return _parse_logic_leaf(key, args, f"{path}.{key}")

    raise IllegalOperatorError(f"Unknown operator '{key}'.", path=path, operator=str(key))


def _parse_explicit_leaf(payload: Mapping, path: str) -> Leaf:
    field_path = payload.get("field")
    if not isinstance(field_path, str):
        raise MalformedFilterError("Leaf 'field' must be a string.", path=path)
    name = payload.get("op", payload.get("operator"))
    if name is None:
        raise MalformedFilterError("Leaf must name an operator.", path=path)
    extra = set(payload) - {"field", "op", "operator", "value"}
    if extra:
        raise MalformedFilterError(
            f"Unexpected keys in filter leaf: {', '.join(sorted(map(str, extra)))}.",
            path=path,
        )
    operator = parse_operator(name, path=path)
    value = payload.get("value", _MISSING)
    return Leaf(field=field_path, operator=operator, value=None if value is _MISSING else value)


def _parse_logic_leaf(key: str, args: Any, path: str) -> Leaf:
    operator = parse_operator(key, path=path)
    if not isinstance(args, list) or not args:
        raise MalformedFilterError(
            f"Arguments for '{key}' must be a non-empty list starting with a field.",
            path=path,
        )
    target, *rest = args
    if isinstance(target, Mapping) and set(target) == {"var"}:
        target = target["var"]
        if isinstance(target, list) and target:
            target = target[0]
    if not isinstance(target, str):
        raise MalformedFilterError("Field reference must be a string.", path=path)

    arity = arity_of(operator)
    if arity == Arity.NONE:
        value = rest[0] if rest else None
    elif arity == Arity.RANGE and len(rest) == 2:
        value = list(rest)
    elif len(rest) == 1:
        value = rest[0]
    else:
        raise IllegalValueError(
            f"Operator '{operator.value}' expects one value argument.",
            path=path,
            operator=operator.value,
        )
    return Leaf(field=target, operator=operator, value=value)


# ── Validation ───────────────────────────────────────────────────────

class _Budget:
    """Node counter shared across one validation pass."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0

    def spend(self, path: str) -> None:
        self.used += 1
        if self.used > self.limit:
            raise TooComplexError(
                f"Filter exceeds the maximum of {self.limit} nodes.",
                path=path,
                limit=self.limit,
            )


def _validate_node(
    blueprint: Blueprint, node: FilterNode, budget: _Budget | None, path: str
) -> FilterNode:
    if budget is not None:
        budget.spend(path)
    match node:
        case Combinator(op=op, children=children):
            if not children:
                raise IllegalValueError(
                    f"'{op.value}' requires at least one condition.",
                    path=path,
                    reason="empty combinator",
                )
            for i, child in enumerate(children):
                _validate_node(blueprint, child, budget, f"{path}.{op.value}[{i}]")
            return node
        case Leaf():
            _validate_leaf(blueprint, node, path)
            return node
        case _:
            raise MalformedFilterError("Unrecognized filter node.", path=path)


def _validate_leaf(blueprint: Blueprint, leaf: Leaf, path: str) -> None:
    descriptor = blueprint.resolve(leaf.field)
    if leaf.operator not in descriptor.operators:
        raise IllegalOperatorError(
            f"Operator '{leaf.operator.value}' is not allowed for field '{leaf.field}'.",
            path=path,
            field=leaf.field,
            operator=leaf.operator.value,
        )
    _check_value(leaf, descriptor, path)


def _value_error(leaf: Leaf, path: str, message: str) -> IllegalValueError:
    return IllegalValueError(
        message,
        path=path,
        field=leaf.field,
        operator=leaf.operator.value,
        value=leaf.value,
    )


def _check_scalar(leaf: Leaf, descriptor: FieldDescriptor, value: Any, path: str) -> None:
    if isinstance(value, (list, dict)) or value is None:
        raise _value_error(
            leaf, path, f"Operator '{leaf.operator.value}' on '{leaf.field}' requires a single value."
        )
    if not scalar_matches_kind(value, descriptor.kind):
        raise _value_error(
            leaf, path, f"Value for '{leaf.field}' must be a {descriptor.kind.value}."
        )
    allowed = descriptor.allowed_values
    if allowed is not None and not any(_same_value(value, a) for a in allowed):
        raise _value_error(
            leaf,
            path,
            f"Value '{value}' is not allowed for field '{leaf.field}'. "
            f"Permitted values are: {', '.join(map(str, allowed))}.",
        )


def _same_value(value: Any, allowed: Any) -> bool:
    # True == 1 in Python; enum membership must not conflate them.
    if isinstance(value, bool) or isinstance(allowed, bool):
        return isinstance(value, bool) and isinstance(allowed, bool) and value is allowed
    return value == allowed


def _check_value(leaf: Leaf, descriptor: FieldDescriptor, path: str) -> None:
    arity = arity_of(leaf.operator)
    value = leaf.value

    if arity == Arity.NONE:
        if value is not None:
            raise _value_error(leaf, path, f"Operator '{leaf.operator.value}' takes no value.")
        return

    if arity == Arity.ANY:
        return

    if arity == Arity.SCALAR:
        _check_scalar(leaf, descriptor, value, path)
        return

    if not isinstance(value, list):
        raise _value_error(
            leaf, path, f"Operator '{leaf.operator.value}' on '{leaf.field}' requires a list value."
        )

    if arity == Arity.RANGE:
        if len(value) != 2:
            raise _value_error(
                leaf, path, f"Operator '{leaf.operator.value}' requires exactly two bounds."
            )
        for bound in value:
            _check_scalar(leaf, descriptor, bound, path)
        if descriptor.kind not in (ValueKind.NUMBER, ValueKind.DATE):
            return
        try:
            ordered = comparable_key(value[0], descriptor.kind) <= comparable_key(value[1], descriptor.kind)
        except TypeError:
            ordered = False
        if not ordered:
            raise _value_error(
                leaf, path, f"Bounds for '{leaf.field}' must be ordered lower, upper."
            )
        return

    # Arity.SET
    if not value:
        raise _value_error(
            leaf, path, f"Operator '{leaf.operator.value}' requires a non-empty list."
        )
    for item in value:
        _check_scalar(leaf, descriptor, item, path)


def _validate_projection(blueprint: Blueprint, projection: list[str] | None) -> frozenset[str]:
    if projection is None:
        return blueprint.selectable_fields
    if not isinstance(projection, list):
        raise IllegalValueError("'select' must be a list of field names.", path="select")
    if not projection:
        raise IllegalValueError(
            "'select' must name at least one field; omit it to select all.", path="select"
        )
    for i, name in enumerate(projection):
        if not isinstance(name, str) or name not in blueprint.selectable_fields:
            raise IllegalValueError(
                f"Field '{name}' is not selectable.",
                path=f"select[{i}]",
                value=name,
            )
    return frozenset(projection)


def _validate_sort(blueprint: Blueprint, sort: list | None) -> tuple[SortSpec, ...]:
    if sort is None:
        return blueprint.default_sort
    if not isinstance(sort, list):
        raise IllegalValueError("'sort' must be a list.", path="sort")
    specs = []
    for i, entry in enumerate(sort):
        spec = SortSpec.parse(entry, path=f"sort[{i}]")
        if spec.field not in blueprint.sortable_fields:
            raise IllegalValueError(
                f"Field '{spec.field}' is not sortable.",
                path=f"sort[{i}]",
                value=spec.field,
            )
        specs.append(spec)
    return tuple(specs)


def validate(
    blueprint: Blueprint,
    filter_node: Any = None,
    projection: list[str] | None = None,
    sort: list | None = None,
    *,
    max_nodes: int = DEFAULT_MAX_NODES,
) -> ValidatedQuery:
    """Validate a filter, projection, and sort against a blueprint.

    ``filter_node`` may be a FilterNode or raw client JSON. Omitted
    projection means every selectable field; omitted sort means the
    blueprint's default sort. Raises the first ValidationError found.
    """
    limit = max_nodes
    if blueprint.max_filter_nodes is not None:
        limit = min(limit, blueprint.max_filter_nodes)

    validated_filter = None
    if filter_node is not None:
        budget = _Budget(limit)
        if isinstance(filter_node, (Combinator, Leaf)):
            validated_filter = _validate_node(blueprint, filter_node, budget, "filter")
        else:
            # Raw JSON is counted while parsing, before any recursion into it.
            node = parse_filter(filter_node, budget=budget)
            validated_filter = _validate_node(blueprint, node, None, "filter")

    return ValidatedQuery(
        blueprint=blueprint.name,
        filter=validated_filter,
        projection=_validate_projection(blueprint, projection),
        sort=_validate_sort(blueprint, sort),
    )


class FilterValidator:
    """Validator bound to a configured node-count ceiling."""

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES) -> None:
        self.max_nodes = max_nodes

    def validate(
        self,
        blueprint: Blueprint,
        filter_node: Any = None,
        projection: list[str] | None = None,
        sort: list | None = None,
    ) -> ValidatedQuery:
        return validate(blueprint, filter_node, projection, sort, max_nodes=self.max_nodes)
