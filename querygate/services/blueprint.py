"""Blueprint schema model and the process-wide blueprint registry.

A blueprint declares which fields of an entity a client may filter, select,
and sort on, which operators each field accepts, and which one-hop relations
to other blueprints may be traversed. Blueprints are plain immutable records
registered once at startup and looked up by name.
"""

import enum
import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from querygate.core.exceptions import (
    IllegalValueError,
    NotFoundError,
    SchemaError,
    UnknownFieldError,
    UnsupportedDepthError,
    ValidationError,
)
from querygate.services.operators import Operator, ValueKind, operators_for

logger = logging.getLogger(__name__)

STRUCTURAL_FIELDS = frozenset({"id", "created_at", "updated_at"})
_OPERATOR_VALUES = frozenset(op.value for op in Operator)
MAX_PATH_SEGMENTS = 2


def _label(name: str) -> str:
    """Convert snake_case field name to a human-readable label."""
    return name.replace("_", " ").title()


class EnumValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str | int | float | bool


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ValueKind
    operators: frozenset[Operator]
    enum_values: tuple[EnumValue, ...] | None = None
    label: str | None = None

    @property
    def allowed_values(self) -> tuple | None:
        if self.enum_values is None:
            return None
        return tuple(v.value for v in self.enum_values)


def field(
    kind: ValueKind,
    *operators: Operator,
    values: Iterable | type[enum.Enum] | None = None,
    label: str | None = None,
) -> FieldDescriptor:
    """Shorthand for declaring a field descriptor.

    ``values`` may be an Enum class, a list of raw values, or a list of
    EnumValue entries.
    """
    enum_values = None
    if values is not None:
        if isinstance(values, type) and issubclass(values, enum.Enum):
            values = [m.value for m in values]
        enum_values = tuple(
            v if isinstance(v, EnumValue) else EnumValue(label=_label(str(v)), value=v)
            for v in values
        )
    return FieldDescriptor(
        kind=kind,
        operators=frozenset(operators),
        enum_values=enum_values,
        label=label,
    )


class RelationDescriptor(BaseModel):
    """A named one-hop edge to another registered blueprint.

    ``fields`` limits which of the target's own fields are reachable (all of
    them when omitted); ``operators`` may narrow a reachable field's
    operators. ``resolved`` is filled in by the registry at registration.
    """

    model_config = ConfigDict(frozen=True)

    target: str
    label: str | None = None
    fields: tuple[str, ...] | None = None
    operators: dict[str, frozenset[Operator]] = Field(default_factory=dict)
    resolved: dict[str, FieldDescriptor] = Field(default_factory=dict)


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


_DIRECTION_ALIASES: dict[Any, SortDirection] = {
    "asc": SortDirection.ASC,
    "ascending": SortDirection.ASC,
    "desc": SortDirection.DESC,
    "descending": SortDirection.DESC,
    1: SortDirection.ASC,
    -1: SortDirection.DESC,
}


def parse_direction(value: Any, *, path: str | None = None) -> SortDirection:
    if isinstance(value, SortDirection):
        return value
    key = value.lower() if isinstance(value, str) else value
    if not isinstance(key, (str, int)) or isinstance(key, bool) or key not in _DIRECTION_ALIASES:
        raise IllegalValueError(
            "Sort direction must be 'asc' or 'desc'.",
            path=path,
            value=value,
        )
    return _DIRECTION_ALIASES[key]


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, entry: Any, *, path: str | None = None) -> "SortSpec":
        """Accept ``"field"``, ``[field, direction]`` or ``{"field", "direction"}``."""
        if isinstance(entry, SortSpec):
            return entry
        if isinstance(entry, str):
            return cls(field=entry)
        if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[0], str):
            return cls(field=entry[0], direction=parse_direction(entry[1], path=path))
        if isinstance(entry, Mapping) and isinstance(entry.get("field"), str):
            return cls(
                field=entry["field"],
                direction=parse_direction(entry.get("direction", "asc"), path=path),
            )
        raise IllegalValueError(
            "Sort entries must name a field and a direction.",
            path=path,
            value=entry,
        )


class Blueprint(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fields: dict[str, FieldDescriptor]
    relations: dict[str, RelationDescriptor] = Field(default_factory=dict)
    selectable_fields: frozenset[str] = frozenset()
    sortable_fields: frozenset[str] = frozenset()
    default_sort: tuple[SortSpec, ...] = ()
    structural_fields: frozenset[str] = STRUCTURAL_FIELDS
    max_filter_nodes: int | None = None

    @field_validator("default_sort", mode="before")
    @classmethod
    def _parse_default_sort(cls, v):
        return tuple(SortSpec.parse(entry) for entry in v)

    # --- Path resolution ---

    def resolve(self, path: str) -> FieldDescriptor:
        """Resolve a field path to its descriptor.

        A path is a bare field or ``relation.field`` through exactly one
        relation. Deeper paths raise UnsupportedDepthError.
        """
        parts = path.split(".")
        if len(parts) > MAX_PATH_SEGMENTS:
            raise UnsupportedDepthError(
                f"Field path '{path}' traverses more than one relation.",
                path=path,
            )
        if any(not p for p in parts):
            raise UnknownFieldError(f"Field path '{path}' is not valid.", path=path)

        if len(parts) == 1:
            descriptor = self.fields.get(path)
            if descriptor is None:
                raise UnknownFieldError(f"Field '{path}' is not queryable.", path=path)
            return descriptor

        relation_name, field_name = parts
        relation = self.relations.get(relation_name)
        if relation is None:
            raise UnknownFieldError(
                f"'{relation_name}' is not a queryable relation.",
                path=path,
            )
        descriptor = relation.resolved.get(field_name)
        if descriptor is None:
            raise UnknownFieldError(f"Field '{path}' is not queryable.", path=path)
        return descriptor

    def is_resolvable(self, path: str) -> bool:
        if path in self.structural_fields:
            return True
        try:
            self.resolve(path)
        except ValidationError:
            return False
        return True

    def all_field_paths(self) -> Iterator[tuple[str, FieldDescriptor]]:
        yield from self.fields.items()
        for relation_name, relation in self.relations.items():
            for field_name, descriptor in relation.resolved.items():
                yield f"{relation_name}.{field_name}", descriptor

    # --- Narrowing by configuration ---

    def narrow(self, policy: Mapping[str, Any]) -> "Blueprint":
        """Return a copy restricted by a stored configuration policy.

        A policy can only remove fields, operators, and sort keys; it can never
        widen what the registered blueprint allows. Unknown keys are ignored.
        """
        selectable = self.selectable_fields
        allowed = _policy_list(policy, "selectable_fields", "selectableFields")
        if allowed is not None:
            selectable = selectable & frozenset(allowed)

        sortable = self.sortable_fields
        allowed = _policy_list(policy, "sortable_fields", "sortableFields")
        if allowed is not None:
            sortable = sortable & frozenset(allowed)

        default_sort = self.default_sort
        raw_sort = _policy_list(policy, "default_sort", "defaultSort")
        if raw_sort is not None:
            try:
                default_sort = tuple(SortSpec.parse(entry) for entry in raw_sort)
            except IllegalValueError:
                logger.warning("Ignoring malformed default_sort in policy for %s", self.name)
        default_sort = tuple(s for s in default_sort if s.field in sortable)

        fields = dict(self.fields)
        relations = dict(self.relations)
        operator_policy = policy.get("operators")
        if isinstance(operator_policy, Mapping):
            for path, names in operator_policy.items():
                if not isinstance(names, list):
                    continue
                keep = frozenset(
                    Operator(n) for n in names if isinstance(n, str) and n in _OPERATOR_VALUES
                )
                fields, relations = _narrow_operators(fields, relations, path, keep)

        max_nodes = self.max_filter_nodes
        policy_max = policy.get("max_filter_nodes", policy.get("maxFilterNodes"))
        if isinstance(policy_max, int) and not isinstance(policy_max, bool) and policy_max > 0:
            max_nodes = policy_max if max_nodes is None else min(max_nodes, policy_max)

        return self.model_copy(update={
            "fields": fields,
            "relations": relations,
            "selectable_fields": selectable,
            "sortable_fields": sortable,
            "default_sort": default_sort,
            "max_filter_nodes": max_nodes,
        })

    def to_dict(self) -> dict:
        """Serialize for discovery endpoints and seeded system configurations."""
        fields = {}
        for path, descriptor in self.all_field_paths():
            entry: dict = {
                "type": descriptor.kind.value,
                "label": descriptor.label or _label(path.replace(".", " ")),
                "operators": sorted(op.value for op in descriptor.operators),
            }
            if descriptor.enum_values is not None:
                entry["values"] = [v.model_dump() for v in descriptor.enum_values]
            fields[path] = entry
        return {
            "name": self.name,
            "fields": fields,
            "relations": {
                name: {"target": rel.target, "label": rel.label or _label(name)}
                for name, rel in self.relations.items()
            },
            "selectable_fields": sorted(self.selectable_fields),
            "sortable_fields": sorted(self.sortable_fields),
            "default_sort": [
                {"field": s.field, "direction": s.direction.value} for s in self.default_sort
            ],
        }


def _policy_list(policy: Mapping[str, Any], *names: str) -> list | None:
    for name in names:
        value = policy.get(name)
        if isinstance(value, list):
            return value
    return None


def _narrow_operators(
    fields: dict[str, FieldDescriptor],
    relations: dict[str, RelationDescriptor],
    path: str,
    keep: frozenset,
) -> tuple[dict, dict]:
    if path in fields:
        current = fields[path]
        fields[path] = current.model_copy(update={"operators": current.operators & keep})
        return fields, relations

    relation_name, _, field_name = path.partition(".")
    relation = relations.get(relation_name)
    if relation is None or field_name not in relation.resolved:
        return fields, relations
    resolved = dict(relation.resolved)
    current = resolved[field_name]
    resolved[field_name] = current.model_copy(update={"operators": current.operators & keep})
    relations[relation_name] = relation.model_copy(update={"resolved": resolved})
    return fields, relations


class BlueprintRegistry:
    """Append-only registry of blueprints, keyed by name.

    Registration happens during process initialization; ``freeze()`` closes
    the registry so request handling only ever reads it.
    """

    def __init__(self) -> None:
        self._blueprints: dict[str, Blueprint] = {}
        self._frozen = False

    def register(self, blueprint: Blueprint) -> Blueprint:
        """Validate and register a blueprint. Raises SchemaError if invalid."""
        if self._frozen:
            raise SchemaError(
                f"Cannot register '{blueprint.name}': the registry is frozen.",
                blueprint=blueprint.name,
            )
        if blueprint.name in self._blueprints:
            raise SchemaError(
                f"Blueprint '{blueprint.name}' is already registered.",
                blueprint=blueprint.name,
            )

        for path, descriptor in blueprint.fields.items():
            self._check_field(blueprint.name, path, descriptor)

        relations = {
            name: self._resolve_relation(blueprint, name, relation)
            for name, relation in blueprint.relations.items()
        }
        resolved = blueprint.model_copy(update={"relations": relations})

        declared = [
            ("selectable", resolved.selectable_fields),
            ("sortable", resolved.sortable_fields),
            ("default sort", [s.field for s in resolved.default_sort]),
        ]
        for what, paths in declared:
            for path in paths:
                if not resolved.is_resolvable(path):
                    raise SchemaError(
                        f"Blueprint '{blueprint.name}' declares unresolvable {what} field '{path}'.",
                        blueprint=blueprint.name,
                        path=path,
                    )
        for spec in resolved.default_sort:
            if spec.field not in resolved.sortable_fields:
                raise SchemaError(
                    f"Blueprint '{blueprint.name}' default sort field '{spec.field}' is not sortable.",
                    blueprint=blueprint.name,
                    path=spec.field,
                )

        self._blueprints[blueprint.name] = resolved
        logger.info(
            "Registered blueprint %s (%d fields, %d relations)",
            blueprint.name,
            len(resolved.fields),
            len(relations),
        )
        return resolved

    def lookup(self, name: str) -> Blueprint:
        blueprint = self._blueprints.get(name)
        if blueprint is None:
            raise NotFoundError(f"Blueprint '{name}' is not registered.", blueprint=name)
        return blueprint

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return sorted(self._blueprints)

    def __contains__(self, name: object) -> bool:
        return name in self._blueprints

    def __iter__(self) -> Iterator[Blueprint]:
        return iter(self._blueprints.values())

    def __len__(self) -> int:
        return len(self._blueprints)

    # --- Internal checks ---

    @staticmethod
    def _check_field(name: str, path: str, descriptor: FieldDescriptor) -> None:
        if not path or "." in path:
            raise SchemaError(
                f"Blueprint '{name}' field name '{path}' must be a bare identifier.",
                blueprint=name,
                path=path,
            )
        illegal = descriptor.operators - operators_for(descriptor.kind)
        if illegal:
            raise SchemaError(
                f"Blueprint '{name}' field '{path}' declares operators "
                f"{sorted(op.value for op in illegal)} not legal for {descriptor.kind.value} fields.",
                blueprint=name,
                path=path,
            )
        if descriptor.kind == ValueKind.ENUM and not descriptor.enum_values:
            raise SchemaError(
                f"Blueprint '{name}' enum field '{path}' declares no values.",
                blueprint=name,
                path=path,
            )
        if descriptor.kind == ValueKind.JSON and descriptor.enum_values:
            raise SchemaError(
                f"Blueprint '{name}' json field '{path}' cannot declare enumerated values.",
                blueprint=name,
                path=path,
            )

    def _resolve_relation(
        self, blueprint: Blueprint, name: str, relation: RelationDescriptor
    ) -> RelationDescriptor:
        if name in blueprint.fields:
            raise SchemaError(
                f"Blueprint '{blueprint.name}' relation '{name}' collides with a field.",
                blueprint=blueprint.name,
                path=name,
            )
        target = self._blueprints.get(relation.target)
        if target is None:
            raise SchemaError(
                f"Blueprint '{blueprint.name}' relation '{name}' targets "
                f"unregistered blueprint '{relation.target}'.",
                blueprint=blueprint.name,
                path=name,
            )

        exposed = relation.fields if relation.fields is not None else tuple(target.fields)
        resolved: dict[str, FieldDescriptor] = {}
        relation_label = relation.label or _label(name)
        # Only the target's own fields are reachable: no transitive hops.
        for field_name in exposed:
            base = target.fields.get(field_name)
            if base is None:
                raise SchemaError(
                    f"Blueprint '{blueprint.name}' relation '{name}' exposes unknown "
                    f"field '{field_name}' of '{target.name}'.",
                    blueprint=blueprint.name,
                    path=f"{name}.{field_name}",
                )
            operators = relation.operators.get(field_name, base.operators)
            if not operators <= base.operators:
                raise SchemaError(
                    f"Blueprint '{blueprint.name}' relation field '{name}.{field_name}' "
                    f"widens the operators of '{target.name}.{field_name}'.",
                    blueprint=blueprint.name,
                    path=f"{name}.{field_name}",
                )
            resolved[field_name] = base.model_copy(update={
                "operators": operators,
                "label": f"{relation_label}: {base.label or _label(field_name)}",
            })

        for field_name in relation.operators:
            if field_name not in resolved:
                raise SchemaError(
                    f"Blueprint '{blueprint.name}' relation '{name}' overrides operators "
                    f"of unexposed field '{field_name}'.",
                    blueprint=blueprint.name,
                    path=f"{name}.{field_name}",
                )

        return relation.model_copy(update={"resolved": resolved})


# Process-wide registry, populated at startup by querygate.blueprints.register_all().
registry = BlueprintRegistry()
