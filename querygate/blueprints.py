"""Queryable entity blueprints.

Each blueprint is plain data: fields with their operators, one-hop relations
to other blueprints, and the select/sort whitelists. ``register_all`` is
called once from the application lifespan; relation targets must be
registered before the blueprints that point at them.
"""

from querygate.models.enums import CollectionType, FontType, UserRole
from querygate.services.blueprint import (
    Blueprint,
    BlueprintRegistry,
    EnumValue,
    RelationDescriptor,
    field,
)
from querygate.services.operators import Operator as Op
from querygate.services.operators import ValueKind as Kind

CATEGORY = Blueprint(
    name="CATEGORY_MANAGEMENT",
    fields={
        "name": field(Kind.STRING, Op.CONTAINS, Op.EQUALS),
        "slug": field(Kind.STRING, Op.EQUALS),
        "level": field(Kind.NUMBER, Op.EQUALS, Op.GT, Op.LT),
    },
    selectable_fields=["id", "name", "slug", "level", "created_at"],
    sortable_fields=["name", "level", "created_at"],
    default_sort=[("level", "asc"), ("name", "asc")],
)

USER = Blueprint(
    name="USER_MANAGEMENT",
    fields={
        "email": field(Kind.STRING, Op.EQUALS, Op.CONTAINS, Op.ENDS_WITH),
        "full_name": field(Kind.STRING, Op.CONTAINS, Op.STARTS_WITH),
        "role": field(Kind.ENUM, Op.EQUALS, Op.IN, values=UserRole),
        "is_active": field(Kind.BOOLEAN, Op.EQUALS),
        "created_at": field(Kind.DATE, Op.BETWEEN, Op.GTE, Op.LTE),
    },
    selectable_fields=["id", "email", "full_name", "role", "is_active", "created_at"],
    sortable_fields=["email", "full_name", "created_at"],
    default_sort=[("created_at", "desc")],
)

FONT = Blueprint(
    name="FONT_MANAGEMENT",
    fields={
        "name": field(Kind.STRING, Op.CONTAINS, Op.EQUALS),
        "slug": field(Kind.STRING, Op.EQUALS),
        "font_type": field(Kind.ENUM, Op.IN, Op.EQUALS, values=FontType, label="Font Type"),
        "price": field(Kind.NUMBER, Op.GTE, Op.LTE, Op.BETWEEN),
        "download_count": field(Kind.NUMBER, Op.GTE, Op.LTE),
        "is_active": field(Kind.BOOLEAN, Op.EQUALS),
        "tags": field(Kind.ARRAY, Op.OVERLAPS, Op.CONTAINS_ALL, Op.IS_EMPTY),
        "metadata": field(Kind.JSON, Op.JSON_CONTAINS),
        "created_at": field(Kind.DATE, Op.BETWEEN, Op.GTE, label="Creation Date"),
        "updated_at": field(Kind.DATE, Op.BETWEEN, Op.GTE, label="Last Updated"),
    },
    relations={
        "categories": RelationDescriptor(
            target="CATEGORY_MANAGEMENT",
            fields=("name", "slug"),
            operators={"name": frozenset({Op.EQUALS})},
        ),
        "creator": RelationDescriptor(
            target="USER_MANAGEMENT",
            fields=("email", "full_name"),
        ),
    },
    selectable_fields=[
        "id", "name", "slug", "font_type", "price", "download_count",
        "is_active", "tags", "created_at", "updated_at", "categories.name",
        "creator.full_name",
    ],
    sortable_fields=["name", "price", "download_count", "created_at", "updated_at"],
    default_sort=[("created_at", "desc")],
)

COLLECTION = Blueprint(
    name="FONT_COLLECTION_MANAGEMENT",
    fields={
        "name": field(Kind.STRING, Op.CONTAINS, Op.EQUALS),
        "slug": field(Kind.STRING, Op.CONTAINS, Op.EQUALS),
        "description": field(Kind.STRING, Op.CONTAINS, Op.IS_EMPTY, Op.IS_NOT_EMPTY),
        "collection_type": field(
            Kind.ENUM, Op.EQUALS, Op.IN, values=CollectionType, label="Collection Type"
        ),
        "price": field(Kind.NUMBER, Op.EQUALS, Op.GTE, Op.LTE),
        "download_count": field(Kind.NUMBER, Op.EQUALS, Op.GTE, Op.LTE),
        "is_active": field(
            Kind.ENUM,
            Op.EQUALS,
            values=[EnumValue(label="Yes", value=True), EnumValue(label="No", value=False)],
        ),
        "created_at": field(Kind.DATE, Op.BETWEEN, Op.GTE, Op.LTE),
        "updated_at": field(Kind.DATE, Op.BETWEEN, Op.GTE, Op.LTE),
    },
    relations={
        "creator": RelationDescriptor(target="USER_MANAGEMENT", fields=("email",)),
        "categories": RelationDescriptor(target="CATEGORY_MANAGEMENT"),
    },
    selectable_fields=[
        "id", "name", "slug", "description", "collection_type", "price",
        "download_count", "is_active", "created_at", "updated_at",
    ],
    sortable_fields=[
        "name", "slug", "collection_type", "price", "download_count",
        "created_at", "updated_at",
    ],
    default_sort=[("created_at", "desc")],
)

# Registration order: relation targets first.
ALL_BLUEPRINTS = (CATEGORY, USER, FONT, COLLECTION)


def register_all(registry: BlueprintRegistry) -> None:
    for blueprint in ALL_BLUEPRINTS:
        if blueprint.name not in registry:
            registry.register(blueprint)
