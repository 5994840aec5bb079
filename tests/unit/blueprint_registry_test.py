import pytest

from querygate.blueprints import CATEGORY, FONT, USER
from querygate.core.exceptions import (
    IllegalValueError,
    NotFoundError,
    SchemaError,
    UnknownFieldError,
    UnsupportedDepthError,
)
from querygate.models.enums import FontType
from querygate.services.blueprint import (
    Blueprint,
    BlueprintRegistry,
    RelationDescriptor,
    SortDirection,
    SortSpec,
    field,
    parse_direction,
)
from querygate.services.operators import Operator as Op
from querygate.services.operators import ValueKind as Kind


def _simple(name: str = "THING", **overrides) -> Blueprint:
    spec = {
        "name": name,
        "fields": {
            "title": field(Kind.STRING, Op.EQUALS, Op.CONTAINS),
            "score": field(Kind.NUMBER, Op.GT, Op.BETWEEN),
        },
        "selectable_fields": ["id", "title", "score"],
        "sortable_fields": ["title", "score"],
        "default_sort": [("score", "desc")],
    }
    spec.update(overrides)
    return Blueprint(**spec)


class TestRegister:
    def test_registers_and_looks_up(self) -> None:
        registry = BlueprintRegistry()
        registered = registry.register(_simple())
        assert registry.lookup("THING") is registered
        assert "THING" in registry
        assert len(registry) == 1

    def test_lookup_unknown_name(self) -> None:
        with pytest.raises(NotFoundError):
            BlueprintRegistry().lookup("MISSING")

    def test_duplicate_name_rejected(self) -> None:
        registry = BlueprintRegistry()
        registry.register(_simple())
        with pytest.raises(SchemaError):
            registry.register(_simple())

    def test_frozen_registry_rejects_registration(self) -> None:
        registry = BlueprintRegistry()
        registry.freeze()
        assert registry.frozen
        with pytest.raises(SchemaError, match="frozen"):
            registry.register(_simple())

    def test_operator_outside_kind_catalog_rejected(self) -> None:
        bad = _simple(fields={"title": field(Kind.STRING, Op.GT)})
        with pytest.raises(SchemaError) as exc_info:
            BlueprintRegistry().register(bad)
        assert exc_info.value.details["path"] == "title"

    def test_enum_field_requires_values(self) -> None:
        bad = _simple(
            fields={"status": field(Kind.ENUM, Op.EQUALS)},
            selectable_fields=[],
            sortable_fields=[],
            default_sort=[],
        )
        with pytest.raises(SchemaError, match="declares no values"):
            BlueprintRegistry().register(bad)

    def test_dotted_field_name_rejected(self) -> None:
        bad = _simple(fields={"a.b": field(Kind.STRING, Op.EQUALS)}, selectable_fields=[],
                      sortable_fields=[], default_sort=[])
        with pytest.raises(SchemaError):
            BlueprintRegistry().register(bad)

    def test_unresolvable_selectable_field_rejected(self) -> None:
        with pytest.raises(SchemaError, match="selectable"):
            BlueprintRegistry().register(_simple(selectable_fields=["title", "nope"]))

    def test_default_sort_must_be_sortable(self) -> None:
        with pytest.raises(SchemaError, match="not sortable"):
            BlueprintRegistry().register(_simple(default_sort=[("id", "asc")]))

    def test_relation_to_unregistered_target_rejected(self) -> None:
        bad = _simple(relations={"owner": RelationDescriptor(target="USER_MANAGEMENT")})
        with pytest.raises(SchemaError, match="unregistered"):
            BlueprintRegistry().register(bad)

    def test_relation_cannot_widen_operators(self) -> None:
        registry = BlueprintRegistry()
        registry.register(CATEGORY)
        bad = _simple(
            relations={
                "category": RelationDescriptor(
                    target="CATEGORY_MANAGEMENT",
                    operators={"slug": frozenset({Op.CONTAINS})},
                )
            }
        )
        with pytest.raises(SchemaError):
            registry.register(bad)

    def test_relation_exposes_only_listed_fields(self, blueprints: BlueprintRegistry) -> None:
        font = blueprints.lookup("FONT_MANAGEMENT")
        assert set(font.relations["categories"].resolved) == {"name", "slug"}
        assert font.resolve("categories.name").operators == frozenset({Op.EQUALS})

    def test_declared_blueprints_register(self, blueprints: BlueprintRegistry) -> None:
        assert blueprints.names() == [
            "CATEGORY_MANAGEMENT",
            "FONT_COLLECTION_MANAGEMENT",
            "FONT_MANAGEMENT",
            "USER_MANAGEMENT",
        ]


class TestResolve:
    def test_bare_field(self, blueprints: BlueprintRegistry) -> None:
        descriptor = blueprints.lookup("FONT_MANAGEMENT").resolve("price")
        assert descriptor.kind == Kind.NUMBER

    def test_one_hop_relation(self, blueprints: BlueprintRegistry) -> None:
        descriptor = blueprints.lookup("FONT_MANAGEMENT").resolve("creator.email")
        assert descriptor.kind == Kind.STRING

    def test_two_hops_rejected(self, blueprints: BlueprintRegistry) -> None:
        with pytest.raises(UnsupportedDepthError):
            blueprints.lookup("FONT_MANAGEMENT").resolve("categories.parent.name")

    def test_unknown_field(self, blueprints: BlueprintRegistry) -> None:
        with pytest.raises(UnknownFieldError):
            blueprints.lookup("FONT_MANAGEMENT").resolve("password_hash")

    def test_relation_field_not_exposed(self, blueprints: BlueprintRegistry) -> None:
        # USER exposes role, but the creator relation only reaches email and full_name.
        with pytest.raises(UnknownFieldError):
            blueprints.lookup("FONT_MANAGEMENT").resolve("creator.role")

    def test_structural_fields_are_resolvable(self, blueprints: BlueprintRegistry) -> None:
        assert blueprints.lookup("CATEGORY_MANAGEMENT").is_resolvable("id")


class TestSortParsing:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("asc", SortDirection.ASC), ("DESC", SortDirection.DESC), (1, SortDirection.ASC), (-1, SortDirection.DESC)],
    )
    def test_direction_aliases(self, raw, expected) -> None:
        assert parse_direction(raw) is expected

    @pytest.mark.parametrize("raw", ["up", 0, True, None, ["asc"]])
    def test_invalid_direction(self, raw) -> None:
        with pytest.raises(IllegalValueError):
            parse_direction(raw)

    def test_entry_shapes(self) -> None:
        assert SortSpec.parse("name") == SortSpec(field="name", direction=SortDirection.ASC)
        assert SortSpec.parse(["price", -1]).direction is SortDirection.DESC
        assert SortSpec.parse({"field": "price", "direction": "desc"}).field == "price"


class TestNarrow:
    def test_narrow_intersects_whitelists(self, blueprints: BlueprintRegistry) -> None:
        font = blueprints.lookup("FONT_MANAGEMENT")
        narrowed = font.narrow({
            "selectableFields": ["name", "price", "secret_column"],
            "sortable_fields": ["price"],
        })
        assert narrowed.selectable_fields == frozenset({"name", "price"})
        assert narrowed.sortable_fields == frozenset({"price"})
        # created_at is no longer sortable, so the default sort drops it.
        assert narrowed.default_sort == ()

    def test_narrow_never_widens_operators(self, blueprints: BlueprintRegistry) -> None:
        font = blueprints.lookup("FONT_MANAGEMENT")
        narrowed = font.narrow({"operators": {"price": ["between", "contains"], "categories.name": []}})
        assert narrowed.fields["price"].operators == frozenset({Op.BETWEEN})
        assert narrowed.resolve("categories.name").operators == frozenset()
        # The registered blueprint is untouched.
        assert font.fields["price"].operators == frozenset({Op.GTE, Op.LTE, Op.BETWEEN})

    def test_narrow_takes_tighter_node_limit(self, blueprints: BlueprintRegistry) -> None:
        narrowed = blueprints.lookup("FONT_MANAGEMENT").narrow({"max_filter_nodes": 5})
        assert narrowed.max_filter_nodes == 5
        again = narrowed.narrow({"max_filter_nodes": 50})
        assert again.max_filter_nodes == 5

    def test_narrow_default_sort_from_policy(self, blueprints: BlueprintRegistry) -> None:
        narrowed = blueprints.lookup("FONT_MANAGEMENT").narrow(
            {"default_sort": [{"field": "price", "direction": "asc"}]}
        )
        assert narrowed.default_sort == (SortSpec(field="price", direction=SortDirection.ASC),)


class TestToDict:
    def test_describes_fields_and_relations(self, blueprints: BlueprintRegistry) -> None:
        described = blueprints.lookup("FONT_MANAGEMENT").to_dict()
        assert described["name"] == "FONT_MANAGEMENT"
        assert described["fields"]["font_type"]["type"] == "enum"
        assert [v["value"] for v in described["fields"]["font_type"]["values"]] == [t.value for t in FontType]
        assert described["fields"]["created_at"]["label"] == "Creation Date"
        assert "categories.name" in described["fields"]
        assert described["relations"]["creator"]["target"] == USER.name
        assert described["default_sort"] == [{"field": "created_at", "direction": "desc"}]

    def test_declared_blueprint_constants_are_unresolved(self) -> None:
        # Registration returns a resolved copy; the module-level declaration stays as written.
        assert FONT.relations["categories"].resolved == {}
