"""
Tests for FilterEngine - composable multi-criteria queries.

Tests cover:
1. Filter set management (create/update/remove/activate)
2. Each component kind in isolation
3. AND composition and inactive components
4. Built-in filter sets
"""

import pytest

from terminal_core.config.settings import set_flag
from terminal_core.core.categories import CategoryTree
from terminal_core.core.entity_store import EntityStore
from terminal_core.managers.filter_engine import FilterEngine, resolve_field
from terminal_core.models import (
    FilterSet,
    LoadingArea,
    Pipe,
    PropertyFilter,
    SpatialFilter,
    StateFilter,
    TextFilter,
    Tank,
    Valve,
    Vector3,
)


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def store():
    store = EntityStore()
    store.upsert(Tank(
        id="TQ-0001", name="Diesel storage", level=0.8, capacity=1000, temperature=45.0,
        status="operational", product="diesel", category_id="fuel",
        position=Vector3(x=0, y=0, z=0), tags=["north", "bunded"],
        metadata={"inspection": {"due": "2026-11"}},
    ))
    store.upsert(Tank(
        id="TQ-0002", name="Water tank", level=0.2, capacity=500, temperature=18.0,
        status="maintenance", product="water", category_id="water",
        position=Vector3(x=10, y=0, z=0),
    ))
    store.upsert(Pipe(
        id="PL-0001", name="Transfer line", status="operational", product="diesel",
        flow_rate=0.0, position=Vector3(x=3, y=4, z=0),
    ))
    store.upsert(Valve(id="VLV-0001", state="open", valve_type="ball", status="operational"))
    store.upsert(LoadingArea(id="LA-0001", area_type="truck", category_id="diesel"))
    return store


@pytest.fixture
def categories():
    tree = CategoryTree()
    tree.add_category("storage", "Storage")
    tree.add_category("fuel", "Fuel", parent_id="storage")
    tree.add_category("diesel", "Diesel", parent_id="fuel")
    tree.add_category("water", "Water", parent_id="storage")
    return tree


@pytest.fixture
def engine(store, categories):
    return FilterEngine(store, categories, install_defaults=False)


def _ids(entities):
    return sorted(e.id for e in entities)


def _run(engine, **components):
    return _ids(engine.apply_filters(FilterSet(id="adhoc", name="Ad hoc", **components)))


ALL_IDS = ["LA-0001", "PL-0001", "TQ-0001", "TQ-0002", "VLV-0001"]


# ============================================================================
# Filter Set Management
# ============================================================================

class TestFilterSetManagement:
    """Test the filter set registry and active pointer."""

    def test_create_and_duplicate(self, engine):
        assert engine.create_filter_set(FilterSet(id="a", name="A")) == "a"
        assert engine.create_filter_set(FilterSet(id="a", name="Again")) is None
        assert engine.get_filter_set("a").name == "A"

    def test_single_active_set(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A"))
        engine.create_filter_set(FilterSet(id="b", name="B"))

        assert engine.activate_filter_set("a")
        assert engine.activate_filter_set("b")

        assert engine.get_active_filter_set().id == "b"
        assert not engine.get_filter_set("a").is_active
        assert engine.activate_filter_set("missing") is False

    def test_create_active_set_activates_it(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A", is_active=True))

        assert engine.get_active_filter_set().id == "a"

    def test_remove_active_clears_pointer(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A"))
        engine.activate_filter_set("a")

        assert engine.remove_filter_set("a") is True
        assert engine.get_active_filter_set() is None
        assert engine.remove_filter_set("a") is False

    def test_update(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A"))
        before = engine.get_filter_set("a").date_modified

        assert engine.update_filter_set("a", name="Renamed", state_filter=StateFilter(["maintenance"]))
        updated = engine.get_filter_set("a")
        assert updated.name == "Renamed"
        assert updated.date_modified >= before
        assert _ids(engine.apply_filters(updated)) == ["TQ-0002"]

    def test_update_rejects_protected_and_unknown_fields(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A"))

        assert engine.update_filter_set("a", is_active=True) is False
        assert engine.update_filter_set("a", colour="red") is False
        assert engine.update_filter_set("missing", name="x") is False
        assert engine.get_filter_set("a").name == "A"

    def test_deactivate_all(self, engine, store):
        engine.create_filter_set(FilterSet(id="a", name="A", state_filter=StateFilter(["maintenance"])))
        engine.activate_filter_set("a")
        engine.deactivate_all()

        assert engine.get_active_filter_set() is None
        assert len(engine.apply_active_filters()) == len(store)

    def test_apply_active_filters(self, engine):
        engine.create_filter_set(FilterSet(id="a", name="A", state_filter=StateFilter(["maintenance"])))
        engine.activate_filter_set("a")

        assert _ids(engine.apply_active_filters()) == ["TQ-0002"]


# ============================================================================
# Components
# ============================================================================

class TestComponents:
    """Test each component kind on its own."""

    def test_empty_set_is_identity(self, engine):
        assert _run(engine) == ALL_IDS

    def test_predicate(self, engine):
        predicate = engine.create_predicate("tanks", "Tanks", lambda e: e.type == "tank")
        assert _run(engine, filters=[predicate]) == ["TQ-0001", "TQ-0002"]

    def test_raising_predicate_never_matches(self, engine):
        predicate = engine.create_predicate("bad", "Bad", lambda e: e.level > 0.5)
        assert _run(engine, filters=[predicate]) == ["TQ-0001"]

    def test_spatial_boundary_inclusive(self, engine):
        # PL-0001 sits exactly 5 units from the origin
        spatial = engine.create_spatial_filter({"x": 0, "y": 0, "z": 0}, 5.0)
        assert _run(engine, spatial_filter=spatial) == ["PL-0001", "TQ-0001"]

    def test_spatial_zero_radius_matches_center_only(self, engine):
        spatial = engine.create_spatial_filter([0, 0, 0], 0.0)
        assert _run(engine, spatial_filter=spatial) == ["TQ-0001"]

    def test_spatial_just_outside_radius_excluded(self, engine):
        # PL-0001 sits exactly 5 units from the origin
        spatial = engine.create_spatial_filter([0, 0, 0], 5.0 - 1e-9)
        assert _run(engine, spatial_filter=spatial) == ["TQ-0001"]

    def test_spatial_without_position_never_matches(self, engine):
        spatial = engine.create_spatial_filter([0, 0, 0], 1e9)
        assert "VLV-0001" not in _run(engine, spatial_filter=spatial)

    def test_text_default_fields(self, engine):
        assert _run(engine, text_filter=engine.create_text_filter("DIESEL")) == ["TQ-0001"]
        assert _run(engine, text_filter=engine.create_text_filter("valve")) == ["VLV-0001"]

    def test_text_custom_fields_and_lists(self, engine):
        text = engine.create_text_filter("bund", fields=["tags"])
        assert _run(engine, text_filter=text) == ["TQ-0001"]

        text = engine.create_text_filter("diesel", fields=["product"])
        assert _run(engine, text_filter=text) == ["PL-0001", "TQ-0001"]

    def test_text_fuzzy_threshold(self, engine):
        exact = engine.create_text_filter("transfr line", fields=["name"])
        fuzzy = engine.create_text_filter("transfr line", fields=["name"], fuzzy_threshold=80)

        assert _run(engine, text_filter=exact) == []
        assert _run(engine, text_filter=fuzzy) == ["PL-0001"]

    def test_empty_search_text_is_noop(self, engine):
        assert _run(engine, text_filter=engine.create_text_filter("")) == ALL_IDS

    @pytest.mark.parametrize("prop, expected", [
        (PropertyFilter("temperature", "greaterThan", 20), ["TQ-0001"]),
        (PropertyFilter("temperature", "lessThan", 20), ["TQ-0002"]),
        (PropertyFilter("level", "between", 0.1, 0.5), ["TQ-0002"]),
        (PropertyFilter("level", "between", 0.8), ["TQ-0001"]),
        (PropertyFilter("valveType", "equals", "ball"), ["VLV-0001"]),
        (PropertyFilter("state", "notEquals", "closed"), ["VLV-0001"]),
        (PropertyFilter("name", "contains", "TANK"), ["TQ-0002"]),
        (PropertyFilter("tags", "contains", "north"), ["TQ-0001"]),
        (PropertyFilter("metadata.inspection.due", "equals", "2026-11"), ["TQ-0001"]),
    ])
    def test_property_operators(self, engine, prop, expected):
        assert _run(engine, property_filters=[prop]) == expected

    def test_property_type_mismatch_never_matches(self, engine):
        prop = engine.create_property_filter("name", "greaterThan", 3)
        assert _run(engine, property_filters=[prop]) == []

    def test_unknown_operator_never_matches(self, engine):
        prop = engine.create_property_filter("level", "roughly", 0.5)
        assert _run(engine, property_filters=[prop]) == []

    @pytest.mark.parametrize("components", [
        {"property_filters": [PropertyFilter(None, "equals", 1)]},
        {"property_filters": [PropertyFilter("", "equals", 1)]},
        {"spatial_filter": SpatialFilter(center=None, radius=5.0)},
        {"spatial_filter": SpatialFilter(center="origin", radius=5.0)},
        {"spatial_filter": SpatialFilter(center=Vector3(), radius=None)},
    ])
    def test_malformed_component_never_matches(self, engine, components):
        assert _run(engine, **components) == []

    def test_malformed_text_component_does_not_raise(self, engine):
        text = TextFilter(search_text=42, fields=[None, "name"])
        assert _run(engine, text_filter=text) == []

    def test_category_with_subcategories(self, engine):
        category = engine.create_category_filter("storage")
        assert _run(engine, category_filter=category) == ["LA-0001", "TQ-0001", "TQ-0002"]

    def test_category_without_subcategories(self, engine):
        category = engine.create_category_filter("fuel", include_subcategories=False)
        assert _run(engine, category_filter=category) == ["TQ-0001"]

    def test_category_without_tree(self, store):
        engine = FilterEngine(store, install_defaults=False)
        category = engine.create_category_filter("fuel")
        assert _run(engine, category_filter=category) == ["TQ-0001"]

    def test_state_and_product(self, engine):
        assert _run(engine, state_filter=engine.create_state_filter(["operational"])) == [
            "PL-0001", "TQ-0001", "VLV-0001"
        ]
        # Entities without a product never match
        assert _run(engine, product_filter=engine.create_product_filter(["diesel"])) == [
            "PL-0001", "TQ-0001"
        ]

    def test_empty_state_list_is_noop(self, engine):
        assert _run(engine, state_filter=engine.create_state_filter([])) == ALL_IDS


# ============================================================================
# Composition
# ============================================================================

class TestComposition:
    """Test AND semantics and per-component toggles."""

    def test_components_are_anded(self, engine):
        result = _run(
            engine,
            state_filter=engine.create_state_filter(["operational"]),
            product_filter=engine.create_product_filter(["diesel"]),
            property_filters=[engine.create_property_filter("temperature", "greaterThan", 40)],
        )
        assert result == ["TQ-0001"]

    def test_conjunction_is_intersection(self, engine):
        state = engine.create_state_filter(["operational"])
        product = engine.create_product_filter(["diesel"])
        text = engine.create_text_filter("line")

        combined = set(_run(engine, state_filter=state, product_filter=product, text_filter=text))
        separately = (
            set(_run(engine, state_filter=state))
            & set(_run(engine, product_filter=product))
            & set(_run(engine, text_filter=text))
        )

        assert combined == separately == {"PL-0001"}

    def test_inactive_components_are_skipped(self, engine):
        state = engine.create_state_filter(["maintenance"])
        state.is_active = False
        prop = engine.create_property_filter("level", "greaterThan", 0.5)
        prop.is_active = False

        assert _run(engine, state_filter=state, property_filters=[prop]) == ALL_IDS

    def test_evaluation_does_not_mutate_store(self, engine, store):
        before = [e.model_dump() for e in store.get_all()]
        _run(engine, text_filter=engine.create_text_filter("tank"))

        assert [e.model_dump() for e in store.get_all()] == before

    def test_explicit_snapshot(self, engine, store):
        snapshot = store.get_all()[:2]
        result = engine.apply_filters(FilterSet(id="x", name="X"), snapshot)

        assert _ids(result) == ["TQ-0001", "TQ-0002"]

    def test_resolve_field_aliases(self, store):
        valve = store.get_by_id("VLV-0001")

        assert resolve_field(valve, "valveType") == "ball"
        assert resolve_field(valve, "valve_type") == "ball"


# ============================================================================
# Built-in Filter Sets
# ============================================================================

class TestDefaultFilterSets:
    """Test filter sets installed at construction."""

    def test_defaults_installed(self, store):
        engine = FilterEngine(store, install_defaults=True)

        ids = {fs.id for fs in engine.get_all_filter_sets()}
        assert ids == {
            "operational_equipment", "maintenance_equipment",
            "tanks_only", "pipes_only", "valves_only",
        }
        assert engine.get_active_filter_set() is None

    def test_default_sets_evaluate(self, store):
        engine = FilterEngine(store, install_defaults=True)

        assert _ids(engine.apply_filters(engine.get_filter_set("valves_only"))) == ["VLV-0001"]
        assert _ids(engine.apply_filters(engine.get_filter_set("tanks_only"))) == ["TQ-0001", "TQ-0002"]
        assert _ids(engine.apply_filters(engine.get_filter_set("maintenance_equipment"))) == ["TQ-0002"]

    def test_feature_flag_controls_defaults(self, store):
        set_flag('default_filter_sets', False)
        try:
            assert FilterEngine(store).get_all_filter_sets() == []
        finally:
            set_flag('default_filter_sets', True)
