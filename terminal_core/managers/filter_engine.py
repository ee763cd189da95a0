"""
FilterEngine - composable multi-criteria queries over the entity store.

A FilterSet is compiled into a list of checks, one per active component,
and evaluated with AND semantics in a single pass over the equipment list.
Evaluation is pure: nothing in the store is modified, and no component ever
raises. Missing fields, type mismatches and failing predicates simply do not
match.

No isolation is provided against concurrent store writes. Callers that need
a stable view take ``store.get_all()`` once and pass it as ``entities``.

Usage:
    engine = FilterEngine(store, categories)

    engine.create_filter_set(FilterSet(
        id="hot_tanks",
        name="Hot tanks",
        filters=[engine.create_predicate("tanks", "Tanks", lambda e: e.type == "tank")],
        property_filters=[engine.create_property_filter("temperature", "greaterThan", 40)],
    ))
    engine.activate_filter_set("hot_tanks")
    visible = engine.apply_active_filters()
"""

import logging
from dataclasses import fields as dataclass_fields
from datetime import datetime, timezone
from enum import Enum
from numbers import Real
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from fuzzywuzzy import fuzz

from ..config.settings import is_enabled
from ..core.categories import CategoryTree
from ..core.entity_store import EntityStore
from ..models.entities import EquipmentBase, Vector3
from ..models.filters import (
    DEFAULT_TEXT_FIELDS,
    CategoryFilter,
    EquipmentPredicate,
    FilterSet,
    PredicateFilter,
    ProductFilter,
    PropertyFilter,
    PropertyOperator,
    SpatialFilter,
    StateFilter,
    TextFilter,
)

logger = logging.getLogger(__name__)

Check = Callable[[EquipmentBase], bool]

_MISSING = object()

# Managed through create/activate rather than update_filter_set
_PROTECTED_FIELDS = {"id", "is_active", "date_created", "date_modified"}


# ============================================================================
# Field access
# ============================================================================

def resolve_field(entity: EquipmentBase, name: str) -> Any:
    """Read a field by snake_case name, camelCase alias, extra key or metadata path.

    ``metadata.<key>[.<key>...]`` walks into the free-form metadata map.

    Returns:
        The value, or the module sentinel ``_MISSING`` when absent or None
    """
    if name.startswith("metadata."):
        value: Any = entity.metadata
        for part in name.split(".")[1:]:
            if not isinstance(value, dict) or part not in value:
                return _MISSING
            value = value[part]
    else:
        model_fields = type(entity).model_fields
        if name in model_fields:
            value = getattr(entity, name)
        else:
            by_alias = {f.alias: n for n, f in model_fields.items() if f.alias}
            if name in by_alias:
                value = getattr(entity, by_alias[name])
            else:
                value = (entity.model_extra or {}).get(name, _MISSING)

    if value is None:
        return _MISSING
    if isinstance(value, Enum):
        return value.value
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Component checks
# ============================================================================

def _predicate_check(predicate_filter: PredicateFilter) -> Check:
    def check(entity: EquipmentBase) -> bool:
        try:
            return bool(predicate_filter.predicate(entity))
        except Exception as e:
            logger.debug(f"Predicate {predicate_filter.id} failed on {entity.id}: {e}")
            return False
    return check


def _never(entity: EquipmentBase) -> bool:
    return False


def _spatial_check(spatial: SpatialFilter) -> Check:
    try:
        center = Vector3.coerce(spatial.center)
    except ValueError as e:
        logger.warning(f"Invalid spatial filter center: {e}; nothing will match")
        return _never
    radius = spatial.radius
    if center is None or not _is_number(radius):
        logger.warning(
            f"Spatial filter needs a center and a numeric radius "
            f"(got {spatial.center!r}, {radius!r}); nothing will match"
        )
        return _never

    def check(entity: EquipmentBase) -> bool:
        if entity.position is None:
            return False
        return entity.position.distance_to(center) <= radius
    return check


def _text_check(text: TextFilter) -> Check:
    needle = str(text.search_text).lower()
    field_names = [name for name in text.fields or DEFAULT_TEXT_FIELDS if isinstance(name, str)]
    threshold = text.fuzzy_threshold

    def matches(candidate: Any) -> bool:
        haystack = str(_plain(candidate)).lower()
        if needle in haystack:
            return True
        return threshold is not None and fuzz.partial_ratio(needle, haystack) >= threshold

    def check(entity: EquipmentBase) -> bool:
        for name in field_names:
            value = resolve_field(entity, name)
            if value is _MISSING:
                continue
            candidates = value if isinstance(value, (list, tuple, set)) else [value]
            if any(matches(c) for c in candidates):
                return True
        return False
    return check


def _property_check(prop: PropertyFilter) -> Check:
    if not isinstance(prop.property, str) or not prop.property:
        logger.warning(f"Property filter has no field name ({prop.property!r}); nothing will match")
        return _never
    try:
        operator = PropertyOperator(prop.operator)
    except ValueError:
        logger.warning(f"Unknown property operator '{prop.operator}' on {prop.property}; nothing will match")
        return _never

    target = _plain(prop.value)
    upper = _plain(prop.value2) if prop.value2 is not None else target

    def compare(value: Any) -> bool:
        if operator is PropertyOperator.EQUALS:
            return value == target
        if operator is PropertyOperator.NOT_EQUALS:
            return value != target
        if operator is PropertyOperator.CONTAINS:
            if isinstance(value, str):
                return str(target).lower() in value.lower()
            if isinstance(value, (list, tuple, set)):
                return target in value
            return False
        if not (_is_number(value) and _is_number(target)):
            return False
        if operator is PropertyOperator.GREATER_THAN:
            return value > target
        if operator is PropertyOperator.LESS_THAN:
            return value < target
        # BETWEEN
        return _is_number(upper) and target <= value <= upper

    def check(entity: EquipmentBase) -> bool:
        value = resolve_field(entity, prop.property)
        if value is _MISSING:
            return False
        try:
            return compare(value)
        except TypeError:
            return False
    return check


def _membership_check(attribute: str, allowed: Iterable[str]) -> Check:
    allowed = {_plain(a) for a in allowed}

    def check(entity: EquipmentBase) -> bool:
        value = _plain(getattr(entity, attribute, None))
        return value is not None and value in allowed
    return check


# ============================================================================
# FilterEngine
# ============================================================================

class FilterEngine:
    """Manages named filter sets and evaluates them against an EntityStore.

    At most one filter set is active at a time; it drives whole-scene display
    through ``apply_active_filters``. Any set, active or not, can be evaluated
    ad hoc with ``apply_filters``.
    """

    def __init__(
        self,
        store: EntityStore,
        categories: Optional[CategoryTree] = None,
        install_defaults: Optional[bool] = None
    ):
        """
        Initialize filter engine.

        Args:
            store: Entity store to query
            categories: Category hierarchy for subcategory expansion; without
                one, category filters match the named category only
            install_defaults: Install built-in filter sets. Defaults to the
                ``default_filter_sets`` feature flag.
        """
        self.store = store
        self.categories = categories
        self._filter_sets: Dict[str, FilterSet] = {}
        self._active_filter_set_id: Optional[str] = None

        if install_defaults is None:
            install_defaults = is_enabled('default_filter_sets')
        if install_defaults:
            self._install_default_filter_sets()

    # ------------------------------------------------------------------------
    # Filter set management
    # ------------------------------------------------------------------------

    def create_filter_set(self, filter_set: FilterSet) -> Optional[str]:
        """Register a filter set.

        Returns:
            The filter set id, or None if the id is already taken
        """
        if filter_set.id in self._filter_sets:
            logger.warning(f"Filter set {filter_set.id} already exists")
            return None

        wants_active = filter_set.is_active
        filter_set.is_active = False
        self._filter_sets[filter_set.id] = filter_set
        if wants_active:
            self.activate_filter_set(filter_set.id)

        logger.info(f"Filter set '{filter_set.name}' ({filter_set.id}) created")
        return filter_set.id

    def update_filter_set(self, filter_set_id: str, **changes: Any) -> bool:
        """Replace components or descriptive fields of a filter set.

        Example:
            engine.update_filter_set("hot_tanks", text_filter=engine.create_text_filter("diesel"))

        Returns:
            False if the set is unknown or a field name is unknown or protected
        """
        filter_set = self._filter_sets.get(filter_set_id)
        if filter_set is None:
            logger.warning(f"Filter set {filter_set_id} not found")
            return False

        known = {f.name for f in dataclass_fields(FilterSet)} - _PROTECTED_FIELDS
        rejected = sorted(set(changes) - known)
        if rejected:
            logger.warning(f"Cannot update fields {rejected} of filter set {filter_set_id}")
            return False

        for name, value in changes.items():
            setattr(filter_set, name, value)
        filter_set.date_modified = _utcnow()

        logger.info(f"Filter set {filter_set_id} updated ({', '.join(sorted(changes)) or 'no fields'})")
        return True

    def remove_filter_set(self, filter_set_id: str) -> bool:
        if self._filter_sets.pop(filter_set_id, None) is None:
            logger.warning(f"Filter set {filter_set_id} not found")
            return False

        if self._active_filter_set_id == filter_set_id:
            self._active_filter_set_id = None
        logger.info(f"Filter set {filter_set_id} removed")
        return True

    def activate_filter_set(self, filter_set_id: str) -> bool:
        """Make one filter set the active one, deactivating the previous."""
        filter_set = self._filter_sets.get(filter_set_id)
        if filter_set is None:
            logger.warning(f"Filter set {filter_set_id} not found")
            return False

        current = self.get_active_filter_set()
        if current is not None:
            current.is_active = False

        filter_set.is_active = True
        self._active_filter_set_id = filter_set_id
        logger.info(f"Filter set {filter_set_id} activated")
        return True

    def deactivate_all(self) -> None:
        for filter_set in self._filter_sets.values():
            filter_set.is_active = False
        self._active_filter_set_id = None
        logger.info("All filter sets deactivated")

    def get_filter_set(self, filter_set_id: str) -> Optional[FilterSet]:
        return self._filter_sets.get(filter_set_id)

    def get_active_filter_set(self) -> Optional[FilterSet]:
        if self._active_filter_set_id is None:
            return None
        return self._filter_sets.get(self._active_filter_set_id)

    def get_all_filter_sets(self) -> List[FilterSet]:
        return list(self._filter_sets.values())

    # ------------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------------

    def apply_active_filters(
        self,
        entities: Optional[Sequence[EquipmentBase]] = None
    ) -> List[EquipmentBase]:
        """Evaluate the active filter set; everything passes when none is active."""
        active = self.get_active_filter_set()
        if active is None:
            return list(entities) if entities is not None else self.store.get_all()
        return self.apply_filters(active, entities)

    def apply_filters(
        self,
        filter_set: FilterSet,
        entities: Optional[Sequence[EquipmentBase]] = None
    ) -> List[EquipmentBase]:
        """Return the entities that satisfy every active component of ``filter_set``.

        Args:
            filter_set: Filter set to evaluate (need not be registered or active)
            entities: Snapshot to filter; defaults to ``store.get_all()``
        """
        candidates = list(entities) if entities is not None else self.store.get_all()
        checks = self._compile(filter_set)
        if not checks:
            return candidates

        result = [entity for entity in candidates if all(check(entity) for check in checks)]
        logger.debug(
            f"Filter set {filter_set.id}: {len(result)}/{len(candidates)} entities "
            f"matched {len(checks)} checks"
        )
        return result

    def _compile(self, filter_set: FilterSet) -> List[Check]:
        checks: List[Check] = []

        for predicate_filter in filter_set.filters or []:
            if predicate_filter.is_active:
                checks.append(_predicate_check(predicate_filter))

        category = filter_set.category_filter
        if category is not None and category.is_active:
            if category.include_subcategories and self.categories is not None:
                category_ids = self.categories.get_subtree(category.category_id)
            else:
                category_ids = [category.category_id]
            checks.append(_membership_check("category_id", category_ids))

        state = filter_set.state_filter
        if state is not None and state.is_active and state.states:
            checks.append(_membership_check("status", state.states))

        product = filter_set.product_filter
        if product is not None and product.is_active and product.products:
            checks.append(_membership_check("product", product.products))

        for prop in filter_set.property_filters or []:
            if prop.is_active:
                checks.append(_property_check(prop))

        text = filter_set.text_filter
        if text is not None and text.is_active and text.search_text:
            checks.append(_text_check(text))

        spatial = filter_set.spatial_filter
        if spatial is not None and spatial.is_active:
            checks.append(_spatial_check(spatial))

        return checks

    # ------------------------------------------------------------------------
    # Component constructors
    # ------------------------------------------------------------------------

    @staticmethod
    def create_predicate(
        predicate_id: str,
        name: str,
        predicate: EquipmentPredicate,
        description: Optional[str] = None
    ) -> PredicateFilter:
        return PredicateFilter(id=predicate_id, name=name, predicate=predicate, description=description)

    @staticmethod
    def create_text_filter(
        search_text: str,
        fields: Optional[List[str]] = None,
        fuzzy_threshold: Optional[int] = None
    ) -> TextFilter:
        return TextFilter(search_text=search_text, fields=list(fields or []), fuzzy_threshold=fuzzy_threshold)

    @staticmethod
    def create_spatial_filter(center: Union[Vector3, Dict[str, float], Sequence[float]], radius: float) -> SpatialFilter:
        return SpatialFilter(center=Vector3.coerce(center), radius=radius)

    @staticmethod
    def create_property_filter(
        property_name: str,
        operator: Union[PropertyOperator, str],
        value: Any,
        value2: Any = None
    ) -> PropertyFilter:
        return PropertyFilter(property=property_name, operator=operator, value=value, value2=value2)

    @staticmethod
    def create_category_filter(category_id: str, include_subcategories: bool = True) -> CategoryFilter:
        return CategoryFilter(category_id=category_id, include_subcategories=include_subcategories)

    @staticmethod
    def create_state_filter(states: Iterable[str]) -> StateFilter:
        return StateFilter(states=list(states))

    @staticmethod
    def create_product_filter(products: Iterable[str]) -> ProductFilter:
        return ProductFilter(products=list(products))

    # ------------------------------------------------------------------------
    # Built-in filter sets
    # ------------------------------------------------------------------------

    def _install_default_filter_sets(self) -> None:
        self.create_filter_set(FilterSet(
            id="operational_equipment",
            name="Operational equipment",
            description="Only equipment in operational state",
            state_filter=StateFilter(states=["operational"]),
        ))
        self.create_filter_set(FilterSet(
            id="maintenance_equipment",
            name="Equipment under maintenance",
            description="Only equipment under maintenance",
            state_filter=StateFilter(states=["maintenance"]),
        ))
        for kind, label in (("tank", "Tanks"), ("pipe", "Pipes"), ("valve", "Valves")):
            self.create_filter_set(FilterSet(
                id=f"{kind}s_only",
                name=f"{label} only",
                description=f"Only {label.lower()}",
                filters=[PredicateFilter(
                    id=f"{kind}_filter",
                    name=f"{label} filter",
                    predicate=lambda entity, kind=kind: entity.type == kind,
                )],
            ))
        logger.debug("Default filter sets installed")
