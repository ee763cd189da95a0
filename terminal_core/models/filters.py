"""Filter set and filter component records.

A FilterSet aggregates optional, independently toggleable components. Each
component carries its own ``is_active`` flag; an inactive component is
skipped during evaluation (treated as always-true).

These are plain dataclasses rather than pydantic models because predicates
are arbitrary callables and components are toggled in place by the UI.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

from .entities import EquipmentBase, Vector3

EquipmentPredicate = Callable[[EquipmentBase], bool]

DEFAULT_TEXT_FIELDS = ("id", "name", "description", "type")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PropertyOperator(str, Enum):
    """Comparison operators supported by property filters."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    BETWEEN = "between"


@dataclass
class PredicateFilter:
    """Named opaque predicate over an equipment record."""
    id: str
    name: str
    predicate: EquipmentPredicate
    description: Optional[str] = None
    is_active: bool = True


@dataclass
class SpatialFilter:
    """Matches equipment whose position lies within ``radius`` of ``center``."""
    center: Vector3
    radius: float
    is_active: bool = True


@dataclass
class TextFilter:
    """Case-insensitive substring search over a set of fields.

    Attributes:
        search_text: Text to look for; empty text disables the filter
        fields: Field names to search (empty means DEFAULT_TEXT_FIELDS)
        fuzzy_threshold: Optional 0-100 partial-ratio score that also counts as a match
        is_active: Toggle
    """
    search_text: str
    fields: List[str] = field(default_factory=list)
    fuzzy_threshold: Optional[int] = None
    is_active: bool = True


@dataclass
class PropertyFilter:
    """Compares one field against a value (or a range for BETWEEN)."""
    property: str
    operator: PropertyOperator
    value: Any
    value2: Any = None
    is_active: bool = True


@dataclass
class CategoryFilter:
    category_id: str
    include_subcategories: bool = True
    is_active: bool = True


@dataclass
class StateFilter:
    """Matches equipment whose ``status`` is one of ``states``."""
    states: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class ProductFilter:
    """Matches equipment whose ``product`` is one of ``products``."""
    products: List[str] = field(default_factory=list)
    is_active: bool = True


@dataclass
class FilterSet:
    """Named, composable collection of filter components.

    An entity passes the set iff it satisfies every active component.
    ``is_active`` marks the single set used for whole-scene display and is
    managed by the filter engine.
    """
    id: str
    name: str
    description: Optional[str] = None
    filters: List[PredicateFilter] = field(default_factory=list)
    spatial_filter: Optional[SpatialFilter] = None
    text_filter: Optional[TextFilter] = None
    property_filters: List[PropertyFilter] = field(default_factory=list)
    category_filter: Optional[CategoryFilter] = None
    state_filter: Optional[StateFilter] = None
    product_filter: Optional[ProductFilter] = None
    is_active: bool = False
    date_created: datetime = field(default_factory=_utcnow)
    date_modified: datetime = field(default_factory=_utcnow)
