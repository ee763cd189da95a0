"""
Record schemas for the terminal data layer.
"""

from .entities import (
    Annotation,
    AnnotationType,
    Equipment,
    EquipmentBase,
    LoadingArea,
    Pipe,
    PipeEndpoints,
    Tank,
    Valve,
    ValveState,
    ValveType,
    Vector3,
    parse_equipment,
)
from .filters import (
    CategoryFilter,
    FilterSet,
    PredicateFilter,
    ProductFilter,
    PropertyFilter,
    PropertyOperator,
    SpatialFilter,
    StateFilter,
    TextFilter,
)
from .operations import (
    DataUpdateEvent,
    OperationState,
    OperationStatus,
    OperationType,
    SetValveStateParams,
    TransferProductParams,
)

__all__ = [
    # Entities
    'Annotation',
    'AnnotationType',
    'Equipment',
    'EquipmentBase',
    'LoadingArea',
    'Pipe',
    'PipeEndpoints',
    'Tank',
    'Valve',
    'ValveState',
    'ValveType',
    'Vector3',
    'parse_equipment',
    # Filters
    'CategoryFilter',
    'FilterSet',
    'PredicateFilter',
    'ProductFilter',
    'PropertyFilter',
    'PropertyOperator',
    'SpatialFilter',
    'StateFilter',
    'TextFilter',
    # Operations
    'DataUpdateEvent',
    'OperationState',
    'OperationStatus',
    'OperationType',
    'SetValveStateParams',
    'TransferProductParams',
]
