"""
Manager components for terminal-core.
"""

from .filter_engine import (
    FilterEngine,
    resolve_field,
)
from .operation_simulator import (
    OperationSimulator,
    # Exceptions
    OperationError,
    OperationValidationError,
    EquipmentNotFoundError,
    PreconditionFailedError,
    RuntimeFailureError,
)

__all__ = [
    'FilterEngine',
    'resolve_field',
    'OperationSimulator',
    # Exceptions
    'OperationError',
    'OperationValidationError',
    'EquipmentNotFoundError',
    'PreconditionFailedError',
    'RuntimeFailureError',
]
