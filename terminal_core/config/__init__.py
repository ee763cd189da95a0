"""
Runtime configuration for terminal-core.
"""

from .settings import (
    FEATURE_FLAGS,
    SimulationSettings,
    configure_logging,
    get_all_flags,
    is_enabled,
    set_flag,
)

__all__ = [
    'FEATURE_FLAGS',
    'SimulationSettings',
    'configure_logging',
    'get_all_flags',
    'is_enabled',
    'set_flag',
]
