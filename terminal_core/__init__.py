"""
terminal-core - in-process data layer for industrial terminal visualization.

Indexed equipment/annotation store, composable filter engine and a
discrete-event simulator for valve actuation and tank-to-tank transfers.
"""

from .context import TerminalCore, create_terminal_core
from .core import CategoryTree, EntityStore, ManualScheduler, MalformedEntityError
from .managers import FilterEngine, OperationSimulator

__version__ = "0.1.0"

__all__ = [
    'TerminalCore',
    'create_terminal_core',
    'CategoryTree',
    'EntityStore',
    'MalformedEntityError',
    'ManualScheduler',
    'FilterEngine',
    'OperationSimulator',
]
