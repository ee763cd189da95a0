"""
Shared terminal context.

One EntityStore, CategoryTree, FilterEngine and OperationSimulator wired to
the same scheduler. Collaborators receive the context (or the piece they
need) by reference; there is no module-level singleton.

Usage:
    core = create_terminal_core(ManualScheduler())
    core.store.load_initial_data_file("terminal.yaml")
    op_id = core.simulator.start_set_valve_state({"valveId": "VLV-0001", "newState": "open"})
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .config.settings import SimulationSettings
from .core.categories import CategoryTree
from .core.entity_store import EntityStore
from .core.scheduler import AsyncioScheduler, Scheduler
from .managers.filter_engine import FilterEngine
from .managers.operation_simulator import OperationSimulator

logger = logging.getLogger(__name__)


@dataclass
class TerminalCore:
    """The data layer of one terminal scene."""
    store: EntityStore
    categories: CategoryTree
    filters: FilterEngine
    simulator: OperationSimulator
    scheduler: Scheduler

    def shutdown(self) -> None:
        """Cancel in-flight operations. The store contents are kept."""
        self.simulator.shutdown()


def create_terminal_core(
    scheduler: Optional[Scheduler] = None,
    settings: Optional[SimulationSettings] = None,
    initial_data: Optional[Union[str, Path]] = None,
    install_default_filters: Optional[bool] = None,
    rng: Optional[random.Random] = None
) -> TerminalCore:
    """
    Build a TerminalCore.

    Args:
        scheduler: Timer source; defaults to an AsyncioScheduler on the
            running event loop
        settings: Simulation timing; defaults to SimulationSettings.from_env()
        initial_data: Optional YAML/JSON bucket file loaded into the store
        install_default_filters: Overrides the ``default_filter_sets`` flag
        rng: Random source for valve settle delays

    Returns:
        Wired TerminalCore
    """
    scheduler = scheduler or AsyncioScheduler()
    settings = settings or SimulationSettings.from_env()

    store = EntityStore()
    categories = CategoryTree()
    filters = FilterEngine(store, categories, install_defaults=install_default_filters)
    simulator = OperationSimulator(store, scheduler, settings=settings, rng=rng)

    if initial_data is not None:
        store.load_initial_data_file(initial_data)

    logger.info(f"Terminal core created ({type(scheduler).__name__}, {len(store)} equipment)")
    return TerminalCore(
        store=store,
        categories=categories,
        filters=filters,
        simulator=simulator,
        scheduler=scheduler,
    )
