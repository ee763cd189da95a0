"""
Core Layer - Storage, Events and Scheduling for the Terminal Data Layer

Modules:
- entity_store: Indexed equipment/annotation tables with bulk loading
- events: Synchronous publish/subscribe channels
- scheduler: Cancellable scheduled tasks (virtual clock and asyncio)
- categories: Category hierarchy for subcategory-aware filtering
"""

from .categories import CategoryTree
from .entity_store import (
    BucketIndex,
    ChangeKind,
    EntityChange,
    EntityStore,
    MalformedEntityError,
)
from .events import EventChannel, Subscription
from .scheduler import (
    AsyncioScheduler,
    ManualScheduler,
    ScheduledTask,
    Scheduler,
)

__all__ = [
    # Storage
    'BucketIndex',
    'ChangeKind',
    'EntityChange',
    'EntityStore',
    'MalformedEntityError',
    # Categories
    'CategoryTree',
    # Events
    'EventChannel',
    'Subscription',
    # Scheduling
    'AsyncioScheduler',
    'ManualScheduler',
    'ScheduledTask',
    'Scheduler',
]
