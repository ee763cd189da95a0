"""In-process publish/subscribe channel.

Delivery is synchronous: ``publish`` calls every current subscriber in
subscription order before returning. A failing subscriber is logged and
skipped so that one broken listener cannot abort the writer that published.

Usage:
    channel = EventChannel("operation-status")
    subscription = channel.subscribe(print)
    channel.publish(status)
    subscription.unsubscribe()
"""

import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar('E')


class Subscription(Generic[E]):
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: "EventChannel[E]", callback: Callable[[E], None]):
        self._channel = channel
        self.callback = callback

    @property
    def active(self) -> bool:
        return self in self._channel._subscriptions

    def unsubscribe(self) -> bool:
        """Detach from the channel. Returns False if already detached."""
        return self._channel.unsubscribe(self)


class EventChannel(Generic[E]):
    """Synchronous fan-out of events to subscribers."""

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: List[Subscription[E]] = []
        self._lock = threading.RLock()

    def subscribe(self, callback: Callable[[E], None]) -> Subscription[E]:
        with self._lock:
            subscription = Subscription(self, callback)
            self._subscriptions.append(subscription)
            return subscription

    def unsubscribe(self, subscription: Subscription[E]) -> bool:
        with self._lock:
            if subscription not in self._subscriptions:
                return False
            self._subscriptions.remove(subscription)
            return True

    def publish(self, event: E) -> None:
        # Snapshot so callbacks may (un)subscribe while being notified
        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            try:
                subscription.callback(event)
            except Exception as e:
                logger.warning(f"Subscriber on channel '{self.name}' failed: {e}")

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)
