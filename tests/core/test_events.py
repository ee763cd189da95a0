"""
Tests for EventChannel - synchronous publish/subscribe.
"""

import pytest

from terminal_core.core.events import EventChannel


@pytest.fixture
def channel():
    return EventChannel("test")


class TestEventChannel:
    """Test subscription handling and delivery."""

    def test_delivery_in_subscription_order(self, channel):
        received = []
        channel.subscribe(lambda e: received.append(("a", e)))
        channel.subscribe(lambda e: received.append(("b", e)))

        channel.publish(1)

        assert received == [("a", 1), ("b", 1)]

    def test_unsubscribe(self, channel):
        received = []
        subscription = channel.subscribe(received.append)

        assert subscription.active
        assert subscription.unsubscribe() is True
        assert subscription.unsubscribe() is False
        assert not subscription.active

        channel.publish("ignored")
        assert received == []

    def test_failing_subscriber_is_skipped(self, channel):
        received = []

        def broken(event):
            raise ValueError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        channel.publish("event")

        assert received == ["event"]

    def test_unsubscribe_during_publish(self, channel):
        received = []
        holder = {}

        def once(event):
            received.append(event)
            holder["sub"].unsubscribe()

        holder["sub"] = channel.subscribe(once)
        channel.publish(1)
        channel.publish(2)

        assert received == [1]
        assert len(channel) == 0

    def test_clear(self, channel):
        channel.subscribe(print)
        channel.clear()

        assert len(channel) == 0
