"""
Unit tests for the EventBus.
"""

from unittest.mock import MagicMock

from services import event_types as events
from services.event_bus import EventBus


class TestEventBusDelivery:
    """Tests for subscription and delivery order."""

    def setup_method(self):
        """Set up a fresh EventBus for each test."""
        self.bus = EventBus()
        self.calls = []

    def test_handlers_run_in_registration_order(self):
        """Handlers for one event are called in the order they subscribed."""
        self.bus.subscribe("x", lambda p: self.calls.append(("first", p)))
        self.bus.subscribe("x", lambda p: self.calls.append(("second", p)))

        self.bus.emit("x", 1)

        assert self.calls == [("first", 1), ("second", 1)]

    def test_emit_without_subscribers_is_harmless(self):
        """Emitting an event nobody listens to does nothing."""
        self.bus.emit("nobody", {"a": 1})
        assert self.bus.subscriber_count() == 0

    def test_unsubscribe_stops_delivery(self):
        """An unsubscribed handler is not called again."""
        handler = MagicMock()
        unsubscribe = self.bus.subscribe("x", handler)

        unsubscribe()
        self.bus.emit("x")

        handler.assert_not_called()

    def test_unsubscribe_is_idempotent(self):
        """Calling the unsubscribe function twice is safe and removes only one handler."""
        keep = MagicMock()
        unsubscribe = self.bus.subscribe("x", MagicMock())
        self.bus.subscribe("x", keep)

        unsubscribe()
        unsubscribe()
        self.bus.emit("x")

        keep.assert_called_once()
        assert self.bus.subscriber_count("x") == 1

    def test_same_handler_subscribed_twice_is_called_twice(self):
        """Each subscription is independent even for the same callable."""
        handler = MagicMock()
        first = self.bus.subscribe("x", handler)
        self.bus.subscribe("x", handler)

        first()
        self.bus.emit("x")

        assert handler.call_count == 1

    def test_failing_handler_does_not_block_others(self):
        """A handler that raises is logged and the next handler still runs."""
        def broken(_payload):
            raise RuntimeError("boom")

        after = MagicMock()
        self.bus.subscribe("x", broken)
        self.bus.subscribe("x", after)

        self.bus.emit("x", "payload")

        after.assert_called_once_with("payload")

    def test_once_handler_runs_a_single_time(self):
        """once() handlers are removed after the first delivery."""
        handler = MagicMock()
        self.bus.once("x", handler)

        self.bus.emit("x", 1)
        self.bus.emit("x", 2)

        handler.assert_called_once_with(1)
        assert self.bus.subscriber_count("x") == 0


class TestEventBusReentrancy:
    """Tests for emissions made from inside a handler."""

    def setup_method(self):
        self.bus = EventBus()
        self.calls = []

    def test_nested_emit_is_delivered_after_current_event(self):
        """An emit from a handler is queued until every handler of the current event ran."""
        def on_a(_payload):
            self.calls.append("a1")
            self.bus.emit("b")

        self.bus.subscribe("a", on_a)
        self.bus.subscribe("a", lambda p: self.calls.append("a2"))
        self.bus.subscribe("b", lambda p: self.calls.append("b1"))

        self.bus.emit("a")

        assert self.calls == ["a1", "a2", "b1"]

    def test_nested_emits_keep_fifo_order(self):
        """Several nested emits are delivered in the order they were made."""
        def on_a(_payload):
            self.bus.emit("b", 1)
            self.bus.emit("c", 2)

        def on_b(payload):
            self.calls.append(("b", payload))
            self.bus.emit("d", 3)

        self.bus.subscribe("a", on_a)
        self.bus.subscribe("b", on_b)
        self.bus.subscribe("c", lambda p: self.calls.append(("c", p)))
        self.bus.subscribe("d", lambda p: self.calls.append(("d", p)))

        self.bus.emit("a")

        assert self.calls == [("b", 1), ("c", 2), ("d", 3)]

    def test_handler_added_during_dispatch_only_sees_later_events(self):
        """A subscription made while an event is being delivered does not receive that event."""
        late = MagicMock()

        def subscribe_late(_payload):
            self.bus.subscribe("x", late)

        self.bus.subscribe("x", subscribe_late)

        self.bus.emit("x", 1)
        late.assert_not_called()

        self.bus.emit("x", 2)
        late.assert_called_once_with(2)

    def test_handler_removed_during_dispatch_is_skipped(self):
        """Unsubscribing a later handler mid-dispatch prevents its call for the current event."""
        victim = MagicMock()
        unsubscribe_holder = {}

        self.bus.subscribe("x", lambda p: unsubscribe_holder["victim"]())
        unsubscribe_holder["victim"] = self.bus.subscribe("x", victim)

        self.bus.emit("x")

        victim.assert_not_called()

    def test_failing_handler_does_not_stop_queue(self):
        """Queued events are still delivered when a handler raises."""
        def on_a(_payload):
            self.bus.emit("b")
            raise ValueError("bad")

        self.bus.subscribe("a", on_a)
        self.bus.subscribe("b", lambda p: self.calls.append("b"))

        self.bus.emit("a")
        self.bus.emit("b")

        assert self.calls == ["b", "b"]

    def test_defer_outside_dispatch_runs_immediately(self):
        """With nothing being dispatched a deferred call runs at once."""
        self.bus.defer(lambda: self.calls.append("deferred"))

        assert self.calls == ["deferred"]

    def test_defer_waits_for_queued_events(self):
        """A call deferred by a handler runs after the events queued before it."""
        def on_a(_payload):
            self.bus.emit("b")
            self.bus.defer(lambda: self.calls.append("deferred"))
            self.calls.append("a")

        self.bus.subscribe("a", on_a)
        self.bus.subscribe("b", lambda p: self.calls.append("b"))

        self.bus.emit("a")

        assert self.calls == ["a", "b", "deferred"]

    def test_failing_deferred_call_does_not_stop_queue(self):
        """A raising deferred call is logged and later events still arrive."""
        def on_a(_payload):
            self.bus.defer(MagicMock(side_effect=RuntimeError("boom")))
            self.bus.emit("b")

        self.bus.subscribe("a", on_a)
        self.bus.subscribe("b", lambda p: self.calls.append("b"))

        self.bus.emit("a")

        assert self.calls == ["b"]


class TestEventBusHelpers:
    """Tests for clear, counts, errors and the Qt bridge."""

    def setup_method(self):
        self.bus = EventBus()

    def test_clear_removes_everything(self):
        """clear() drops all subscriptions."""
        handler = MagicMock()
        self.bus.subscribe("x", handler)
        self.bus.subscribe("y", handler)

        self.bus.clear()
        self.bus.emit("x")

        handler.assert_not_called()
        assert self.bus.subscriber_count() == 0

    def test_emit_error_publishes_engine_error(self):
        """emit_error sends ENGINE_ERROR with the error text, type and context."""
        received = []
        self.bus.subscribe(events.ENGINE_ERROR, received.append)

        self.bus.emit_error(KeyError("missing"), "scoring.load")

        assert received == [{
            "error": "'missing'",
            "error_type": "KeyError",
            "context": "scoring.load",
        }]

    def test_event_emitted_signal_mirrors_events(self, qapp):
        """Every delivered event is also emitted on the Qt signal."""
        seen = []
        self.bus.event_emitted.connect(lambda name, payload: seen.append((name, payload)))

        self.bus.emit(events.SCORE_UPDATED, {"team_id": "red"})

        assert seen == [(events.SCORE_UPDATED, {"team_id": "red"})]
