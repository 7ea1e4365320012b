"""
Event Bus - Central hub for inter-module communication.

All managers publish to and subscribe on this single object rather than
calling each other directly, keeping scoring, timers, power-ups, rules and
any UI loosely coupled.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from PySide6.QtCore import QObject, Signal

from services import event_types as events


logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


@dataclass(eq=False)
class Subscription:
    """A single handler registered for one event name."""
    event: str
    handler: Handler
    once: bool = False
    active: bool = True


class EventBus(QObject):
    """
    Synchronous publish/subscribe hub for QuizArena.

    Handlers for an event run in registration order. An emit issued while
    another event is being dispatched is queued and delivered after the
    current dispatch finishes, so nested emissions are always seen in
    FIFO order and never interleave with the event that caused them.

    Every delivered event is mirrored on the ``event_emitted`` Qt signal,
    which is what widgets connect to.

    Usage:
        # In ScoringManager
        self.event_bus.emit(events.SCORE_UPDATED, {"team_id": "red", ...})

        # In a display widget
        unsubscribe = event_bus.subscribe(events.SCORE_UPDATED, self._on_score)
        event_bus.event_emitted.connect(self._on_any_event)
    """

    # ============ Qt Bridge ============
    event_emitted = Signal(str, object)     # event name, payload

    def __init__(self):
        super().__init__()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._queue: deque[tuple[Optional[str], Any]] = deque()
        self._dispatching = False

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for an event.

        Args:
            event: Event name from services.event_types
            handler: Callable receiving the event payload

        Returns:
            A function that removes this subscription. Calling it more than
            once has no further effect.
        """
        return self._add(Subscription(event=event, handler=handler))

    def once(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler that is removed after its first delivery."""
        return self._add(Subscription(event=event, handler=handler, once=True))

    def _add(self, subscription: Subscription) -> Callable[[], None]:
        self._subscriptions.setdefault(subscription.event, []).append(subscription)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        handlers = self._subscriptions.get(subscription.event)
        if handlers is None or subscription not in handlers:
            return
        handlers.remove(subscription)
        if not handlers:
            del self._subscriptions[subscription.event]

    def emit(self, event: str, payload: Any = None) -> None:
        """
        Publish an event.

        If a dispatch is already running the event is queued behind it.
        A handler that raises is logged and does not stop delivery to the
        remaining handlers.
        """
        self._queue.append((event, payload))
        self._flush()

    def defer(self, callback: Callable[[], None]) -> None:
        """
        Run a callable after every event already queued has been delivered.

        Outside a dispatch the callable runs immediately. A callable that
        raises is logged like a failing handler.
        """
        self._queue.append((None, callback))
        self._flush()

    def _flush(self) -> None:
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._queue:
                name, data = self._queue.popleft()
                if name is None:
                    self._run_deferred(data)
                else:
                    self._dispatch(name, data)
        finally:
            self._dispatching = False

    def _run_deferred(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Deferred call %r failed", callback)

    def _dispatch(self, event: str, payload: Any) -> None:
        if event != events.TIMER_TICK:
            logger.debug("event %s %r", event, payload)

        # Snapshot so subscriptions added during delivery only see later events
        for subscription in list(self._subscriptions.get(event, ())):
            if not subscription.active:
                continue
            if subscription.once:
                self._remove(subscription)
            try:
                subscription.handler(payload)
            except Exception:
                logger.exception("Handler %r failed for event %s",
                                 subscription.handler, event)

        self.event_emitted.emit(event, payload)

    def subscriber_count(self, event: str = None) -> int:
        """Number of active handlers for an event, or for all events."""
        if event is not None:
            return len(self._subscriptions.get(event, ()))
        return sum(len(handlers) for handlers in self._subscriptions.values())

    def clear(self) -> None:
        """Remove every subscription and drop any queued events."""
        for handlers in self._subscriptions.values():
            for subscription in handlers:
                subscription.active = False
        self._subscriptions.clear()
        self._queue.clear()

    # ============ Convenience ============

    def emit_error(self, error: BaseException, context: str) -> None:
        """Publish an ENGINE_ERROR for a failure caught at a manager boundary."""
        self.emit(events.ENGINE_ERROR, {
            "error": str(error),
            "error_type": type(error).__name__,
            "context": context,
        })
