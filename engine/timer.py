"""
Timer Manager - cooperative countdown and count-up timers.

Timers never read the wall clock. The host calls ``update(delta_ms)`` once
per frame and that is the only way time advances, which keeps pause and
resume exact and makes every timer deterministic under test.
"""

import copy
import logging
import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Callable, Optional

from config import TIMER_SETTINGS
from engine.errors import NotFoundError, StorageError, ValidationError
from engine.state_registry import StateRegistry
from services import event_types as events
from services.event_bus import EventBus


logger = logging.getLogger(__name__)


class TimerKind(Enum):
    COUNTDOWN = "countdown"
    COUNTUP = "countup"


class TimerStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class TimerInstance:
    """
    State of a single timer.

    A count-up timer with ``duration_ms == 0`` runs until stopped.
    """
    id: str
    kind: TimerKind = TimerKind.COUNTDOWN
    duration_ms: int = 0
    elapsed_ms: float = 0
    status: TimerStatus = TimerStatus.IDLE
    speed_multiplier: float = 1.0
    warning_thresholds_ms: tuple[int, ...] = ()
    warnings_sent: set[int] = field(default_factory=set)

    @property
    def is_bounded(self) -> bool:
        return self.kind == TimerKind.COUNTDOWN or self.duration_ms > 0

    @property
    def remaining_ms(self) -> int:
        if not self.is_bounded:
            return 0
        return max(0, math.ceil(self.duration_ms - self.elapsed_ms))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["warning_thresholds_ms"] = list(self.warning_thresholds_ms)
        data["warnings_sent"] = sorted(self.warnings_sent)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TimerInstance":
        return cls(
            id=data["id"],
            kind=TimerKind(data.get("kind", TimerKind.COUNTDOWN.value)),
            duration_ms=int(data.get("duration_ms", 0)),
            elapsed_ms=float(data.get("elapsed_ms", 0)),
            status=TimerStatus(data.get("status", TimerStatus.IDLE.value)),
            speed_multiplier=float(data.get("speed_multiplier", 1.0)),
            warning_thresholds_ms=tuple(data.get("warning_thresholds_ms", ())),
            warnings_sent=set(data.get("warnings_sent", ())),
        )


TimerCallback = Callable[[TimerInstance], None]


class TimerManager:
    """
    Owns every named timer in a session.

    Each running timer advances by ``delta_ms * speed_multiplier`` per
    update and emits TIMER_TICK. A bounded timer that reaches its limit
    emits TIMER_COMPLETED exactly once and stops.

    The manager follows the game phase: GAME_PAUSED pauses every running
    timer and GAME_RESUMED resumes exactly the timers that pause stopped.

    Usage:
        timers = TimerManager(event_bus, registry)
        timers.create_timer("question", 30_000)
        timers.start_timer("question")

        # From the host loop
        timers.update(16)
    """

    STORAGE_KEY = "timer/timers"

    def __init__(self, event_bus: EventBus, state: Optional[StateRegistry] = None,
                 storage=None, persist_interval_ms: int = None, restore: bool = True):
        """
        Initialize the timer manager.

        Args:
            event_bus: Bus used for timer events
            state: Optional registry that exposes timers to rules
            storage: Optional KeyValueStore
            persist_interval_ms: Minimum ticking time between snapshots
            restore: Load stored timers; running ones come back PAUSED
        """
        self.event_bus = event_bus
        self._state = state
        self._storage = storage
        self._persist_interval_ms = (persist_interval_ms if persist_interval_ms is not None
                                     else TIMER_SETTINGS.persist_interval_ms)
        self._since_persist_ms = 0.0
        self._timers: dict[str, TimerInstance] = {}
        self._callbacks: dict[str, list[TimerCallback]] = {}
        self._paused_by_game: set[str] = set()
        self._destroyed = False

        if restore:
            self._load()

        self._unsubscribers = [
            event_bus.subscribe(events.GAME_PAUSED, self._on_game_paused),
            event_bus.subscribe(events.GAME_RESUMED, self._on_game_resumed),
        ]
        if state is not None:
            state.register("timers", self._timers_state)

    # ============ Creation ============

    def create_timer(self, timer_id: str, duration_ms: int = 0,
                     kind: TimerKind = TimerKind.COUNTDOWN,
                     speed_multiplier: float = 1.0,
                     warning_thresholds_ms: tuple[int, ...] = None) -> Optional[TimerInstance]:
        """
        Create a timer, replacing any timer with the same id.

        Args:
            timer_id: Unique timer name
            duration_ms: Countdown length, or count-up limit (0 = unbounded)
            kind: COUNTDOWN or COUNTUP
            speed_multiplier: Rate at which the timer consumes time
            warning_thresholds_ms: Remaining-time marks that emit TIMER_WARNING

        Returns:
            A copy of the new timer, or None if the arguments were rejected.
        """
        try:
            kind = TimerKind(kind)
            if kind == TimerKind.COUNTDOWN and duration_ms <= 0:
                raise ValidationError(f"Countdown timer '{timer_id}' needs a positive duration")
            if duration_ms < 0:
                raise ValidationError(f"Timer '{timer_id}' duration cannot be negative")
            if speed_multiplier <= 0:
                raise ValidationError(f"Timer '{timer_id}' speed must be positive")
        except (ValidationError, ValueError) as e:
            logger.warning("%s", e)
            return None

        if timer_id in self._timers:
            logger.debug("Replacing timer '%s'", timer_id)
            self.remove_timer(timer_id)

        if warning_thresholds_ms is None:
            warning_thresholds_ms = TIMER_SETTINGS.warning_thresholds_ms if kind == TimerKind.COUNTDOWN else ()
        thresholds = tuple(sorted((t for t in warning_thresholds_ms if 0 < t < duration_ms), reverse=True))

        timer = TimerInstance(
            id=timer_id,
            kind=kind,
            duration_ms=duration_ms,
            speed_multiplier=speed_multiplier,
            warning_thresholds_ms=thresholds,
        )
        self._timers[timer_id] = timer
        self._save()
        return copy.deepcopy(timer)

    def _require(self, timer_id: str) -> TimerInstance:
        timer = self._timers.get(timer_id)
        if timer is None:
            raise NotFoundError(f"Unknown timer '{timer_id}'")
        return timer

    # ============ Lifecycle ============

    def start_timer(self, timer_id: str) -> bool:
        """Start (or restart) a timer from zero elapsed time."""
        try:
            timer = self._require(timer_id)
        except NotFoundError as e:
            logger.warning("%s", e)
            return False

        timer.elapsed_ms = 0
        timer.warnings_sent.clear()
        timer.status = TimerStatus.RUNNING
        self._paused_by_game.discard(timer_id)
        self._save()
        self.event_bus.emit(events.TIMER_STARTED, {
            "timer_id": timer_id,
            "duration": timer.duration_ms,
            "kind": timer.kind.value,
        })
        return True

    def pause_timer(self, timer_id: str) -> bool:
        """Pause a running timer, keeping its elapsed time."""
        try:
            timer = self._require(timer_id)
        except NotFoundError as e:
            logger.warning("%s", e)
            return False
        if timer.status != TimerStatus.RUNNING:
            return False

        timer.status = TimerStatus.PAUSED
        self._save()
        self.event_bus.emit(events.TIMER_PAUSED, self._position_payload(timer))
        return True

    def resume_timer(self, timer_id: str) -> bool:
        """Resume a paused timer from where it stopped."""
        try:
            timer = self._require(timer_id)
        except NotFoundError as e:
            logger.warning("%s", e)
            return False
        if timer.status != TimerStatus.PAUSED:
            return False

        timer.status = TimerStatus.RUNNING
        self._paused_by_game.discard(timer_id)
        self._save()
        self.event_bus.emit(events.TIMER_RESUMED, self._position_payload(timer))
        return True

    def reset_timer(self, timer_id: str) -> bool:
        """Return a timer to IDLE with zero elapsed time."""
        try:
            timer = self._require(timer_id)
        except NotFoundError as e:
            logger.warning("%s", e)
            return False

        was_active = timer.status in (TimerStatus.RUNNING, TimerStatus.PAUSED)
        timer.elapsed_ms = 0
        timer.warnings_sent.clear()
        timer.status = TimerStatus.IDLE
        self._paused_by_game.discard(timer_id)
        self._save()
        if was_active:
            self.event_bus.emit(events.TIMER_STOPPED, {"timer_id": timer_id})
        return True

    def remove_timer(self, timer_id: str) -> bool:
        """Delete a timer and its completion callbacks."""
        timer = self._timers.pop(timer_id, None)
        self._callbacks.pop(timer_id, None)
        self._paused_by_game.discard(timer_id)
        if timer is None:
            return False
        self._save()
        if timer.status in (TimerStatus.RUNNING, TimerStatus.PAUSED):
            self.event_bus.emit(events.TIMER_STOPPED, {"timer_id": timer_id})
        return True

    def stop_all(self) -> None:
        """Reset every timer to IDLE."""
        for timer_id in list(self._timers):
            self.reset_timer(timer_id)

    def pause_all(self) -> list[str]:
        """Pause every running timer. Returns the ids that were paused."""
        return [timer_id for timer_id in list(self._timers) if self.pause_timer(timer_id)]

    def resume_all(self) -> list[str]:
        """Resume every paused timer. Returns the ids that were resumed."""
        return [timer_id for timer_id in list(self._timers) if self.resume_timer(timer_id)]

    def _on_game_paused(self, _payload) -> None:
        self._paused_by_game.update(self.pause_all())

    def _on_game_resumed(self, _payload) -> None:
        paused = [tid for tid in self._timers if tid in self._paused_by_game]
        self._paused_by_game.clear()
        for timer_id in paused:
            self.resume_timer(timer_id)

    # ============ Modification ============

    def add_time(self, timer_id: str, ms: int) -> bool:
        """Give a running or paused countdown more time."""
        return self._modify_remaining(timer_id, ms)

    def subtract_time(self, timer_id: str, ms: int) -> bool:
        """Take time away; a countdown driven to zero completes immediately."""
        return self._modify_remaining(timer_id, -ms)

    def _modify_remaining(self, timer_id: str, delta_ms: int) -> bool:
        try:
            timer = self._require(timer_id)
            if timer.status not in (TimerStatus.RUNNING, TimerStatus.PAUSED):
                raise ValidationError(f"Timer '{timer_id}' is not active")
            if not timer.is_bounded:
                raise ValidationError(f"Timer '{timer_id}' has no limit to modify")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return False

        elapsed = timer.elapsed_ms - delta_ms
        if elapsed < 0:
            # More time than has been used: extend the limit
            timer.duration_ms += int(round(-elapsed))
            elapsed = 0
        timer.elapsed_ms = min(timer.duration_ms, elapsed)
        # Re-arm warnings that are above the new remaining time
        timer.warnings_sent = {t for t in timer.warnings_sent if t >= timer.remaining_ms}
        self._save()
        self.event_bus.emit(events.TIMER_MODIFIED, self._modified_payload(timer))

        if timer.remaining_ms <= 0 and timer.status == TimerStatus.RUNNING:
            self._complete(timer)
        return True

    def set_timer_speed(self, timer_id: str, multiplier: float) -> bool:
        try:
            timer = self._require(timer_id)
            if multiplier <= 0:
                raise ValidationError(f"Timer speed must be positive, got {multiplier}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return False

        timer.speed_multiplier = multiplier
        self._save()
        self.event_bus.emit(events.TIMER_MODIFIED, self._modified_payload(timer))
        return True

    # ============ Callbacks ============

    def on_timer_complete(self, timer_id: str, callback: TimerCallback) -> None:
        self._callbacks.setdefault(timer_id, []).append(callback)

    def off_timer_complete(self, timer_id: str, callback: TimerCallback) -> None:
        callbacks = self._callbacks.get(timer_id)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    # ============ Ticking ============

    def update(self, delta_ms: float) -> None:
        """
        Advance every running timer.

        Args:
            delta_ms: Milliseconds since the previous update
        """
        if delta_ms <= 0 or self._destroyed:
            return

        for timer_id in list(self._timers):
            timer = self._timers.get(timer_id)
            if timer is None or timer.status != TimerStatus.RUNNING:
                continue
            self._advance(timer, delta_ms)

        self._since_persist_ms += delta_ms
        if self._since_persist_ms >= self._persist_interval_ms:
            self._save()

    def _advance(self, timer: TimerInstance, delta_ms: float) -> None:
        timer.elapsed_ms += delta_ms * timer.speed_multiplier
        if timer.is_bounded:
            timer.elapsed_ms = min(timer.elapsed_ms, timer.duration_ms)

        self.event_bus.emit(events.TIMER_TICK, {
            "timer_id": timer.id,
            "remaining": timer.remaining_ms,
            "elapsed": int(timer.elapsed_ms),
            "duration": timer.duration_ms,
        })

        remaining = timer.remaining_ms
        for threshold in timer.warning_thresholds_ms:
            if remaining <= threshold and threshold not in timer.warnings_sent:
                timer.warnings_sent.add(threshold)
                self.event_bus.emit(events.TIMER_WARNING, {
                    "timer_id": timer.id,
                    "threshold_ms": threshold,
                    "remaining": remaining,
                })

        if timer.is_bounded and timer.elapsed_ms >= timer.duration_ms:
            self._complete(timer)

    def _complete(self, timer: TimerInstance) -> None:
        if timer.status == TimerStatus.COMPLETED:
            return
        timer.status = TimerStatus.COMPLETED
        self._save()
        logger.debug("Timer '%s' completed", timer.id)
        # Listeners may replace the timer, so take its callbacks and state first
        callbacks = list(self._callbacks.get(timer.id, ()))
        completed = copy.deepcopy(timer)
        self.event_bus.emit(events.TIMER_COMPLETED, {"timer_id": timer.id})
        if callbacks:
            # Runs once TIMER_COMPLETED has been delivered, even when it was queued
            self.event_bus.defer(lambda: self._run_callbacks(completed, callbacks))

    def _run_callbacks(self, timer: TimerInstance, callbacks: list[TimerCallback]) -> None:
        if self._destroyed:
            return
        for callback in callbacks:
            try:
                callback(copy.deepcopy(timer))
            except Exception:
                logger.exception("Completion callback for timer '%s' failed", timer.id)

    # ============ Queries ============

    def get_timer(self, timer_id: str) -> Optional[TimerInstance]:
        timer = self._timers.get(timer_id)
        return copy.deepcopy(timer) if timer else None

    def get_all_timers(self) -> dict[str, TimerInstance]:
        return {tid: copy.deepcopy(t) for tid, t in self._timers.items()}

    def get_time_remaining(self, timer_id: str) -> int:
        timer = self._timers.get(timer_id)
        return timer.remaining_ms if timer else 0

    def get_elapsed_time(self, timer_id: str) -> int:
        timer = self._timers.get(timer_id)
        return int(timer.elapsed_ms) if timer else 0

    def get_status(self, timer_id: str) -> Optional[TimerStatus]:
        timer = self._timers.get(timer_id)
        return timer.status if timer else None

    def is_running(self, timer_id: str) -> bool:
        timer = self._timers.get(timer_id)
        return timer is not None and timer.status == TimerStatus.RUNNING

    @staticmethod
    def format_time(ms: float) -> str:
        """Format milliseconds as MM:SS.mmm."""
        ms = max(0, int(ms))
        minutes, rest = divmod(ms, 60_000)
        seconds, millis = divmod(rest, 1000)
        return f"{minutes:02d}:{seconds:02d}.{millis:03d}"

    def _timers_state(self) -> dict[str, dict]:
        return {
            tid: {
                "remaining": t.remaining_ms,
                "elapsed": int(t.elapsed_ms),
                "duration": t.duration_ms,
                "status": t.status.value,
            }
            for tid, t in self._timers.items()
        }

    @staticmethod
    def _position_payload(timer: TimerInstance) -> dict:
        return {
            "timer_id": timer.id,
            "remaining": timer.remaining_ms,
            "elapsed": int(timer.elapsed_ms),
        }

    @staticmethod
    def _modified_payload(timer: TimerInstance) -> dict:
        return {
            "timer_id": timer.id,
            "duration": timer.duration_ms,
            "elapsed": int(timer.elapsed_ms),
            "remaining": timer.remaining_ms,
            "speed_multiplier": timer.speed_multiplier,
        }

    # ============ Persistence ============

    def _load(self) -> None:
        if self._storage is None:
            return
        try:
            stored = self._storage.get(self.STORAGE_KEY)
        except StorageError as e:
            logger.error("Could not load timers: %s", e)
            self.event_bus.emit_error(e, "timer.load")
            return
        if not stored:
            return

        for data in stored:
            timer = TimerInstance.from_dict(data)
            if timer.status == TimerStatus.RUNNING:
                timer.status = TimerStatus.PAUSED
                logger.info("Restored timer '%s' as paused", timer.id)
            self._timers[timer.id] = timer

    def _save(self) -> None:
        self._since_persist_ms = 0.0
        if self._storage is None or self._destroyed:
            return
        try:
            self._storage.set(self.STORAGE_KEY, [t.to_dict() for t in self._timers.values()])
        except StorageError as e:
            logger.error("Could not save timers: %s", e)
            self.event_bus.emit_error(e, "timer.save")

    def destroy(self) -> None:
        """Drop all timers, listeners and persisted timers. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        if self._storage is not None:
            try:
                self._storage.remove(self.STORAGE_KEY)
            except StorageError as e:
                logger.error("Could not remove timers: %s", e)
                self.event_bus.emit_error(e, "timer.destroy")
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._state is not None:
            self._state.unregister("timers", self._timers_state)
        self._timers.clear()
        self._callbacks.clear()
        self._paused_by_game.clear()
        logger.debug("TimerManager destroyed")
