"""
Game State Manager - phase state machine and active team tracking.

Only the transitions listed in VALID_TRANSITIONS are accepted; anything
else is logged and ignored so a stray UI command can never corrupt the
session.
"""

import logging
from enum import Enum
from typing import Optional

from engine.errors import NotFoundError, StateError
from engine.state_registry import StateRegistry
from models.schemas import TeamConfig
from services import event_types as events
from services.event_bus import EventBus


logger = logging.getLogger(__name__)


class GamePhase(Enum):
    """Lifecycle phases of a session."""
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


VALID_TRANSITIONS: dict[GamePhase, frozenset[GamePhase]] = {
    GamePhase.LOADING: frozenset({GamePhase.READY}),
    GamePhase.READY: frozenset({GamePhase.PLAYING}),
    GamePhase.PLAYING: frozenset({GamePhase.PAUSED, GamePhase.ENDED}),
    GamePhase.PAUSED: frozenset({GamePhase.PLAYING, GamePhase.ENDED}),
    GamePhase.ENDED: frozenset(),
}


class GameStateManager:
    """
    Owns the current GamePhase and the active team.

    Every accepted transition emits PHASE_CHANGED followed by the matching
    lifecycle event (GAME_STARTED, GAME_PAUSED, GAME_RESUMED or GAME_ENDED).
    PAUSE_REQUESTED and RESUME_REQUESTED events are treated as commands.

    Usage:
        game_state = GameStateManager(event_bus, registry)
        game_state.init(config.teams)
        game_state.mark_ready()
        game_state.start_game()
        game_state.set_active_team("red")
    """

    def __init__(self, event_bus: EventBus, state: Optional[StateRegistry] = None):
        self.event_bus = event_bus
        self._state = state
        self._phase = GamePhase.LOADING
        self._active_team_id: Optional[str] = None
        self._teams: list[TeamConfig] = []
        self._destroyed = False

        self._unsubscribers = [
            event_bus.subscribe(events.PAUSE_REQUESTED, self._on_pause_requested),
            event_bus.subscribe(events.RESUME_REQUESTED, self._on_resume_requested),
        ]
        if state is not None:
            state.register("phase", self._phase_value)
            state.register("active_team_id", self.get_active_team_id)

    # ============ Setup ============

    def init(self, teams: list[TeamConfig]) -> None:
        """Store the participating teams. Ids must be unique."""
        ids = [team.id for team in teams]
        if len(set(ids)) != len(ids):
            raise ValueError("Team ids must be unique")
        self._teams = list(teams)
        self._active_team_id = None
        logger.info("Game state initialized with %d teams", len(self._teams))

    # ============ Phase ============

    @property
    def phase(self) -> GamePhase:
        return self._phase

    def get_current_phase(self) -> GamePhase:
        return self._phase

    def is_phase(self, *phases: GamePhase) -> bool:
        """True if the current phase is any of ``phases``."""
        return self._phase in phases

    @staticmethod
    def is_valid_transition(current: GamePhase, target: GamePhase) -> bool:
        return target in VALID_TRANSITIONS[current]

    def set_phase(self, target: GamePhase) -> bool:
        """
        Request a phase transition.

        Args:
            target: The phase to move to

        Returns:
            True if the phase changed. Requesting the current phase or an
            illegal transition returns False and emits nothing.
        """
        if target == self._phase:
            return False
        try:
            self._transition(target)
        except StateError as e:
            logger.warning("%s", e)
            return False
        return True

    def _transition(self, target: GamePhase) -> None:
        previous = self._phase
        if not self.is_valid_transition(previous, target):
            raise StateError(
                f"Invalid phase transition {previous.value} -> {target.value}"
            )

        self._phase = target
        logger.info("Phase %s -> %s", previous.value, target.value)

        self.event_bus.emit(events.PHASE_CHANGED, {
            "previous": previous.value,
            "current": target.value,
        })

        lifecycle = self._lifecycle_event(previous, target)
        if lifecycle == events.GAME_ENDED:
            self.event_bus.emit(lifecycle, {"previous": previous.value})
        elif lifecycle is not None:
            self.event_bus.emit(lifecycle, {"phase": target.value})

    @staticmethod
    def _lifecycle_event(previous: GamePhase, target: GamePhase) -> Optional[str]:
        if target == GamePhase.ENDED:
            return events.GAME_ENDED
        if previous == GamePhase.READY and target == GamePhase.PLAYING:
            return events.GAME_STARTED
        if previous == GamePhase.PLAYING and target == GamePhase.PAUSED:
            return events.GAME_PAUSED
        if previous == GamePhase.PAUSED and target == GamePhase.PLAYING:
            return events.GAME_RESUMED
        return None

    def mark_ready(self) -> bool:
        return self.set_phase(GamePhase.READY)

    def start_game(self) -> bool:
        return self.set_phase(GamePhase.PLAYING) if self._phase == GamePhase.READY else self._reject("start")

    def pause_game(self) -> bool:
        return self.set_phase(GamePhase.PAUSED) if self._phase == GamePhase.PLAYING else self._reject("pause")

    def resume_game(self) -> bool:
        return self.set_phase(GamePhase.PLAYING) if self._phase == GamePhase.PAUSED else self._reject("resume")

    def end_game(self) -> bool:
        return self.set_phase(GamePhase.ENDED)

    def _reject(self, what: str) -> bool:
        logger.warning("Cannot %s game while %s", what, self._phase.value)
        return False

    def _on_pause_requested(self, _payload) -> None:
        self.pause_game()

    def _on_resume_requested(self, _payload) -> None:
        self.resume_game()

    def _phase_value(self) -> str:
        return self._phase.value

    # ============ Active Team ============

    def set_active_team(self, team_id: str) -> bool:
        """
        Make ``team_id`` the team whose turn it is.

        Only allowed while PLAYING. Unknown ids are rejected. Setting the
        already-active team is a no-op.
        """
        try:
            if self._phase != GamePhase.PLAYING:
                raise StateError(f"Cannot change active team while {self._phase.value}")
            if not any(team.id == team_id for team in self._teams):
                raise NotFoundError(f"Unknown team '{team_id}'")
        except (StateError, NotFoundError) as e:
            logger.warning("%s", e)
            return False

        previous = self._active_team_id
        if previous == team_id:
            return False

        self._active_team_id = team_id
        self.event_bus.emit(events.ACTIVE_TEAM_CHANGED, {
            "previous_team_id": previous,
            "current_team_id": team_id,
        })
        return True

    def get_active_team_id(self) -> Optional[str]:
        return self._active_team_id

    def get_active_team(self) -> Optional[TeamConfig]:
        if self._active_team_id is None:
            return None
        return next((t for t in self._teams if t.id == self._active_team_id), None)

    def get_teams(self) -> list[TeamConfig]:
        return list(self._teams)

    # ============ Teardown ============

    def destroy(self) -> None:
        """Unsubscribe and unregister. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._state is not None:
            self._state.unregister("phase", self._phase_value)
            self._state.unregister("active_team_id", self.get_active_team_id)
        logger.debug("GameStateManager destroyed")
