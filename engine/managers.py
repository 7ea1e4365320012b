"""
Manager bundle handed to components that act on the whole session.
"""

from dataclasses import dataclass
from typing import Any

from engine.game_state import GameStateManager
from engine.power_ups import PowerUpManager
from engine.scoring import ScoringManager
from engine.state_registry import StateRegistry
from engine.timer import TimerManager
from services.event_bus import EventBus


@dataclass(frozen=True)
class ManagerSet:
    """
    Immutable set of session collaborators.

    Built once by the session controller and passed to the RuleEngine, so
    no component needs a global to reach another manager.
    """
    event_bus: EventBus
    state: StateRegistry
    game_state: GameStateManager
    scoring: ScoringManager
    timers: TimerManager
    power_ups: PowerUpManager
    audio: Any = None
    storage: Any = None
