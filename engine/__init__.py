"""
QuizArena Game Engine

Core orchestration logic for trivia sessions.
This module contains no GUI dependencies.
"""

from engine.errors import (
    EngineError, ValidationError, NotFoundError, StateError,
    ActionExecutionError, StorageError,
)
from engine.state_registry import StateRegistry
from engine.game_state import GameStateManager, GamePhase
from engine.scoring import ScoringManager, ScoreRecord
from engine.timer import TimerManager, TimerInstance, TimerKind, TimerStatus
from engine.power_ups import PowerUpManager, ActivePowerUp, DEFAULT_POWER_UPS
from engine.managers import ManagerSet
from engine.rules import RuleEngine, RuleContext
from engine.question_sequencer import QuestionSequencer, QuestionAssignment

__all__ = [
    "EngineError",
    "ValidationError",
    "NotFoundError",
    "StateError",
    "ActionExecutionError",
    "StorageError",
    "StateRegistry",
    "GameStateManager",
    "GamePhase",
    "ScoringManager",
    "ScoreRecord",
    "TimerManager",
    "TimerInstance",
    "TimerKind",
    "TimerStatus",
    "PowerUpManager",
    "ActivePowerUp",
    "DEFAULT_POWER_UPS",
    "ManagerSet",
    "RuleEngine",
    "RuleContext",
    "QuestionSequencer",
    "QuestionAssignment",
]
