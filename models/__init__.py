"""
QuizArena Data Models

SQLAlchemy persistence model and pydantic configuration schemas.
"""

from models.base import Base, create_db_engine, get_engine, get_session, init_db
from models.stored_value import StoredValue
from models.schemas import (
    TeamConfig,
    ScoreModeConfig,
    LivesModeConfig,
    QuestionHandlingConfig,
    QuestionOption,
    QuestionRecord,
    PowerUpDefinition,
    RuleDefinition,
    GameConfig,
)

__all__ = [
    "Base",
    "create_db_engine",
    "get_engine",
    "get_session",
    "init_db",
    "StoredValue",
    "TeamConfig",
    "ScoreModeConfig",
    "LivesModeConfig",
    "QuestionHandlingConfig",
    "QuestionOption",
    "QuestionRecord",
    "PowerUpDefinition",
    "RuleDefinition",
    "GameConfig",
]
