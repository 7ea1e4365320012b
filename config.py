"""
QuizArena Configuration

Centralized settings, paths, and constants for the application.
"""

import logging
import sys
from pathlib import Path
from dataclasses import dataclass
import appdirs


# Application info
APP_NAME = "QuizArena"
APP_AUTHOR = "QuizArena"
APP_VERSION = "1.0.0"


@dataclass(frozen=True)
class Paths:
    """Application paths."""
    # Data directory (stores database)
    data_dir: Path = Path(appdirs.user_data_dir(APP_NAME, APP_AUTHOR))

    # Config directory (stores user preferences)
    config_dir: Path = Path(appdirs.user_config_dir(APP_NAME, APP_AUTHOR))

    # Cache directory (stores temporary files)
    cache_dir: Path = Path(appdirs.user_cache_dir(APP_NAME, APP_AUTHOR))

    # Log directory
    log_dir: Path = Path(appdirs.user_log_dir(APP_NAME, APP_AUTHOR))

    @property
    def database(self) -> Path:
        return self.data_dir / "quizarena.db"

    @property
    def log_file(self) -> Path:
        return self.log_dir / "quizarena.log"

    @property
    def exports(self) -> Path:
        return self.data_dir / "exports"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        for dir_path in [self.data_dir, self.config_dir, self.cache_dir,
                         self.log_dir, self.exports]:
            dir_path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class TimerSettings:
    """Timer-related settings."""
    # Default time allowed per question in milliseconds
    question_duration_ms: int = 30_000  # 30 seconds

    # Warning thresholds in milliseconds remaining
    warning_thresholds_ms: tuple[int, ...] = (30_000, 10_000, 5_000)

    # Minimum gap between timer snapshots written while ticking
    persist_interval_ms: int = 1_000

    # Timer id used for the per-question countdown
    question_timer_id: str = "question"


@dataclass(frozen=True)
class StorageSettings:
    """Persistence settings."""
    # Prefix applied to every stored key
    namespace: str = "quizarena"

    # Table holding namespaced JSON values
    table_name: str = "stored_values"


@dataclass(frozen=True)
class SessionSettings:
    """Game session flow settings."""
    # Present the next question as soon as an answer is processed
    auto_advance: bool = True


@dataclass(frozen=True)
class LogSettings:
    """Logging settings."""
    level: int = logging.INFO
    format: str = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


# Singleton instances
PATHS = Paths()
TIMER_SETTINGS = TimerSettings()
STORAGE_SETTINGS = StorageSettings()
SESSION_SETTINGS = SessionSettings()
LOG_SETTINGS = LogSettings()


def init_logging(level: int = None, log_to_file: bool = True) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level (default: LOG_SETTINGS.level)
        log_to_file: Also write to the log file in the user log directory
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_to_file:
        PATHS.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(PATHS.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level if level is not None else LOG_SETTINGS.level,
        format=LOG_SETTINGS.format,
        handlers=handlers,
        force=True,
    )


def init_config() -> None:
    """Initialize configuration and create required directories."""
    PATHS.ensure_directories()
