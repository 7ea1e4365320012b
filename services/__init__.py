"""
QuizArena Services

Application services for event handling, persistence, audio and export.
"""

from services.event_bus import EventBus
from services.storage import KeyValueStore, MemoryStore, SqlStore
from services.audio import AudioPlayer, NullAudioPlayer
from services.export import StandingsExporter

__all__ = [
    "EventBus",
    "KeyValueStore",
    "MemoryStore",
    "SqlStore",
    "AudioPlayer",
    "NullAudioPlayer",
    "StandingsExporter",
]
