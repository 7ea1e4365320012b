"""
Audio playback collaborator.

The engine only ever asks for a sound by id and never waits for it.
"""

import logging
from typing import Protocol


logger = logging.getLogger(__name__)


class AudioPlayer(Protocol):
    def play(self, sound_id: str) -> None: ...


class NullAudioPlayer:
    """Player used when no audio backend is attached. Records what was asked for."""

    def __init__(self):
        self.played: list[str] = []

    def play(self, sound_id: str) -> None:
        logger.debug("play sound '%s'", sound_id)
        self.played.append(sound_id)
