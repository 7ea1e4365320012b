"""
Test helpers shared across modules.
"""

from models.schemas import QuestionOption, QuestionRecord, TeamConfig
from services import event_types as events


class EventRecorder:
    """Subscribes to every known event and keeps them in delivery order."""

    def __init__(self, bus, names=events.ALL_EVENTS):
        self.events: list[tuple[str, object]] = []
        self._unsubscribers = [
            bus.subscribe(name, lambda payload, n=name: self.events.append((n, payload)))
            for name in names
        ]

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list:
        return [payload for n, payload in self.events if n == name]

    def clear(self) -> None:
        self.events.clear()

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()


def make_teams(*ids: str) -> list[TeamConfig]:
    return [TeamConfig(id=tid, name=f"Team {tid}") for tid in ids]


def make_questions(count: int) -> list[QuestionRecord]:
    return [
        QuestionRecord(
            id=f"q{i}",
            prompt=f"Question {i}?",
            options=(QuestionOption(id="a", text="Right"), QuestionOption(id="b", text="Wrong")),
            correct_option_id="a",
        )
        for i in range(1, count + 1)
    ]
