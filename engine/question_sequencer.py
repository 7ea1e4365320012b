"""
Question Sequencer - fair ordering of the question pool across teams.

Two distribution modes are supported:
- sharedPool: one sequence; question at position p goes to team p mod N
- perTeam: the pool is dealt round-robin into one bucket per team and the
  buckets are drawn in turn

With fairness truncation the usable pool is cut to a multiple of the team
count so every team gets the same number of questions.
"""

import random
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from models.schemas import QuestionHandlingConfig, QuestionRecord


@dataclass(frozen=True)
class QuestionAssignment:
    """A question together with the team expected to answer it."""
    question: QuestionRecord
    team_index: int
    position: int


class QuestionSequencer:
    """
    Produces the order in which questions are asked.

    The order is fixed when the sequencer is built; only the read position
    moves afterwards.

    Usage:
        sequencer = QuestionSequencer(questions, num_teams=2,
                                      config=QuestionHandlingConfig(distribution_mode="sharedPool"))
        while not sequencer.is_finished():
            assignment = sequencer.next_assignment()
    """

    def __init__(self, questions: Iterable[Union[QuestionRecord, dict]], num_teams: int,
                 config: Optional[QuestionHandlingConfig] = None,
                 rng: Optional[random.Random] = None):
        """
        Build the question order.

        Args:
            questions: The question pool
            num_teams: Number of teams taking turns (must be at least 1)
            config: Distribution, shuffle and truncation options
            rng: Random source for the shuffle (default: a new Random())

        Raises:
            ValueError: If the pool is empty or num_teams < 1
        """
        pool = [q if isinstance(q, QuestionRecord) else QuestionRecord.model_validate(q)
                for q in questions]
        if not pool:
            raise ValueError("Question pool cannot be empty")
        if num_teams < 1:
            raise ValueError(f"Number of teams must be at least 1, got {num_teams}")

        self.config = config or QuestionHandlingConfig()
        self.num_teams = num_teams
        self._rng = rng or random.Random()

        if self.config.randomize_order:
            # random.shuffle is a Fisher-Yates shuffle
            self._rng.shuffle(pool)

        usable = len(pool)
        if self.config.truncate_for_fairness:
            usable = (len(pool) // num_teams) * num_teams
        pool = pool[:usable]

        if self.config.distribution_mode == "perTeam":
            buckets = tuple(tuple(pool[i::num_teams]) for i in range(num_teams))
            self._order = self._interleave(buckets)
        else:
            self._order = tuple(
                QuestionAssignment(question=q, team_index=p % num_teams, position=p)
                for p, q in enumerate(pool)
            )

        self._position = 0

    @staticmethod
    def _interleave(buckets: tuple[tuple[QuestionRecord, ...], ...]) -> tuple[QuestionAssignment, ...]:
        order = []
        depth = max((len(b) for b in buckets), default=0)
        for turn in range(depth):
            for team_index, bucket in enumerate(buckets):
                if turn < len(bucket):
                    order.append(QuestionAssignment(question=bucket[turn],
                                                    team_index=team_index,
                                                    position=len(order)))
        return tuple(order)

    # ============ Drawing ============

    def next_assignment(self) -> Optional[QuestionAssignment]:
        """Take the next question and its team, or None when finished."""
        if self.is_finished():
            return None
        assignment = self._order[self._position]
        self._position += 1
        return assignment

    def get_next_question(self) -> Optional[QuestionRecord]:
        assignment = self.next_assignment()
        return assignment.question if assignment else None

    def peek(self) -> Optional[QuestionAssignment]:
        if self.is_finished():
            return None
        return self._order[self._position]

    def peek_team_index(self) -> Optional[int]:
        """Team index of the next question without consuming it."""
        assignment = self.peek()
        return assignment.team_index if assignment else None

    def skip_for_team(self, team_index: int) -> int:
        """
        Advance past upcoming questions for ``team_index``.

        Used when a team has been eliminated. Returns how many were skipped.
        """
        skipped = 0
        while not self.is_finished() and self._order[self._position].team_index == team_index:
            self._position += 1
            skipped += 1
        return skipped

    # ============ Progress ============

    def is_finished(self) -> bool:
        return self._position >= len(self._order)

    def get_total_questions_to_ask(self) -> int:
        return len(self._order)

    def get_current_progress_index(self) -> int:
        """Number of questions already drawn."""
        return self._position

    def get_next_question_index(self) -> int:
        """Position of the next question, or -1 when finished."""
        return -1 if self.is_finished() else self._position

    def get_remaining_count(self) -> int:
        return len(self._order) - self._position

    def get_questions_for_team(self, team_index: int) -> list[QuestionRecord]:
        """Every question this team will be asked, in order."""
        return [a.question for a in self._order if a.team_index == team_index]

    def get_order(self) -> list[QuestionAssignment]:
        return list(self._order)
