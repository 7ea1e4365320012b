"""
Scoring Manager - score and lives ledger for every team.

The ScoringManager is the only component that mutates scores or lives.
It announces every change on the EventBus and writes the ledger through
an injected key/value store so a session can be resumed after a restart.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Optional, Union

from engine.errors import NotFoundError, StorageError, ValidationError
from engine.state_registry import StateRegistry
from models.schemas import LivesModeConfig, ScoreModeConfig, TeamConfig
from services import event_types as events
from services.event_bus import EventBus


logger = logging.getLogger(__name__)


@dataclass
class ScoreRecord:
    """
    Snapshot of one team's standing.

    ``max_lives == 0`` means lives are not tracked for the team.
    """
    team_id: str
    score: int = 0
    lives: int = 0
    max_lives: int = 0
    eliminated: bool = False
    display_name: str = ""
    color: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class ScoringManager:
    """
    Score and lives bookkeeping.

    Scores never go negative and lives stay within [0, max_lives].
    A team is eliminated when its lives move from above zero to zero;
    TEAM_ELIMINATED fires once for that transition.

    Usage:
        scoring = ScoringManager(event_bus, storage, registry)
        scoring.init(config.teams, config.game_mode)
        scoring.add_score("red", 10)
        scoring.remove_lives("blue", 1)
    """

    # Storage keys
    SCORES_KEY = "scoring/scores"
    LIVES_KEY = "scoring/lives"
    MAX_LIVES_KEY = "scoring/max_lives"
    ELIMINATED_KEY = "scoring/eliminated"

    def __init__(self, event_bus: EventBus, storage=None,
                 state: Optional[StateRegistry] = None):
        """
        Initialize the scoring manager and load any persisted ledger.

        Args:
            event_bus: Bus used for score and lives events
            storage: Optional KeyValueStore for persistence
            state: Optional registry that exposes the ledger to rules
        """
        self.event_bus = event_bus
        self._storage = storage
        self._state = state
        self._teams: dict[str, TeamConfig] = {}
        self._scores: dict[str, int] = {}
        self._lives: dict[str, int] = {}
        self._max_lives: dict[str, int] = {}
        self._eliminated: set[str] = set()
        self._destroyed = False

        self._load()

        if state is not None:
            state.register("scores", self.get_all_scores)
            state.register("lives", self.get_all_lives)
            state.register("eliminated", self.get_eliminated_teams)

    def init(self, teams: list[TeamConfig],
             game_mode: Union[ScoreModeConfig, LivesModeConfig, None] = None,
             resume: bool = False) -> None:
        """
        Set up the ledger for a new session.

        Args:
            teams: Participating teams
            game_mode: Score or lives mode configuration
            resume: Keep persisted values for teams that already have them
        """
        lives_mode = isinstance(game_mode, LivesModeConfig)
        persisted_scores = dict(self._scores) if resume else {}
        persisted_lives = dict(self._lives) if resume else {}
        persisted_eliminated = set(self._eliminated) if resume else set()

        self._teams = {team.id: team for team in teams}
        self._scores.clear()
        self._lives.clear()
        self._max_lives.clear()
        self._eliminated.clear()

        for team in teams:
            if lives_mode:
                initial = team.initial_lives if team.initial_lives is not None else game_mode.initial_lives
                max_lives = max(game_mode.effective_max_lives, initial)
            else:
                initial = team.initial_lives or 0
                max_lives = initial

            self._scores[team.id] = persisted_scores.get(team.id, team.starting_score)
            self._lives[team.id] = persisted_lives.get(team.id, initial)
            self._max_lives[team.id] = max_lives
            if team.id in persisted_eliminated:
                self._eliminated.add(team.id)

        self._save()
        logger.info("Scoring initialized for %d teams (%s mode%s)", len(teams),
                    "lives" if lives_mode else "score", ", resumed" if resume else "")

    def _require(self, team_id: str) -> None:
        if team_id not in self._scores:
            raise NotFoundError(f"Unknown team '{team_id}'")

    # ============ Score ============

    def add_score(self, team_id: str, points: int) -> int:
        """
        Add points to a team.

        Returns:
            The team's score after the call. Non-positive ``points`` or an
            unknown team leave the ledger unchanged.
        """
        try:
            self._require(team_id)
            if points <= 0:
                raise ValidationError(f"add_score needs a positive amount, got {points}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return self._scores.get(team_id, 0)

        return self._apply_score(team_id, self._scores[team_id] + points)

    def subtract_score(self, team_id: str, points: int) -> int:
        """Subtract points from a team, stopping at zero."""
        try:
            self._require(team_id)
            if points <= 0:
                raise ValidationError(f"subtract_score needs a positive amount, got {points}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return self._scores.get(team_id, 0)

        return self._apply_score(team_id, max(0, self._scores[team_id] - points))

    def set_score(self, team_id: str, score: int) -> int:
        """Set a team's score directly. Negative scores are rejected."""
        try:
            self._require(team_id)
            if score < 0:
                raise ValidationError(f"Score cannot be negative, got {score}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return self._scores.get(team_id, 0)

        return self._apply_score(team_id, score)

    def _apply_score(self, team_id: str, new_score: int) -> int:
        previous = self._scores[team_id]
        self._scores[team_id] = new_score
        self._save()
        self.event_bus.emit(events.SCORE_UPDATED, {
            "team_id": team_id,
            "previous_score": previous,
            "current_score": new_score,
            "delta": new_score - previous,
        })
        return new_score

    def get_score(self, team_id: str) -> int:
        return self._scores.get(team_id, 0)

    def get_all_scores(self) -> dict[str, int]:
        return dict(self._scores)

    def reset_score(self, team_id: str) -> int:
        """Put a team back to its configured starting score."""
        team = self._teams.get(team_id)
        return self.set_score(team_id, team.starting_score if team else 0)

    def reset_all_scores(self) -> None:
        for team_id in list(self._scores):
            self.reset_score(team_id)

    # ============ Lives ============

    def set_lives(self, team_id: str, lives: int) -> int:
        """
        Set a team's lives, clamped into [0, max_lives].

        Returns:
            The stored value after clamping.
        """
        try:
            self._require(team_id)
        except NotFoundError as e:
            logger.warning("%s", e)
            return 0

        max_lives = self._max_lives.get(team_id, 0)
        clamped = max(0, lives)
        if max_lives > 0:
            clamped = min(clamped, max_lives)
        if clamped != lives:
            logger.debug("Lives for '%s' clamped %d -> %d", team_id, lives, clamped)

        previous = self._lives.get(team_id, 0)
        self._lives[team_id] = clamped

        newly_eliminated = False
        if clamped == 0 and previous > 0 and team_id not in self._eliminated:
            self._eliminated.add(team_id)
            newly_eliminated = True
        elif clamped > 0 and team_id in self._eliminated:
            self._eliminated.discard(team_id)
            logger.info("Team '%s' is back in the game", team_id)

        self._save()
        if newly_eliminated:
            logger.info("Team '%s' eliminated", team_id)
            self.event_bus.emit(events.TEAM_ELIMINATED, {"team_id": team_id})
        return clamped

    def add_lives(self, team_id: str, amount: int = 1) -> int:
        if amount <= 0:
            logger.warning("add_lives needs a positive amount, got %s", amount)
            return self.get_lives(team_id)
        return self.set_lives(team_id, self.get_lives(team_id) + amount)

    def remove_lives(self, team_id: str, amount: int = 1) -> int:
        """Take lives from a team. Emits LIFE_LOST before any elimination."""
        try:
            self._require(team_id)
            if amount <= 0:
                raise ValidationError(f"remove_lives needs a positive amount, got {amount}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return self.get_lives(team_id)

        remaining = max(0, self._lives[team_id] - amount)
        if remaining < self._lives[team_id]:
            self.event_bus.emit(events.LIFE_LOST, {
                "team_id": team_id,
                "remaining_lives": remaining,
            })
        return self.set_lives(team_id, remaining)

    def get_lives(self, team_id: str) -> int:
        return self._lives.get(team_id, 0)

    def get_max_lives(self, team_id: str) -> int:
        return self._max_lives.get(team_id, 0)

    def get_all_lives(self) -> dict[str, int]:
        return dict(self._lives)

    # ============ Elimination ============

    def is_team_eliminated(self, team_id: str) -> bool:
        return team_id in self._eliminated

    def get_eliminated_teams(self) -> list[str]:
        return [team_id for team_id in self._scores if team_id in self._eliminated]

    def is_game_over(self, require_all_eliminated: bool = False) -> bool:
        """
        Check elimination-based game over.

        False while no team is eliminated. Otherwise True, unless
        ``require_all_eliminated`` is set, in which case every team must
        be eliminated.
        """
        if not self._eliminated:
            return False
        if require_all_eliminated:
            return len(self._eliminated) >= len(self._scores)
        return True

    # ============ Standings ============

    def get_team_data(self, team_id: str) -> Optional[ScoreRecord]:
        if team_id not in self._scores:
            return None
        team = self._teams.get(team_id)
        return ScoreRecord(
            team_id=team_id,
            score=self._scores[team_id],
            lives=self._lives.get(team_id, 0),
            max_lives=self._max_lives.get(team_id, 0),
            eliminated=team_id in self._eliminated,
            display_name=team.name if team else team_id,
            color=team.color if team else "",
        )

    def get_all_team_data(self) -> list[ScoreRecord]:
        return [self.get_team_data(team_id) for team_id in self._scores]

    def get_rankings(self) -> list[dict[str, Any]]:
        """
        Standings ordered best first.

        Teams still in the game rank above eliminated teams, then by score.
        Equal standings share a rank (1, 1, 3).
        """
        records = sorted(self.get_all_team_data(), key=lambda r: (r.eliminated, -r.score))
        rankings = []
        previous_key = None
        rank = 0
        for position, record in enumerate(records, start=1):
            key = (record.eliminated, record.score)
            if key != previous_key:
                rank = position
                previous_key = key
            rankings.append({"rank": rank, **record.to_dict()})
        return rankings

    def get_leaders(self) -> list[str]:
        """Team ids sharing first place."""
        return self.determine_winners(self.get_all_scores(), self._eliminated)

    @staticmethod
    def determine_winners(scores: dict[str, int], eliminated=()) -> list[str]:
        """
        Determine the winning team ids.

        Primary: not eliminated. Secondary: highest score. Ties return
        every tied team.
        """
        contenders = {tid: s for tid, s in scores.items() if tid not in eliminated} or dict(scores)
        if not contenders:
            return []
        best = max(contenders.values())
        return [tid for tid, s in contenders.items() if s == best]

    # ============ Persistence ============

    def _load(self) -> None:
        if self._storage is None:
            return
        try:
            scores = self._storage.get(self.SCORES_KEY)
            lives = self._storage.get(self.LIVES_KEY)
            max_lives = self._storage.get(self.MAX_LIVES_KEY)
            eliminated = self._storage.get(self.ELIMINATED_KEY)
        except StorageError as e:
            logger.error("Could not load scoring state: %s", e)
            self.event_bus.emit_error(e, "scoring.load")
            return

        if scores:
            self._scores = {str(k): int(v) for k, v in scores.items()}
            logger.info("Loaded persisted scores for %d teams", len(self._scores))
        if lives:
            self._lives = {str(k): int(v) for k, v in lives.items()}
        if max_lives:
            self._max_lives = {str(k): int(v) for k, v in max_lives.items()}
        if eliminated:
            self._eliminated = {str(t) for t in eliminated}

    def _save(self) -> None:
        if self._storage is None or self._destroyed:
            return
        try:
            self._storage.set(self.SCORES_KEY, self._scores)
            self._storage.set(self.LIVES_KEY, self._lives)
            self._storage.set(self.MAX_LIVES_KEY, self._max_lives)
            self._storage.set(self.ELIMINATED_KEY, sorted(self._eliminated))
        except StorageError as e:
            logger.error("Could not save scoring state: %s", e)
            self.event_bus.emit_error(e, "scoring.save")

    def destroy(self) -> None:
        """Clear the ledger and its persisted keys. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        self._teams.clear()
        self._scores.clear()
        self._lives.clear()
        self._max_lives.clear()
        self._eliminated.clear()

        if self._state is not None:
            self._state.unregister("scores", self.get_all_scores)
            self._state.unregister("lives", self.get_all_lives)
            self._state.unregister("eliminated", self.get_eliminated_teams)

        if self._storage is not None:
            try:
                for key in (self.SCORES_KEY, self.LIVES_KEY, self.MAX_LIVES_KEY, self.ELIMINATED_KEY):
                    self._storage.remove(key)
            except StorageError as e:
                logger.error("Could not remove scoring state: %s", e)
                self.event_bus.emit_error(e, "scoring.destroy")
        logger.debug("ScoringManager destroyed")
