"""
QuizArena Session Controller

Top-level controller that wires together all engine components for one
trivia session and drives the question/answer flow.
"""

import logging
import random
from typing import Any, Iterable, Optional, Union

from PySide6.QtCore import QObject

from config import SESSION_SETTINGS, TIMER_SETTINGS
from engine.errors import EngineError
from engine.game_state import GamePhase, GameStateManager
from engine.managers import ManagerSet
from engine.power_ups import PowerUpManager
from engine.question_sequencer import QuestionAssignment, QuestionSequencer
from engine.rules import RuleEngine
from engine.scoring import ScoringManager
from engine.state_registry import StateRegistry
from engine.timer import TimerManager
from models.schemas import (
    GameConfig, LivesModeConfig, QuestionRecord, RuleDefinition, ScoreModeConfig,
)
from services import event_types as events
from services.audio import NullAudioPlayer
from services.event_bus import EventBus
from services.storage import SqlStore


logger = logging.getLogger(__name__)


def default_rules(game_mode: Union[ScoreModeConfig, LivesModeConfig]) -> list[RuleDefinition]:
    """Rules used when a session config does not define any."""
    rules = [
        RuleDefinition(
            id="correct-answer-points",
            description="Award points for a correct answer",
            trigger_event=events.ANSWER_SELECTED,
            conditions=[{"type": "compare", "path": "payload.is_correct", "op": "eq", "value": True}],
            actions=[
                {"type": "modifyScore", "params": {"mode": "fixed", "points": 10}},
                {"type": "playSound", "params": {"sound_id": "correct"}},
            ],
        ),
        RuleDefinition(
            id="wrong-answer-sound",
            trigger_event=events.ANSWER_SELECTED,
            conditions=[{"type": "compare", "path": "payload.is_correct", "op": "eq", "value": False}],
            actions=[{"type": "playSound", "params": {"sound_id": "incorrect"}}],
        ),
    ]
    if isinstance(game_mode, LivesModeConfig):
        rules.append(RuleDefinition(
            id="wrong-answer-life",
            description="Lose a life for a wrong answer or timeout",
            trigger_event=events.ANSWER_SELECTED,
            conditions=[{"type": "compare", "path": "payload.is_correct", "op": "eq", "value": False}],
            actions=[{"type": "modifyLives", "params": {"delta": -1}}],
        ))
    return rules


class GameSession(QObject):
    """
    Hosts one trivia session.

    Builds the EventBus, the managers, the frozen ManagerSet, the RuleEngine
    and the QuestionSequencer from a GameConfig. A successful build leaves
    the session READY; a fatal error emits ENGINE_ERROR and leaves it in
    LOADING.

    After every answer (or timeout) the rules react first; then the session
    ends the game if the questions are exhausted or the game mode's end
    condition holds, and otherwise presents the next question.

    Usage:
        session = GameSession(config, questions)
        session.start()
        session.submit_answer("b")

        # From the host frame loop
        session.update(delta_ms)
    """

    def __init__(self, config: Union[GameConfig, dict], questions: Iterable[Union[QuestionRecord, dict]],
                 event_bus: Optional[EventBus] = None, storage=None, audio=None,
                 rng: Optional[random.Random] = None, auto_advance: Optional[bool] = None,
                 resume: bool = False):
        """
        Build a session.

        Args:
            config: Session configuration (validated if given as a dict)
            questions: Question pool
            event_bus: Bus to use (default: a new EventBus)
            storage: KeyValueStore (default: SqlStore when config.persist_state)
            audio: AudioPlayer (default: NullAudioPlayer)
            rng: Random source for question shuffling
            auto_advance: Present the next question automatically after an answer
            resume: Restore persisted scores and timers from a previous run
        """
        super().__init__()
        self.event_bus = event_bus or EventBus()
        self.state = StateRegistry()
        self.game_state = GameStateManager(self.event_bus, self.state)
        self.auto_advance = SESSION_SETTINGS.auto_advance if auto_advance is None else auto_advance

        self.config: Optional[GameConfig] = None
        self.managers: Optional[ManagerSet] = None
        self.rule_engine: Optional[RuleEngine] = None
        self.sequencer: Optional[QuestionSequencer] = None

        self._current: Optional[QuestionAssignment] = None
        self._awaiting_answer = False
        self._finished = False
        self._destroyed = False
        self._unsubscribers: list = []

        try:
            self._setup(config, questions, storage, audio, rng, resume)
        except (ValueError, EngineError) as e:
            logger.error("Session setup failed: %s", e)
            self.event_bus.emit_error(e, "session.setup")
            return

        self.game_state.mark_ready()

    def _setup(self, config, questions, storage, audio, rng, resume) -> None:
        self.config = config if isinstance(config, GameConfig) else GameConfig.model_validate(config)

        self.sequencer = QuestionSequencer(questions, len(self.config.teams),
                                           self.config.question_handling, rng)

        if storage is None and self.config.persist_state:
            storage = SqlStore()
        if storage is not None:
            # Raises StorageError when the store cannot be read
            storage.get(ScoringManager.SCORES_KEY)

        self.game_state.init(self.config.teams)

        scoring = ScoringManager(self.event_bus, storage, self.state)
        scoring.init(self.config.teams, self.config.game_mode, resume=resume)
        timers = TimerManager(self.event_bus, self.state, storage, restore=resume)
        power_ups = PowerUpManager(self.event_bus, self.state, self.config.power_ups)

        self.managers = ManagerSet(
            event_bus=self.event_bus,
            state=self.state,
            game_state=self.game_state,
            scoring=scoring,
            timers=timers,
            power_ups=power_ups,
            audio=audio or NullAudioPlayer(),
            storage=storage,
        )

        # Rules subscribe first so they react to an answer before the session moves on
        self.rule_engine = RuleEngine(self.managers, self.config.rules or default_rules(self.config.game_mode))

        self._unsubscribers = [
            self.event_bus.subscribe(events.ANSWER_SELECTED, self._on_answer_selected),
            self.event_bus.subscribe(events.TIMER_COMPLETED, self._on_timer_completed),
            self.event_bus.subscribe(events.GAME_ENDED, self._on_game_ended),
        ]
        logger.info("Session '%s' ready: %d teams, %d questions", self.config.name,
                    len(self.config.teams), self.sequencer.get_total_questions_to_ask())

    # ============ Properties ============

    @property
    def phase(self) -> GamePhase:
        return self.game_state.phase

    @property
    def is_ready(self) -> bool:
        return self.managers is not None

    @property
    def scoring(self) -> Optional[ScoringManager]:
        return self.managers.scoring if self.managers else None

    @property
    def timers(self) -> Optional[TimerManager]:
        return self.managers.timers if self.managers else None

    @property
    def power_ups(self) -> Optional[PowerUpManager]:
        return self.managers.power_ups if self.managers else None

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        return self._current.question if self._current else None

    @property
    def awaiting_answer(self) -> bool:
        return self._awaiting_answer

    def is_finished(self) -> bool:
        return self._finished

    # ============ Flow ============

    def start(self) -> bool:
        """Move READY -> PLAYING and present the first question."""
        if not self.is_ready:
            logger.warning("Cannot start: session failed to initialize")
            return False
        if not self.game_state.start_game():
            return False
        self.advance()
        return True

    def pause(self) -> bool:
        return self.game_state.pause_game()

    def resume(self) -> bool:
        return self.game_state.resume_game()

    def update(self, delta_ms: float) -> None:
        """Advance timers and power-ups. Ignored unless PLAYING."""
        if not self.is_ready or self.phase != GamePhase.PLAYING:
            return
        self.managers.timers.update(delta_ms)
        self.managers.power_ups.update(delta_ms)

    def advance(self) -> bool:
        """
        Present the next question.

        Questions belonging to eliminated teams are skipped. When nothing
        is left the game ends.

        Returns:
            True if a question was presented.
        """
        if not self.is_ready or self.phase != GamePhase.PLAYING:
            logger.warning("Cannot advance while %s", self.phase.value)
            return False
        if self._awaiting_answer:
            logger.warning("Cannot advance: question '%s' is still open", self._current.question.id)
            return False

        teams = self.config.teams
        while True:
            assignment = self.sequencer.next_assignment()
            if assignment is None:
                self._end()
                return False
            team = teams[assignment.team_index]
            if not self.managers.scoring.is_team_eliminated(team.id):
                break
            logger.debug("Skipping question '%s' for eliminated team '%s'",
                         assignment.question.id, team.id)

        self._current = assignment
        self._awaiting_answer = True
        self.game_state.set_active_team(team.id)

        timers = self.managers.timers
        timers.create_timer(TIMER_SETTINGS.question_timer_id, self.config.question_time_limit_ms)
        timers.start_timer(TIMER_SETTINGS.question_timer_id)

        question = assignment.question
        self.event_bus.emit(events.QUESTION_PRESENTED, {
            "question_id": question.id,
            "prompt": question.prompt,
            "option_ids": [o.id for o in question.options],
            "media_ref": question.media_ref,
            "team_id": team.id,
            "position": self.sequencer.get_current_progress_index(),
            "total": self.sequencer.get_total_questions_to_ask(),
        })
        return True

    def submit_answer(self, option_id: Optional[str]) -> bool:
        """
        Answer the open question for the active team.

        Returns:
            False if no question is open or the game is not PLAYING.
        """
        if not self.is_ready or self.phase != GamePhase.PLAYING:
            logger.warning("Cannot answer while %s", self.phase.value)
            return False
        if not self._awaiting_answer:
            logger.warning("No open question to answer")
            return False

        remaining = self.managers.timers.get_time_remaining(TIMER_SETTINGS.question_timer_id)
        self._record_answer(option_id, remaining)
        return True

    def _record_answer(self, option_id: Optional[str], remaining_ms: int) -> None:
        question = self._current.question
        team_id = self.config.teams[self._current.team_index].id

        self._awaiting_answer = False
        self.managers.timers.reset_timer(TIMER_SETTINGS.question_timer_id)

        self.event_bus.emit(events.ANSWER_SELECTED, {
            "question_id": question.id,
            "selected_option_id": option_id,
            "is_correct": question.is_correct(option_id),
            "team_id": team_id,
            "remaining_time_ms": remaining_ms,
            "score_multiplier": self.managers.power_ups.get_score_multiplier(team_id),
        })

    def _on_timer_completed(self, payload: dict) -> None:
        if payload.get("timer_id") != TIMER_SETTINGS.question_timer_id or not self._awaiting_answer:
            return
        logger.info("Time is up for question '%s'", self._current.question.id)
        self._record_answer(None, 0)

    def _on_answer_selected(self, payload: dict) -> None:
        if self._current is None or payload.get("question_id") != self._current.question.id:
            return
        if self._finished or self.phase == GamePhase.ENDED:
            return

        if self._is_game_over():
            self._end()
        elif self.sequencer.is_finished():
            self._end()
        elif self.auto_advance and self.phase == GamePhase.PLAYING:
            self.advance()

    def _is_game_over(self) -> bool:
        scoring = self.managers.scoring
        mode = self.config.game_mode
        if isinstance(mode, LivesModeConfig):
            return scoring.is_game_over(mode.require_all_eliminated)
        if mode.target_score is not None:
            return any(score >= mode.target_score for score in scoring.get_all_scores().values())
        return False

    def end(self) -> bool:
        """
        End the session early.

        Returns:
            False if the session never became ready, is already finished,
            or is in a phase that cannot move to ENDED.
        """
        if not self.is_ready or self._finished:
            return False
        return self._end()

    def _end(self) -> bool:
        # GAME_ENDED finishes the session
        ended = self.game_state.end_game()
        if ended:
            self._awaiting_answer = False
        return ended

    def _on_game_ended(self, _payload) -> None:
        self._finish()

    def _finish(self) -> None:
        if self._finished or self.managers is None:
            return
        self._finished = True
        self._awaiting_answer = False
        self.managers.timers.reset_timer(TIMER_SETTINGS.question_timer_id)

        results = self.get_results()
        logger.info("Session '%s' completed; winners: %s", self.config.name,
                    ", ".join(results["winner_ids"]) or "none")
        self.event_bus.emit(events.SESSION_COMPLETED, {
            "rankings": results["rankings"],
            "winner_ids": results["winner_ids"],
        })

    def get_results(self) -> dict[str, Any]:
        """Standings and winners as they are now."""
        if not self.is_ready:
            return {"session_name": "", "rankings": [], "winner_ids": [], "questions_asked": 0}
        scoring = self.managers.scoring
        return {
            "session_name": self.config.name,
            "rankings": scoring.get_rankings(),
            "winner_ids": scoring.get_leaders(),
            "questions_asked": self.sequencer.get_current_progress_index(),
        }

    # ============ Teardown ============

    def destroy(self) -> None:
        """Tear down every component. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        if self.rule_engine is not None:
            self.rule_engine.destroy()
        if self.managers is not None:
            self.managers.timers.destroy()
            self.managers.power_ups.destroy()
            self.managers.scoring.destroy()
        self.game_state.destroy()
        logger.info("Session destroyed")
