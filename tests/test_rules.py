"""
Unit tests for the RuleEngine.

Tests cover rule loading, condition evaluation, the built-in actions and
snapshot semantics.
"""

import pytest
from pydantic import BaseModel

from engine.game_state import GamePhase, GameStateManager
from engine.managers import ManagerSet
from engine.power_ups import PowerUpManager
from engine.rules import RuleEngine, compare_values, resolve_path, _MISSING
from engine.scoring import ScoringManager
from engine.state_registry import StateRegistry
from engine.timer import TimerManager, TimerStatus
from models.schemas import LivesModeConfig
from services import event_types as events
from services.audio import NullAudioPlayer
from services.event_bus import EventBus

from helpers import EventRecorder, make_teams


def build_managers(audio=None, game_mode=None) -> ManagerSet:
    """Wire a full manager set for two teams, "red" and "blue", in PLAYING."""
    bus = EventBus()
    state = StateRegistry()
    game_state = GameStateManager(bus, state)
    teams = make_teams("red", "blue")
    game_state.init(teams)
    scoring = ScoringManager(bus, state=state)
    scoring.init(teams, game_mode or LivesModeConfig(initial_lives=3))
    game_state.mark_ready()
    game_state.start_game()
    return ManagerSet(
        event_bus=bus,
        state=state,
        game_state=game_state,
        scoring=scoring,
        timers=TimerManager(bus, state),
        power_ups=PowerUpManager(bus, state),
        audio=audio,
    )


def correct_answer_rule(**overrides) -> dict:
    rule = {
        "id": "points",
        "trigger_event": events.ANSWER_SELECTED,
        "conditions": [{"type": "compare", "path": "payload.is_correct", "op": "eq", "value": True}],
        "actions": [{"type": "modifyScore", "params": {"points": 10}}],
    }
    rule.update(overrides)
    return rule


class TestPathsAndComparisons:
    """Tests for the module-level helpers."""

    def test_explicit_payload_and_state_paths(self):
        """payload.* and state.* address their own roots."""
        payload = {"team": {"id": "red"}}
        state = {"scores": {"red": 5}}

        assert resolve_path("payload.team.id", payload, state) == "red"
        assert resolve_path("state.scores.red", payload, state) == 5

    def test_bare_path_falls_back_to_state(self):
        """A bare path is tried in the payload, then in the state."""
        assert resolve_path("scores.red", {}, {"scores": {"red": 5}}) == 5
        assert resolve_path("x", {"x": 1}, {"x": 2}) == 1

    def test_missing_path_returns_sentinel(self):
        """Unresolvable paths return the missing sentinel."""
        assert resolve_path("payload.nope", {}, {}) is _MISSING
        assert resolve_path("payload.items.3", {"items": [1]}, {}) is _MISSING

    def test_list_index_path(self):
        """Numeric parts index into lists."""
        assert resolve_path("payload.items.1", {"items": ["a", "b"]}, {}) == "b"

    @pytest.mark.parametrize("actual,op,expected,result", [
        (5, "eq", 5, True),
        (5, "neq", 5, False),
        (5, "gt", 3, True),
        (5, "lte", 5, True),
        ("5", "gt", 3, False),
        (True, "gt", 0, False),
        ("hello", "contains", "ell", True),
        (["a", "b"], "contains", "b", True),
        (5, "contains", 5, False),
        (_MISSING, "eq", None, False),
    ])
    def test_compare_values(self, actual, op, expected, result):
        """Comparison operators follow their documented semantics."""
        assert compare_values(actual, op, expected) is result


class TestRuleLoading:
    """Tests for validation and ordering at load time."""

    def setup_method(self):
        self.managers = build_managers(audio=NullAudioPlayer())
        self.engine = RuleEngine(self.managers)

    def test_valid_rule_is_accepted(self):
        """A well-formed rule is loaded and its id returned."""
        assert self.engine.load_rules([correct_answer_rule()]) == ["points"]

    def test_unknown_action_type_rejects_rule(self):
        """A rule using an unregistered action is rejected."""
        rule = correct_answer_rule(actions=[{"type": "launchRocket", "params": {}}])
        assert self.engine.load_rules([rule]) == []

    def test_invalid_params_reject_rule(self):
        """Action params are validated against the action's model."""
        rule = correct_answer_rule(actions=[{"type": "modifyLives", "params": {"delta": 0}}])
        assert self.engine.load_rules([rule]) == []

    def test_malformed_rule_is_rejected(self):
        """A rule missing its trigger is rejected without affecting others."""
        accepted = self.engine.load_rules([{"id": "broken"}, correct_answer_rule()])
        assert accepted == ["points"]

    def test_duplicate_id_is_skipped(self):
        """A second rule with a loaded id is ignored."""
        self.engine.load_rules([correct_answer_rule()])
        assert self.engine.load_rules([correct_answer_rule()]) == []

    def test_rules_ordered_by_priority_then_load_order(self):
        """Higher priority first; equal priorities keep load order."""
        self.engine.load_rules([
            correct_answer_rule(id="low", priority=0),
            correct_answer_rule(id="high", priority=5),
            correct_answer_rule(id="low2", priority=0),
        ])

        assert [r.id for r in self.engine.get_rules()] == ["high", "low", "low2"]

    def test_one_subscription_per_trigger(self):
        """Rules sharing a trigger share one bus subscription."""
        before = self.managers.event_bus.subscriber_count(events.ANSWER_SELECTED)
        self.engine.load_rules([correct_answer_rule(id="a"), correct_answer_rule(id="b")])

        assert self.managers.event_bus.subscriber_count(events.ANSWER_SELECTED) == before + 1

    def test_custom_action_registration(self):
        """register_action adds a new action type usable by later rules."""
        seen = []

        class NoteParams(BaseModel):
            text: str

        self.engine.register_action("note", NoteParams, lambda ctx, p: seen.append((ctx.rule_id, p.text)))
        self.engine.load_rules([correct_answer_rule(
            id="noted", conditions=[], actions=[{"type": "note", "params": {"text": "hi"}}],
        )])

        self.managers.event_bus.emit(events.ANSWER_SELECTED, {"team_id": "red"})

        assert seen == [("noted", "hi")]
        assert "note" in self.engine.action_types()


class TestRuleEvaluation:
    """Tests for conditions and built-in actions at runtime."""

    def setup_method(self):
        self.audio = NullAudioPlayer()
        self.managers = build_managers(audio=self.audio)
        self.bus = self.managers.event_bus
        self.scoring = self.managers.scoring

    def answer(self, **payload):
        data = {"team_id": "red", "is_correct": True, "remaining_time_ms": 0}
        data.update(payload)
        self.bus.emit(events.ANSWER_SELECTED, data)

    def test_fixed_points_on_correct_answer(self):
        """A matching condition runs the modifyScore action."""
        RuleEngine(self.managers, [correct_answer_rule()])

        self.answer()
        self.answer(is_correct=False)

        assert self.scoring.get_score("red") == 10

    def test_correct_answer_leaves_other_teams_alone(self):
        """Only the answering team's score changes."""
        RuleEngine(self.managers, [correct_answer_rule()])

        self.answer(team_id="blue")

        assert self.scoring.get_all_scores() == {"red": 0, "blue": 10}

    def test_score_multiplier_in_payload(self):
        """payload.score_multiplier scales fixed points."""
        RuleEngine(self.managers, [correct_answer_rule()])

        self.answer(score_multiplier=2)

        assert self.scoring.get_score("red") == 20

    def test_progressive_points_round_remaining_seconds_up(self):
        """Progressive scoring uses ceil(remaining seconds) times points per second."""
        RuleEngine(self.managers, [correct_answer_rule(actions=[
            {"type": "modifyScore", "params": {"mode": "progressive", "points_per_second": 2}},
        ])])

        self.answer(remaining_time_ms=4_200)

        assert self.scoring.get_score("red") == 10

    def test_progressive_points_need_remaining_time(self):
        """No remaining time means no progressive points."""
        RuleEngine(self.managers, [correct_answer_rule(actions=[
            {"type": "modifyScore", "params": {"mode": "progressive", "points_per_second": 2}},
        ])])

        self.answer(remaining_time_ms=0)

        assert self.scoring.get_score("red") == 0

    def test_negative_points_subtract(self):
        """Negative fixed points subtract, floored at zero."""
        self.scoring.add_score("red", 3)
        RuleEngine(self.managers, [correct_answer_rule(
            conditions=[], actions=[{"type": "modifyScore", "params": {"points": -5}}],
        )])

        self.answer()

        assert self.scoring.get_score("red") == 0

    def test_target_falls_back_to_active_team(self):
        """Without payload.team_id the active team is targeted."""
        self.managers.game_state.set_active_team("blue")
        RuleEngine(self.managers, [correct_answer_rule()])

        self.bus.emit(events.ANSWER_SELECTED, {"is_correct": True})

        assert self.scoring.get_score("blue") == 10

    def test_modify_lives(self):
        """modifyLives with a negative delta removes lives."""
        RuleEngine(self.managers, [correct_answer_rule(
            conditions=[], actions=[{"type": "modifyLives", "params": {"delta": -1}}],
        )])

        self.answer()

        assert self.scoring.get_lives("red") == 2

    def test_play_sound(self):
        """playSound asks the audio player for the sound."""
        RuleEngine(self.managers, [correct_answer_rule(
            actions=[{"type": "playSound", "params": {"sound_id": "correct"}}],
        )])

        self.answer()

        assert self.audio.played == ["correct"]

    def test_failed_action_does_not_stop_later_actions(self):
        """An action that fails is logged and the next one still runs."""
        managers = build_managers(audio=None)
        RuleEngine(managers, [correct_answer_rule(actions=[
            {"type": "playSound", "params": {"sound_id": "correct"}},
            {"type": "modifyScore", "params": {"points": 10}},
        ])])

        managers.event_bus.emit(events.ANSWER_SELECTED, {"team_id": "red", "is_correct": True})

        assert managers.scoring.get_score("red") == 10

    def test_start_timer_action(self):
        """startTimer creates and starts the named timer."""
        RuleEngine(self.managers, [correct_answer_rule(
            actions=[{"type": "startTimer", "params": {"timer_id": "bonus", "duration_ms": 5_000}}],
        )])

        self.answer()

        assert self.managers.timers.get_status("bonus") == TimerStatus.RUNNING

    def test_activate_power_up_and_condition(self):
        """activatePowerUp applies an effect a powerUpActive condition can see."""
        RuleEngine(self.managers, [
            correct_answer_rule(id="grant", conditions=[], actions=[
                {"type": "activatePowerUp", "params": {"type_id": "double_points"}},
            ]),
        ])
        self.answer()
        assert self.managers.power_ups.is_power_up_active_for_target("double_points", "red")

        engine = RuleEngine(self.managers, [{
            "id": "bonus",
            "trigger_event": "custom:check",
            "conditions": [{"type": "powerUpActive", "type_id": "double_points"}],
            "actions": [{"type": "modifyScore", "params": {"points": 1}}],
        }])
        self.bus.emit("custom:check", {"team_id": "red"})
        self.bus.emit("custom:check", {"team_id": "blue"})

        assert self.scoring.get_score("red") == 1
        assert self.scoring.get_score("blue") == 0
        engine.destroy()

    def test_timer_condition(self):
        """timerCheck reads the timer from the state snapshot."""
        self.managers.timers.create_timer("question", 10_000)
        self.managers.timers.start_timer("question")
        self.managers.timers.update(8_000)
        RuleEngine(self.managers, [correct_answer_rule(conditions=[
            {"type": "timerCheck", "timer_id": "question", "field": "remaining", "op": "<", "value": 5_000},
        ])])

        self.answer()

        assert self.scoring.get_score("red") == 10

    def test_change_phase_action(self):
        """changePhase drives the game state machine."""
        RuleEngine(self.managers, [correct_answer_rule(
            actions=[{"type": "changePhase", "params": {"phase": "ended"}}],
        )])

        self.answer()

        assert self.managers.game_state.phase == GamePhase.ENDED

    def test_emit_event_action(self):
        """emitEvent publishes a custom event after the current one."""
        recorder = EventRecorder(self.bus, ["custom:bonus"])
        RuleEngine(self.managers, [correct_answer_rule(
            actions=[{"type": "emitEvent", "params": {"event": "custom:bonus", "payload": {"x": 1}}}],
        )])

        self.answer()

        assert recorder.payloads("custom:bonus") == [{"x": 1}]

    def test_conditions_see_one_snapshot_per_event(self):
        """A later rule evaluates against the state from before earlier rules ran."""
        RuleEngine(self.managers, [
            correct_answer_rule(id="first", priority=10, conditions=[]),
            correct_answer_rule(id="second", conditions=[
                {"type": "compare", "path": "state.scores.red", "op": "eq", "value": 0},
            ], actions=[{"type": "modifyScore", "params": {"points": 1}}]),
        ])

        self.answer()

        assert self.scoring.get_score("red") == 11

    def test_disabled_rule_and_engine(self):
        """Disabled rules and a disabled engine do nothing."""
        engine = RuleEngine(self.managers, [
            correct_answer_rule(id="off", enabled=False),
        ])
        self.answer()
        assert self.scoring.get_score("red") == 0

        engine.load_rules([correct_answer_rule(id="on")])
        engine.set_enabled(False)
        self.answer()
        assert self.scoring.get_score("red") == 0

        engine.set_enabled(True)
        self.answer()
        assert self.scoring.get_score("red") == 10

    def test_destroy_unsubscribes(self):
        """After destroy() the engine no longer reacts and can be destroyed again."""
        engine = RuleEngine(self.managers, [correct_answer_rule()])

        engine.destroy()
        engine.destroy()
        self.answer()

        assert self.scoring.get_score("red") == 0
