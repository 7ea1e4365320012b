"""
Unit tests for the configuration and question schemas.
"""

import pytest
from pydantic import ValidationError

from models.schemas import (
    CompareCondition, GameConfig, LivesModeConfig, PowerUpDefinition,
    QuestionRecord, RuleDefinition, ScoreModeConfig, TeamConfig, TimerCondition,
)


class TestTeamConfig:
    """Tests for team validation."""

    def test_defaults(self):
        """A team needs only an id and a name."""
        team = TeamConfig(id="red", name="  Red  ")

        assert team.name == "Red"
        assert team.color == "#2196F3"
        assert team.starting_score == 0

    def test_bad_color_rejected(self):
        """Colors must be #RRGGBB."""
        with pytest.raises(ValidationError):
            TeamConfig(id="red", name="Red", color="red")

    def test_blank_name_rejected(self):
        """Whitespace-only names are rejected."""
        with pytest.raises(ValidationError):
            TeamConfig(id="red", name="   ")

    def test_negative_starting_score_rejected(self):
        """Starting scores cannot be negative."""
        with pytest.raises(ValidationError):
            TeamConfig(id="red", name="Red", starting_score=-1)


class TestGameConfig:
    """Tests for the session configuration."""

    def test_game_mode_is_discriminated(self):
        """The "type" field selects the game mode model."""
        config = GameConfig.model_validate({
            "teams": [{"id": "red", "name": "Red"}],
            "game_mode": {"type": "lives", "initial_lives": 2},
        })

        assert isinstance(config.game_mode, LivesModeConfig)
        assert config.game_mode.effective_max_lives == 2

    def test_default_game_mode_is_score(self):
        """Without a game mode, score mode is used."""
        config = GameConfig(teams=[TeamConfig(id="red", name="Red")])
        assert isinstance(config.game_mode, ScoreModeConfig)
        assert config.question_time_limit_ms == 30_000

    def test_teams_required(self):
        """At least one team is required."""
        with pytest.raises(ValidationError):
            GameConfig(teams=[])

    def test_duplicate_team_ids_rejected(self):
        """Team ids must be unique."""
        with pytest.raises(ValidationError, match="Duplicate team ids"):
            GameConfig(teams=[TeamConfig(id="red", name="A"), TeamConfig(id="red", name="B")])

    def test_duplicate_rule_ids_rejected(self):
        """Rule ids must be unique."""
        rule = {"id": "r", "trigger_event": "x"}
        with pytest.raises(ValidationError, match="Duplicate rule ids"):
            GameConfig.model_validate({"teams": [{"id": "red", "name": "Red"}], "rules": [rule, rule]})

    def test_lives_mode_team_without_lives_rejected(self):
        """In lives mode no team may start with zero lives."""
        with pytest.raises(ValidationError, match="at least one life"):
            GameConfig(
                teams=[TeamConfig(id="red", name="Red", initial_lives=0)],
                game_mode=LivesModeConfig(),
            )

    def test_score_mode_allows_zero_initial_lives(self):
        """Score mode does not track lives, so zero is accepted."""
        config = GameConfig(teams=[TeamConfig(id="red", name="Red", initial_lives=0)])
        assert config.teams[0].initial_lives == 0

    def test_max_lives_below_initial_rejected(self):
        """max_lives cannot be lower than initial_lives."""
        with pytest.raises(ValidationError):
            LivesModeConfig(initial_lives=3, max_lives=2)


class TestQuestionRecord:
    """Tests for question records."""

    def test_correct_option_must_be_listed(self):
        """The correct option id has to be one of the options."""
        with pytest.raises(ValidationError):
            QuestionRecord.model_validate({
                "id": "q1", "prompt": "?", "correct_option_id": "c",
                "options": [{"id": "a", "text": "A"}, {"id": "b", "text": "B"}],
            })

    def test_is_correct(self):
        """is_correct matches only the correct option id."""
        question = QuestionRecord(id="q1", prompt="?", correct_option_id="a")

        assert question.is_correct("a")
        assert not question.is_correct("b")
        assert not question.is_correct(None)


class TestRuleSchemas:
    """Tests for rule, condition and power-up definitions."""

    def test_operator_aliases_are_normalized(self):
        """Symbolic operators map to their named form."""
        assert CompareCondition(path="payload.x", op="!=").op == "neq"
        assert TimerCondition(timer_id="question", op=">=").op == "gte"

    def test_unknown_operator_rejected(self):
        """Operators outside the supported set are rejected."""
        with pytest.raises(ValidationError):
            CompareCondition(path="payload.x", op="approx")

    def test_conditions_are_discriminated(self):
        """Condition dicts become the model named by "type"."""
        rule = RuleDefinition.model_validate({
            "id": "r",
            "trigger_event": "game:answerSelected",
            "conditions": [
                {"type": "compare", "path": "payload.is_correct", "value": True},
                {"type": "timerCheck", "timer_id": "question", "op": "gt", "value": 0},
            ],
        })

        assert isinstance(rule.conditions[0], CompareCondition)
        assert isinstance(rule.conditions[1], TimerCondition)
        assert rule.enabled and rule.priority == 0

    def test_power_up_duration_ms(self):
        """duration_ms converts seconds, None means untimed."""
        timed = PowerUpDefinition(id="p", name="P", effect_type="x", duration_seconds=2.5)
        untimed = PowerUpDefinition(id="q", name="Q", effect_type="x")

        assert timed.duration_ms == 2_500
        assert untimed.duration_ms is None
