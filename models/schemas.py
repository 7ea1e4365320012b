"""
Pydantic schemas for session configuration and question data.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import TIMER_SETTINGS


# ============ Team Schemas ============

class TeamConfig(BaseModel):
    """A team taking part in a session. Fixed once the session is built."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    color: str = Field(default="#2196F3", pattern=r"^#[0-9A-Fa-f]{6}$")
    starting_score: int = Field(default=0, ge=0)
    initial_lives: Optional[int] = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()


# ============ Game Mode Schemas ============

class ScoreModeConfig(BaseModel):
    """Highest score wins; optionally ends early at a target score."""
    type: Literal["score"] = "score"
    name: str = "Score Attack"
    target_score: Optional[int] = Field(default=None, gt=0)
    time_limit_seconds: Optional[float] = Field(default=None, gt=0)


class LivesModeConfig(BaseModel):
    """Wrong answers cost lives; teams at zero lives are eliminated."""
    type: Literal["lives"] = "lives"
    name: str = "Survival"
    initial_lives: int = Field(default=3, gt=0)
    max_lives: Optional[int] = Field(default=None, gt=0)
    require_all_eliminated: bool = False

    @model_validator(mode="after")
    def max_not_below_initial(self) -> "LivesModeConfig":
        if self.max_lives is not None and self.max_lives < self.initial_lives:
            raise ValueError("max_lives cannot be lower than initial_lives")
        return self

    @property
    def effective_max_lives(self) -> int:
        return self.max_lives if self.max_lives is not None else self.initial_lives


GameModeConfig = Annotated[Union[ScoreModeConfig, LivesModeConfig], Field(discriminator="type")]


# ============ Question Schemas ============

class QuestionHandlingConfig(BaseModel):
    """How the question pool is ordered and shared between teams."""
    distribution_mode: Literal["sharedPool", "perTeam"] = "perTeam"
    randomize_order: bool = True
    truncate_for_fairness: bool = True


class QuestionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    text: str


class QuestionRecord(BaseModel):
    """A single trivia question as supplied by the question provider."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    prompt: str
    options: tuple[QuestionOption, ...] = ()
    correct_option_id: str
    media_ref: Optional[str] = None

    @model_validator(mode="after")
    def correct_option_listed(self) -> "QuestionRecord":
        if self.options and self.correct_option_id not in {o.id for o in self.options}:
            raise ValueError(f"Correct option '{self.correct_option_id}' is not one of the options")
        return self

    def is_correct(self, option_id: Optional[str]) -> bool:
        return option_id is not None and option_id == self.correct_option_id


# ============ Power-up Schemas ============

class PowerUpDefinition(BaseModel):
    """A power-up type. Without a duration the effect lasts until deactivated."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    duration_seconds: Optional[float] = Field(default=None, gt=0)
    effect_type: str = Field(..., min_length=1)
    effect_params: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.duration_seconds is None:
            return None
        return int(round(self.duration_seconds * 1000))


# ============ Rule Schemas ============

ComparisonOp = Literal["eq", "neq", "gt", "gte", "lt", "lte", "contains"]

_OP_ALIASES = {"ne": "neq", "==": "eq", "!=": "neq", ">": "gt", ">=": "gte", "<": "lt", "<=": "lte"}


def _normalize_op(v: Any) -> Any:
    if isinstance(v, str):
        return _OP_ALIASES.get(v, v)
    return v


class CompareCondition(BaseModel):
    """Compare a payload or state value against a literal."""
    type: Literal["compare"] = "compare"
    path: str = Field(..., min_length=1)
    op: ComparisonOp = "eq"
    value: Any = None

    @field_validator("op", mode="before")
    @classmethod
    def normalize_op(cls, v: Any) -> Any:
        return _normalize_op(v)


class PowerUpCondition(BaseModel):
    """True when a power-up is (or is not) active for the resolved target."""
    type: Literal["powerUpActive"] = "powerUpActive"
    type_id: str
    target: str = "payload.team_id"
    active: bool = True


class TimerCondition(BaseModel):
    """Compare a field of a timer in the state snapshot."""
    type: Literal["timerCheck"] = "timerCheck"
    timer_id: str
    field: Literal["remaining", "elapsed", "status"] = "remaining"
    op: ComparisonOp = "gt"
    value: Any = 0

    @field_validator("op", mode="before")
    @classmethod
    def normalize_op(cls, v: Any) -> Any:
        return _normalize_op(v)


Condition = Annotated[Union[CompareCondition, PowerUpCondition, TimerCondition], Field(discriminator="type")]


class ActionDefinition(BaseModel):
    """An action to run; ``params`` are checked against the action's registered model."""
    type: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class RuleDefinition(BaseModel):
    """
    A declarative rule: when ``trigger_event`` fires and every condition
    holds, run the actions in order.
    """
    id: str = Field(..., min_length=1)
    description: str = ""
    trigger_event: str = Field(..., min_length=1)
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[ActionDefinition] = Field(default_factory=list)
    priority: int = 0
    enabled: bool = True


# ============ Session Schema ============

class GameConfig(BaseModel):
    """Full configuration of one trivia session."""
    name: str = "Trivia Session"
    teams: list[TeamConfig] = Field(..., min_length=1)
    game_mode: GameModeConfig = Field(default_factory=ScoreModeConfig)
    rules: list[RuleDefinition] = Field(default_factory=list)
    power_ups: Optional[list[PowerUpDefinition]] = None
    question_handling: QuestionHandlingConfig = Field(default_factory=QuestionHandlingConfig)
    question_time_limit_seconds: float = Field(default=TIMER_SETTINGS.question_duration_ms / 1000, gt=0)
    persist_state: bool = False

    @model_validator(mode="after")
    def unique_ids(self) -> "GameConfig":
        team_ids = [team.id for team in self.teams]
        duplicates = sorted({tid for tid in team_ids if team_ids.count(tid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate team ids: {', '.join(duplicates)}")

        rule_ids = [rule.id for rule in self.rules]
        duplicates = sorted({rid for rid in rule_ids if rule_ids.count(rid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {', '.join(duplicates)}")
        return self

    @model_validator(mode="after")
    def teams_start_with_lives(self) -> "GameConfig":
        if isinstance(self.game_mode, LivesModeConfig):
            no_lives = [team.id for team in self.teams if team.initial_lives == 0]
            if no_lives:
                raise ValueError(f"Teams must start with at least one life: {', '.join(no_lives)}")
        return self

    @property
    def question_time_limit_ms(self) -> int:
        return int(round(self.question_time_limit_seconds * 1000))

    @property
    def team_ids(self) -> list[str]:
        return [team.id for team in self.teams]
