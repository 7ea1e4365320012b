"""
Rule Engine - declarative condition/action interpreter.

Rules are plain data: a trigger event, a list of conditions that must all
hold, and a list of actions. The engine subscribes to each distinct trigger
once, takes a single snapshot of the event payload and the registered
state providers per event, and runs matching rules in priority order.
"""

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from engine.errors import ActionExecutionError
from engine.game_state import GamePhase
from engine.managers import ManagerSet
from engine.timer import TimerKind
from models.schemas import (
    CompareCondition, PowerUpCondition, RuleDefinition, TimerCondition,
)


logger = logging.getLogger(__name__)

_MISSING = object()


# ============ Action Parameters ============

class ModifyScoreParams(BaseModel):
    mode: Literal["fixed", "progressive"] = "fixed"
    points: float = 0
    points_per_second: float = 0
    target: Optional[str] = None

    @model_validator(mode="after")
    def amount_given(self) -> "ModifyScoreParams":
        if self.mode == "progressive" and self.points_per_second <= 0:
            raise ValueError("progressive scoring needs a positive points_per_second")
        if self.mode == "fixed" and self.points == 0:
            raise ValueError("fixed scoring needs non-zero points")
        return self


class ModifyLivesParams(BaseModel):
    delta: int
    target: Optional[str] = None

    @model_validator(mode="after")
    def delta_non_zero(self) -> "ModifyLivesParams":
        if self.delta == 0:
            raise ValueError("delta cannot be zero")
        return self


class PlaySoundParams(BaseModel):
    sound_id: str = Field(..., min_length=1)


class StartTimerParams(BaseModel):
    timer_id: str = Field(..., min_length=1)
    duration_ms: Optional[int] = Field(default=None, ge=0)
    kind: TimerKind = TimerKind.COUNTDOWN


class ActivatePowerUpParams(BaseModel):
    type_id: str = Field(..., min_length=1)
    target: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, gt=0)


class ChangePhaseParams(BaseModel):
    phase: GamePhase


class EmitEventParams(BaseModel):
    event: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


# ============ Runtime Types ============

@dataclass(frozen=True)
class RuleContext:
    """What an action sees: the triggering event and its snapshot."""
    rule_id: str
    event: str
    payload: Any
    state: dict[str, Any]
    managers: ManagerSet


ActionHandler = Callable[[RuleContext, BaseModel], None]


@dataclass(frozen=True)
class ActionSpec:
    params_model: type[BaseModel]
    handler: ActionHandler


@dataclass
class CompiledRule:
    definition: RuleDefinition
    actions: list[tuple[str, BaseModel, ActionHandler]] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.definition.id


# ============ Path Resolution ============

def resolve_path(path: str, payload: Any, state: dict[str, Any]) -> Any:
    """
    Look up a dotted path in an event snapshot.

    ``payload.a.b`` and ``state.a.b`` address the payload and the state
    snapshot explicitly. A bare path is looked up in the payload first and
    then in the state. Returns the module-level ``_MISSING`` sentinel when
    nothing is found.
    """
    parts = path.split(".")
    if parts[0] == "payload":
        return _walk(payload, parts[1:])
    if parts[0] == "state":
        return _walk(state, parts[1:])
    found = _walk(payload, parts)
    if found is _MISSING:
        found = _walk(state, parts)
    return found


def _walk(value: Any, parts: list[str]) -> Any:
    for part in parts:
        if isinstance(value, dict):
            if part not in value:
                return _MISSING
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(value):
                return _MISSING
            value = value[index]
        else:
            return _MISSING
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare_values(actual: Any, op: str, expected: Any) -> bool:
    """Apply a comparison operator. Ordering operators require two numbers."""
    if actual is _MISSING:
        return False
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op in ("gt", "gte", "lt", "lte"):
        if not (_is_number(actual) and _is_number(expected)):
            return False
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "lt":
            return actual < expected
        return actual <= expected
    if op == "contains":
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple, set, frozenset, dict)):
            return expected in actual
        return False
    logger.warning("Unknown comparison operator '%s'", op)
    return False


# ============ Engine ============

class RuleEngine:
    """
    Evaluates configured rules against events on the bus.

    Actions are looked up in a registry keyed by action type. Each entry
    has a pydantic model for its params, checked when the rule is loaded,
    and a handler called with the RuleContext and the parsed params. A rule
    with an unknown action type or invalid params is rejected at load.

    Usage:
        engine = RuleEngine(managers, config.rules)
        engine.register_action("bonusRound", BonusParams, handle_bonus)
        engine.load_rules([...])
    """

    def __init__(self, managers: ManagerSet,
                 rules: Iterable[Union[RuleDefinition, dict]] = (),
                 extra_actions: dict[str, tuple[type[BaseModel], ActionHandler]] = None):
        """
        Initialize the rule engine.

        Args:
            managers: Session collaborators the actions operate on
            rules: Rule definitions (models or plain dicts)
            extra_actions: Additional action types as {type: (params_model, handler)}
        """
        self.managers = managers
        self.event_bus = managers.event_bus
        self._actions: dict[str, ActionSpec] = {}
        self._rules: list[CompiledRule] = []
        self._subscriptions: dict[str, Callable[[], None]] = {}
        self._enabled = True
        self._destroyed = False

        self._register_builtin_actions()
        for kind, (params_model, handler) in (extra_actions or {}).items():
            self.register_action(kind, params_model, handler)

        self.load_rules(rules)

    # ============ Registry ============

    def _register_builtin_actions(self) -> None:
        self.register_action("modifyScore", ModifyScoreParams, self._modify_score)
        self.register_action("modifyLives", ModifyLivesParams, self._modify_lives)
        self.register_action("playSound", PlaySoundParams, self._play_sound)
        self.register_action("startTimer", StartTimerParams, self._start_timer)
        self.register_action("activatePowerUp", ActivatePowerUpParams, self._activate_power_up)
        self.register_action("changePhase", ChangePhaseParams, self._change_phase)
        self.register_action("emitEvent", EmitEventParams, self._emit_event)

    def register_action(self, kind: str, params_model: type[BaseModel],
                        handler: ActionHandler) -> None:
        """Add or replace an action type. Affects rules loaded afterwards."""
        if kind in self._actions:
            logger.info("Action type '%s' replaced", kind)
        self._actions[kind] = ActionSpec(params_model=params_model, handler=handler)

    def action_types(self) -> list[str]:
        return sorted(self._actions)

    # ============ Loading ============

    def load_rules(self, rules: Iterable[Union[RuleDefinition, dict]]) -> list[str]:
        """
        Validate and add rules.

        Returns:
            Ids of the rules that were accepted.
        """
        accepted = []
        for raw in rules:
            compiled = self._compile(raw)
            if compiled is None:
                continue
            if any(rule.id == compiled.id for rule in self._rules):
                logger.warning("Rule '%s' already loaded; skipped", compiled.id)
                continue
            self._rules.append(compiled)
            accepted.append(compiled.id)

        # Stable sort keeps load order for equal priorities
        self._rules.sort(key=lambda r: -r.definition.priority)
        self._subscribe_triggers()
        if accepted:
            logger.info("Loaded %d rules", len(accepted))
        return accepted

    def _compile(self, raw: Union[RuleDefinition, dict]) -> Optional[CompiledRule]:
        try:
            definition = raw if isinstance(raw, RuleDefinition) else RuleDefinition.model_validate(raw)
        except PydanticValidationError as e:
            rule_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
            logger.warning("Rule '%s' rejected: %s", rule_id, e)
            return None

        compiled = CompiledRule(definition=definition)
        for action in definition.actions:
            spec = self._actions.get(action.type)
            if spec is None:
                logger.warning("Rule '%s' rejected: unknown action type '%s'",
                               definition.id, action.type)
                return None
            try:
                params = spec.params_model.model_validate(action.params)
            except PydanticValidationError as e:
                logger.warning("Rule '%s' rejected: invalid params for '%s': %s",
                               definition.id, action.type, e)
                return None
            compiled.actions.append((action.type, params, spec.handler))
        return compiled

    def _subscribe_triggers(self) -> None:
        if self._destroyed:
            return
        for rule in self._rules:
            event = rule.definition.trigger_event
            if event not in self._subscriptions:
                self._subscriptions[event] = self.event_bus.subscribe(
                    event, lambda payload, name=event: self.handle_event(name, payload)
                )

    def get_rules(self) -> list[RuleDefinition]:
        """Loaded rules in evaluation order."""
        return [rule.definition for rule in self._rules]

    # ============ Evaluation ============

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("Rule engine %s", "enabled" if enabled else "disabled")

    def handle_event(self, event: str, payload: Any) -> None:
        """Run every enabled rule triggered by ``event`` against one snapshot."""
        if not self._enabled or self._destroyed:
            return
        matching = [r for r in self._rules
                    if r.definition.enabled and r.definition.trigger_event == event]
        if not matching:
            return

        snapshot_payload = copy.deepcopy(payload)
        snapshot_state = self.managers.state.snapshot()

        for rule in matching:
            context = RuleContext(
                rule_id=rule.id,
                event=event,
                payload=snapshot_payload,
                state=snapshot_state,
                managers=self.managers,
            )
            if self.evaluate_conditions(rule.definition.conditions, context):
                logger.debug("Rule '%s' fired on %s", rule.id, event)
                self._execute_actions(rule, context)

    def evaluate_conditions(self, conditions: list, context: RuleContext) -> bool:
        """AND of all conditions, stopping at the first that fails. Empty is True."""
        for condition in conditions:
            if not self._evaluate(condition, context):
                return False
        return True

    def _evaluate(self, condition, context: RuleContext) -> bool:
        if isinstance(condition, CompareCondition):
            actual = resolve_path(condition.path, context.payload, context.state)
            return compare_values(actual, condition.op, condition.value)

        if isinstance(condition, PowerUpCondition):
            target = self._resolve_value(condition.target, context)
            if target is _MISSING or target is None:
                return False
            active_map = context.state.get("power_ups")
            if active_map is None:
                is_active = self.managers.power_ups.is_power_up_active_for_target(condition.type_id, target)
            else:
                is_active = condition.type_id in active_map.get(target, ())
            return is_active == condition.active

        if isinstance(condition, TimerCondition):
            actual = _walk(context.state, ["timers", condition.timer_id, condition.field])
            return compare_values(actual, condition.op, condition.value)

        logger.warning("Unsupported condition %r", condition)
        return False

    @staticmethod
    def _resolve_value(value: Any, context: RuleContext) -> Any:
        if isinstance(value, str) and (value.startswith("payload.") or value.startswith("state.")):
            return resolve_path(value, context.payload, context.state)
        return value

    def _execute_actions(self, rule: CompiledRule, context: RuleContext) -> None:
        for kind, params, handler in rule.actions:
            try:
                handler(context, params)
            except ActionExecutionError as e:
                logger.error("%s", e)
            except Exception:
                logger.exception("Rule '%s' action '%s' failed", rule.id, kind)

    # ============ Built-in Actions ============

    def _resolve_team(self, context: RuleContext, target: Optional[str], kind: str) -> str:
        if target is not None:
            team_id = self._resolve_value(target, context)
        else:
            team_id = resolve_path("payload.team_id", context.payload, context.state)
            if team_id is _MISSING or team_id is None:
                team_id = context.state.get("active_team_id", _MISSING)
        if team_id is _MISSING or team_id is None:
            raise ActionExecutionError(context.rule_id, kind, "no target team could be resolved")
        return str(team_id)

    def _modify_score(self, context: RuleContext, params: ModifyScoreParams) -> None:
        team_id = self._resolve_team(context, params.target, "modifyScore")

        multiplier = resolve_path("payload.score_multiplier", context.payload, context.state)
        if not _is_number(multiplier) or multiplier <= 0:
            multiplier = 1

        if params.mode == "progressive":
            remaining_ms = resolve_path("payload.remaining_time_ms", context.payload, context.state)
            if not _is_number(remaining_ms) or remaining_ms <= 0:
                return
            points = math.ceil(remaining_ms / 1000) * params.points_per_second * multiplier
        else:
            points = params.points * multiplier

        points = int(round(points))
        scoring = self.managers.scoring
        if points > 0:
            scoring.add_score(team_id, points)
        elif points < 0:
            scoring.subtract_score(team_id, -points)

    def _modify_lives(self, context: RuleContext, params: ModifyLivesParams) -> None:
        team_id = self._resolve_team(context, params.target, "modifyLives")
        if params.delta > 0:
            self.managers.scoring.add_lives(team_id, params.delta)
        else:
            self.managers.scoring.remove_lives(team_id, -params.delta)

    def _play_sound(self, context: RuleContext, params: PlaySoundParams) -> None:
        audio = self.managers.audio
        if audio is None:
            raise ActionExecutionError(context.rule_id, "playSound", "no audio player attached")
        audio.play(params.sound_id)

    def _start_timer(self, context: RuleContext, params: StartTimerParams) -> None:
        timers = self.managers.timers
        if params.duration_ms is not None:
            created = timers.create_timer(params.timer_id, params.duration_ms, params.kind)
            if created is None:
                raise ActionExecutionError(context.rule_id, "startTimer",
                                           f"could not create timer '{params.timer_id}'")
        if not timers.start_timer(params.timer_id):
            raise ActionExecutionError(context.rule_id, "startTimer",
                                       f"could not start timer '{params.timer_id}'")

    def _activate_power_up(self, context: RuleContext, params: ActivatePowerUpParams) -> None:
        team_id = self._resolve_team(context, params.target, "activatePowerUp")
        if self.managers.power_ups.activate_power_up(params.type_id, team_id, params.duration_ms) is None:
            raise ActionExecutionError(context.rule_id, "activatePowerUp",
                                       f"could not activate '{params.type_id}'")

    def _change_phase(self, context: RuleContext, params: ChangePhaseParams) -> None:
        self.managers.game_state.set_phase(params.phase)

    def _emit_event(self, context: RuleContext, params: EmitEventParams) -> None:
        self.event_bus.emit(params.event, dict(params.payload))

    # ============ Teardown ============

    def destroy(self) -> None:
        """Remove this engine's subscriptions. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        for unsubscribe in self._subscriptions.values():
            unsubscribe()
        self._subscriptions.clear()
        self._rules.clear()
        logger.debug("RuleEngine destroyed")
