"""
Power-up Manager - timed and untimed modifiers attached to teams.

Only one instance of a given power-up type can be active per target.
Activating it again refreshes the remaining time to the full duration
instead of stacking a second instance.
"""

import copy
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from engine.errors import NotFoundError, ValidationError
from engine.state_registry import StateRegistry
from models.schemas import PowerUpDefinition
from services import event_types as events
from services.event_bus import EventBus


logger = logging.getLogger(__name__)


DEFAULT_POWER_UPS: tuple[PowerUpDefinition, ...] = (
    PowerUpDefinition(
        id="double_points",
        name="Double Points",
        description="Doubles points earned for this question.",
        effect_type="score_multiplier",
        effect_params={"multiplier": 2},
    ),
    PowerUpDefinition(
        id="time_extension",
        name="Time Extension",
        description="Adds extra time to the question timer.",
        duration_seconds=10,
        effect_type="timer_modifier",
        effect_params={"amount_ms": 5_000},
    ),
    PowerUpDefinition(
        id="fifty_fifty",
        name="50/50",
        description="Removes half of the incorrect answer options.",
        duration_seconds=10,
        effect_type="answer_modifier",
    ),
    PowerUpDefinition(
        id="comeback",
        name="Comeback",
        description="Gives bonus points for teams that are behind.",
        duration_seconds=30,
        effect_type="score_boost",
        effect_params={"multiplier": 1.5, "min_points_behind": 20},
    ),
)


@dataclass
class ActivePowerUp:
    """A power-up currently applied to a target. ``remaining_ms`` None = untimed."""
    instance_id: str
    type_id: str
    effect_type: str
    target_id: str
    remaining_ms: Optional[float] = None
    duration_ms: Optional[int] = None
    effect_params: dict[str, Any] = field(default_factory=dict)


class PowerUpManager:
    """
    Tracks which power-ups are active for which targets.

    Usage:
        power_ups = PowerUpManager(event_bus, registry)
        power_ups.activate_power_up("double_points", "red")
        power_ups.get_score_multiplier("red")     # 2

        # From the host loop
        power_ups.update(16)
    """

    def __init__(self, event_bus: EventBus, state: Optional[StateRegistry] = None,
                 definitions: Iterable[PowerUpDefinition] = None):
        """
        Initialize the power-up manager.

        Args:
            event_bus: Bus used for power-up events
            state: Optional registry that exposes active power-ups to rules
            definitions: Available power-up types (default: DEFAULT_POWER_UPS)
        """
        self.event_bus = event_bus
        self._state = state
        self._definitions: dict[str, PowerUpDefinition] = {}
        self._active: dict[tuple[str, str], ActivePowerUp] = {}
        self._destroyed = False

        for definition in (DEFAULT_POWER_UPS if definitions is None else definitions):
            self.register_definition(definition)

        if state is not None:
            state.register("power_ups", self._power_ups_state)

    # ============ Definitions ============

    def register_definition(self, definition: PowerUpDefinition) -> None:
        if definition.id in self._definitions:
            logger.warning("Power-up definition '%s' replaced", definition.id)
        self._definitions[definition.id] = definition

    def get_power_up_definition(self, type_id: str) -> Optional[PowerUpDefinition]:
        return self._definitions.get(type_id)

    def get_definitions(self) -> list[PowerUpDefinition]:
        return list(self._definitions.values())

    # ============ Activation ============

    def activate_power_up(self, type_id: str, target_id: str,
                          duration_ms: Optional[int] = None) -> Optional[ActivePowerUp]:
        """
        Apply a power-up to a target.

        Args:
            type_id: Registered power-up type
            target_id: Team (or other entity) receiving the effect
            duration_ms: Override for the definition's duration

        Returns:
            A copy of the active instance, or None if the type is unknown
            or the duration is invalid.
        """
        try:
            definition = self._definitions.get(type_id)
            if definition is None:
                raise NotFoundError(f"Unknown power-up type '{type_id}'")
            if duration_ms is not None and duration_ms <= 0:
                raise ValidationError(f"Power-up duration must be positive, got {duration_ms}")
        except (NotFoundError, ValidationError) as e:
            logger.warning("%s", e)
            return None

        duration = duration_ms if duration_ms is not None else definition.duration_ms
        key = (type_id, target_id)
        existing = self._active.get(key)
        refreshed = existing is not None

        if refreshed:
            existing.remaining_ms = duration
            existing.duration_ms = duration
            instance = existing
            logger.debug("Refreshed power-up '%s' for '%s'", type_id, target_id)
        else:
            instance = ActivePowerUp(
                instance_id=uuid.uuid4().hex,
                type_id=type_id,
                effect_type=definition.effect_type,
                target_id=target_id,
                remaining_ms=duration,
                duration_ms=duration,
                effect_params=dict(definition.effect_params),
            )
            self._active[key] = instance
            logger.info("Activated power-up '%s' for '%s'", type_id, target_id)

        self.event_bus.emit(events.POWERUP_ACTIVATED, {
            **self._payload(instance),
            "duration_ms": duration,
            "refreshed": refreshed,
        })
        return copy.deepcopy(instance)

    def deactivate_power_up(self, type_id: str, target_id: str) -> bool:
        """Cancel a power-up immediately. Returns False if it was not active."""
        instance = self._active.pop((type_id, target_id), None)
        if instance is None:
            return False
        logger.info("Deactivated power-up '%s' for '%s'", type_id, target_id)
        self.event_bus.emit(events.POWERUP_DEACTIVATED, self._payload(instance))
        return True

    def clear_target(self, target_id: str) -> int:
        """Deactivate every power-up on a target. Returns how many were removed."""
        keys = [key for key in self._active if key[1] == target_id]
        for type_id, _ in keys:
            self.deactivate_power_up(type_id, target_id)
        return len(keys)

    # ============ Ticking ============

    def update(self, delta_ms: float) -> None:
        """Count down timed power-ups and expire the ones that run out."""
        if delta_ms <= 0 or self._destroyed:
            return

        for key in list(self._active):
            instance = self._active.get(key)
            if instance is None or instance.remaining_ms is None:
                continue
            instance.remaining_ms -= delta_ms
            if instance.remaining_ms <= 0:
                del self._active[key]
                logger.info("Power-up '%s' expired for '%s'", instance.type_id, instance.target_id)
                self.event_bus.emit(events.POWERUP_EXPIRED, self._payload(instance))

    # ============ Queries ============

    def is_power_up_active_for_target(self, type_id: str, target_id: str) -> bool:
        return (type_id, target_id) in self._active

    def get_active_power_ups_for_target(self, target_id: str) -> list[ActivePowerUp]:
        return [copy.deepcopy(p) for (_, tid), p in self._active.items() if tid == target_id]

    def get_all_active(self) -> list[ActivePowerUp]:
        return [copy.deepcopy(p) for p in self._active.values()]

    def get_score_multiplier(self, target_id: str) -> float:
        """Product of the ``multiplier`` params of active score_multiplier effects."""
        factors = [
            p.effect_params.get("multiplier", 1)
            for (_, tid), p in self._active.items()
            if tid == target_id and p.effect_type == "score_multiplier"
        ]
        return math.prod(factors) if factors else 1

    def _power_ups_state(self) -> dict[str, list[str]]:
        state: dict[str, list[str]] = {}
        for type_id, target_id in self._active:
            state.setdefault(target_id, []).append(type_id)
        return state

    @staticmethod
    def _payload(instance: ActivePowerUp) -> dict:
        return {
            "instance_id": instance.instance_id,
            "type_id": instance.type_id,
            "effect_type": instance.effect_type,
            "target_id": instance.target_id,
        }

    def destroy(self) -> None:
        """Drop all active power-ups without emitting events. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        self._active.clear()
        if self._state is not None:
            self._state.unregister("power_ups", self._power_ups_state)
        logger.debug("PowerUpManager destroyed")
