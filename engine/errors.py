"""
Engine error taxonomy.

Managers raise these internally and catch them at their public methods,
where the failure is logged and a safe default is returned. Only storage
failures are surfaced further, as an ENGINE_ERROR event.
"""


class EngineError(Exception):
    """Base class for all QuizArena engine errors."""


class ValidationError(EngineError):
    """An argument or configuration value was rejected."""


class NotFoundError(EngineError):
    """A team, timer, power-up or rule id is not known."""


class StateError(EngineError):
    """The operation is not allowed in the current state or phase."""


class ActionExecutionError(EngineError):
    """A rule action could not be carried out."""

    def __init__(self, rule_id: str, action_type: str, message: str):
        super().__init__(f"Rule '{rule_id}' action '{action_type}': {message}")
        self.rule_id = rule_id
        self.action_type = action_type


class StorageError(EngineError):
    """The persistence backend failed to read or write a value."""
