"""
State Registry - named read-only views of manager state.

Managers register zero-argument providers under a name; the RuleEngine
calls ``snapshot()`` once per triggering event and exposes the result to
rule conditions as ``state.<name>``.
"""

import copy
import logging
from typing import Any, Callable


logger = logging.getLogger(__name__)


class StateRegistry:
    """
    Registry of state providers.

    Usage:
        registry = StateRegistry()
        registry.register("scores", scoring.get_all_scores)
        registry.snapshot()   # {"scores": {"red": 10, "blue": 0}}
    """

    def __init__(self):
        self._providers: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, provider: Callable[[], Any]) -> None:
        """Register or replace the provider for ``name``."""
        if name in self._providers:
            logger.warning("State provider '%s' replaced", name)
        self._providers[name] = provider

    def unregister(self, name: str, provider: Callable[[], Any] = None) -> None:
        """
        Remove a provider.

        When ``provider`` is given, the entry is only removed if it is still
        that provider, so a destroyed manager cannot drop its replacement.
        """
        current = self._providers.get(name)
        if current is None:
            return
        if provider is not None and current != provider:
            return
        del self._providers[name]

    def names(self) -> list[str]:
        return list(self._providers)

    def get(self, name: str) -> Any:
        """Current value of a single provider, or None if not registered."""
        provider = self._providers.get(name)
        return copy.deepcopy(provider()) if provider else None

    def snapshot(self) -> dict[str, Any]:
        """Deep-copied values of every registered provider."""
        return {name: copy.deepcopy(provider()) for name, provider in self._providers.items()}
