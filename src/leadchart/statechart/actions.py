"""Action registry

Charts refer to actions by name; the registry maps those names to pure
context transforms. Names are resolved once, when the chart is built.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from .types import Action, ContextTransform


class Assign:
    """Context transform that overwrites a fixed set of keys.

    Keys are checked against the chart's context schema at build time.
    """

    def __init__(self, **updates: Any):
        self.updates: Mapping[str, Any] = MappingProxyType(dict(updates))

    def __call__(self, context: Mapping[str, Any]) -> Mapping[str, Any]:
        return {**context, **self.updates}

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self.updates.items())
        return f"assign({body})"


def assign(**updates: Any) -> Assign:
    """Create an action that sets context keys to fixed values."""
    return Assign(**updates)


class ActionRegistry:
    """Maps action name strings to context transforms."""

    def __init__(self) -> None:
        self._actions: dict[str, ContextTransform] = {}

    def register(self, name: str, fn: ContextTransform) -> None:
        """Register a named action. Overwrites if already registered."""
        if not name:
            raise ValueError("action name must be non-empty")
        self._actions[name] = fn

    def resolve(self, name: str) -> Action:
        """Bind a name to its transform. Raises KeyError if not registered."""
        return Action(name=name, fn=self._actions[name])
