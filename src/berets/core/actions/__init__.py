"""Action registry and built-in actions."""

from berets.core.actions.builtin import BUILTIN_ACTIONS, default_action_registry
from berets.core.actions.registry import ActionFn, ActionRegistry

__all__ = [
    "ActionFn",
    "ActionRegistry",
    "BUILTIN_ACTIONS",
    "default_action_registry",
]
