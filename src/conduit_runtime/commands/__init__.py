"""Command catalogue.

``build_registry`` assembles every command callers can use: the design
commands forwarded to the executor and the local subscription commands.
"""

from __future__ import annotations

from ..config import RuntimeConfig
from ..registry import CommandRegistry
from .catalogue import register_design_commands, remote
from .events import register_event_commands


def build_registry(config: RuntimeConfig | None = None) -> CommandRegistry:
    """Create a registry populated with the full catalogue."""
    config = config or RuntimeConfig()
    registry = CommandRegistry(allow_replace=config.allow_replace)
    register_design_commands(registry, config)
    register_event_commands(registry)
    return registry


__all__ = ["build_registry", "register_design_commands", "register_event_commands", "remote"]
