"""Conduit runtime: validated, batched command calls routed to a design executor."""

from .app import create_app
from .config import RuntimeConfig
from .runtime import ConduitRuntime

__version__ = "0.1.0"

__all__ = ["ConduitRuntime", "RuntimeConfig", "create_app", "__version__"]
