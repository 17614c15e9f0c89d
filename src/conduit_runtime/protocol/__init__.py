"""Executor channel protocol.

Typed envelopes for the JSON messages exchanged with the executor. Replies
correlate to requests by id; progress and host events are uncorrelated.
"""

from .messages import (
    ClosePlugin,
    CommandError,
    CommandResult,
    ExecuteCommand,
    HostEvent,
    MessageType,
    Notify,
    ProgressEvent,
    ProgressStatus,
    UpdateSettings,
    WireMessage,
    parse_message,
)

__all__ = [
    "ClosePlugin",
    "CommandError",
    "CommandResult",
    "ExecuteCommand",
    "HostEvent",
    "MessageType",
    "Notify",
    "ProgressEvent",
    "ProgressStatus",
    "UpdateSettings",
    "WireMessage",
    "parse_message",
]
