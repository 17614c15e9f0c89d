"""Wire envelopes exchanged between the runtime and the executor.

Every message is a JSON object with a ``type`` discriminator:

- execute-command: runtime → executor, carries a correlation id
- command-result / command-error: executor → runtime, reply to one id
- command_progress: executor → runtime, out-of-band progress, no reply
- mcp_event: executor → runtime, host-originated event
- update-settings / notify / close-plugin: runtime → executor, administrative
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..errors import ChannelError


class MessageType(str, Enum):
    """All message types on the executor channel."""

    EXECUTE_COMMAND = "execute-command"
    COMMAND_RESULT = "command-result"
    COMMAND_ERROR = "command-error"
    COMMAND_PROGRESS = "command_progress"
    HOST_EVENT = "mcp_event"
    UPDATE_SETTINGS = "update-settings"
    NOTIFY = "notify"
    CLOSE_PLUGIN = "close-plugin"


class ProgressStatus(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.ERROR)


def now_ms() -> int:
    return int(time.time() * 1000)


class WireMessage(BaseModel):
    """Base envelope. Field names are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExecuteCommand(WireMessage):
    type: Literal["execute-command"] = "execute-command"
    id: str
    command: str
    params: Any = Field(default_factory=dict)


class CommandResult(WireMessage):
    type: Literal["command-result"] = "command-result"
    id: str
    command: str | None = None
    result: Any = None


class CommandError(WireMessage):
    type: Literal["command-error"] = "command-error"
    id: str
    command: str | None = None
    error: Any = None

    @property
    def error_message(self) -> str:
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error)
        if self.error is None:
            return "Executor reported an error without a message"
        return str(self.error)


class ProgressEvent(WireMessage):
    """Status of a long-running command. Not a reply."""

    type: Literal["command_progress"] = "command_progress"
    command_id: str
    command_type: str
    status: ProgressStatus
    progress: int = Field(ge=0, le=100)
    total_items: int = Field(default=0, ge=0)
    processed_items: int = Field(default=0, ge=0)
    message: str = ""
    timestamp: int = Field(default_factory=now_ms)
    current_chunk: int | None = None
    total_chunks: int | None = None
    chunk_size: int | None = None
    payload: Any = None


class HostEvent(WireMessage):
    type: Literal["mcp_event"] = "mcp_event"
    event_type: str
    payload: Any = None


class UpdateSettings(WireMessage):
    """Settings update; every key besides ``type`` is a setting."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: Literal["update-settings"] = "update-settings"

    @property
    def settings(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class Notify(WireMessage):
    type: Literal["notify"] = "notify"
    message: str


class ClosePlugin(WireMessage):
    type: Literal["close-plugin"] = "close-plugin"


Message = Annotated[
    ExecuteCommand
    | CommandResult
    | CommandError
    | ProgressEvent
    | HostEvent
    | UpdateSettings
    | Notify
    | ClosePlugin,
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Any] = TypeAdapter(Message)


def parse_message(raw: str | bytes | dict[str, Any]) -> WireMessage:
    """Decode one inbound frame into its typed envelope.

    Raises:
        ChannelError: If the frame is not JSON, has no known type, or does
            not match the envelope for its type
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ChannelError(f"Malformed message: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ChannelError(f"Message must be a JSON object, got {type(data).__name__}")

    try:
        return _message_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ChannelError(
            f"Unroutable message of type {data.get('type')!r}: {e.errors()[0].get('msg')}"
        ) from e
