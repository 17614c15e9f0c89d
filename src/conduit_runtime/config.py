"""Runtime configuration.

Defaults live on the dataclass; ``RuntimeConfig.from_env()`` overlays the
``CONDUIT_*`` environment variables:

    CONDUIT_HOST                     bind host (127.0.0.1)
    CONDUIT_PORT                     bind port (4100)
    CONDUIT_COMMAND_TIMEOUT          seconds to wait for a reply (60)
    CONDUIT_SCAN_TIMEOUT             seconds for long scans (300)
    CONDUIT_SCAN_CHUNK_SIZE          items per scan chunk (10)
    CONDUIT_BATCH_CHUNK_SIZE         units per chunked batch (5)
    CONDUIT_ITEM_DELAY               seconds between items in a chunk (0.005)
    CONDUIT_CHUNK_DELAY              seconds between chunks (0.05)
    CONDUIT_ALLOW_REPLACE            allow re-registering a command name (false)
    CONDUIT_SANDBOX                  attach the in-process sandbox executor (false)
    CONDUIT_SANDBOX_DOCUMENT         YAML file seeding the sandbox document
    CONDUIT_LOG_LEVEL                logging level (INFO)
    CONDUIT_RECONNECT                redial a dropped outbound executor link (true)
    CONDUIT_RECONNECT_DELAY          seconds before the first redial (1.0)
    CONDUIT_MAX_RECONNECT_DELAY      ceiling for the redial backoff (30.0)
    CONDUIT_RECONNECT_BACKOFF        delay multiplier per failed redial (2.0)
    CONDUIT_MAX_RECONNECT_ATTEMPTS   redials before giving up (5)
    CONDUIT_CONNECT_TIMEOUT          seconds to open an outbound connection (10)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

from .chunking import CHUNK_DELAY, ITEM_DELAY, MUTATION_CHUNK_SIZE, SCAN_CHUNK_SIZE
from .correlation import DEFAULT_TIMEOUT

ENV_PREFIX = "CONDUIT_"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass
class RuntimeConfig:
    """Settings for one runtime process."""

    host: str = "127.0.0.1"
    port: int = 4100
    command_timeout: float = DEFAULT_TIMEOUT
    scan_timeout: float = 300.0
    scan_chunk_size: int = SCAN_CHUNK_SIZE
    batch_chunk_size: int = MUTATION_CHUNK_SIZE
    item_delay: float = ITEM_DELAY
    chunk_delay: float = CHUNK_DELAY
    allow_replace: bool = False
    sandbox: bool = False
    sandbox_document: str | None = None
    log_level: str = "INFO"
    reconnect: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_backoff: float = 2.0
    max_reconnect_attempts: int = 5
    connect_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.command_timeout <= 0 or self.scan_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.scan_chunk_size < 1 or self.batch_chunk_size < 1:
            raise ValueError("Chunk sizes must be at least 1")
        if self.reconnect_delay < 0 or self.max_reconnect_delay < self.reconnect_delay:
            raise ValueError("Reconnect delays must satisfy 0 <= delay <= max delay")
        if self.reconnect_backoff < 1:
            raise ValueError("Reconnect backoff must be at least 1")
        if self.max_reconnect_attempts < 0:
            raise ValueError("Reconnect attempts cannot be negative")
        if self.connect_timeout <= 0:
            raise ValueError("Connect timeout must be positive")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: object
    ) -> RuntimeConfig:
        """Build a config from ``CONDUIT_*`` variables plus explicit overrides.

        Raises:
            ValueError: A variable holds a value of the wrong type
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for f in fields(cls):
            name = f"{ENV_PREFIX}{f.name.upper()}"
            raw = env.get(name)
            if raw is None:
                continue
            kind = f.type if isinstance(f.type, str) else getattr(f.type, "__name__", "")
            try:
                if kind == "bool":
                    values[f.name] = _parse_bool(name, raw)
                elif kind == "int":
                    values[f.name] = int(raw)
                elif kind == "float":
                    values[f.name] = float(raw)
                elif kind.startswith("str |"):
                    values[f.name] = raw or None
                else:
                    values[f.name] = raw
            except ValueError as e:
                raise ValueError(f"Invalid value for {name}: {raw!r} ({e})") from e

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)  # type: ignore[arg-type]
