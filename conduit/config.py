"""Central configuration store.

All default values live here; the option objects below pick them up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

# --- Socket ----------------------------------------------------------------
DEFAULT_SOCKET_PATH = "/tmp/conduit.sock"
DEFAULT_SOCKET_MODE = 0o666  # world read/write

# --- I/O limits (seconds / bytes) ------------------------------------------
DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_MAX_MESSAGE_SIZE = 32 * 1024 * 1024  # 32 MiB

# --- Client reconnect ------------------------------------------------------
DEFAULT_RECONNECT = True
DEFAULT_RECONNECT_DELAY = 5.0

# --- Logging ---------------------------------------------------------------
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


def _default_server_logger() -> logging.Logger:
    from conduit.logger import get_logger

    return get_logger("server")


def _default_client_logger() -> logging.Logger:
    from conduit.logger import get_logger

    return get_logger("client")


@dataclass
class ServerConfig:
    """Options for a :class:`conduit.ipc.Server`.

    A timeout of ``0`` or ``None`` disables it.
    """

    socket_path: str = DEFAULT_SOCKET_PATH
    socket_mode: int = DEFAULT_SOCKET_MODE
    read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT
    write_timeout: Optional[float] = DEFAULT_WRITE_TIMEOUT
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    logger: logging.Logger = field(default_factory=_default_server_logger)

    @classmethod
    def default(cls, socket_path: str) -> "ServerConfig":
        return cls(socket_path=str(socket_path))


@dataclass
class ClientConfig:
    """Options for a :class:`conduit.ipc.Client`."""

    socket_path: str = DEFAULT_SOCKET_PATH
    read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT
    write_timeout: Optional[float] = DEFAULT_WRITE_TIMEOUT
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    reconnect: bool = DEFAULT_RECONNECT
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    logger: logging.Logger = field(default_factory=_default_client_logger)

    @classmethod
    def default(cls, socket_path: str) -> "ClientConfig":
        return cls(socket_path=str(socket_path))
