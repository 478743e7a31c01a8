"""Bidirectional message-oriented IPC over Unix domain sockets.

Quick start::

    from conduit import Client, ClientConfig, Server, ServerConfig

    server = Server(ServerConfig.default("/tmp/app.sock"))

    @server.handle("echo")
    def echo(conn, msg):
        conn.send("echo_response", msg.decode_payload() + "_response")

    server.start()
"""

from .config import ClientConfig, ServerConfig
from .errors import (
    ClientClosedError,
    ConduitError,
    ConnectError,
    DecodeError,
    ListenError,
    MarshalError,
    MessageSizeError,
    NotConnectedError,
    SendError,
    UnmarshalError,
)
from .framing import LimitedReader, MessageDecoder
from .ipc import Client, ClientState, Connection, Server, ServerState
from .logger import get_logger, get_noop_logger, new_logger, setup_logging
from .message import Message

__version__ = "0.1.0"

__all__ = [
    # Core
    "Server",
    "ServerState",
    "Client",
    "ClientState",
    "Connection",
    "Message",
    "LimitedReader",
    "MessageDecoder",
    # Configuration and logging
    "ServerConfig",
    "ClientConfig",
    "setup_logging",
    "get_logger",
    "new_logger",
    "get_noop_logger",
    # Errors
    "ConduitError",
    "ListenError",
    "ConnectError",
    "DecodeError",
    "MessageSizeError",
    "MarshalError",
    "UnmarshalError",
    "SendError",
    "NotConnectedError",
    "ClientClosedError",
]
