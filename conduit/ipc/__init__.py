"""IPC (Inter-Process Communication) package: Unix socket server, client and connection."""

from .connection import Connection
from .socket_client import Client, ClientHandler, ClientState
from .socket_server import Handler, Server, ServerState

__all__ = [
    # Server-side exports
    "Server",
    "ServerState",
    "Handler",
    "Connection",
    # Client-side exports
    "Client",
    "ClientState",
    "ClientHandler",
]
