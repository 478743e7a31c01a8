"""Shared helpers for the socket-level tests."""

from __future__ import annotations

import socket
import time
from typing import Callable

from conduit.framing import MessageDecoder
from conduit.message import Message


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RawPeer:
    """A bare Unix socket speaking the wire format, for poking at a server."""

    def __init__(self, path: str, timeout: float = 2.0):
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(timeout)
        self.sock.connect(path)
        self.decoder = MessageDecoder(self)

    def read(self, size: int) -> bytes:
        try:
            return self.sock.recv(size)
        except ConnectionResetError:
            return b""

    def send(self, msg_type: str, value=None) -> None:
        self.sock.sendall(Message.new(msg_type, value).encode())

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data)

    def recv_message(self) -> Message:
        return self.decoder.decode()

    def is_closed_by_peer(self) -> bool:
        try:
            return self.sock.recv(1) == b""
        except ConnectionResetError:
            return True

    def close(self) -> None:
        self.sock.close()
