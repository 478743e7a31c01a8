import selectors
import socket
import threading
import time
from typing import Any, Dict, Optional, Tuple

from ..errors import SendError
from ..framing import LimitedReader, MessageDecoder
from ..message import Message
from ..utils import generate_conn_id


class _SocketReader:
    """Blocking byte source over a socket with an optional per-message deadline.

    Readiness is awaited with a selector so the read deadline does not fight
    with the socket-level timeout used for writes. ``Connection.close`` shuts
    the socket down, which wakes a blocked select.
    """

    def __init__(self, conn: "Connection"):
        self._conn = conn
        self._selector = selectors.DefaultSelector()
        self._selector.register(conn.sock, selectors.EVENT_READ)
        self.deadline: Optional[float] = None

    def read(self, size: int) -> bytes:
        while True:
            if self._conn.closed:
                return b""
            wait = None
            if self.deadline is not None:
                wait = self.deadline - time.monotonic()
                if wait <= 0:
                    raise socket.timeout("read timeout")
            if not self._selector.select(wait):
                continue
            if self._conn.closed:
                return b""
            return self._conn.sock.recv(size)

    def close(self) -> None:
        try:
            self._selector.close()
        except (OSError, ValueError):
            pass


class Connection:
    """One endpoint of a stream socket, accepted by a server or dialed by a client."""

    def __init__(
        self,
        sock: socket.socket,
        read_timeout: Optional[float] = None,
        write_timeout: Optional[float] = None,
        max_message_size: Optional[int] = None,
    ):
        self.id = generate_conn_id()
        self.sock = sock
        self.read_timeout = read_timeout or None
        self.write_timeout = write_timeout or None
        self.max_message_size = max_message_size

        self._closed = False
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._context: Dict[str, Any] = {}

        # sendall() honours the socket timeout; reads use their own deadline.
        self.sock.settimeout(self.write_timeout)
        self._reader = _SocketReader(self)

    def __repr__(self) -> str:
        return f"<Connection {self.id} closed={self._closed}>"

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def decoder(self) -> MessageDecoder:
        """Build the message decoder used by this connection's read loop."""
        source = self._reader
        if self.max_message_size:
            source = LimitedReader(source, self.max_message_size)
        return MessageDecoder(source)

    def read_message(self, decoder: MessageDecoder) -> Message:
        """Decode one message, applying the read timeout if configured."""
        if self.read_timeout:
            self._reader.deadline = time.monotonic() + self.read_timeout
        else:
            self._reader.deadline = None
        return decoder.decode()

    def send(self, msg_type: str, value: Any = None) -> None:
        """Send a message of ``msg_type`` carrying ``value`` to the peer.

        Raises:
            MarshalError: ``value`` is not JSON serializable
            SendError: the write failed or timed out
        """
        self.send_message(Message.new(msg_type, value))

    def send_message(self, msg: Message) -> None:
        """Write an already built message to the peer."""
        data = msg.encode()
        with self._send_lock:
            if self.closed:
                raise SendError(f"connection {self.id} is closed")
            try:
                self.sock.sendall(data)
            except socket.timeout as e:
                raise SendError(f"write to {self.id} timed out") from e
            except OSError as e:
                raise SendError(f"write to {self.id} failed: {e}") from e

    def close(self) -> None:
        """Close the connection. Safe to call many times from any thread.

        The socket is shut down here, which ends any blocked read; the
        descriptor itself is freed by :meth:`release` once the read side is
        done with it.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def release(self) -> None:
        """Free the socket and selector once the read loop has exited."""
        self._reader.close()
        self.sock.close()

    def get_context(self, key: str) -> Tuple[Any, bool]:
        """Return ``(value, True)`` for a stored key, ``(None, False)`` otherwise."""
        with self._lock:
            if key in self._context:
                return self._context[key], True
            return None, False

    def set_context(self, key: str, value: Any) -> None:
        with self._lock:
            self._context[key] = value
