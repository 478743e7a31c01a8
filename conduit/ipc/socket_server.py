import os
import socket
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config import ServerConfig
from ..errors import ListenError
from ..message import Message
from ..utils import RWLock
from .connection import Connection

# Handler receives the connection the message arrived on and the message.
Handler = Callable[[Connection, Message], None]


class ServerState(str, Enum):
    CREATED = "created"
    LISTENING = "listening"
    STOPPED = "stopped"


class Server:
    """Unix socket server exchanging typed JSON messages with many clients."""

    accept_poll_interval = 0.5

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.logger = self.config.logger
        self.server_socket: Optional[socket.socket] = None
        self.state = ServerState.CREATED

        self._handlers: Dict[str, Handler] = {}
        self._handlers_lock = RWLock()
        self._conns: Dict[str, Connection] = {}
        self._conns_lock = RWLock()

        self._done = threading.Event()
        self._state_lock = threading.Lock()
        self._accept_thread: Optional[threading.Thread] = None

    @property
    def socket_path(self) -> str:
        return self.config.socket_path

    @property
    def connection_count(self) -> int:
        with self._conns_lock.read():
            return len(self._conns)

    def connections(self) -> List[Connection]:
        """Snapshot of the live connections."""
        with self._conns_lock.read():
            return list(self._conns.values())

    def __enter__(self) -> "Server":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def handle(self, msg_type: str, handler: Optional[Handler] = None):
        """Register ``handler`` for ``msg_type``, replacing any previous one.

        Without ``handler`` this returns a decorator::

            @server.handle("echo")
            def echo(conn, msg):
                conn.send("echo_response", msg.decode_payload())
        """
        if handler is None:

            def decorator(func: Handler) -> Handler:
                self.handle(msg_type, func)
                return func

            return decorator

        with self._handlers_lock.write():
            self._handlers[msg_type] = handler
        return handler

    def start(self) -> None:
        """Bind the socket and start accepting clients in a background thread.

        Raises:
            ListenError: the socket could not be created, bound or permissioned
        """
        with self._state_lock:
            if self.state is not ServerState.CREATED:
                raise ListenError(f"server is {self.state.value}, cannot start")

            path = self.config.socket_path
            # Remove existing socket file if present
            try:
                if os.path.lexists(path):
                    os.unlink(path)
            except OSError as e:
                raise ListenError(f"failed to remove existing socket: {e}") from e

            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.bind(path)
                sock.listen()
            except OSError as e:
                sock.close()
                raise ListenError(f"failed to start server: {e}") from e

            try:
                os.chmod(path, self.config.socket_mode)
            except OSError as e:
                sock.close()
                raise ListenError(f"failed to set socket permissions: {e}") from e

            # Accept wakes up periodically to observe shutdown.
            sock.settimeout(self.accept_poll_interval)
            self.server_socket = sock
            self.state = ServerState.LISTENING

        self.logger.info("Server started on %s", path)
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name=f"conduit-accept:{path}", daemon=True
        )
        self._accept_thread.start()

    def stop(self) -> None:
        """Stop the server, close every connection and remove the socket file.

        Only the first call does anything; errors are raised to that caller.
        """
        with self._state_lock:
            if self._done.is_set():
                return
            self._done.set()
            self.state = ServerState.STOPPED

        error: Optional[OSError] = None
        with self._conns_lock.write():
            if self.server_socket is not None:
                try:
                    # Wakes the accept loop.
                    self.server_socket.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass
                try:
                    self.server_socket.close()
                except OSError as e:
                    error = e

            for conn in self._conns.values():
                conn.close()

        try:
            if os.path.lexists(self.config.socket_path):
                os.unlink(self.config.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            if error is None:
                error = e

        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(timeout=1.0)

        self.logger.info("Server stopped")
        if error is not None:
            raise error

    def broadcast(self, msg_type: str, value: Any = None) -> None:
        """Send one message to every connected client.

        A failure for one recipient is logged and does not stop the others.

        Raises:
            MarshalError: ``value`` is not JSON serializable
        """
        msg = Message.new(msg_type, value)

        with self._conns_lock.read():
            for conn in self._conns.values():
                try:
                    conn.send_message(msg)
                except Exception as e:
                    self.logger.error("Failed to broadcast to %s: %s", conn.id, e)

    def _accept_loop(self) -> None:
        """Accept new socket connections until the server stops."""
        while True:
            try:
                sock, _ = self.server_socket.accept()
            except socket.timeout:
                if self._done.is_set():
                    return
                continue
            except OSError as e:
                if self._done.is_set():
                    return
                self.logger.error("Failed to accept connection: %s", e)
                continue

            conn = Connection(
                sock,
                read_timeout=self.config.read_timeout,
                write_timeout=self.config.write_timeout,
                max_message_size=self.config.max_message_size,
            )

            with self._conns_lock.write():
                if self._done.is_set():
                    conn.close()
                    conn.release()
                    return
                self._conns[conn.id] = conn

            self.logger.info("New connection established: %s", conn.id)
            threading.Thread(
                target=self._read_loop, args=(conn,), name=f"conduit-read:{conn.id}", daemon=True
            ).start()

    def _read_loop(self, conn: Connection) -> None:
        """Decode and dispatch messages from one client until it goes away."""
        decoder = conn.decoder()
        try:
            while not self._done.is_set() and not conn.closed:
                try:
                    msg = conn.read_message(decoder)
                except EOFError:
                    return
                except Exception as e:
                    if self._done.is_set() or conn.closed:
                        self.logger.debug("Read loop for %s ended during shutdown: %s", conn.id, e)
                    else:
                        self.logger.error("Failed to decode message from %s: %s", conn.id, e)
                    return

                self._dispatch(conn, msg)
        finally:
            conn.close()
            conn.release()
            with self._conns_lock.write():
                self._conns.pop(conn.id, None)
            self.logger.info("Connection closed: %s", conn.id)

    def _dispatch(self, conn: Connection, msg: Message) -> None:
        with self._handlers_lock.read():
            handler = self._handlers.get(msg.type)

        if handler is None:
            self.logger.warning("No handler for message type '%s' from %s", msg.type, conn.id)
            return

        try:
            handler(conn, msg)
        except Exception:
            self.logger.exception("Handler error for message type '%s' from %s", msg.type, conn.id)
