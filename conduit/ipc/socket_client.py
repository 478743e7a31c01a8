import socket
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ..config import ClientConfig
from ..errors import ClientClosedError, ConnectError, NotConnectedError, SendError
from ..message import Message
from ..utils import RWLock
from .connection import Connection


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


# Handler receives the client the message arrived on and the message.
ClientHandler = Callable[["Client", Message], None]


class Client:
    """Unix socket client with type-keyed handlers and optional auto-reconnect.

    One supervising thread owns the live connection: it runs the read loop and,
    when the connection drops and reconnect is enabled, dials again from its own
    exit path before resuming the loop on the new connection.
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self.logger = self.config.logger

        self._conn: Optional[Connection] = None
        self._state = ClientState.DISCONNECTED
        self._lock = threading.RLock()
        self._state_changed = threading.Condition(self._lock)

        self._handlers: Dict[str, ClientHandler] = {}
        self._handlers_lock = RWLock()

        self._context: Dict[str, Any] = {}
        self._context_lock = threading.Lock()

        self._done = threading.Event()
        self._supervisor: Optional[threading.Thread] = None
        self._reconnecting = False

    def __enter__(self) -> "Client":
        self.connect_with_retry()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def state(self) -> ClientState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        """True while the client holds a live connection to the server."""
        with self._lock:
            return self._conn is not None

    @property
    def is_closed(self) -> bool:
        return self._done.is_set()

    def _set_state(self, state: ClientState) -> None:
        with self._state_changed:
            if self._state is ClientState.CLOSED:
                return
            self._state = state
            self._state_changed.notify_all()

    def handle(self, msg_type: str, handler: Optional[ClientHandler] = None):
        """Register ``handler`` for ``msg_type``; usable as a decorator."""
        if handler is None:

            def decorator(func: ClientHandler) -> ClientHandler:
                self.handle(msg_type, func)
                return func

            return decorator

        with self._handlers_lock.write():
            self._handlers[msg_type] = handler
        return handler

    def connect(self) -> None:
        """Dial the server once and start the read loop.

        Raises:
            ClientClosedError: the client was closed
            ConnectError: the server socket could not be reached
        """
        with self._lock:
            if self.is_closed:
                raise ClientClosedError()
            if self._conn is not None:
                return
            if self._reconnecting or self._state is ClientState.CONNECTING:
                raise ConnectError("connection attempt already in progress")
            self._state = ClientState.CONNECTING

        try:
            conn = self._dial()
        except ConnectError:
            self._set_state(ClientState.DISCONNECTED)
            raise

        with self._lock:
            if self.is_closed:
                conn.close()
                conn.release()
                raise ClientClosedError()
            self._conn = conn
            self._set_state(ClientState.CONNECTED)

        self.logger.info("Connected to server at %s", self.config.socket_path)
        self._supervisor = threading.Thread(
            target=self._supervise, args=(conn,), name=f"conduit-client:{conn.id}", daemon=True
        )
        self._supervisor.start()

    def connect_with_retry(self) -> None:
        """Connect, retrying every ``reconnect_delay`` seconds if reconnect is on.

        Blocks until connected or until :meth:`close` is called.

        Raises:
            ClientClosedError: the client was closed while waiting
            ConnectError: reconnect is disabled and the single attempt failed
        """
        while True:
            try:
                self.connect()
                return
            except ConnectError:
                if not self.config.reconnect:
                    raise

            self.logger.warning(
                "Failed to connect, retrying in %ss...", self.config.reconnect_delay
            )
            if self._done.wait(self.config.reconnect_delay):
                raise ClientClosedError()

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Block until the client is connected; False on timeout or close."""
        with self._state_changed:
            self._state_changed.wait_for(
                lambda: self._state in (ClientState.CONNECTED, ClientState.CLOSED),
                timeout=timeout,
            )
            return self._state is ClientState.CONNECTED

    def send(self, msg_type: str, value: Any = None) -> None:
        """Send a message to the server.

        Raises:
            NotConnectedError: there is no live connection right now
            MarshalError: ``value`` is not JSON serializable
            SendError: the write failed or timed out
        """
        with self._lock:
            conn = self._conn
        if conn is None:
            raise NotConnectedError()
        try:
            conn.send(msg_type, value)
        except SendError as e:
            if conn.closed:
                raise NotConnectedError() from e
            raise

    def close(self) -> None:
        """Close the client. Later calls are no-ops."""
        with self._state_changed:
            if self._done.is_set():
                return
            self._done.set()
            conn, self._conn = self._conn, None
            self._state = ClientState.CLOSED
            self._state_changed.notify_all()

        if conn is not None:
            conn.close()
        self.logger.info("Client closed")

    def get_context(self, key: str) -> Tuple[Any, bool]:
        with self._context_lock:
            if key in self._context:
                return self._context[key], True
            return None, False

    def set_context(self, key: str, value: Any) -> None:
        with self._context_lock:
            self._context[key] = value

    def _dial(self) -> Connection:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.config.socket_path)
        except OSError as e:
            sock.close()
            raise ConnectError(f"failed to connect to server: {e}") from e
        return Connection(
            sock,
            read_timeout=self.config.read_timeout,
            write_timeout=self.config.write_timeout,
            max_message_size=self.config.max_message_size,
        )

    def _redial(self) -> Optional[Connection]:
        """Dial until a connection is made; None once the client is closed."""
        while not self._done.is_set():
            self._set_state(ClientState.CONNECTING)
            try:
                conn = self._dial()
            except ConnectError as e:
                self.logger.warning(
                    "Failed to reconnect (%s), retrying in %ss...", e, self.config.reconnect_delay
                )
                self._set_state(ClientState.DISCONNECTED)
                if self._done.wait(self.config.reconnect_delay):
                    return None
                continue

            with self._lock:
                if self._done.is_set():
                    conn.close()
                    conn.release()
                    return None
                self._conn = conn
                self._set_state(ClientState.CONNECTED)
            self.logger.info("Reconnected to server at %s", self.config.socket_path)
            return conn
        return None

    def _supervise(self, conn: Connection) -> None:
        """Run the read loop, reconnecting after unexpected disconnects."""
        while conn is not None:
            self._read_loop(conn)

            with self._lock:
                if not self._reconnecting:
                    return

            self.logger.info("Connection lost, attempting to reconnect...")
            try:
                conn = self._redial()
            finally:
                with self._lock:
                    self._reconnecting = False

    def _read_loop(self, conn: Connection) -> None:
        decoder = conn.decoder()
        try:
            while not self._done.is_set() and not conn.closed:
                try:
                    msg = conn.read_message(decoder)
                except EOFError:
                    return
                except Exception as e:
                    if self._done.is_set() or conn.closed:
                        self.logger.debug("Read loop ended during close: %s", e)
                    else:
                        self.logger.error("Failed to decode message: %s", e)
                    return

                self._dispatch(msg)
        finally:
            # Unpublish before closing.
            with self._lock:
                if self._conn is conn:
                    self._conn = None
                if self.config.reconnect and not self._done.is_set():
                    self._reconnecting = True
                self._set_state(ClientState.DISCONNECTED)
            conn.close()
            conn.release()

    def _dispatch(self, msg: Message) -> None:
        with self._handlers_lock.read():
            handler = self._handlers.get(msg.type)

        if handler is None:
            self.logger.warning("No handler for message type '%s'", msg.type)
            return

        try:
            handler(self, msg)
        except Exception:
            self.logger.exception("Handler error for message type '%s'", msg.type)
