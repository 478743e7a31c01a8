"""Exception taxonomy for conduit.

Setup errors (``ListenError``, ``ConnectError``) are raised to the caller of
``start``/``connect``. Framing errors end one connection's read loop and are
only logged. Send errors are raised to the caller of ``send``/``broadcast``.
"""


class ConduitError(Exception):
    """Base class for all conduit errors."""


class ListenError(ConduitError):
    """The server socket could not be bound, listened on or permissioned."""


class ConnectError(ConduitError):
    """The client could not dial the server socket."""


class DecodeError(ConduitError):
    """The byte stream did not contain a well-formed message."""


class MessageSizeError(DecodeError):
    """More bytes were read from a stream than the configured limit allows."""

    def __init__(self, limit: int, data: bytes = b""):
        super().__init__(f"message size exceeds limit of {limit} bytes")
        self.limit = limit
        self.data = data


class MarshalError(ConduitError):
    """A payload value could not be encoded as JSON."""


class UnmarshalError(ConduitError):
    """A payload could not be decoded into the requested shape."""


class SendError(ConduitError):
    """Writing a message to the socket failed or timed out."""


class NotConnectedError(ConduitError):
    """The client has no live connection to the server."""

    def __init__(self, message: str = "client not connected to server"):
        super().__init__(message)


class ClientClosedError(ConduitError):
    """The client was closed and can no longer connect."""

    def __init__(self, message: str = "client is closed"):
        super().__init__(message)
