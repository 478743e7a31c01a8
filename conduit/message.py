"""
Conduit message envelope.

Wire form of one message:

    {"type": "<message type>", "payload": <any JSON value>}

Documents are written back to back on the stream. The payload is kept as raw
JSON bytes and only decoded when a handler asks for it.
"""

import dataclasses
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import MarshalError, UnmarshalError


def _encode_default(value: Any) -> Any:
    """Fallback for values the json module does not know about."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_payload(value: Any) -> bytes:
    """Encode ``value`` as compact JSON bytes."""
    try:
        text = json.dumps(
            value,
            default=_encode_default,
            ensure_ascii=False,
            separators=(",", ":"),
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise MarshalError(f"failed to marshal payload: {e}") from e
    return text.encode("utf-8")


@dataclass(frozen=True)
class Message:
    """A typed message with an opaque JSON payload."""

    type: str
    payload: bytes = b"null"

    @classmethod
    def new(cls, msg_type: str, value: Any = None) -> "Message":
        """Build a message, serializing ``value`` into the payload.

        Raises:
            MarshalError: ``value`` cannot be encoded as JSON
        """
        return cls(type=msg_type, payload=encode_payload(value))

    @classmethod
    def from_raw(cls, msg_type: str, payload: bytes) -> "Message":
        """Wrap payload bytes that are already JSON encoded."""
        return cls(type=msg_type, payload=bytes(payload) or b"null")

    def decode_payload(self, target: Optional[Callable[[Any], Any]] = None) -> Any:
        """
        Decode the payload.

        Args:
            target: ``None`` for the plain JSON value, a dataclass type to build
                from the decoded mapping, or any callable applied to the value.

        Raises:
            UnmarshalError: the payload is not valid JSON or does not fit ``target``
        """
        try:
            value = json.loads(self.payload)
        except (TypeError, ValueError, RecursionError) as e:
            raise UnmarshalError(f"failed to unmarshal payload: {e}") from e

        if target is None:
            return value

        try:
            if dataclasses.is_dataclass(target) and isinstance(target, type):
                if not isinstance(value, dict):
                    raise TypeError(
                        f"cannot unmarshal {type(value).__name__} into {target.__name__}"
                    )
                names = {f.name for f in dataclasses.fields(target)}
                return target(**{k: v for k, v in value.items() if k in names})
            return target(value)
        except (TypeError, ValueError) as e:
            raise UnmarshalError(f"failed to unmarshal payload: {e}") from e

    def to_dict(self) -> dict:
        """Convert to dictionary with the payload decoded."""
        return {"type": self.type, "payload": json.loads(self.payload)}

    def encode(self) -> bytes:
        """Encode the envelope for the wire (JSON document + newline)."""
        head = json.dumps({"type": self.type}, ensure_ascii=False, separators=(",", ":"))
        # Splice the raw payload in without re-encoding it.
        body = head[:-1].encode("utf-8") + b',"payload":' + self.payload + b"}\n"
        return body
