"""
Stream framing for conduit messages.

Messages are self-delimiting JSON documents written back to back with no
length prefix. ``MessageDecoder`` finds document boundaries by tracking
brace depth and string state as bytes arrive, then parses each complete
document. ``LimitedReader`` caps the cumulative number of bytes pulled off a
stream so a single huge or malicious message cannot exhaust memory.
"""

import json
from typing import Optional

from .errors import DecodeError, MessageSizeError
from .message import Message

_WHITESPACE = b" \t\r\n"
_OPEN = (ord("{"), ord("["))
_CLOSE = (ord("}"), ord("]"))
_QUOTE = ord('"')
_BACKSLASH = ord("\\")


class LimitedReader:
    """Wraps a byte source and enforces a maximum cumulative read size.

    Once more than ``limit`` bytes have been delivered, the triggering read and
    every read after it raise :class:`MessageSizeError` carrying the bytes that
    were read. There is no reset; the stream is unusable from then on.
    """

    def __init__(self, source, limit: int):
        self._source = source
        self.limit = limit
        self.consumed = 0

    def read(self, size: int) -> bytes:
        data = self._source.read(size)
        self.consumed += len(data)
        if self.consumed > self.limit:
            raise MessageSizeError(self.limit, data)
        return data


class MessageDecoder:
    """Decodes consecutive :class:`Message` documents from a byte reader."""

    def __init__(self, reader, chunk_size: int = 4096):
        self._reader = reader
        self._chunk_size = chunk_size
        self._buf = bytearray()
        # Scan state for the document at the head of the buffer.
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def buffered(self) -> int:
        """Number of bytes read from the stream but not yet decoded."""
        return len(self._buf)

    def decode(self) -> Message:
        """
        Return the next message on the stream.

        Raises:
            EOFError: the stream ended cleanly between documents
            DecodeError: malformed document or stream ended mid-document
            MessageSizeError: the underlying reader hit its size limit
        """
        while True:
            end = self._scan()
            if end is not None:
                raw = bytes(self._buf[:end])
                del self._buf[:end]
                self._reset_scan()
                return self._parse(raw)

            chunk = self._reader.read(self._chunk_size)
            if not chunk:
                if self._buf.strip(_WHITESPACE):
                    raise DecodeError("unexpected end of stream")
                self._buf.clear()
                self._reset_scan()
                raise EOFError("end of stream")
            self._buf.extend(chunk)

    def _reset_scan(self) -> None:
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def _scan(self) -> Optional[int]:
        """Advance over buffered bytes; return the end offset of a complete document."""
        buf = self._buf

        if self._depth == 0:
            # Skip inter-document whitespace before the next document starts.
            start = 0
            while start < len(buf) and buf[start] in _WHITESPACE:
                start += 1
            if start:
                del buf[:start]
            if not buf:
                return None
            if buf[0] != _OPEN[0]:
                raise DecodeError(
                    f"invalid character {chr(buf[0])!r} looking for beginning of message object"
                )
            self._pos = 0

        i = self._pos
        n = len(buf)
        while i < n:
            c = buf[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif c == _BACKSLASH:
                    self._escaped = True
                elif c == _QUOTE:
                    self._in_string = False
            elif c == _QUOTE:
                self._in_string = True
            elif c in _OPEN:
                self._depth += 1
            elif c in _CLOSE:
                self._depth -= 1
                if self._depth == 0:
                    self._pos = i + 1
                    return i + 1
                if self._depth < 0:
                    raise DecodeError("unbalanced closing bracket")
            i += 1

        self._pos = n
        return None

    @staticmethod
    def _parse(raw: bytes) -> Message:
        try:
            doc = json.loads(raw)
        except (ValueError, UnicodeDecodeError, RecursionError) as e:
            raise DecodeError(f"invalid message document: {e}") from e

        if not isinstance(doc, dict):
            raise DecodeError("message document is not an object")

        msg_type = doc.get("type", "")
        if not isinstance(msg_type, str):
            raise DecodeError(
                f"cannot unmarshal {type(msg_type).__name__} into message type"
            )

        payload = json.dumps(
            doc.get("payload"), ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8")
        return Message.from_raw(msg_type, payload)
