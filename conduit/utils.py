import threading
from contextlib import contextmanager
from datetime import datetime

import pytz
from uuid_extension import uuid7


def generate_conn_id() -> str:
    """Time-ordered connection id, unique within the process."""
    return f"conn_{uuid7()}"


def local_timestamp(tz_name: str = "UTC") -> str:
    dt = datetime.now(pytz.timezone(tz_name))
    milliseconds = dt.microsecond // 1000  # Convert microseconds to milliseconds
    dt = dt.replace(
        microsecond=milliseconds * 1000
    )  # Set precision to 3 decimal places
    return dt.isoformat()


def string_to_timestamp(s, tz_name: str = "UTC"):
    if s is None or s == "":
        return None

    s = s.strip()

    if " " in s:
        s = s.replace(" ", "T", 1)  # Replace first space with 'T'
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"  # Replace 'Z' with '+00:00'
    dt = datetime.fromisoformat(s)  # Parse ISO string
    return dt.astimezone(pytz.timezone(tz_name))


class RWLock:
    """Reader/writer lock: many concurrent readers or one writer.

    Writers are preferred once waiting so a steady stream of readers cannot
    starve registration.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
