from __future__ import annotations
import re
import sys
from typing import IO, Any, Optional, TextIO

from frames import INT_MAX, INT_MIN, TYPE_BOOL, TYPE_INT, Value


INT_TEXT = re.compile(r"^[+-]?[0-9]+$")


class InputChannel:
    """Line-buffered reader backing READ. ``None`` means the value is missing."""

    def __init__(self, stream: Optional[IO[Any]] = None) -> None:
        self.stream = stream if stream is not None else sys.stdin

    def _read_line(self) -> Optional[str]:
        try:
            raw = self.stream.readline()
        except UnicodeDecodeError:
            return None
        if not raw:
            return None
        if isinstance(raw, bytes):
            # Binary streams are decoded one line at a time; an undecodable line is missing.
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                return None
        else:
            line = raw
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        return line

    def read_string(self) -> Optional[str]:
        return self._read_line()

    def read_int(self) -> Optional[int]:
        line = self._read_line()
        if line is None:
            return None
        text = line.strip()
        if not INT_TEXT.match(text):
            return None
        number = int(text, 10)
        if not INT_MIN <= number <= INT_MAX:
            return None
        return number

    def read_bool(self) -> Optional[bool]:
        line = self._read_line()
        if line is None:
            return None
        return line.strip().lower() == "true"


class OutputChannel:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream if stream is not None else sys.stdout

    def write_string(self, text: str) -> None:
        self.stream.write(text)

    def write_int(self, number: int) -> None:
        self.stream.write(str(number))

    def write_bool(self, flag: bool) -> None:
        self.stream.write("true" if flag else "false")

    def write_value(self, value: Value) -> None:
        if value.type == TYPE_INT:
            self.write_int(value.value)
        elif value.type == TYPE_BOOL:
            self.write_bool(value.value)
        else:
            self.write_string(value.render())

    def flush(self) -> None:
        self.stream.flush()
