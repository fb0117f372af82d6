"""Output channel that captures `print` and `console.*` calls as log entries."""

from __future__ import annotations

import datetime
import decimal
import fractions
import json
import time
from collections import deque
from typing import Any

_SCALAR_TYPES = (
    str,
    int,
    float,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    decimal.Decimal,
    fractions.Fraction,
)
_STRUCTURED_TYPES = (dict, list, tuple)
# Longest single log entry; longer ones are clipped.
MAX_ENTRY_CHARS = 8192


def format_log_value(value: Any) -> str:
    """Convert one logged value into its string entry without raising.

    Example:
        ```python
        format_log_value({"a": 1})  # '{"a": 1}'
        ```
    """
    try:
        if value is None or isinstance(value, (bool, *_SCALAR_TYPES)):
            return str(value)
        if isinstance(value, BaseException):
            return f"{type(value).__name__}: {value}"
        if isinstance(value, _STRUCTURED_TYPES):
            return json.dumps(value, allow_nan=False)
    except Exception:  # caller-defined __str__ may raise
        return f"UnloggableValue: {type(value).__name__}"
    return f"UnloggableValue: {type(value).__name__}"


def clip_entry(entry: str, limit: int = MAX_ENTRY_CHARS) -> str:
    """Shorten an entry longer than `limit` characters, noting how much was cut.

    Example:
        ```python
        clip_entry("x" * 10, limit=4)  # "xxxx... [6 chars truncated]"
        ```
    """
    if len(entry) <= limit:
        return entry
    return f"{entry[:limit]}... [{len(entry) - limit} chars truncated]"


class ConsoleChannel:
    """Bounded FIFO sink for output produced inside the execution context.

    Pacing drops entries that arrive closer than `min_interval_ms` to the last
    accepted entry; it never blocks the caller.

    Example:
        ```python
        channel = ConsoleChannel(max_entries=200)
        ```
    """

    def __init__(self, max_entries: int, min_interval_ms: int = 0) -> None:
        """Create an empty channel.

        Example:
            ```python
            channel = ConsoleChannel(max_entries=5, min_interval_ms=10)
            ```
        """
        self._entries: deque[str] = deque(maxlen=max(1, int(max_entries)))
        self._min_interval = max(0, int(min_interval_ms)) / 1000
        self._last_accepted: float | None = None
        self.dropped = 0

    def reset(self) -> None:
        """Clear entries and counters before a new request.

        Example:
            ```python
            channel.reset()
            ```
        """
        self._entries.clear()
        self._last_accepted = None
        self.dropped = 0

    def write(self, *values: Any, sep: str = " ") -> None:
        """Record one entry built from `values`.

        Example:
            ```python
            channel.write("total", 3)
            ```
        """
        if self._min_interval:
            now = time.monotonic()
            if self._last_accepted is not None and now - self._last_accepted < self._min_interval:
                self.dropped += 1
                return
            self._last_accepted = now
        separator = sep if isinstance(sep, str) else " "
        self._entries.append(clip_entry(separator.join(format_log_value(value) for value in values)))

    def print(
        self,
        *values: Any,
        sep: str = " ",
        end: str = "\n",
        file: Any = None,
        flush: bool = False,
    ) -> None:
        """`print` replacement; `end`, `file` and `flush` are accepted and ignored.

        Example:
            ```python
            channel.print("a", "b", sep="-")
            ```
        """
        self.write(*values, sep=sep)

    def entries(self) -> list[str]:
        """Return entries in insertion order.

        Example:
            ```python
            logs = channel.entries()
            ```
        """
        return list(self._entries)


class ScriptConsole:
    """The `console` capability: every method writes to the channel.

    Example:
        ```python
        console = ScriptConsole(channel)
        ```
    """

    __slots__ = ("log", "info", "warn", "error", "debug")

    def __init__(self, channel: ConsoleChannel) -> None:
        """Bind the console methods to `channel.write`.

        Example:
            ```python
            ScriptConsole(ConsoleChannel(10)).log("hi")
            ```
        """
        for name in self.__slots__:
            object.__setattr__(self, name, channel.write)

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the console methods fixed.

        Example:
            ```python
            console.log = None  # raises AttributeError
            ```
        """
        raise AttributeError(f"console.{name} is read-only")
