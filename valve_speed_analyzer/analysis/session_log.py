from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Literal


Level = Literal["info", "warning", "error"]


@dataclass
class LogEntry:
    level: Level
    message: str
    count: int = 1


class SessionLog:
    """
    In-memory operator log for a speed-check session.

    Features:
      - levels info / warning / error
      - coalescing of consecutive identical messages (count > 1)
      - bounded history (drops oldest entries beyond max_entries)

    Subclasses render the log by overriding :meth:`_changed`.
    """

    def __init__(self, *, max_entries: int = 2000) -> None:
        self._entries: List[LogEntry] = []
        self._max_entries = int(max_entries)

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def messages(self, level: Level | None = None) -> List[str]:
        return [e.message for e in self._entries if level is None or e.level == level]

    def clear(self) -> None:
        self._entries.clear()
        self._changed()

    def info(self, message: str) -> None:
        self._add("info", message)

    def warning(self, message: str) -> None:
        self._add("warning", message)

    def error(self, message: str) -> None:
        self._add("error", message)

    # -------------------------
    # Internals
    # -------------------------
    def _add(self, level: Level, message: str) -> None:
        msg = "" if message is None else str(message)

        # Coalesce consecutive duplicates
        if self._entries and self._entries[-1].level == level and self._entries[-1].message == msg:
            self._entries[-1].count += 1
            self._changed()
            return

        self._entries.append(LogEntry(level=level, message=msg, count=1))
        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries :]
        self._changed()

    def _changed(self) -> None:
        pass
