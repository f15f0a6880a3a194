"""Append-only in-memory build log buffer."""

from __future__ import annotations

import threading
from uuid import UUID

from release_builder.domain import LogCategory, LogEntry, LogLevel


class BuildLogBuffer:
    """Lock-guarded append-only collection of build log entries.

    Instances are callable so they can be passed directly as a log sink.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[LogEntry] = []

    def __call__(self, entry: LogEntry) -> None:
        self.buffer_append(entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def buffer_append(self, entry: LogEntry) -> None:
        """Append one log entry.

        Args:
            entry: Log entry to append.

        Returns:
            None: Entry is stored as side effect.

        Raises:
            ValueError: Raised when entry is None.
        """

        if entry is None:
            raise ValueError("entry must not be None")
        with self._lock:
            self._entries.append(entry)

    def buffer_snapshot(
        self,
        build_id: UUID | None = None,
        category: LogCategory | None = None,
        level: LogLevel | None = None,
    ) -> tuple[LogEntry, ...]:
        """Return a copy of stored entries in append order, optionally filtered.

        Args:
            build_id: Optional owning build filter.
            category: Optional stage category filter.
            level: Optional severity filter.

        Returns:
            tuple[LogEntry, ...]: Matching entries.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        with self._lock:
            entries = tuple(self._entries)
        return tuple(
            entry
            for entry in entries
            if (build_id is None or entry.build_id == build_id)
            and (category is None or entry.category is category)
            and (level is None or entry.level is level)
        )
