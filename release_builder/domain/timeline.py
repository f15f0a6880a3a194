"""Shared build log entry helper utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from .models import LogCategory, LogEntry, LogLevel


def domain_build_log_entry(
    build_id: UUID,
    category: LogCategory,
    content: str,
    level: LogLevel = LogLevel.INFO,
) -> LogEntry:
    """Build one structured log entry with a wall-clock prefix.

    Args:
        build_id: Owning build identity.
        category: Pipeline stage category.
        content: Log text.
        level: Severity.

    Returns:
        LogEntry: Structured log entry stamped with the current UTC time.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    created_at_utc = datetime.now(timezone.utc)
    timestamp = created_at_utc.strftime("%H:%M:%S.%f")[:-3]
    return LogEntry(
        build_id=build_id,
        category=category,
        level=level,
        content=f"[{timestamp}] {content}",
        created_at_utc=created_at_utc,
    )
