"""
Clock port.

Supplies the instant used for record timestamps (`created_at`,
`updated_at`) and for the epoch prefix of stored object paths.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class ClockPort(Protocol):
    def now_utc(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...
