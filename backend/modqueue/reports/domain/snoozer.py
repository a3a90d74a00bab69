"""Moderator-local snoozes: hide one report from one moderator for a while."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Protocol

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$", re.IGNORECASE)
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}

MAX_SNOOZE = timedelta(days=30)


def parse_snooze_duration(value: str | timedelta) -> timedelta:
    """Parse ``"20m"``, ``"1h"``, ``"3d"`` or ``"1w"`` into a timedelta."""

    if isinstance(value, timedelta):
        duration = value
    else:
        match = _DURATION_RE.match(value or "")
        if not match:
            raise ValueError(f"invalid snooze duration: {value!r}")
        amount, unit = int(match.group(1)), match.group(2).lower()
        duration = timedelta(**{_UNITS[unit]: amount})
    if duration <= timedelta(0):
        raise ValueError("snooze duration must be positive")
    return min(duration, MAX_SNOOZE)


class Snoozer(Protocol):
    async def snooze(self, mod_id: str, report_id: str, duration: timedelta) -> None:
        ...

    async def snoozed_report_ids(self, mod_id: str) -> list[str]:
        ...


class InMemorySnoozer(Snoozer):
    def __init__(self) -> None:
        self.entries: dict[tuple[str, str], datetime] = {}

    async def snooze(self, mod_id: str, report_id: str, duration: timedelta) -> None:
        self.entries[(mod_id, report_id)] = datetime.now(timezone.utc) + duration

    async def snoozed_report_ids(self, mod_id: str) -> list[str]:
        now = datetime.now(timezone.utc)
        expired = [key for key, until in self.entries.items() if until <= now]
        for key in expired:
            del self.entries[key]
        return [report_id for (owner, report_id) in self.entries if owner == mod_id]
