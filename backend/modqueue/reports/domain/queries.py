"""Read side: moderator queues, suspect history and priority lookups."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from modqueue.reports.domain.caching import RoomScoreCache, open_available_selector
from modqueue.reports.domain.collaborators import PresenceOracle, UserDirectory
from modqueue.reports.domain.models import (
    ByAndAbout,
    Mod,
    Reason,
    Report,
    ReportWithSuspect,
    Room,
    RoomScores,
    Suspect,
    User,
)
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.selectors import ReportSelector, ReportSort
from modqueue.reports.domain.snoozer import Snoozer


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rooms_for(room: Optional[Room]) -> tuple[Room, ...]:
    return (room,) if room is not None else Room.all_but_xfiles()


def select_recent(suspect_id: str, reason: Reason, *, now: datetime, days: int = 7) -> ReportSelector:
    return ReportSelector(user=suspect_id, reason=reason, last_atom_after=now - timedelta(days=days))


@dataclass
class ReportQueries:
    repository: ReportRepository
    users: UserDirectory
    presence: PresenceOracle
    snoozer: Snoozer
    room_scores: RoomScoreCache
    system_user_id: str = "system"
    clock: Callable[[], datetime] = _utcnow

    async def by_id(self, report_id: str) -> Report | None:
        return await self.repository.find_one(ReportSelector.by_id(report_id))

    async def find_recent(self, limit: int, selector: ReportSelector) -> list[Report]:
        if limit <= 0:
            return []
        return await self.repository.find(selector, sort=ReportSort.LAST_ATOM_DESC, limit=limit)

    async def find_best(self, limit: int, selector: ReportSelector) -> list[Report]:
        if limit <= 0:
            return []
        return await self.repository.find(selector, sort=ReportSort.SCORE_DESC, limit=limit)

    async def recent(self, suspect: Suspect, limit: int) -> list[Report]:
        return await self.find_recent(limit, ReportSelector(user=suspect.id))

    async def recent_by_suspect(self, suspect: Suspect, limit: int) -> list[Report]:
        return await self.recent(suspect, limit)

    async def more_like(self, report: Report, limit: int) -> list[Report]:
        return await self.find_recent(limit, ReportSelector(user=report.user, exclude_ids=(report.id,)))

    async def by_and_about(self, user: User, limit: int) -> ByAndAbout:
        by, about = await asyncio.gather(
            self.find_recent(limit, ReportSelector(atom_by=user.id)),
            self.find_recent(limit, ReportSelector(user=user.id)),
        )
        return ByAndAbout(by=by, about=about)

    async def current_cheat_report(self, suspect: Suspect) -> Report | None:
        return await self.repository.find_one(ReportSelector(user=suspect.id, rooms=(Room.CHEAT,), open=True))

    async def current_cheat_score(self, suspect: Suspect) -> float | None:
        report = await self.current_cheat_report(suspect)
        return report.score if report else None

    async def recent_reporters_of(self, suspect: Suspect, *, days: int = 3) -> list[str]:
        selector = ReportSelector(user=suspect.id, last_atom_after=self.clock() - timedelta(days=days))
        reporter_ids = await self.repository.distinct_reporters(selector)
        return [reporter_id for reporter_id in reporter_ids if reporter_id != self.system_user_id]

    async def max_scores(self) -> RoomScores:
        return await self.room_scores.get()

    async def snoozed_ids(self, mod: Mod) -> tuple[str, ...]:
        return tuple(await self.snoozer.snoozed_report_ids(mod.id))

    async def find_next(self, room: Room, mod: Mod) -> Report | None:
        """Best open, unclaimed report in ``room`` that ``mod`` has not snoozed."""

        snoozed = await self.snoozed_ids(mod)
        best = await self.find_best(1, open_available_selector(room, snoozed))
        return best[0] if best else None

    async def open_and_recent(self, mod: Mod, room: Optional[Room], limit: int) -> list[ReportWithSuspect]:
        """Open reports first by score, then recently closed ones as backfill."""

        snoozed = await self.snoozed_ids(mod)
        opens = await self.find_best(limit, open_available_selector(room, snoozed))
        missing = limit - len(opens)
        closed: list[Report] = []
        if room is not Room.XFILES and missing > 0:
            closed = await self.find_recent(missing, ReportSelector(open=False, rooms=rooms_for(room)))
        return await self.with_suspects(opens + closed)

    async def with_suspects(self, reports: list[Report]) -> list[ReportWithSuspect]:
        user_ids = list(dict.fromkeys(report.user for report in reports))
        users = await asyncio.gather(*(self.users.by_id(user_id) for user_id in user_ids))
        found = {user.id: user for user in users if user is not None}
        online = await asyncio.gather(*(self.presence.is_online(user_id) for user_id in found))
        presence = dict(zip(found, online))
        enriched = [
            ReportWithSuspect(report=report, suspect=found[report.user], online=presence[report.user])
            for report in reports
            if report.user in found
        ]
        enriched.sort(key=lambda item: -item.urgency)
        return enriched
