"""Process-local aggregate caches: room priority scores and reporter accuracy."""

from __future__ import annotations

import asyncio
import math
import time
from collections import OrderedDict
from typing import Callable, Optional

from modqueue.obs import metrics as obs_metrics
from modqueue.reports.domain.collaborators import UserDirectory
from modqueue.reports.domain.models import Accuracy, Candidate, Room, RoomScores
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.selectors import ReportSelector, ReportSort

Clock = Callable[[], float]

ACCURACY_SAMPLE_SIZE = 20
ACCURACY_MIN_REPORTS = 4


def open_available_selector(room: Optional[Room], except_ids: tuple[str, ...] = ()) -> ReportSelector:
    """Open reports nobody is inquiring, in ``room`` or every room but xfiles."""

    rooms = (room,) if room is not None else Room.all_but_xfiles()
    return ReportSelector(open=True, rooms=rooms, has_inquiry=False, exclude_ids=except_ids)


class RoomScoreCache:
    """Highest open unclaimed score per room, refreshed lazily.

    ``invalidate`` bumps a generation counter; a refresh that started before the
    bump does not store its result, so the next read recomputes.
    """

    def __init__(self, repository: ReportRepository, *, ttl: float = 300.0, clock: Clock = time.monotonic) -> None:
        self._repo = repository
        self._ttl = ttl
        self._clock = clock
        self._value: RoomScores | None = None
        self._expires_at = 0.0
        self._generation = 0
        self._lock = asyncio.Lock()

    def _fresh(self) -> RoomScores | None:
        if self._value is not None and self._clock() < self._expires_at:
            return self._value
        return None

    def invalidate(self) -> None:
        self._generation += 1
        self._value = None

    async def get(self) -> RoomScores:
        cached = self._fresh()
        if cached is not None:
            return cached
        async with self._lock:
            cached = self._fresh()
            if cached is not None:
                return cached
            generation = self._generation
            scores = await self._compute()
            if generation == self._generation:
                self._value = scores
                self._expires_at = self._clock() + self._ttl
            return scores

    async def _compute(self) -> RoomScores:
        start = time.perf_counter()
        rooms = Room.all_but_xfiles()
        best = await asyncio.gather(
            *(self._repo.find(open_available_selector(room), sort=ReportSort.SCORE_DESC, limit=1) for room in rooms)
        )
        scores = RoomScores({room: int(found[0].score) if found else 0 for room, found in zip(rooms, best)})
        for room, score in scores.scores.items():
            obs_metrics.REPORT_HIGHEST_SCORE.labels(room=room.value).set(score)
        obs_metrics.ROOM_SCORE_REFRESH_SECONDS.observe(time.perf_counter() - start)
        return scores


def accuracy_from_counts(engines: int, subjects: int) -> int:
    """Laplace-smoothed share of reported subjects later marked as engines."""

    return math.floor(100 * (engines + 0.5) / (subjects + 2) + 0.5)


class AccuracyCache:
    """Per-reporter reliability of past cheat reports, bounded and time-limited."""

    def __init__(
        self,
        repository: ReportRepository,
        users: UserDirectory,
        *,
        ttl: float = 86400.0,
        max_size: int = 512,
        clock: Clock = time.monotonic,
    ) -> None:
        self._repo = repository
        self._users = users
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Accuracy]] = OrderedDict()
        self._epoch = 0

    async def of(self, reporter_id: str) -> Accuracy:
        entry = self._entries.get(reporter_id)
        if entry is not None and self._clock() < entry[0]:
            self._entries.move_to_end(reporter_id)
            return entry[1]
        epoch = self._epoch
        value = await self.compute(reporter_id)
        if epoch == self._epoch:
            self._store(reporter_id, value)
        return value

    async def for_candidate(self, candidate: Candidate) -> Accuracy:
        if not candidate.is_cheat:
            return None
        return await self.of(candidate.reporter.id)

    async def compute(self, reporter_id: str) -> Accuracy:
        reports = await self._repo.find(
            ReportSelector(atom_by=reporter_id, rooms=(Room.CHEAT,), open=False),
            sort=ReportSort.LAST_ATOM_DESC,
            limit=ACCURACY_SAMPLE_SIZE,
        )
        if len(reports) < ACCURACY_MIN_REPORTS:
            return None
        subjects = list(dict.fromkeys(report.user for report in reports))
        engines = await self._users.count_engines(subjects)
        return accuracy_from_counts(engines, len(subjects))

    def invalidate(self, reporter_id: str) -> None:
        self._epoch += 1
        self._entries.pop(reporter_id, None)

    async def invalidate_selector(self, selector: ReportSelector) -> list[str]:
        reporter_ids = await self._repo.distinct_reporters(selector)
        for reporter_id in reporter_ids:
            self.invalidate(reporter_id)
        return reporter_ids

    def _store(self, reporter_id: str, value: Accuracy) -> None:
        self._entries[reporter_id] = (self._clock() + self._ttl, value)
        self._entries.move_to_end(reporter_id)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)
