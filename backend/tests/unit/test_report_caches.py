from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from modqueue.reports.domain.caching import AccuracyCache, RoomScoreCache, accuracy_from_counts
from modqueue.reports.domain.collaborators import InMemoryUserDirectory
from modqueue.reports.domain.models import (
    Atom,
    Candidate,
    Done,
    Inquiry,
    Reason,
    Report,
    Room,
    User,
    reporter_of,
    suspect_of,
)
from modqueue.reports.domain.repository import InMemoryReportRepository

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _report(
    report_id: str,
    suspect: str,
    *,
    by: str = "alice",
    reason: Reason = Reason.CHEAT,
    score: float = 30.0,
    open: bool = True,
    minutes: int = 0,
) -> Report:
    at = T0 + timedelta(minutes=minutes)
    return Report(
        id=report_id,
        user=suspect,
        reason=reason,
        room=reason.room,
        score=score,
        open=open,
        atoms=(Atom(by=by, text="evidence", score=score, at=at),),
        done=None if open else Done(by="mod1", at=at),
    )


def test_accuracy_formula() -> None:
    assert accuracy_from_counts(0, 0) == 25
    assert accuracy_from_counts(2, 4) == 42
    assert accuracy_from_counts(4, 4) == 75
    assert accuracy_from_counts(0, 4) == 8


@pytest.mark.asyncio
async def test_accuracy_needs_enough_closed_cheat_reports() -> None:
    repo = InMemoryReportRepository()
    users = InMemoryUserDirectory([User(id=f"s{index}", username=f"s{index}", engine=index < 2) for index in range(5)])
    for index in range(3):
        await repo.upsert(_report(f"r{index}", f"s{index}", open=False, minutes=index))
    # open and non-cheat reports do not count
    await repo.upsert(_report("open", "s3"))
    await repo.upsert(_report("comm", "s4", reason=Reason.COMM, open=False))
    cache = AccuracyCache(repo, users)

    assert await cache.compute("alice") is None

    await repo.upsert(_report("r3", "s3", open=False, minutes=3))
    assert await cache.compute("alice") == 42


@pytest.mark.asyncio
async def test_accuracy_counts_each_subject_once() -> None:
    repo = InMemoryReportRepository()
    users = InMemoryUserDirectory([User(id="cheater", username="cheater", engine=True), User(id="clean", username="clean")])
    for index in range(3):
        await repo.upsert(_report(f"c{index}", "cheater", open=False, minutes=index))
    await repo.upsert(_report("k", "clean", open=False, minutes=5))

    cache = AccuracyCache(repo, users)

    # one engine among two distinct subjects
    assert await cache.compute("alice") == accuracy_from_counts(1, 2)


@pytest.mark.asyncio
async def test_accuracy_cache_ttl_and_invalidation() -> None:
    repo = InMemoryReportRepository()
    users = InMemoryUserDirectory([User(id=f"s{index}", username=f"s{index}", engine=True) for index in range(6)])
    for index in range(4):
        await repo.upsert(_report(f"r{index}", f"s{index}", open=False, minutes=index))
    clock = FakeClock()
    cache = AccuracyCache(repo, users, ttl=60.0, clock=clock)

    assert await cache.of("alice") == accuracy_from_counts(4, 4)

    await repo.upsert(_report("r4", "s4", open=False, minutes=4))
    assert await cache.of("alice") == accuracy_from_counts(4, 4)

    cache.invalidate("alice")
    assert await cache.of("alice") == accuracy_from_counts(5, 5)

    await repo.upsert(_report("r5", "s5", open=False, minutes=5))
    clock.now += 61
    assert await cache.of("alice") == accuracy_from_counts(6, 6)


@pytest.mark.asyncio
async def test_accuracy_only_applies_to_cheat_candidates() -> None:
    repo = InMemoryReportRepository()
    users = InMemoryUserDirectory([User(id="alice", username="alice"), User(id="bob", username="bob")])
    cache = AccuracyCache(repo, users)
    candidate = Candidate(
        reporter=reporter_of(users.users["alice"]),
        suspect=suspect_of(users.users["bob"]),
        reason=Reason.COMM,
        text="rude",
    )

    assert await cache.for_candidate(candidate) is None


@pytest.mark.asyncio
async def test_accuracy_cache_is_bounded() -> None:
    repo = InMemoryReportRepository()
    cache = AccuracyCache(repo, InMemoryUserDirectory(), max_size=2)

    for reporter in ("a", "b", "c"):
        await cache.of(reporter)

    assert list(cache._entries) == ["b", "c"]


@pytest.mark.asyncio
async def test_room_scores_cache_until_ttl_or_invalidation() -> None:
    repo = InMemoryReportRepository()
    await repo.upsert(_report("cheat", "bob", score=45))
    await repo.upsert(_report("comm", "bob", reason=Reason.COMM, score=12))
    clock = FakeClock()
    cache = RoomScoreCache(repo, ttl=30.0, clock=clock)

    scores = await cache.get()
    assert scores.get(Room.CHEAT) == 45
    assert scores.get(Room.COMM) == 12
    assert scores.get(Room.PRINT) == 0
    assert scores.highest == 45

    await repo.upsert(_report("cheat2", "carol", score=70))
    assert (await cache.get()).get(Room.CHEAT) == 45

    clock.now += 31
    assert (await cache.get()).get(Room.CHEAT) == 70

    await repo.upsert(_report("cheat3", "dave", score=90))
    cache.invalidate()
    assert (await cache.get()).get(Room.CHEAT) == 90


@pytest.mark.asyncio
async def test_room_scores_ignore_closed_and_claimed_reports() -> None:
    repo = InMemoryReportRepository()
    await repo.upsert(_report("closed", "bob", score=99, open=False))
    claimed = _report("claimed", "carol", score=80)
    await repo.upsert(claimed.with_inquiry(Inquiry(mod="mod1", seen_at=T0)))
    await repo.upsert(replace(_report("xfiles", "dave", reason=Reason.OTHER, score=95), room=Room.XFILES))
    await repo.upsert(_report("open", "erin", score=10))

    scores = await RoomScoreCache(repo).get()

    assert scores.get(Room.CHEAT) == 10
    assert Room.XFILES not in scores.scores


class GatedRepository(InMemoryReportRepository):
    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def find(self, selector, *, sort, limit=None):
        await self.gate.wait()
        return await super().find(selector, sort=sort, limit=limit)


@pytest.mark.asyncio
async def test_refresh_racing_an_invalidation_is_not_stored() -> None:
    repo = GatedRepository()
    await repo.upsert(_report("cheat", "bob", score=20))
    cache = RoomScoreCache(repo, ttl=300.0)

    pending = asyncio.create_task(cache.get())
    for _ in range(5):
        await asyncio.sleep(0)
    await repo.upsert(_report("cheat2", "carol", score=60))
    cache.invalidate()
    repo.gate.set()

    stale = await pending
    assert stale.get(Room.CHEAT) in (20, 60)
    assert (await cache.get()).get(Room.CHEAT) == 60
