from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from modqueue.reports.domain.models import Candidate, Reason, Room, suspect_of, system_reporter_of
from modqueue.reports.domain.snoozer import MAX_SNOOZE, parse_snooze_duration


@pytest.mark.asyncio
async def test_open_and_recent_orders_by_urgency(engine, file_report, presence, mod1) -> None:
    await file_report("alice", "bob", transform=lambda score: 50)
    await file_report("alice", "carol", transform=lambda score: 70)
    await file_report("alice", "dave", Reason.COMM, transform=lambda score: 20)
    presence.online.add("bob")

    listed = await engine.queries.open_and_recent(mod1, None, 10)

    assert [item.suspect.id for item in listed] == ["bob", "carol", "dave"]
    assert listed[0].online is True
    assert listed[0].urgency == 1050


@pytest.mark.asyncio
async def test_open_and_recent_backfills_with_closed_reports(engine, file_report, mod1) -> None:
    closed = await file_report("alice", "bob")
    await engine.intake.process(closed, mod1)
    await file_report("alice", "carol")

    listed = await engine.queries.open_and_recent(mod1, Room.CHEAT, 10)
    assert [item.report.open for item in listed] == [True, False]
    assert listed[1].urgency < 0

    limited = await engine.queries.open_and_recent(mod1, Room.CHEAT, 1)
    assert [item.suspect.id for item in limited] == ["carol"]


@pytest.mark.asyncio
async def test_claimed_reports_are_not_listed_as_open(engine, file_report, mod1, mod2) -> None:
    report = await file_report("alice", "bob")
    await engine.inquiries.toggle(report.id, mod1)

    listed = await engine.queries.open_and_recent(mod2, Room.CHEAT, 10)

    assert listed == []


@pytest.mark.asyncio
async def test_xfiles_is_listed_only_on_request(engine, file_report, repo, mod1) -> None:
    report = await file_report("alice", "bob", Reason.OTHER)
    await repo.upsert(replace(report, room=Room.XFILES))
    closed = await file_report("alice", "carol", Reason.OTHER)
    await engine.intake.process(closed, mod1)

    default = await engine.queries.open_and_recent(mod1, None, 10)
    assert [item.suspect.id for item in default] == ["carol"]

    xfiles = await engine.queries.open_and_recent(mod1, Room.XFILES, 10)
    assert [item.suspect.id for item in xfiles] == ["bob"]


@pytest.mark.asyncio
async def test_snooze_hides_a_report_from_one_moderator(engine, file_report, mod1, mod2) -> None:
    top = await file_report("alice", "bob", transform=lambda score: 80)
    other = await file_report("alice", "carol", transform=lambda score: 40)

    claimed = await engine.snooze(top.id, mod1, "1h")

    assert claimed.id == other.id
    for_mod1 = await engine.queries.open_and_recent(mod1, Room.CHEAT, 10)
    assert top.id not in [item.report.id for item in for_mod1 if item.report.open]
    for_mod2 = await engine.queries.open_and_recent(mod2, Room.CHEAT, 10)
    assert [item.report.id for item in for_mod2] == [top.id]


@pytest.mark.asyncio
async def test_snooze_unknown_report(engine, mod1) -> None:
    assert await engine.snooze("missing", mod1, "20m") is None


def test_snooze_durations() -> None:
    assert parse_snooze_duration("20m") == timedelta(minutes=20)
    assert parse_snooze_duration("1h") == timedelta(hours=1)
    assert parse_snooze_duration("3d") == timedelta(days=3)
    assert parse_snooze_duration("1w") == timedelta(weeks=1)
    assert parse_snooze_duration("52w") == MAX_SNOOZE
    with pytest.raises(ValueError):
        parse_snooze_duration("soon")
    with pytest.raises(ValueError):
        parse_snooze_duration(timedelta(0))


@pytest.mark.asyncio
async def test_suspect_history_reads(engine, file_report, users) -> None:
    bob = suspect_of(users.users["bob"])
    await file_report("alice", "bob", Reason.CHEAT, transform=lambda score: 64)
    await file_report("carol", "bob", Reason.COMM)
    await file_report("bob", "dave", Reason.COMM)
    system = system_reporter_of(users.users["system"])
    await engine.intake.create(Candidate(reporter=system, suspect=bob, reason=Reason.BOOST, text="auto"))

    assert await engine.queries.current_cheat_score(bob) == 64
    assert await engine.queries.current_cheat_score(suspect_of(users.users["carol"])) is None
    assert sorted(await engine.queries.recent_reporters_of(bob)) == ["alice", "carol"]

    recent = await engine.queries.recent(bob, 2)
    assert len(recent) == 2
    more = await engine.queries.more_like(recent[0], 10)
    assert recent[0].id not in [report.id for report in more]
    assert len(more) == 2

    by_and_about = await engine.queries.by_and_about(users.users["bob"], 10)
    assert [report.user for report in by_and_about.by] == ["dave"]
    assert len(by_and_about.about) == 3
