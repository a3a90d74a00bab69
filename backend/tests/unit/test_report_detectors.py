from __future__ import annotations

import pytest

from modqueue.reports.domain.detectors import top_k_sum
from modqueue.reports.domain.models import Reason, User
from modqueue.reports.domain.selectors import ReportSelector, ReportSort


def test_top_k_sum_selects_largest_values() -> None:
    heavy = [count for count in (2, 6, 9, 50, 100, 3) if count > 4]

    assert top_k_sum(heavy, 10) == 165
    assert top_k_sum(heavy, 2) == 150
    assert top_k_sum([], 10) == 0
    assert top_k_sum(heavy, 0) == 0


@pytest.mark.asyncio
async def test_playban_escalation_files_once(engine, logins, playbans, repo) -> None:
    logins.clusters.append({"bob", "l1", "l2", "l3", "l4", "l5"})
    playbans.counts.update({"bob": 2, "l1": 6, "l2": 9, "l3": 50, "l4": 100, "l5": 3})

    assert await engine.detectors.maybe_auto_playban_report("bob", minutes=2000)

    report = await repo.find_one(ReportSelector(user="bob", reason=Reason.PLAYBANS))
    assert report.atoms[0].by == "system"
    assert report.atoms[0].text == "165 playbans over 4 accounts with IP+Print match."

    # a playbans report already exists for this week
    assert await engine.detectors.maybe_auto_playban_report("bob", minutes=2000) is False


@pytest.mark.asyncio
async def test_playban_escalation_thresholds(engine, logins, playbans, repo) -> None:
    logins.clusters.append({"bob", "l1", "l2"})
    playbans.counts.update({"l1": 5, "l2": 60})

    # short bans never escalate
    assert await engine.detectors.maybe_auto_playban_report("bob", minutes=60) is False
    # 65 stays below the escalation sum
    assert await engine.detectors.maybe_auto_playban_report("bob", minutes=2000) is False
    assert await repo.exists(ReportSelector(reason=Reason.PLAYBANS)) is False


@pytest.mark.asyncio
async def test_auto_cheat_report_defers_to_existing_system_report(engine, repo, file_report) -> None:
    assert await engine.detectors.auto_cheat_report("bob", "suspicious accuracy")
    assert await engine.detectors.auto_cheat_report("bob", "suspicious again") is False

    # human-only reports still let the detector add its evidence
    await file_report("alice", "carol")
    assert await engine.detectors.auto_cheat_report("carol", "suspicious accuracy")
    report = await repo.find_one(ReportSelector(user="carol", reason=Reason.CHEAT))
    assert [atom.by for atom in report.atoms] == ["system", "alice"]


@pytest.mark.asyncio
async def test_auto_cheat_detected_skips_marked_engines(engine, users, repo) -> None:
    users.add(User(id="engine", username="engine", engine=True))

    assert await engine.detectors.auto_cheat_detected_report("engine", 3) is False
    assert await engine.detectors.auto_cheat_detected_report("bob", 3)

    report = await repo.find_one(ReportSelector(user="bob"))
    assert report.atoms[0].text.startswith("3 cheat detected")


@pytest.mark.asyncio
async def test_alt_print_reported_only_once(engine, repo, mod1) -> None:
    assert await engine.detectors.auto_alt_print_report("bob")

    report = await repo.find_one(ReportSelector(user="bob"))
    assert report.reason is Reason.ALT_PRINT
    await engine.intake.process(report, mod1)

    assert await engine.detectors.auto_alt_print_report("bob") is False


@pytest.mark.asyncio
async def test_boost_report_adds_seriousness(engine, users, logins, repo) -> None:
    logins.clusters.append({"bob", "carol"})
    users.add(User(id="booster", username="booster", boost=True))

    assert await engine.detectors.auto_boost_report("booster", "carol", 10) is False
    assert await engine.detectors.auto_boost_report("bob", "carol", 10)

    report = await repo.find_one(ReportSelector(user="bob"))
    assert report.reason is Reason.BOOST
    assert report.score == 25 + 15 + 10
    assert "Found matching IP/print" in report.atoms[0].text


@pytest.mark.asyncio
async def test_sandbag_report_targets_the_loser(engine, repo) -> None:
    assert await engine.detectors.auto_sandbag_report(["bob", "carol"], "dave", 5)

    report = await repo.find_one(ReportSelector(user="dave"))
    assert report.atoms[0].text == "Sandbagging: throws games to @bob @carol"


@pytest.mark.asyncio
async def test_critical_comm_report_doubles_the_score(engine, repo) -> None:
    assert await engine.detectors.auto_comm_report("bob", "insults", critical=True)
    assert await engine.detectors.auto_comm_flag("carol", "game/abc", "spam")
    assert await engine.detectors.auto_bot_report("dave", None, "stockfish")

    reports = {report.user: report for report in await repo.find(ReportSelector(), sort=ReportSort.SCORE_DESC)}
    assert reports["bob"].score == (30 + 15) * 2
    assert reports["carol"].score == 30 + 15 - 10
    assert reports["dave"].atoms[0].text == "stockfish bot detected on ?"


@pytest.mark.asyncio
async def test_detectors_ignore_unknown_users(engine) -> None:
    assert await engine.detectors.auto_comm_report("ghost", "insults") is False
    assert await engine.detectors.auto_bot_report("ghost", "site", "bot") is False
