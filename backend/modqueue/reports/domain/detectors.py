"""Automated report producers built on top of the intake pipeline."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from modqueue.obs import metrics as obs_metrics
from modqueue.reports.domain.collaborators import LoginsDirectory, PlaybanLedger
from modqueue.reports.domain.intake import ReportIntake
from modqueue.reports.domain.models import COMM_FLAG_TEXT, Candidate, Reason, Suspect, suspect_of
from modqueue.reports.domain.queries import select_recent
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.scoring import ScoreTransform
from modqueue.reports.domain.selectors import ReportSelector, ReportSort

logger = logging.getLogger(__name__)


def top_k_sum(values: Iterable[int], k: int) -> int:
    """Sum of the ``k`` largest values, selected with a bounded heap."""

    if k <= 0:
        return 0
    return sum(heapq.nlargest(k, values))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AutoReporter:
    """Detector entry points that file reports as the system reporter."""

    intake: ReportIntake
    logins: LoginsDirectory
    playbans: PlaybanLedger
    playban_min_bans: int = 4
    playban_top_k: int = 10
    playban_escalation_sum: int = 80
    playban_min_minutes: int = 60 * 24
    clock: Callable[[], datetime] = _utcnow

    @property
    def repository(self) -> ReportRepository:
        return self.intake.repository

    async def _file(self, suspect: Suspect, reason: Reason, text: str, transform: ScoreTransform | None = None) -> bool:
        reporter = await self.intake.system_reporter()
        candidate = Candidate(reporter=reporter, suspect=suspect, reason=reason, text=text)
        return await self.intake.create(candidate, transform)

    async def auto_comm_report(self, user_id: str, text: str, *, critical: bool = False) -> bool:
        suspect = await self.intake.get_suspect(user_id)
        if suspect is None:
            return False
        return await self._file(suspect, Reason.COMM, text, _critical(critical))

    async def auto_comm_flag(self, user_id: str, resource: str, text: str, *, critical: bool = False) -> bool:
        suspect = await self.intake.get_suspect(user_id)
        if suspect is None:
            return False
        return await self._file(suspect, Reason.COMM, f"{COMM_FLAG_TEXT} {resource} {text[:140]}", _critical(critical))

    async def auto_alt_print_report(self, user_id: str) -> bool:
        # only report once
        if await self.repository.exists(ReportSelector(user=user_id, reason=Reason.ALT_PRINT)):
            return False
        suspect = await self.intake.get_suspect(user_id)
        if suspect is None:
            return False
        return await self._file(suspect, Reason.ALT_PRINT, "Shares print with suspicious accounts")

    async def auto_cheat_report(self, user_id: str, text: str) -> bool:
        """File a cheat report unless the latest recent one already came from the system."""

        suspect = await self.intake.get_suspect(user_id)
        if suspect is None:
            return False
        recent = await self.repository.find(
            select_recent(user_id, Reason.CHEAT, now=self.clock()), sort=ReportSort.LAST_ATOM_DESC, limit=1
        )
        system_id = self.intake.system_user_id
        if not all(atom.by_human(system_id) for report in recent for atom in report.atoms):
            return False
        obs_metrics.CHEAT_AUTO_REPORT_TOTAL.inc()
        return await self._file(suspect, Reason.CHEAT, text)

    async def auto_cheat_detected_report(self, user_id: str, cheated_games: int) -> bool:
        user = await self.intake.users.by_id(user_id)
        if user is None or user.engine:
            return False
        obs_metrics.CHEAT_AUTO_REPORT_TOTAL.inc()
        return await self._file(
            suspect_of(user),
            Reason.CHEAT,
            f"{cheated_games} cheat detected in the last 6 months; last one is correspondence",
        )

    async def auto_bot_report(self, user_id: str, referer: Optional[str], name: str) -> bool:
        suspect = await self.intake.get_suspect(user_id)
        if suspect is None:
            return False
        return await self._file(suspect, Reason.CHEAT, f"{name} bot detected on {referer or '?'}")

    async def auto_boost_report(self, winner_id: str, loser_id: str, seriousness: int) -> bool:
        """``seriousness`` grows with previous warnings and the number of games thrown."""

        winner = await self.intake.users.by_id(winner_id)
        loser = await self.intake.users.by_id(loser_id)
        if winner is None or loser is None or winner.lame or loser.lame:
            return False
        same = await self.logins.share_ip_or_print(winner_id, loser_id)
        logins_text = "Found matching IP/print" if same else "No IP/print match found"
        return await self._file(
            suspect_of(winner),
            Reason.BOOST,
            f"Boosting: farms rating points from @{loser.username} ({logins_text})",
            _plus(seriousness),
        )

    async def auto_sandbag_report(self, winner_ids: list[str], loser_id: str, seriousness: int) -> bool:
        loser = await self.intake.users.by_id(loser_id)
        if loser is None or loser.lame:
            return False
        winners = " ".join(f"@{winner_id}" for winner_id in winner_ids)
        return await self._file(
            suspect_of(loser),
            Reason.BOOST,
            f"Sandbagging: throws games to {winners}",
            _plus(seriousness),
        )

    async def maybe_auto_playban_report(self, user_id: str, minutes: int) -> bool:
        """Escalate ban evasion across accounts sharing IP and device print."""

        if minutes <= self.playban_min_minutes:
            return False
        linked = await self.logins.users_with_same_ip_and_print(user_id)
        counts = await self.playbans.bans([user_id, *sorted(linked)])
        heavy = {account: bans for account, bans in counts.items() if bans > self.playban_min_bans}
        if top_k_sum(heavy.values(), self.playban_top_k) < self.playban_escalation_sum:
            return False
        abuser = await self.intake.get_suspect(user_id)
        if abuser is None:
            return False
        if await self.repository.exists(select_recent(user_id, Reason.PLAYBANS, now=self.clock())):
            return False
        logger.info("playban escalation", extra={"suspect_id": user_id, "accounts": len(heavy)})
        return await self._file(
            abuser,
            Reason.PLAYBANS,
            f"{sum(heavy.values())} playbans over {len(heavy)} accounts with IP+Print match.",
        )


def _critical(critical: bool) -> ScoreTransform:
    factor = 2 if critical else 1
    return lambda score: score * factor


def _plus(seriousness: int) -> ScoreTransform:
    return lambda score: score + seriousness
