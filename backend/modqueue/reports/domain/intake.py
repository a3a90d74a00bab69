"""Report intake: suppression, scoring, dedup/merge, persistence and closing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from modqueue.obs import logging as obs_logging
from modqueue.obs import metrics as obs_metrics
from modqueue.reports.domain.caching import AccuracyCache, RoomScoreCache
from modqueue.reports.domain.collaborators import AlertChannel, EventBus, UserDirectory
from modqueue.reports.domain.errors import SystemUserMissingError
from modqueue.reports.domain.models import (
    COMM_FLAG_TEXT,
    Candidate,
    Done,
    Mod,
    Reason,
    Report,
    Reporter,
    Room,
    Suspect,
    mod_of,
    suspect_of,
    system_reporter_of,
)
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.scoring import MergePolicy, Scorer, ScoreTransform, default_scorer, make_report
from modqueue.reports.domain.selectors import ReportPatch, ReportSelector, ReportSort

logger = logging.getLogger(__name__)

CHEAT_REPORT_TOPIC = "cheatReport"
RECENT_BY_SUSPECT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReportIntake:
    repository: ReportRepository
    users: UserDirectory
    room_scores: RoomScoreCache
    accuracy: AccuracyCache
    alerts: AlertChannel
    bus: EventBus
    scorer: Scorer = default_scorer
    merge_policy: MergePolicy = MergePolicy.MAX
    discord_threshold: int = 80
    system_user_id: str = "system"
    text_max_length: int = 1000
    clock: Callable[[], datetime] = _utcnow

    async def get_suspect(self, user_id: str) -> Optional[Suspect]:
        return suspect_of(await self.users.by_id(user_id))

    async def get_mod(self, user_id: str) -> Optional[Mod]:
        return mod_of(await self.users.by_id(user_id))

    async def system_mod(self) -> Mod:
        mod = await self.get_mod(self.system_user_id)
        if mod is None:
            raise SystemUserMissingError(f"system user {self.system_user_id!r} is missing or not a moderator")
        return mod

    async def system_reporter(self) -> Reporter:
        mod = await self.system_mod()
        return system_reporter_of(mod.user)

    async def create(self, candidate: Candidate, transform: ScoreTransform | None = None) -> bool:
        """Persist ``candidate`` as a new report or merge it into the open one.

        Returns False when the candidate is suppressed by policy.
        """

        if candidate.reporter.user.reportban:
            self._suppressed(candidate, "reportban")
            return False
        if candidate.is_already_slain():
            self._suppressed(candidate, "already_slain")
            return False
        if len(candidate.text) > self.text_max_length:
            candidate = replace(candidate, text=candidate.text[: self.text_max_length])

        accuracy = await self.accuracy.for_candidate(candidate)
        score = self.scorer(candidate, accuracy)
        if transform is not None:
            score = transform(score)
        scored = candidate.scored(score)

        previous = await self.repository.find_one(
            ReportSelector(user=candidate.suspect.id, reason=candidate.reason, open=True)
        )
        now = self.clock()
        report = make_report(scored, previous, now=now, policy=self.merge_policy)
        if previous is not None:
            # only score and atoms; claims belong to the inquiry sequencer
            merged = await self.repository.update_many(
                ReportSelector(ids=(previous.id,), open=True),
                ReportPatch(score=report.score, atoms=report.atoms),
            )
            if not merged:
                previous = None
                report = make_report(scored, None, now=now)
        if previous is None:
            await self.repository.upsert(report)

        obs_metrics.REPORT_CREATED_TOTAL.labels(reason=report.reason.value, score=str(int(scored.score))).inc()
        if (
            report.is_recent_comm
            and report.score >= self.discord_threshold
            and previous is not None
            and previous.score < self.discord_threshold
        ):
            await self._burst_alert(candidate.suspect, report)
        if report.is_cheat:
            await self._publish_cheat(report)
        self.room_scores.invalidate()
        return True

    async def create_from_setup(self, reporter: Reporter, suspect_id: str, reason_key: str, text: str) -> bool:
        """Intake for the user-facing report form."""

        reason = Reason.from_key(reason_key)
        if reason is None:
            return False
        suspect = await self.get_suspect(suspect_id)
        if suspect is None:
            return False
        return await self.create(Candidate(reporter=reporter, suspect=suspect, reason=reason, text=text))

    async def comm_flag(self, reporter: Reporter, suspect: Suspect, resource: str, text: str) -> bool:
        return await self.create(
            Candidate(
                reporter=reporter,
                suspect=suspect,
                reason=Reason.COMM,
                text=f"{COMM_FLAG_TEXT} {resource} {text[:140]}",
            )
        )

    async def process(self, report: Report, mod: Mod) -> None:
        """Close ``report`` as handled by ``mod``."""

        tokens = obs_logging.bind_context(mod_id=mod.id, report_id=report.id)
        try:
            selector = ReportSelector.by_id(report.id)
            await self.accuracy.invalidate_selector(selector)
            await self._close(selector, mod.id)
            self.room_scores.invalidate()
            obs_metrics.REPORT_CLOSED_TOTAL.labels(mode="manual").inc()
            logger.info("report processed", extra={"suspect_id": report.user, "reason": report.reason.value})
        finally:
            obs_logging.reset_context(tokens)

    async def auto_process(self, suspect: Suspect, rooms: Iterable[Room], by: Mod) -> int:
        """Close every open report about ``suspect`` in ``rooms``."""

        selector = ReportSelector(user=suspect.id, rooms=tuple(rooms), open=True)
        await self.accuracy.invalidate_selector(selector)
        closed = await self._close(selector, by.id)
        self.room_scores.invalidate()
        obs_metrics.REPORT_CLOSED_TOTAL.labels(mode="auto").inc()
        return closed

    async def process_and_get_by_suspect(self, suspect: Suspect) -> list[Report]:
        """Close the suspect's recent open reports as the system and return them."""

        recent = await self.repository.find(
            ReportSelector(user=suspect.id), sort=ReportSort.LAST_ATOM_DESC, limit=RECENT_BY_SUSPECT
        )
        opened = [report for report in recent if report.open]
        if opened:
            selector = ReportSelector.by_ids(report.id for report in opened)
            await self.accuracy.invalidate_selector(selector)
            await self._close(selector, self.system_user_id)
            self.room_scores.invalidate()
            obs_metrics.REPORT_CLOSED_TOTAL.labels(mode="system").inc()
        return opened

    async def reopen_reports(self, suspect: Suspect) -> int:
        """Reopen reports the system closed, unless the suspect is now sanctioned for them."""

        recent = await self.repository.find(
            ReportSelector(user=suspect.id), sort=ReportSort.LAST_ATOM_DESC, limit=RECENT_BY_SUSPECT
        )
        # at most one open report per reason; the newest closed one wins
        still_open = await self.repository.find(
            ReportSelector(user=suspect.id, open=True), sort=ReportSort.LAST_ATOM_DESC
        )
        taken = {report.reason for report in still_open}
        closed: list[Report] = []
        for report in recent:
            if (
                report.done is None
                or report.done.by != self.system_user_id
                or report.reason in taken
                or report.is_already_slain(suspect.user, self.system_user_id)
            ):
                continue
            taken.add(report.reason)
            closed.append(report)
        if not closed:
            return 0
        reopened = await self.repository.update_many(
            ReportSelector.by_ids(report.id for report in closed),
            ReportPatch(open=True, unset_done=True),
        )
        self.room_scores.invalidate()
        return reopened

    async def _close(self, selector: ReportSelector, by: str) -> int:
        return await self.repository.update_many(
            selector,
            ReportPatch(open=False, done=Done(by=by, at=self.clock()), unset_inquiry=True),
        )

    def _suppressed(self, candidate: Candidate, cause: str) -> None:
        obs_metrics.REPORT_SUPPRESSED_TOTAL.labels(reason=candidate.reason.value, cause=cause).inc()
        logger.debug(
            "report candidate suppressed",
            extra={"cause": cause, "suspect_id": candidate.suspect.id, "reporter_id": candidate.reporter.id},
        )

    async def _burst_alert(self, suspect: Suspect, report: Report) -> None:
        obs_metrics.REPORT_COMM_BURST_TOTAL.inc()
        logger.info("comm report burst", extra={"suspect_id": suspect.id, "score": report.score})
        try:
            await self.alerts.send_burst_alert(suspect.user)
        except Exception:  # noqa: BLE001 - alerts must not fail a persisted report
            logger.exception("failed to send comm burst alert", extra={"suspect_id": suspect.id})

    async def _publish_cheat(self, report: Report) -> None:
        try:
            await self.bus.publish(CHEAT_REPORT_TOPIC, {"user_id": report.user, "report_id": report.id})
        except Exception:  # noqa: BLE001 - the bus is best effort
            logger.exception("failed to publish cheat report", extra={"report_id": report.id})
