"""Inquiry claims: which moderator is working which report.

Every mutating operation runs as one unit on an ``AsyncSequencer``. A unit
reads what it needs, then commits all of its writes with a single
``bulk_write``, so a unit that times out before committing changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from modqueue.obs import metrics as obs_metrics
from modqueue.reports.domain.caching import RoomScoreCache
from modqueue.reports.domain.models import (
    APPEAL_TEXT,
    SPONTANEOUS_TEXT,
    Candidate,
    Inquiry,
    Mod,
    Reason,
    Report,
    Room,
    Suspect,
    reporter_from_mod,
)
from modqueue.reports.domain.queries import ReportQueries
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.scoring import make_report
from modqueue.reports.domain.selectors import (
    DeleteReport,
    InsertReport,
    ReportPatch,
    ReportSelector,
    ReportSort,
    UpdateReports,
    WriteOp,
)
from modqueue.reports.domain.sequencer import AsyncSequencer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReportRef:
    report_id: str


@dataclass(frozen=True, slots=True)
class SuspectRef:
    user_id: str


Identifier = Union[str, ReportRef, SuspectRef]
ToggleResult = tuple[Optional[Report], Optional[Report]]


@dataclass(frozen=True, slots=True)
class ExpireResult:
    released: int
    deleted: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_placeholder(report: Report) -> bool:
    return report.is_spontaneous or report.is_appeal


@dataclass
class InquiryManager:
    repository: ReportRepository
    queries: ReportQueries
    sequencer: AsyncSequencer
    room_scores: RoomScoreCache | None = None
    expire_after: timedelta = timedelta(minutes=20)
    clock: Callable[[], datetime] = _utcnow

    # --- reads ------------------------------------------------------------

    async def all_by_suspect(self) -> dict[str, Inquiry]:
        reports = await self.repository.find(ReportSelector(has_inquiry=True), sort=ReportSort.LAST_ATOM_DESC)
        return {report.user: report.inquiry for report in reports if report.inquiry is not None}

    async def of_mod(self, mod_id: str) -> Report | None:
        return await self.repository.find_one(ReportSelector(inquiry_mod=mod_id))

    async def of_suspect(self, suspect_id: str) -> Inquiry | None:
        report = await self.repository.find_one(ReportSelector(user=suspect_id, has_inquiry=True))
        return report.inquiry if report else None

    async def ongoing_appeal_of(self, suspect_id: str) -> Inquiry | None:
        report = await self.repository.find_one(
            ReportSelector(user=suspect_id, has_inquiry=True, rooms=(Room.OTHER,), first_atom_text=APPEAL_TEXT)
        )
        return report.inquiry if report else None

    # --- sequenced mutations ------------------------------------------------

    async def toggle(self, identifier: Identifier, mod: Mod) -> ToggleResult:
        """Start, switch or cancel ``mod``'s inquiry.

        No current inquiry: start this one. Another one: cancel it and start
        this one. Already on this one: cancel it. Returns the previous inquiry
        report and the newly claimed one.
        """

        async def unit() -> ToggleResult:
            report = await self._resolve(identifier)
            return await self._do_toggle(report, mod)

        return await self.sequencer(unit)

    async def toggle_next(self, room: Room, mod: Mod) -> Report | None:
        async def unit() -> Report | None:
            report = await self.queries.find_next(room, mod)
            if report is None:
                return None
            _previous, claimed = await self._do_toggle(report, mod)
            return claimed

        return await self.sequencer(unit)

    async def cancel(self, report: Report, mod: Mod) -> bool:
        """Release ``mod``'s claim on ``report``; a placeholder ``mod`` opened is deleted instead.

        The stored report is re-read inside the unit. Nothing is written unless
        ``mod`` still holds the inquiry, so a closed report or another
        moderator's claim is left alone.
        """

        async def unit() -> bool:
            current = await self.repository.find_one(ReportSelector(ids=(report.id,), inquiry_mod=mod.id))
            if current is None:
                return False
            await self.repository.bulk_write([self._cancel_op(current, mod)])
            self._changed()
            obs_metrics.INQUIRY_TRANSITIONS_TOTAL.labels(transition="cancel").inc()
            return True

        return await self.sequencer(unit)

    async def spontaneous(self, suspect: Suspect, mod: Mod) -> Report:
        return await self.sequencer(lambda: self._open_other(suspect, mod, SPONTANEOUS_TEXT))

    async def appeal(self, suspect: Suspect, mod: Mod) -> Report:
        return await self.sequencer(lambda: self._open_other(suspect, mod, APPEAL_TEXT))

    async def expire(self) -> ExpireResult:
        """Release inquiries not seen for ``expire_after``; drop stale spontaneous ones."""

        async def unit() -> ExpireResult:
            stale = await self.repository.find(
                ReportSelector(has_inquiry=True, inquiry_seen_before=self.clock() - self.expire_after),
                sort=ReportSort.LAST_ATOM_DESC,
            )
            if not stale:
                return ExpireResult(released=0, deleted=0)
            ops: list[WriteOp] = []
            deleted = 0
            for report in stale:
                if report.is_spontaneous:
                    ops.append(DeleteReport(ReportSelector.by_id(report.id)))
                    deleted += 1
                else:
                    ops.append(UpdateReports(ReportSelector.by_id(report.id), ReportPatch(unset_inquiry=True)))
            await self.repository.bulk_write(ops)
            self._changed()
            result = ExpireResult(released=len(stale) - deleted, deleted=deleted)
            obs_metrics.INQUIRY_EXPIRED_TOTAL.inc(len(stale))
            logger.info("expired inquiries", extra={"released": result.released, "deleted": result.deleted})
            return result

        return await self.sequencer(unit)

    # --- unit bodies --------------------------------------------------------

    async def _resolve(self, identifier: Identifier) -> Report | None:
        if isinstance(identifier, ReportRef):
            return await self.queries.by_id(identifier.report_id)
        if isinstance(identifier, SuspectRef):
            return await self._find_by_suspect(identifier.user_id)
        return await self.queries.by_id(identifier) or await self._find_by_suspect(identifier)

    async def _find_by_suspect(self, user_id: str) -> Report | None:
        inquired = await self.repository.find_one(ReportSelector(user=user_id, has_inquiry=True))
        if inquired is not None:
            return inquired
        best = await self.repository.find(ReportSelector(user=user_id, open=True), sort=ReportSort.SCORE_DESC, limit=1)
        return best[0] if best else None

    async def _do_toggle(self, report: Report | None, mod: Mod) -> ToggleResult:
        current = await self.of_mod(mod.id)
        ops: list[WriteOp] = []
        if current is not None:
            ops.append(self._cancel_op(current, mod))
        claimed: Report | None = None
        if report is not None and report.inquiry is None and report.open:
            claimed = report.with_inquiry(Inquiry(mod=mod.id, seen_at=self.clock()))
            ops.append(UpdateReports(ReportSelector.by_id(report.id), ReportPatch(inquiry=claimed.inquiry)))
        if ops:
            await self.repository.bulk_write(ops)
            self._changed()
        if current is not None:
            obs_metrics.INQUIRY_TRANSITIONS_TOTAL.labels(transition="cancel").inc()
        if claimed is not None:
            obs_metrics.INQUIRY_TRANSITIONS_TOTAL.labels(transition="claim").inc()
        return current, claimed

    async def _open_other(self, suspect: Suspect, mod: Mod, text: str) -> Report:
        current = await self.of_mod(mod.id)
        ops: list[WriteOp] = []
        if current is not None:
            ops.append(self._cancel_op(current, mod))
        candidate = Candidate(reporter=reporter_from_mod(mod), suspect=suspect, reason=Reason.OTHER, text=text)
        now = self.clock()
        report = make_report(candidate.scored(0.0), None, now=now).with_inquiry(Inquiry(mod=mod.id, seen_at=now))
        ops.append(InsertReport(report))
        await self.repository.bulk_write(ops)
        self._changed()
        obs_metrics.INQUIRY_TRANSITIONS_TOTAL.labels(transition="spontaneous" if text == SPONTANEOUS_TEXT else "appeal").inc()
        return report

    def _cancel_op(self, report: Report, mod: Mod) -> WriteOp:
        atom = report.only_atom
        if is_placeholder(report) and atom is not None and atom.by == mod.id:
            return DeleteReport(ReportSelector.by_id(report.id))
        return UpdateReports(
            ReportSelector.by_id(report.id),
            ReportPatch(open=True, unset_inquiry=True, unset_done=True),
        )

    def _changed(self) -> None:
        if self.room_scores is not None:
            self.room_scores.invalidate()
