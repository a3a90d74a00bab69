"""Facade grouping intake, queries, inquiries and detectors for callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from modqueue.reports.domain.detectors import AutoReporter
from modqueue.reports.domain.inquiries import InquiryManager
from modqueue.reports.domain.intake import ReportIntake
from modqueue.reports.domain.models import Mod, Report
from modqueue.reports.domain.queries import ReportQueries
from modqueue.reports.domain.snoozer import Snoozer, parse_snooze_duration


@dataclass
class ReportService:
    intake: ReportIntake
    queries: ReportQueries
    inquiries: InquiryManager
    detectors: AutoReporter
    snoozer: Snoozer

    async def snooze(self, report_id: str, mod: Mod, duration: str | timedelta) -> Report | None:
        """Hide the report from ``mod`` for ``duration`` and move them to the next one in its room."""

        report = await self.queries.by_id(report_id)
        if report is None:
            return None
        await self.snoozer.snooze(mod.id, report.id, parse_snooze_duration(duration))
        return await self.inquiries.toggle_next(report.room, mod)
