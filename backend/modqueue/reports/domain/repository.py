"""Storage contract for report documents and an in-memory reference store."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from modqueue.reports.domain.models import Report
from modqueue.reports.domain.selectors import (
    DeleteReport,
    InsertReport,
    ReportPatch,
    ReportSelector,
    ReportSort,
    UpdateReports,
    WriteOp,
)


class ReportRepository(Protocol):
    """Selector-based document store holding reports.

    Single-document writes are atomic. ``bulk_write`` applies all operations or
    none of them.
    """

    async def find_one(self, selector: ReportSelector) -> Report | None:
        ...

    async def find(
        self,
        selector: ReportSelector,
        *,
        sort: ReportSort,
        limit: Optional[int] = None,
    ) -> list[Report]:
        ...

    async def exists(self, selector: ReportSelector) -> bool:
        ...

    async def upsert(self, report: Report) -> None:
        ...

    async def insert(self, report: Report) -> None:
        ...

    async def update_many(self, selector: ReportSelector, patch: ReportPatch) -> int:
        ...

    async def delete_one(self, selector: ReportSelector) -> bool:
        ...

    async def distinct_reporters(self, selector: ReportSelector) -> list[str]:
        ...

    async def bulk_write(self, ops: Sequence[WriteOp]) -> None:
        ...


class InMemoryReportRepository(ReportRepository):
    """Repository storing reports in a dict, for tests and local development."""

    def __init__(self) -> None:
        self.reports: dict[str, Report] = {}

    def _matching(self, selector: ReportSelector) -> list[Report]:
        return [report for report in self.reports.values() if selector.matches(report)]

    async def find_one(self, selector: ReportSelector) -> Report | None:
        for report in self.reports.values():
            if selector.matches(report):
                return report
        return None

    async def find(
        self,
        selector: ReportSelector,
        *,
        sort: ReportSort,
        limit: Optional[int] = None,
    ) -> list[Report]:
        if limit is not None and limit <= 0:
            return []
        ordered = sorted(self._matching(selector), key=sort.key)
        return ordered if limit is None else ordered[:limit]

    async def exists(self, selector: ReportSelector) -> bool:
        return await self.find_one(selector) is not None

    async def upsert(self, report: Report) -> None:
        self.reports[report.id] = report

    async def insert(self, report: Report) -> None:
        if report.id in self.reports:
            raise KeyError(f"duplicate report id {report.id}")
        self.reports[report.id] = report

    async def update_many(self, selector: ReportSelector, patch: ReportPatch) -> int:
        return self._update(selector, patch)

    async def delete_one(self, selector: ReportSelector) -> bool:
        return self._delete(selector)

    async def distinct_reporters(self, selector: ReportSelector) -> list[str]:
        seen: list[str] = []
        for report in self._matching(selector):
            for reporter_id in report.reporter_ids():
                if reporter_id not in seen:
                    seen.append(reporter_id)
        return seen

    async def bulk_write(self, ops: Sequence[WriteOp]) -> None:
        # No awaits between operations: the batch lands in one event-loop step.
        staged = dict(self.reports)
        previous = self.reports
        self.reports = staged
        try:
            for op in ops:
                if isinstance(op, InsertReport):
                    if op.report.id in self.reports:
                        raise KeyError(f"duplicate report id {op.report.id}")
                    self.reports[op.report.id] = op.report
                elif isinstance(op, UpdateReports):
                    self._update(op.selector, op.patch)
                elif isinstance(op, DeleteReport):
                    self._delete(op.selector)
                else:  # pragma: no cover - exhaustive
                    raise TypeError(f"unsupported write op {op!r}")
        except Exception:
            self.reports = previous
            raise

    def _update(self, selector: ReportSelector, patch: ReportPatch) -> int:
        matched = self._matching(selector)
        for report in matched:
            self.reports[report.id] = patch.apply(report)
        return len(matched)

    def _delete(self, selector: ReportSelector) -> bool:
        for report in self._matching(selector):
            del self.reports[report.id]
            return True
        return False
