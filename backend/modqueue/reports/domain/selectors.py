"""Structural selectors, patches and write operations over report documents."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union

from modqueue.reports.domain.models import Atom, Done, Inquiry, Reason, Report, Room


class ReportSort(str, Enum):
    SCORE_DESC = "score_desc"
    LAST_ATOM_DESC = "last_atom_desc"

    def key(self, report: Report):
        if self is ReportSort.SCORE_DESC:
            return -report.score
        at = report.last_atom_at
        return -(at.timestamp() if at else 0.0)


@dataclass(frozen=True, slots=True)
class ReportSelector:
    """Conjunction of optional predicates over report fields.

    Every ``None`` field is ignored. An empty ``ids`` tuple matches nothing.
    """

    ids: Optional[tuple[str, ...]] = None
    exclude_ids: tuple[str, ...] = ()
    user: Optional[str] = None
    reason: Optional[Reason] = None
    rooms: Optional[tuple[Room, ...]] = None
    open: Optional[bool] = None
    has_inquiry: Optional[bool] = None
    inquiry_mod: Optional[str] = None
    inquiry_seen_before: Optional[datetime] = None
    atom_by: Optional[str] = None
    last_atom_after: Optional[datetime] = None
    first_atom_text: Optional[str] = None
    done_by: Optional[str] = None

    @classmethod
    def by_id(cls, report_id: str) -> "ReportSelector":
        return cls(ids=(report_id,))

    @classmethod
    def by_ids(cls, report_ids: Iterable[str]) -> "ReportSelector":
        return cls(ids=tuple(report_ids))

    def matches(self, report: Report) -> bool:
        if self.ids is not None and report.id not in self.ids:
            return False
        if report.id in self.exclude_ids:
            return False
        if self.user is not None and report.user != self.user:
            return False
        if self.reason is not None and report.reason is not self.reason:
            return False
        if self.rooms is not None and report.room not in self.rooms:
            return False
        if self.open is not None and report.open != self.open:
            return False
        if self.has_inquiry is not None and (report.inquiry is not None) != self.has_inquiry:
            return False
        if self.inquiry_mod is not None and (report.inquiry is None or report.inquiry.mod != self.inquiry_mod):
            return False
        if self.inquiry_seen_before is not None and (
            report.inquiry is None or report.inquiry.seen_at >= self.inquiry_seen_before
        ):
            return False
        if self.atom_by is not None and all(atom.by != self.atom_by for atom in report.atoms):
            return False
        if self.last_atom_after is not None:
            at = report.last_atom_at
            if at is None or at <= self.last_atom_after:
                return False
        if self.first_atom_text is not None:
            atom = report.last_atom
            if atom is None or atom.text != self.first_atom_text:
                return False
        if self.done_by is not None and (report.done is None or report.done.by != self.done_by):
            return False
        return True


@dataclass(frozen=True, slots=True)
class ReportPatch:
    """Field-level mutation applied by ``update_many``."""

    open: Optional[bool] = None
    done: Optional[Done] = None
    inquiry: Optional[Inquiry] = None
    unset_inquiry: bool = False
    unset_done: bool = False
    score: Optional[float] = None
    atoms: Optional[tuple[Atom, ...]] = None

    def apply(self, report: Report) -> Report:
        updated = report
        if self.score is not None:
            updated = replace(updated, score=self.score)
        if self.atoms is not None:
            updated = replace(updated, atoms=self.atoms)
        if self.open is not None:
            updated = replace(updated, open=self.open)
        if self.unset_done:
            updated = replace(updated, done=None)
        if self.done is not None:
            updated = replace(updated, done=self.done)
        if self.unset_inquiry:
            updated = replace(updated, inquiry=None)
        if self.inquiry is not None:
            updated = replace(updated, inquiry=self.inquiry)
        return updated


@dataclass(frozen=True, slots=True)
class InsertReport:
    report: Report


@dataclass(frozen=True, slots=True)
class UpdateReports:
    selector: ReportSelector
    patch: ReportPatch


@dataclass(frozen=True, slots=True)
class DeleteReport:
    selector: ReportSelector


WriteOp = Union[InsertReport, UpdateReports, DeleteReport]
