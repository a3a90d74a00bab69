"""PostgreSQL-backed report store."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

import asyncpg

from modqueue.reports.domain.models import Atom, Done, Inquiry, Reason, Report, Room
from modqueue.reports.domain.repository import ReportRepository
from modqueue.reports.domain.selectors import (
    DeleteReport,
    InsertReport,
    ReportPatch,
    ReportSelector,
    ReportSort,
    UpdateReports,
    WriteOp,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS mod_report (
    id text PRIMARY KEY,
    user_id text NOT NULL,
    reason text NOT NULL,
    room text NOT NULL,
    score double precision NOT NULL,
    open boolean NOT NULL,
    atoms jsonb NOT NULL,
    last_atom_at timestamptz,
    inquiry_mod text,
    inquiry_seen_at timestamptz,
    done_by text,
    done_at timestamptz
);
CREATE INDEX IF NOT EXISTS mod_report_best_open
    ON mod_report (room, score DESC) WHERE open AND inquiry_mod IS NULL;
CREATE INDEX IF NOT EXISTS mod_report_user_recent ON mod_report (user_id, last_atom_at DESC);
CREATE INDEX IF NOT EXISTS mod_report_inquiry_mod ON mod_report (inquiry_mod) WHERE inquiry_mod IS NOT NULL;
CREATE INDEX IF NOT EXISTS mod_report_atoms ON mod_report USING gin (atoms jsonb_path_ops);
"""

_COLUMNS = (
    "id, user_id, reason, room, score, open, atoms, last_atom_at, "
    "inquiry_mod, inquiry_seen_at, done_by, done_at"
)

_ORDER_BY = {
    ReportSort.SCORE_DESC: "score DESC",
    ReportSort.LAST_ATOM_DESC: "last_atom_at DESC NULLS LAST",
}


def build_where(selector: ReportSelector, start: int = 1) -> tuple[str, list[Any]]:
    """Translate a selector into a WHERE clause with ``$n`` placeholders."""

    clauses: list[str] = []
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${start + len(params) - 1}"

    if selector.ids is not None:
        clauses.append(f"id = ANY({bind(list(selector.ids))}::text[])")
    if selector.exclude_ids:
        clauses.append(f"NOT (id = ANY({bind(list(selector.exclude_ids))}::text[]))")
    if selector.user is not None:
        clauses.append(f"user_id = {bind(selector.user)}")
    if selector.reason is not None:
        clauses.append(f"reason = {bind(selector.reason.value)}")
    if selector.rooms is not None:
        clauses.append(f"room = ANY({bind([room.value for room in selector.rooms])}::text[])")
    if selector.open is not None:
        clauses.append(f"open = {bind(selector.open)}")
    if selector.has_inquiry is not None:
        clauses.append("inquiry_mod IS NOT NULL" if selector.has_inquiry else "inquiry_mod IS NULL")
    if selector.inquiry_mod is not None:
        clauses.append(f"inquiry_mod = {bind(selector.inquiry_mod)}")
    if selector.inquiry_seen_before is not None:
        clauses.append(f"inquiry_seen_at < {bind(selector.inquiry_seen_before)}")
    if selector.atom_by is not None:
        clauses.append(f"atoms @> {bind(json.dumps([{'by': selector.atom_by}]))}::jsonb")
    if selector.last_atom_after is not None:
        clauses.append(f"last_atom_at > {bind(selector.last_atom_after)}")
    if selector.first_atom_text is not None:
        clauses.append(f"atoms->0->>'text' = {bind(selector.first_atom_text)}")
    if selector.done_by is not None:
        clauses.append(f"done_by = {bind(selector.done_by)}")
    return (" AND ".join(clauses) if clauses else "TRUE"), params


def build_set(patch: ReportPatch, start: int = 1) -> tuple[str, list[Any]]:
    assignments: list[str] = []
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${start + len(params) - 1}"

    if patch.score is not None:
        assignments.append(f"score = {bind(patch.score)}")
    if patch.atoms is not None:
        assignments.append(f"atoms = {bind(_atoms_to_json(patch.atoms))}::jsonb")
        assignments.append(f"last_atom_at = {bind(patch.atoms[0].at if patch.atoms else None)}")
    if patch.open is not None:
        assignments.append(f"open = {bind(patch.open)}")
    if patch.unset_done:
        assignments.extend(["done_by = NULL", "done_at = NULL"])
    if patch.done is not None:
        assignments.append(f"done_by = {bind(patch.done.by)}")
        assignments.append(f"done_at = {bind(patch.done.at)}")
    if patch.unset_inquiry:
        assignments.extend(["inquiry_mod = NULL", "inquiry_seen_at = NULL"])
    if patch.inquiry is not None:
        assignments.append(f"inquiry_mod = {bind(patch.inquiry.mod)}")
        assignments.append(f"inquiry_seen_at = {bind(patch.inquiry.seen_at)}")
    if not assignments:
        raise ValueError("empty report patch")
    return ", ".join(assignments), params


def _atoms_to_json(atoms: Sequence[Atom]) -> str:
    return json.dumps(
        [{"by": atom.by, "text": atom.text, "score": atom.score, "at": atom.at.isoformat()} for atom in atoms]
    )


def _atoms_from_json(raw: Any) -> tuple[Atom, ...]:
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    return tuple(
        Atom(by=item["by"], text=item["text"], score=float(item["score"]), at=datetime.fromisoformat(item["at"]))
        for item in data or []
    )


def _report_from_record(record: Mapping[str, Any]) -> Report:
    inquiry = None
    if record["inquiry_mod"] is not None:
        inquiry = Inquiry(mod=record["inquiry_mod"], seen_at=record["inquiry_seen_at"])
    done = None
    if record["done_by"] is not None:
        done = Done(by=record["done_by"], at=record["done_at"])
    return Report(
        id=record["id"],
        user=record["user_id"],
        reason=Reason(record["reason"]),
        room=Room(record["room"]),
        score=float(record["score"]),
        open=record["open"],
        atoms=_atoms_from_json(record["atoms"]),
        inquiry=inquiry,
        done=done,
    )


def _report_params(report: Report) -> list[Any]:
    return [
        report.id,
        report.user,
        report.reason.value,
        report.room.value,
        report.score,
        report.open,
        _atoms_to_json(report.atoms),
        report.last_atom_at,
        report.inquiry.mod if report.inquiry else None,
        report.inquiry.seen_at if report.inquiry else None,
        report.done.by if report.done else None,
        report.done.at if report.done else None,
    ]


def _affected(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "DELETE 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


_INSERT = f"""
INSERT INTO mod_report ({_COLUMNS})
VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11, $12)
"""

_UPSERT = (
    _INSERT
    + """
ON CONFLICT (id) DO UPDATE SET
    user_id = EXCLUDED.user_id,
    reason = EXCLUDED.reason,
    room = EXCLUDED.room,
    score = EXCLUDED.score,
    open = EXCLUDED.open,
    atoms = EXCLUDED.atoms,
    last_atom_at = EXCLUDED.last_atom_at,
    inquiry_mod = EXCLUDED.inquiry_mod,
    inquiry_seen_at = EXCLUDED.inquiry_seen_at,
    done_by = EXCLUDED.done_by,
    done_at = EXCLUDED.done_at
"""
)


class PostgresReportRepository(ReportRepository):
    """Persists reports using asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def find_one(self, selector: ReportSelector) -> Report | None:
        where, params = build_where(selector)
        record = await self.pool.fetchrow(f"SELECT {_COLUMNS} FROM mod_report WHERE {where} LIMIT 1", *params)
        return _report_from_record(record) if record is not None else None

    async def find(
        self,
        selector: ReportSelector,
        *,
        sort: ReportSort,
        limit: Optional[int] = None,
    ) -> list[Report]:
        if limit is not None and limit <= 0:
            return []
        where, params = build_where(selector)
        query = f"SELECT {_COLUMNS} FROM mod_report WHERE {where} ORDER BY {_ORDER_BY[sort]}"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        records = await self.pool.fetch(query, *params)
        return [_report_from_record(record) for record in records]

    async def exists(self, selector: ReportSelector) -> bool:
        where, params = build_where(selector)
        row = await self.pool.fetchrow(f"SELECT 1 FROM mod_report WHERE {where} LIMIT 1", *params)
        return row is not None

    async def upsert(self, report: Report) -> None:
        await self.pool.execute(_UPSERT, *_report_params(report))

    async def insert(self, report: Report) -> None:
        await self.pool.execute(_INSERT, *_report_params(report))

    async def update_many(self, selector: ReportSelector, patch: ReportPatch) -> int:
        async with self.pool.acquire() as conn:
            return await self._update(conn, selector, patch)

    async def delete_one(self, selector: ReportSelector) -> bool:
        async with self.pool.acquire() as conn:
            return await self._delete(conn, selector)

    async def distinct_reporters(self, selector: ReportSelector) -> list[str]:
        where, params = build_where(selector)
        query = (
            "SELECT DISTINCT atom->>'by' AS reporter_id "
            f"FROM mod_report, jsonb_array_elements(atoms) AS atom WHERE {where}"
        )
        records = await self.pool.fetch(query, *params)
        return [record["reporter_id"] for record in records]

    async def bulk_write(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for op in ops:
                    if isinstance(op, InsertReport):
                        await conn.execute(_INSERT, *_report_params(op.report))
                    elif isinstance(op, UpdateReports):
                        await self._update(conn, op.selector, op.patch)
                    elif isinstance(op, DeleteReport):
                        await self._delete(conn, op.selector)
                    else:  # pragma: no cover - exhaustive
                        raise TypeError(f"unsupported write op {op!r}")

    async def _update(self, conn: asyncpg.Connection, selector: ReportSelector, patch: ReportPatch) -> int:
        assignments, set_params = build_set(patch)
        where, where_params = build_where(selector, start=len(set_params) + 1)
        status = await conn.execute(f"UPDATE mod_report SET {assignments} WHERE {where}", *set_params, *where_params)
        return _affected(status)

    async def _delete(self, conn: asyncpg.Connection, selector: ReportSelector) -> bool:
        where, params = build_where(selector)
        status = await conn.execute(
            f"DELETE FROM mod_report WHERE id = (SELECT id FROM mod_report WHERE {where} LIMIT 1)",
            *params,
        )
        return _affected(status) > 0
