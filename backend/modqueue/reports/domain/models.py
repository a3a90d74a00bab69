"""Report domain models: reasons, rooms, role views and the report document."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional, Sequence

SPONTANEOUS_TEXT = "Spontaneous inquiry"
APPEAL_TEXT = "Appeal"
COMM_FLAG_TEXT = "[FLAG]"

Accuracy = Optional[int]


class Room(str, Enum):
    """Queue partition moderators work through."""

    CHEAT = "cheat"
    PRINT = "print"
    COMM = "comm"
    OTHER = "other"
    XFILES = "xfiles"

    @classmethod
    def all_but_xfiles(cls) -> tuple["Room", ...]:
        return tuple(room for room in cls if room is not cls.XFILES)

    @classmethod
    def from_key(cls, key: str | None) -> Optional["Room"]:
        if not key:
            return None
        try:
            return cls(key.strip().lower())
        except ValueError:
            return None


class Reason(str, Enum):
    CHEAT = "cheat"
    CHEAT_PRINT = "cheatprint"
    ALT_PRINT = "altprint"
    COMM = "comm"
    BOOST = "boost"
    PLAYBANS = "playbans"
    OTHER = "other"

    @property
    def room(self) -> Room:
        return _ROOM_BY_REASON[self]

    @property
    def is_cheat(self) -> bool:
        return self is Reason.CHEAT

    @property
    def is_comm(self) -> bool:
        return self is Reason.COMM

    @classmethod
    def from_key(cls, key: str | None) -> Optional["Reason"]:
        if not key:
            return None
        try:
            return cls(key.strip().lower())
        except ValueError:
            return None


_ROOM_BY_REASON: Mapping[Reason, Room] = {
    Reason.CHEAT: Room.CHEAT,
    Reason.CHEAT_PRINT: Room.PRINT,
    Reason.ALT_PRINT: Room.PRINT,
    Reason.COMM: Room.COMM,
    Reason.BOOST: Room.OTHER,
    Reason.PLAYBANS: Room.OTHER,
    Reason.OTHER: Room.OTHER,
}


@dataclass(frozen=True, slots=True)
class User:
    """Base user identity with the sanction marks the engine cares about."""

    id: str
    username: str
    engine: bool = False
    troll: bool = False
    boost: bool = False
    reportban: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def lame(self) -> bool:
        return self.engine or self.boost

    @property
    def is_mod(self) -> bool:
        return "mod" in self.roles


@dataclass(frozen=True, slots=True)
class Reporter:
    user: User
    is_system: bool = False

    @property
    def id(self) -> str:
        return self.user.id


@dataclass(frozen=True, slots=True)
class Mod:
    user: User

    @property
    def id(self) -> str:
        return self.user.id


@dataclass(frozen=True, slots=True)
class Suspect:
    user: User

    @property
    def id(self) -> str:
        return self.user.id


def reporter_of(user: User) -> Reporter:
    return Reporter(user=user)


def system_reporter_of(user: User) -> Reporter:
    return Reporter(user=user, is_system=True)


def reporter_from_mod(mod: Mod) -> Reporter:
    return Reporter(user=mod.user)


def mod_of(user: User | None) -> Optional[Mod]:
    """Only users holding the mod role may act as moderators."""

    if user is None or not user.is_mod:
        return None
    return Mod(user=user)


def suspect_of(user: User | None) -> Optional[Suspect]:
    if user is None:
        return None
    return Suspect(user=user)


@dataclass(frozen=True, slots=True)
class Atom:
    """One piece of evidence attached to a report."""

    by: str
    text: str
    score: float
    at: datetime

    def by_human(self, system_id: str) -> bool:
        return self.by != system_id


@dataclass(frozen=True, slots=True)
class Inquiry:
    mod: str
    seen_at: datetime


@dataclass(frozen=True, slots=True)
class Done:
    by: str
    at: datetime


@dataclass(frozen=True, slots=True)
class Report:
    id: str
    user: str
    reason: Reason
    room: Room
    score: float
    open: bool
    atoms: tuple[Atom, ...]
    inquiry: Inquiry | None = None
    done: Done | None = None

    @property
    def closed(self) -> bool:
        return not self.open

    @property
    def is_cheat(self) -> bool:
        return self.reason.is_cheat

    @property
    def is_comm(self) -> bool:
        return self.reason.is_comm

    @property
    def is_other(self) -> bool:
        return self.reason is Reason.OTHER

    @property
    def is_recent_comm(self) -> bool:
        return self.open and self.room is Room.COMM

    @property
    def last_atom(self) -> Atom | None:
        return self.atoms[0] if self.atoms else None

    @property
    def last_atom_at(self) -> datetime | None:
        atom = self.last_atom
        return atom.at if atom else None

    @property
    def only_atom(self) -> Atom | None:
        return self.atoms[0] if len(self.atoms) == 1 else None

    @property
    def is_spontaneous(self) -> bool:
        atom = self.only_atom
        return self.is_other and atom is not None and atom.text == SPONTANEOUS_TEXT

    @property
    def is_appeal(self) -> bool:
        atom = self.only_atom
        return self.is_other and atom is not None and atom.text == APPEAL_TEXT

    def reporter_ids(self) -> list[str]:
        seen: list[str] = []
        for atom in self.atoms:
            if atom.by not in seen:
                seen.append(atom.by)
        return seen

    def is_automatic(self, system_id: str) -> bool:
        return bool(self.atoms) and all(atom.by == system_id for atom in self.atoms)

    def is_already_slain(self, user: User, system_id: str) -> bool:
        return (
            (self.is_cheat and user.engine)
            or (self.is_automatic(system_id) and not self.is_comm and user.troll)
            or (self.is_comm and user.troll)
        )

    def with_inquiry(self, inquiry: Inquiry | None) -> "Report":
        return replace(self, inquiry=inquiry)


@dataclass(frozen=True, slots=True)
class Candidate:
    """Unscored request to report a suspect."""

    reporter: Reporter
    suspect: Suspect
    reason: Reason
    text: str

    @property
    def is_cheat(self) -> bool:
        return self.reason.is_cheat

    @property
    def is_comm(self) -> bool:
        return self.reason.is_comm

    @property
    def is_automatic(self) -> bool:
        return self.reporter.is_system

    def is_already_slain(self) -> bool:
        marks = self.suspect.user
        return (
            (self.is_cheat and marks.engine)
            or (self.is_automatic and not self.is_comm and marks.troll)
            or (self.is_comm and marks.troll)
        )

    def scored(self, score: float) -> "ScoredCandidate":
        return ScoredCandidate(candidate=self, score=score)


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    candidate: Candidate
    score: float

    def atom(self, at: datetime) -> Atom:
        return Atom(by=self.candidate.reporter.id, text=self.candidate.text, score=self.score, at=at)


@dataclass(frozen=True, slots=True)
class RoomScores:
    """Highest open unclaimed score per room."""

    scores: Mapping[Room, int]

    def get(self, room: Room) -> int:
        return self.scores.get(room, 0)

    @property
    def highest(self) -> int:
        return max(self.scores.values(), default=0)


@dataclass(frozen=True, slots=True)
class ReportWithSuspect:
    report: Report
    suspect: User
    online: bool

    @property
    def urgency(self) -> int:
        urgency = int(self.report.score)
        if self.online:
            urgency += 1_000
        if self.report.closed:
            urgency -= 1_000_000
        return urgency


@dataclass(frozen=True, slots=True)
class ByAndAbout:
    by: Sequence[Report]
    about: Sequence[Report]
