"""Report scoring and the merge policy for duplicate candidates."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from modqueue.reports.domain.models import (
    COMM_FLAG_TEXT,
    Accuracy,
    Atom,
    Candidate,
    Reason,
    Report,
    ScoredCandidate,
)

Scorer = Callable[[Candidate, Accuracy], float]
ScoreTransform = Callable[[float], float]

_REASON_BASE: dict[Reason, float] = {
    Reason.CHEAT: 30.0,
    Reason.CHEAT_PRINT: 30.0,
    Reason.ALT_PRINT: 25.0,
    Reason.COMM: 30.0,
    Reason.BOOST: 25.0,
    Reason.PLAYBANS: 40.0,
    Reason.OTHER: 20.0,
}


def default_scorer(candidate: Candidate, accuracy: Accuracy) -> float:
    """Deterministic baseline: reason weight, reporter reliability, automation.

    Accuracy moves the score by up to +/-25 around a neutral 50.
    """

    score = _REASON_BASE.get(candidate.reason, 20.0)
    if accuracy is not None:
        score += (accuracy - 50) / 2
    if candidate.is_automatic:
        score += 15.0
    if candidate.is_comm and candidate.text.startswith(COMM_FLAG_TEXT):
        score -= 10.0
    return max(0.0, score)


class MergePolicy(str, Enum):
    """How a merged report combines its previous score with a new one."""

    MAX = "max"
    REPLACE = "replace"
    ADD = "add"

    def combine(self, previous: float, incoming: float) -> float:
        if self is MergePolicy.REPLACE:
            return incoming
        if self is MergePolicy.ADD:
            return previous + incoming
        return max(previous, incoming)

    @classmethod
    def from_key(cls, key: str | None) -> "MergePolicy":
        try:
            return cls((key or "max").strip().lower())
        except ValueError:
            return cls.MAX


def merge_report(previous: Report, atom: Atom, score: float, policy: MergePolicy) -> Report:
    """Fold a new piece of evidence into an open report, newest atom first."""

    return replace(
        previous,
        atoms=(atom,) + previous.atoms,
        score=policy.combine(previous.score, score),
        open=True,
        done=None,
    )


def new_report_id() -> str:
    return uuid4().hex[:12]


def make_report(
    scored: ScoredCandidate,
    previous: Optional[Report],
    *,
    now: datetime,
    policy: MergePolicy = MergePolicy.MAX,
    id_factory: Callable[[], str] = new_report_id,
) -> Report:
    atom = scored.atom(now)
    if previous is not None:
        return merge_report(previous, atom, scored.score, policy)
    candidate = scored.candidate
    return Report(
        id=id_factory(),
        user=candidate.suspect.id,
        reason=candidate.reason,
        room=candidate.reason.room,
        score=scored.score,
        open=True,
        atoms=(atom,),
    )
