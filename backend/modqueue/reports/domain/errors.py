"""Failure types raised by the report engine."""

from __future__ import annotations


class ReportWorkflowError(Exception):
    """Base class for report workflow failures."""


class SystemUserMissingError(ReportWorkflowError):
    pass


class SequencerError(ReportWorkflowError):
    """Raised when a serialized unit of work did not complete."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name


class SequencerFullError(SequencerError):
    """Backlog is at capacity; the caller may retry later."""

    retryable = True


class SequencerTimeoutError(SequencerError):
    """The unit exceeded its time budget and was abandoned."""

    retryable = False
