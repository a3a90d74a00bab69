"""Worker that releases inquiries moderators have abandoned."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from modqueue.reports.domain.errors import SequencerError
from modqueue.reports.domain.inquiries import ExpireResult

logger = logging.getLogger(__name__)


class Expirable(Protocol):
    async def expire(self) -> ExpireResult:
        ...


@dataclass
class InquiryExpirer:
    """Periodically calls ``expire`` on the inquiry manager."""

    inquiries: Expirable

    async def run_once(self) -> ExpireResult | None:
        try:
            return await self.inquiries.expire()
        except SequencerError as exc:
            # a busy or slow sequencer only delays expiry to the next tick
            logger.warning("inquiry expiry skipped", extra={"sequencer": exc.name, "error": str(exc)})
            return None
        except Exception:  # noqa: BLE001 - the next tick retries
            logger.exception("inquiry expiry failed")
            return None
