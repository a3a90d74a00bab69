"""Utilities for wiring report workers into an event loop."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from modqueue import obs
from modqueue.reports.domain.container import get_report_service
from modqueue.reports.workers.inquiry_expirer import InquiryExpirer
from modqueue.settings import settings


async def _run_forever(worker, delay: float) -> None:
    while True:
        await worker.run_once()
        await asyncio.sleep(delay)


def spawn_workers(
    *,
    expire_interval: Optional[float] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks for the periodic report maintenance workers."""

    obs.init()
    event_loop = loop or asyncio.get_event_loop()
    service = get_report_service()
    expirer = InquiryExpirer(inquiries=service.inquiries)
    delay = expire_interval if expire_interval is not None else settings.report_expire_interval_seconds
    return [event_loop.create_task(_run_forever(expirer, delay), name="reports-inquiry-expirer")]
