"""Single-flight sequencer: a bounded FIFO of async work drained by one worker."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from modqueue.obs import metrics as obs_metrics
from modqueue.reports.domain.errors import SequencerFullError, SequencerTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[], Awaitable[Any]]


class AsyncSequencer:
    """Runs submitted coroutines one at a time, in submission order.

    At most ``max_size`` units wait behind the running one; further submissions
    fail fast with ``SequencerFullError``. A unit running longer than
    ``timeout`` seconds is cancelled and its caller gets
    ``SequencerTimeoutError``.
    """

    def __init__(self, *, max_size: int = 32, timeout: float = 20.0, name: str = "sequencer") -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.timeout = timeout
        self.name = name
        self._queue: Optional[asyncio.Queue[tuple[Work, asyncio.Future]]] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def _ensure_worker(self) -> asyncio.Queue[tuple[Work, asyncio.Future]]:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._queue is None:
            # Queues and tasks are bound to the loop that first uses them.
            self._loop = loop
            self._queue = asyncio.Queue(maxsize=self.max_size)
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(self._queue), name=f"sequencer:{self.name}")
        return self._queue

    async def __call__(self, work: Callable[[], Awaitable[T]]) -> T:
        queue = self._ensure_worker()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        try:
            queue.put_nowait((work, future))
        except asyncio.QueueFull:
            obs_metrics.SEQUENCER_REJECTED_TOTAL.labels(name=self.name).inc()
            logger.warning("sequencer backlog full", extra={"sequencer": self.name, "max_size": self.max_size})
            raise SequencerFullError(self.name, f"more than {self.max_size} pending tasks") from None
        return await future

    async def _run(self, queue: asyncio.Queue[tuple[Work, asyncio.Future]]) -> None:
        while True:
            work, future = await queue.get()
            try:
                if future.cancelled():
                    continue
                await self._execute(work, future)
            finally:
                queue.task_done()

    async def _execute(self, work: Work, future: asyncio.Future) -> None:
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(work(), timeout=self.timeout)
        except asyncio.TimeoutError:
            obs_metrics.SEQUENCER_TIMEOUTS_TOTAL.labels(name=self.name).inc()
            logger.warning("sequenced task timed out", extra={"sequencer": self.name, "timeout": self.timeout})
            if not future.done():
                future.set_exception(SequencerTimeoutError(self.name, f"task exceeded {self.timeout}s"))
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001 - handed back to the submitting caller
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            obs_metrics.SEQUENCER_TASK_SECONDS.labels(name=self.name).observe(time.perf_counter() - start)

    async def close(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        queue = self._queue
        while queue is not None and not queue.empty():
            _work, future = queue.get_nowait()
            queue.task_done()
            if not future.done():
                future.cancel()
