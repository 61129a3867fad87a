# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync Scheduler - one worker, one cycle at a time.

The peek/acknowledge pair is only correct when no other cycle touches the
slot in between. CycleScheduler owns the single task allowed to run
run_cdc_cycle(); everybody else enqueues a trigger and waits for its result.

A caller that stops waiting (timeout, cancellation) does not cancel the
cycle: the worker finishes it and logs the outcome.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from walsync.core import CDCState, CycleResult, run_cdc_cycle
from walsync.config import DEFAULT_CYCLE_TIMEOUT_SECONDS
from walsync.errors import explain_cycle_timeout
from walsync.exceptions import CycleTimeout, SchedulerStopped

logger = structlog.get_logger()

T = TypeVar("T")

_STOP = object()


class CycleScheduler:
    """
    Serializes CDC cycles on a dedicated worker task.

    Args:
        state: Runtime state shared with the worker
        timeout: Default wait for run_cycle(), in seconds
    """

    def __init__(
        self,
        state: CDCState,
        timeout: float = DEFAULT_CYCLE_TIMEOUT_SECONDS,
    ) -> None:
        self._state = state
        self._timeout = timeout
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._in_flight = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def in_flight(self) -> bool:
        """True while the worker is inside run_cdc_cycle()."""
        return self._in_flight

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._work(), name="walsync-cycle-worker")
        logger.info("cycle_scheduler_started")

    async def stop(self) -> None:
        """
        Stop the worker after the in-flight cycle.

        Triggers queued behind it fail with SchedulerStopped and never run.
        """
        if self._worker is None:
            return
        self._fail_queued()
        self._queue.put_nowait(_STOP)
        await self._worker
        self._worker = None
        self._fail_queued()

        logger.info("cycle_scheduler_stopped")

    def _fail_queued(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, asyncio.Future) and not item.done():
                item.set_exception(SchedulerStopped("Cycle scheduler stopped"))
                # Nobody may be waiting any more; retrieve it so asyncio stays quiet.
                item.exception()

    def submit(self) -> "asyncio.Future[CycleResult]":
        """Queue a cycle and return a future for its result."""
        if not self.running:
            raise SchedulerStopped("Cycle scheduler is not running")
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(future)
        return future

    async def run_cycle(self, timeout: float | None = None) -> int:
        """
        Run a cycle and wait for it.

        Args:
            timeout: Seconds to wait (default: the scheduler's timeout)

        Returns:
            Number of transactions the cycle processed

        Raises:
            CycleTimeout: The wait elapsed; the cycle keeps running
            CycleFailure: The cycle failed
        """
        result = await self.wait(self.submit(), timeout)
        logger.debug("cycle_processed", transactions=result.transactions)
        return result.transactions

    async def wait(
        self,
        future: "asyncio.Future[CycleResult]",
        timeout: float | None = None,
    ) -> CycleResult:
        wait_for = self._timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(future), wait_for)
        except asyncio.TimeoutError:
            future.add_done_callback(_log_late_outcome)
            raise CycleTimeout(explain_cycle_timeout(), details={"timeout": wait_for})

    async def _work(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return

            future: asyncio.Future = item
            if future.done():
                continue

            self._in_flight = True
            try:
                result = await run_cdc_cycle(self._state)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._in_flight = False


def _log_late_outcome(future: asyncio.Future) -> None:
    """Log a cycle whose caller has already given up waiting."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("late_cycle_failed", error=str(error))
    else:
        logger.info("late_cycle_completed", transactions=future.result().transactions)


async def synced_write(
    scheduler: CycleScheduler,
    write: Callable[[], Awaitable[T]],
    timeout: float | None = None,
) -> T:
    """
    Perform a write against the system-of-record, then bring the index up to date.

    The write is committed before the cycle starts and is never rolled back:
    a cycle failure or timeout only means the index has not caught up yet.

    Args:
        scheduler: Running cycle scheduler
        write: Coroutine function performing (and committing) the write
        timeout: Seconds to wait for the cycle

    Returns:
        Whatever the write returned

    Raises:
        CycleTimeout: The cycle did not finish in time
        CycleFailure: The cycle failed
    """
    result = await write()
    await scheduler.run_cycle(timeout)
    return result
