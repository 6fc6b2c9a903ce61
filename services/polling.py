"""
Polling Scheduler

Periodic fetch loops with explicit start / stop / retry control.

A PollHandle runs one fetch function on a fixed cadence:
- start() runs a cycle immediately, then one per interval against a fixed
  baseline (next_run_at)
- retry() runs an out-of-band cycle right away; the baseline is untouched
- stop() cancels the timer and bumps a generation token; a result that
  resolves after stop() is discarded instead of reaching on_result
- a scheduled tick is skipped while the previous scheduled cycle is still
  running, so cycles of one handle never pile up

Cycle state machine:
    IDLE → FETCHING → on_result(result) → (should_retry and attempts left?
        → sleep(retry_delay) → FETCHING) → IDLE

Every attempt's result is handed to on_result, so a consumer can react to a
failure before the retries finish. Unexpected exceptions end the cycle; the
done-callback logs them with traceback and keeps them on the handle.

Usage:
    scheduler = PollingScheduler()
    handle = scheduler.schedule("market.rest", fetch=provider_fetch, on_result=apply, interval=60)
    handle.start()
    ...
    handle.retry()
    scheduler.stop_all()
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from core.logging import get_logger

logger = get_logger(__name__)


class PollHandle:
    """
    One polling loop.

    Attributes:
        name: Handle name (used in logs and task names)
        interval: Seconds between scheduled cycles
        generation: Incremented on every start() and stop()
        next_run_at: Loop time of the next scheduled cycle (None while stopped)
        first_result: Set once the first result has been applied
        last_result: Most recently applied result
        last_exception: Most recent unexpected exception raised by a cycle
        cycles: Number of results applied so far
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], Any],
        interval: float,
        max_retry_attempts: int = 0,
        retry_delay: float = 5.0,
        should_retry: Optional[Callable[[Any], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            name: Handle name
            fetch: Zero-argument coroutine function producing one result
            on_result: Called with every result (plain function or coroutine function)
            interval: Seconds between scheduled cycles (> 0)
            max_retry_attempts: Extra attempts within one cycle after a failed result
            retry_delay: Fixed delay between attempts
            should_retry: Predicate marking a result as failed (no retries if None)
            sleep: Async sleep used between retry attempts
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive: {interval}")
        if max_retry_attempts < 0:
            raise ValueError(f"max_retry_attempts cannot be negative: {max_retry_attempts}")

        self.name = name
        self.fetch = fetch
        self.on_result = on_result
        self.interval = interval
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay = retry_delay
        self.should_retry = should_retry
        self._sleep = sleep

        self.generation = 0
        self.next_run_at: Optional[float] = None
        self.first_result = asyncio.Event()
        self.last_result: Any = None
        self.last_exception: Optional[BaseException] = None
        self.cycles = 0

        self._running = False
        self._timer: Optional[asyncio.Task] = None
        self._scheduled: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        """Number of cycles currently running."""
        return len(self._tasks)

    # ============================================
    # Control
    # ============================================

    def start(self) -> None:
        """Run a cycle now and schedule the following ones. No-op if already running."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._running = True
        self.generation += 1
        generation = self.generation

        self.next_run_at = loop.time() + self.interval
        self._scheduled = self._spawn(generation, "initial")
        self._timer = loop.create_task(self._timer_loop(generation), name=f"{self.name}-timer")
        logger.debug(f"Poll handle '{self.name}' started (interval={self.interval}s, generation={generation})")

    def retry(self) -> Optional[asyncio.Task]:
        """
        Run an out-of-band cycle immediately.

        Returns:
            The cycle task, or None when the handle is stopped
        """
        if not self._running:
            logger.warning(f"Retry ignored: poll handle '{self.name}' is stopped")
            return None
        logger.info(f"Manual retry on '{self.name}'")
        return self._spawn(self.generation, "retry")

    def stop(self, cancel_inflight: bool = False) -> None:
        """
        Stop scheduling. Results of cycles still in flight are discarded.

        Args:
            cancel_inflight: Also cancel the running fetches
        """
        if not self._running and self._timer is None:
            return
        self._running = False
        self.generation += 1
        self.next_run_at = None

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if cancel_inflight:
            for task in list(self._tasks):
                task.cancel()
        logger.debug(f"Poll handle '{self.name}' stopped ({len(self._tasks)} cycle(s) in flight)")

    async def wait_idle(self) -> None:
        """Wait until no cycle of this handle is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ============================================
    # Internals
    # ============================================

    def _spawn(self, generation: int, reason: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self._cycle(generation),
            name=f"{self.name}-{reason}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.last_exception = exc
            logger.error(f"Unexpected error in poll cycle '{self.name}': {exc!r}", exc_info=exc)

    async def _timer_loop(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        while self.generation == generation:
            delay = self.next_run_at - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if self.generation != generation:
                return

            # Advance the baseline, skipping ticks missed while the loop was busy
            now = loop.time()
            while self.next_run_at <= now:
                self.next_run_at += self.interval

            if self._scheduled is not None and not self._scheduled.done():
                logger.debug(f"Skipping tick on '{self.name}': previous cycle still running")
                continue
            self._scheduled = self._spawn(generation, "tick")

    async def _cycle(self, generation: int) -> None:
        attempt = 0
        while True:
            result = await self.fetch()

            if self.generation != generation:
                logger.debug(f"Discarding late result on '{self.name}' (generation {generation} < {self.generation})")
                return

            self.last_result = result
            self.cycles += 1
            outcome = self.on_result(result)
            if inspect.isawaitable(outcome):
                await outcome
            self.first_result.set()

            failed = self.should_retry(result) if self.should_retry is not None else False
            if not failed or attempt >= self.max_retry_attempts:
                return

            attempt += 1
            logger.info(
                f"Cycle on '{self.name}' failed; retrying in {self.retry_delay}s "
                f"(attempt {attempt}/{self.max_retry_attempts})"
            )
            await self._sleep(self.retry_delay)
            if self.generation != generation:
                return

    def __repr__(self) -> str:
        return f"<PollHandle(name='{self.name}', interval={self.interval}, running={self._running})>"


class PollingScheduler:
    """
    Registry of named poll handles.

    Scheduling under a name that is already taken stops the previous handle first.

    Example:
        >>> scheduler = PollingScheduler()
        >>> scheduler.schedule("market.static", fetch, apply, interval=30).start()
        >>> scheduler.retry_all()
        >>> scheduler.stop_all()
    """

    def __init__(self):
        self.handles: Dict[str, PollHandle] = {}

    def schedule(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], Any],
        interval: float,
        **options: Any
    ) -> PollHandle:
        """
        Register (and return) a new, not yet started handle.

        Keyword options are passed to PollHandle (max_retry_attempts, retry_delay, should_retry, sleep).
        """
        existing = self.handles.get(name)
        if existing is not None:
            existing.stop()
        handle = PollHandle(name, fetch, on_result, interval, **options)
        self.handles[name] = handle
        return handle

    def get(self, name: str) -> Optional[PollHandle]:
        return self.handles.get(name)

    def unschedule(self, name: str, cancel_inflight: bool = False) -> None:
        handle = self.handles.pop(name, None)
        if handle is not None:
            handle.stop(cancel_inflight=cancel_inflight)

    def start_all(self) -> None:
        for handle in self.handles.values():
            handle.start()

    def stop_all(self, cancel_inflight: bool = False) -> None:
        for handle in self.handles.values():
            handle.stop(cancel_inflight=cancel_inflight)

    def retry_all(self) -> List[asyncio.Task]:
        tasks = [handle.retry() for handle in self.handles.values()]
        return [task for task in tasks if task is not None]

    async def wait_idle(self) -> None:
        await asyncio.gather(*(handle.wait_idle() for handle in self.handles.values()))

    def __len__(self) -> int:
        return len(self.handles)
