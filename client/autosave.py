"""Debounced autosave scheduling for one open mind map."""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

from common.config import DEFAULT_AUTOSAVE_DELAY_SECONDS
from common.db_resilience import ExponentialBackoff
from graph.errors import StorageFailure


logger = structlog.get_logger(__name__)


class AutosaveState(Enum):
    """Autosave scheduler states."""

    IDLE = "idle"  # Nothing scheduled
    ARMED = "armed"  # Timer running, waiting for a quiet period
    FLUSHING = "flushing"  # A write is in flight


class AutosaveScheduler:
    """Debounces mutations into at most one in-flight write.

    Every mutation restarts a fixed-delay timer. When the timer fires the
    ``flush`` callback writes whatever is current at that moment. Mutations
    arriving during a flush re-arm the timer once the flush completes.
    Only StorageFailure is retried automatically, by re-arming with an
    exponentially growing delay.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[None]],
        is_dirty: Callable[[], bool],
        delay: float = DEFAULT_AUTOSAVE_DELAY_SECONDS,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._flush = flush
        self._is_dirty = is_dirty
        self.delay = delay
        self._backoff = backoff or ExponentialBackoff(initial_delay=delay, max_delay=max(60.0, delay))

        self._state = AutosaveState.IDLE
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._mutated_while_flushing = False
        self._consecutive_failures = 0
        self._closing = False

    @property
    def state(self) -> AutosaveState:
        return self._state

    def notify_mutation(self) -> None:
        """Record a local mutation. Never blocks and never performs I/O."""
        if self._closing:
            return
        if self._state is AutosaveState.FLUSHING:
            self._mutated_while_flushing = True
            return
        self._arm(self.delay)

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_timer)
        self._state = AutosaveState.ARMED

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._start_flush(raise_errors=False)

    def _start_flush(self, raise_errors: bool) -> asyncio.Task[None]:
        self._state = AutosaveState.FLUSHING
        self._flush_task = asyncio.get_running_loop().create_task(self._run_flush(raise_errors))
        return self._flush_task

    async def _run_flush(self, raise_errors: bool) -> None:
        retry = False
        try:
            await self._flush()
            self._consecutive_failures = 0
        except StorageFailure as e:
            self._consecutive_failures += 1
            retry = True
            logger.warning("⚠️ Autosave failed, will retry", error=str(e), failures=self._consecutive_failures)
            if raise_errors:
                raise
        except Exception as e:
            logger.warning("⚠️ Autosave failed", error=str(e), error_type=type(e).__name__)
            if raise_errors:
                raise
        finally:
            self._flush_task = None
            self._after_flush(retry)

    def _after_flush(self, retry: bool) -> None:
        if self._closing:
            self._state = AutosaveState.IDLE
        elif self._mutated_while_flushing:
            self._mutated_while_flushing = False
            self._arm(self.delay)
        elif retry:
            self._arm(self._backoff.get_delay(self._consecutive_failures - 1))
        else:
            self._state = AutosaveState.IDLE

    async def flush_now(self) -> None:
        """Write immediately if a save is pending; no-op when idle or already flushing.

        Errors are raised to the caller. The write itself is shielded, so
        cancelling the caller never cancels an in-flight flush.
        """
        if self._state is not AutosaveState.ARMED:
            return
        self._cancel_timer()
        await asyncio.shield(self._start_flush(raise_errors=True))

    async def close(self) -> None:
        """Cancel the timer, wait for an in-flight flush, then write any unsaved changes."""
        self._closing = True
        self._cancel_timer()

        task = self._flush_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

        self._state = AutosaveState.IDLE
        if self._is_dirty():
            logger.info("💾 Final save before close")
            await self._flush()
