"""Trigger loop driving the indexing queue drainer.

The loop drains batch after batch while work exists, idles when the queue
is empty and backs off after drain-level failures. It stops at the next
iteration boundary once its stop event is set; a backoff wait in progress
is interrupted immediately.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
import logging
import threading
import time

from .face import DrainStats, ItemOutcome
from .indexer import IndexingQueueDrainer, DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY

logger = logging.getLogger(__name__)


DEFAULT_IDLE_BACKOFF = 30.0
DEFAULT_ERROR_BACKOFF = 5.0
DEFAULT_MAX_ERROR_BACKOFF = 60.0


@dataclass
class LoopStats:
    """Counters for a trigger loop run.

    Attributes:
        iterations: Drain calls made
        batches: Drain calls that returned work
        idle_waits: Waits after an empty queue
        errors: Drain calls that raised
        last_error: Message of the most recent drain failure
        drain: Accumulated drain statistics
    """
    iterations: int = 0
    batches: int = 0
    idle_waits: int = 0
    errors: int = 0
    last_error: Optional[str] = None
    drain: DrainStats = field(default_factory=DrainStats)

    def to_dict(self) -> dict:
        return {
            'iterations': self.iterations,
            'batches': self.batches,
            'idle_waits': self.idle_waits,
            'errors': self.errors,
            'last_error': self.last_error,
            'drain': self.drain.to_dict(),
        }


class TriggerLoop:
    """Repeatedly drains the indexing queue until cancelled.

    Usage:
        loop = TriggerLoop(drainer, event_id=None, idle_backoff=30)
        loop.start()          # background thread
        ...
        loop.stop()

    The wait function receives a delay in seconds and returns True when the
    loop was cancelled during the wait. It defaults to waiting on the stop
    event, so stop() interrupts a pending backoff.
    """

    def __init__(
        self,
        drainer: IndexingQueueDrainer,
        event_id: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        idle_backoff: float = DEFAULT_IDLE_BACKOFF,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
        max_error_backoff: float = DEFAULT_MAX_ERROR_BACKOFF,
        stop_event: Optional[threading.Event] = None,
        wait: Optional[Callable[[float], bool]] = None,
        on_batch: Optional[Callable[[List[ItemOutcome]], None]] = None
    ):
        """Initialize trigger loop.

        Args:
            drainer: Queue drainer to invoke
            event_id: Restrict draining to one event (None for every event)
            batch_size: Photos claimed per drain
            concurrency: Worker pool size per drain
            idle_backoff: Seconds to wait after an empty drain
            error_backoff: Seconds to wait after the first drain failure
            max_error_backoff: Upper bound for the doubling error backoff
            stop_event: Cancellation token (created if omitted). A token passed in
                is never reset by the loop
            wait: Wait function, see class docstring
            on_batch: Called with the outcomes of every non-empty drain
        """
        if error_backoff > max_error_backoff:
            raise ValueError("error_backoff must not exceed max_error_backoff")

        self.drainer = drainer
        self.event_id = event_id
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.idle_backoff = idle_backoff
        self.error_backoff = error_backoff
        self.max_error_backoff = max_error_backoff
        self._owns_stop_event = stop_event is None
        self.stop_event = stop_event or threading.Event()
        self._wait = wait or self.stop_event.wait
        self.on_batch = on_batch

        self.stats = LoopStats()
        self._thread: Optional[threading.Thread] = None
        self._consecutive_errors = 0

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def error_delay(self, consecutive_errors: int) -> float:
        """Backoff after the given number of consecutive drain failures."""
        delay = self.error_backoff * (2 ** max(consecutive_errors - 1, 0))
        return min(delay, self.max_error_backoff)

    def run_once(self) -> Optional[float]:
        """Run a single iteration.

        Returns:
            Seconds to wait before the next iteration (None to continue immediately)
        """
        self.stats.iterations += 1
        try:
            outcomes = self.drainer.drain(
                event_id=self.event_id,
                batch_size=self.batch_size,
                concurrency=self.concurrency
            )
        except Exception as e:
            self._consecutive_errors += 1
            self.stats.errors += 1
            self.stats.last_error = str(e)
            delay = self.error_delay(self._consecutive_errors)
            logger.error(f"Drain failed ({self._consecutive_errors} in a row): {e}; retrying in {delay:.1f}s")
            return delay

        self._consecutive_errors = 0
        if not outcomes:
            self.stats.idle_waits += 1
            logger.debug(f"Queue empty, idling {self.idle_backoff:.1f}s")
            return self.idle_backoff

        self.stats.batches += 1
        self.stats.drain.add(outcomes)
        if self.on_batch:
            self.on_batch(outcomes)
        return None

    def run(self, max_iterations: Optional[int] = None) -> LoopStats:
        """Run the loop in the calling thread until cancelled.

        Args:
            max_iterations: Stop after this many drain calls (None for no limit)

        Returns:
            LoopStats for this run
        """
        logger.info(
            f"Trigger loop started (event={self.event_id}, batch_size={self.batch_size}, "
            f"concurrency={self.concurrency})"
        )
        start_time = time.time()

        while not self.cancelled:
            if max_iterations is not None and self.stats.iterations >= max_iterations:
                break

            delay = self.run_once()
            if delay is not None and delay > 0:
                if self._wait(delay):
                    break

        self.stats.drain.processing_time = time.time() - start_time
        logger.info(f"Trigger loop stopped: {self.stats.drain}")
        return self.stats

    def start(self) -> threading.Thread:
        """Run the loop in a daemon thread.

        A loop that created its own stop event can be restarted after stop().
        A shared stop event that is already set makes the thread exit at once.
        """
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        if self._owns_stop_event:
            self.stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="TriggerLoop", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 30.0):
        """Signal cancellation and wait for the current drain to finish."""
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None


def drain_until_empty(
    drainer: IndexingQueueDrainer,
    event_id: Optional[str] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    max_batches: int = 1000,
    show_progress: bool = False
) -> List[ItemOutcome]:
    """Drain batches back to back until the queue is empty.

    Args:
        drainer: Queue drainer
        event_id: Restrict to one event
        batch_size: Photos per batch
        concurrency: Worker pool size
        max_batches: Safety bound on the number of drains
        show_progress: Show a progress bar per batch

    Returns:
        Outcomes of every batch, in order

    Raises:
        ClaimError: If a claim read fails
    """
    outcomes: List[ItemOutcome] = []
    for _ in range(max_batches):
        batch = drainer.drain(
            event_id=event_id,
            batch_size=batch_size,
            concurrency=concurrency,
            show_progress=show_progress
        )
        if not batch:
            break
        outcomes.extend(batch)
    else:
        logger.warning(f"Stopped after {max_batches} batches with work still pending")
    return outcomes
