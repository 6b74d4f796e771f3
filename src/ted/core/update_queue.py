"""Serialized update queue between timer threads and the owning thread."""

import logging
import queue
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class UpdateQueue:
    """FIFO of tasks posted from any thread and run on the owner's thread.

    Background timers only post; all engine state is touched by whoever calls
    run_pending(), one task at a time.
    """

    def __init__(self, on_error: Optional[Callable[[Exception], None]] = None):
        """Initialize the queue.

        Args:
            on_error: Called with any exception a task raises. If None, the
                exception propagates out of run_pending().
        """
        self._tasks: "queue.Queue[Task]" = queue.Queue()
        self.on_error = on_error

    def post(self, task: Task) -> None:
        """Schedule a task. Safe to call from any thread."""
        self._tasks.put(task)

    def pending(self) -> int:
        return self._tasks.qsize()

    def _run(self, task: Task) -> None:
        try:
            task()
        except Exception as e:
            if self.on_error is None:
                raise
            logger.debug(f"Queued task failed: {e}")
            self.on_error(e)

    def run_pending(self) -> int:
        """Run every task queued so far.

        Returns:
            Number of tasks run
        """
        count = 0
        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                return count
            self._run(task)
            count += 1

    def run_next(self, timeout: Optional[float] = None) -> bool:
        """Wait for one task and run it.

        Returns:
            True if a task ran, False on timeout
        """
        try:
            task = self._tasks.get(timeout=timeout)
        except queue.Empty:
            return False
        self._run(task)
        return True
