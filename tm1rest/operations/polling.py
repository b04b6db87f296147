"""Cancellable poll tasks owned by the operation registry."""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager


# Granularity for noticing a caller-owned stop event
CALLER_EVENT_CHECK_SECONDS = 0.05


class PollTask:
    """Stop signal for one polling loop.

    The loop waits between ticks on the task's own event, so stopping the
    task wakes it immediately instead of letting a timer run out. A
    caller-owned event is only ever read, never set, so it can be shared
    by several loops as a shutdown signal.
    """

    def __init__(
        self,
        operation_id: str,
        event: threading.Event | None = None,
        check_interval: float = CALLER_EVENT_CHECK_SECONDS,
    ) -> None:
        """Initialize the task.

        Args:
            operation_id: Operation being polled.
            event: Caller-owned event to stop this loop from outside.
            check_interval: How often a wait looks at the caller's event.
        """
        self.operation_id = operation_id
        self._event = threading.Event()
        self._caller_event = event
        self._check_interval = check_interval

    @property
    def stopped(self) -> bool:
        """Check if a stop was requested."""
        return self._event.is_set() or (
            self._caller_event is not None and self._caller_event.is_set()
        )

    def stop(self) -> None:
        """Request the loop to stop."""
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """Wait for the next tick.

        Args:
            seconds: Maximum time to wait.

        Returns:
            True if the task was stopped while waiting.
        """
        if self._caller_event is None:
            return self._event.wait(seconds)

        deadline = time.monotonic() + seconds
        while not self.stopped:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._event.wait(min(self._check_interval, remaining))
        return True


class PollTaskSet:
    """Thread-safe set of live poll tasks."""

    def __init__(self) -> None:
        self._tasks: set[PollTask] = set()
        self._lock = threading.Lock()

    @property
    def active_count(self) -> int:
        """Get the number of registered tasks."""
        with self._lock:
            return len(self._tasks)

    @contextmanager
    def track(
        self, operation_id: str, event: threading.Event | None = None
    ) -> Iterator[PollTask]:
        """Register a task for the duration of a polling loop.

        Args:
            operation_id: Operation being polled.
            event: Optional caller-owned stop event.

        Yields:
            The registered PollTask, removed again when the loop exits.
        """
        task = PollTask(operation_id, event)
        with self._lock:
            self._tasks.add(task)
        try:
            yield task
        finally:
            with self._lock:
                self._tasks.discard(task)

    def stop_for(self, operation_id: str) -> int:
        """Stop every task polling one operation.

        Returns:
            Number of tasks signalled.
        """
        with self._lock:
            tasks = [t for t in self._tasks if t.operation_id == operation_id]
        for task in tasks:
            task.stop()
        return len(tasks)

    def stop_all(self) -> int:
        """Stop every registered task.

        Returns:
            Number of tasks signalled.
        """
        with self._lock:
            tasks = list(self._tasks)
        for task in tasks:
            task.stop()
        return len(tasks)
