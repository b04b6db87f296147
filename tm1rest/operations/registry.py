"""In-memory registry of long-running TM1 operations.

Tracks operations created by the caller, reconciles their status with the
server's AsyncOperations endpoint and provides blocking helpers to poll,
wait for and monitor them. Every record mutation happens under one lock;
remote calls are made outside it.
"""

import threading
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from tm1rest.constants import (
    ASYNC_OPERATION_CANCEL_ENDPOINT,
    ASYNC_OPERATION_ENDPOINT,
    DEFAULT_CLEANUP_MAX_AGE_MS,
    DEFAULT_OPERATION_TIMEOUT_MS,
    DEFAULT_POLL_INTERVAL_MS,
)
from tm1rest.errors import (
    OperationCancelledError,
    OperationFailedError,
    OperationNotFoundError,
    PollingStoppedError,
    ScheduleNotSupportedError,
    TM1Error,
    TM1TimeoutError,
)
from tm1rest.operations.metrics import OperationMetrics
from tm1rest.operations.models import (
    AsyncOperation,
    OperationSpec,
    OperationStatus,
    PollingOptions,
    Schedule,
    is_terminal,
    map_vendor_status,
)
from tm1rest.operations.polling import PollTaskSet
from tm1rest.operations.protocols import OperationTransport
from tm1rest.operations.state_machine import ensure_transition


logger = structlog.get_logger()

OPERATION_ID_PREFIX = "async-op-"

ProgressCallback = Callable[[AsyncOperation], None]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_progress(value: object) -> float | None:
    """Accept a numeric progress value in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if 0 <= value <= 100:  # noqa: PLR2004
        return float(value)
    return None


class AsyncOperationRegistry:
    """Registry and poller for asynchronous TM1 operations."""

    def __init__(  # noqa: PLR0913
        self,
        transport: OperationTransport,
        default_poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        default_timeout_ms: int = DEFAULT_OPERATION_TIMEOUT_MS,
        report_cancel_failures: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the registry.

        Args:
            transport: Session used for status checks and cancel requests.
            default_poll_interval_ms: Interval used when a call omits one.
            default_timeout_ms: Timeout used when a call omits one.
            report_cancel_failures: Log failed remote cancels as warnings
                instead of at debug level.
            clock: Source of wall-clock timestamps for start/end times.
        """
        if default_poll_interval_ms <= 0:
            msg = "default_poll_interval_ms must be positive"
            raise ValueError(msg)
        if default_timeout_ms <= 0:
            msg = "default_timeout_ms must be positive"
            raise ValueError(msg)

        self._transport = transport
        self._default_interval_ms = default_poll_interval_ms
        self._default_timeout_ms = default_timeout_ms
        self._report_cancel_failures = report_cancel_failures
        self._clock = clock

        self._operations: dict[str, AsyncOperation] = {}
        self._issued_ids: set[str] = set()
        self._lock = threading.Lock()
        self._tasks = PollTaskSet()
        self._metrics = OperationMetrics.get_instance()
        self._log = logger.bind(component="operations")

    # ------------------------------------------------------------------
    # Record management
    # ------------------------------------------------------------------

    def create_async_operation(self, spec: OperationSpec) -> str:
        """Register a new operation in PENDING state.

        Args:
            spec: Operation definition.

        Returns:
            A fresh operation id, never reused within this registry.
        """
        with self._lock:
            operation_id = self._new_id()
            self._operations[operation_id] = AsyncOperation(
                id=operation_id,
                type=spec.type,
                name=spec.name,
                status=OperationStatus.PENDING,
                start_time=self._clock(),
                parameters=spec.parameters,
                metadata=spec.metadata,
                timeout_ms=spec.timeout_ms,
                retry_attempts=spec.retry_attempts,
            )

        self._metrics.record_created()
        self._log.info(
            "operation_created",
            operation_id=operation_id,
            operation_type=spec.type.value,
            name=spec.name,
        )
        return operation_id

    def update_operation_status(
        self,
        operation_id: str,
        status: OperationStatus,
        result: Any = None,
        error: str | None = None,
        progress: float | None = None,
    ) -> None:
        """Move an operation to a new status.

        Args:
            operation_id: Operation to update.
            status: Target status.
            result: Result payload to store, if any.
            error: Error description to store, if any.
            progress: Progress percentage to store, if any.

        Raises:
            OperationNotFoundError: If the id is unknown.
            InvalidStateTransitionError: If the transition is not allowed.
        """
        with self._lock:
            record = self._get_record(operation_id)
            self._apply_transition(record, status, result, error, progress)

        if is_terminal(status):
            # Wake loops waiting on this operation so they resolve now
            self._tasks.stop_for(operation_id)

    def get_operation(self, operation_id: str) -> AsyncOperation | None:
        """Get a snapshot of one operation, or None if unknown."""
        with self._lock:
            record = self._operations.get(operation_id)
            return record.model_copy(deep=True) if record else None

    def get_all_operations(self) -> list[AsyncOperation]:
        """Get snapshots of every tracked operation."""
        with self._lock:
            return [op.model_copy(deep=True) for op in self._operations.values()]

    def schedule_async_operation(self, spec: OperationSpec, schedule: Schedule) -> str:
        """Schedule an operation for later execution.

        Raises:
            ScheduleNotSupportedError: Always.
        """
        self._log.debug(
            "schedule_rejected",
            name=spec.name,
            frequency=schedule.frequency,
        )
        msg = "Scheduled async operations are not supported"
        raise ScheduleNotSupportedError(msg)

    # ------------------------------------------------------------------
    # Remote reconciliation
    # ------------------------------------------------------------------

    def cancel_async_operation(self, operation_id: str) -> None:
        """Cancel an operation locally, then notify the server.

        The local record is CANCELLED before the remote call is made, and
        a failed remote cancel never fails the call.

        Raises:
            OperationNotFoundError: If the id is unknown.
            InvalidStateTransitionError: If the operation already finished.
        """
        with self._lock:
            record = self._get_record(operation_id)
            self._apply_transition(record, OperationStatus.CANCELLED)

        self._tasks.stop_for(operation_id)

        try:
            self._transport.post(ASYNC_OPERATION_CANCEL_ENDPOINT.format(operation_id))
        except TM1Error as e:
            self._metrics.record_remote_cancel_failure()
            log_method = (
                self._log.warning if self._report_cancel_failures else self._log.debug
            )
            log_method(
                "remote_cancel_failed",
                operation_id=operation_id,
                error=str(e),
            )

        self._log.info("operation_cancelled", operation_id=operation_id)

    def get_async_operation_status(self, operation_id: str) -> OperationStatus:
        """Reconcile an operation with the server and return its status.

        Terminal operations are answered locally. A failed remote check is
        logged and the cached status is returned instead of raising.

        Raises:
            OperationNotFoundError: If the id is unknown.
        """
        with self._lock:
            record = self._get_record(operation_id)
            if is_terminal(record.status):
                return record.status

        try:
            envelope = self._transport.get(ASYNC_OPERATION_ENDPOINT.format(operation_id))
        except TM1Error as e:
            self._metrics.record_status_check_failure()
            self._log.warning(
                "status_check_failed",
                operation_id=operation_id,
                error=str(e),
            )
            with self._lock:
                return self._get_record(operation_id).status

        payload = envelope.data if isinstance(envelope.data, dict) else {}
        mapped = map_vendor_status(payload.get("Status"))
        progress = _parse_progress(payload.get("Progress"))

        with self._lock:
            record = self._get_record(operation_id)
            if is_terminal(record.status):
                # Resolved concurrently while the request was in flight
                return record.status
            if mapped is None:
                if progress is not None:
                    record.progress = progress
                return record.status

            result = payload.get("Result") if mapped is OperationStatus.COMPLETED else None
            error = None
            if mapped is OperationStatus.FAILED and payload.get("Error") is not None:
                error = str(payload["Error"])
            self._apply_transition(record, mapped, result, error, progress)
            return record.status

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def poll_process_execution(
        self,
        operation_id: str,
        options: PollingOptions | None = None,
        stop_event: threading.Event | None = None,
    ) -> OperationStatus:
        """Poll until the operation finishes.

        Args:
            operation_id: Operation to poll.
            options: Interval, attempt limit and timeout.
            stop_event: Optional event that stops this loop when set.

        Returns:
            The terminal status reached.

        Raises:
            OperationNotFoundError: If the id is unknown.
            TM1TimeoutError: If attempts or time ran out first.
            PollingStoppedError: If the loop was stopped early.
        """
        options = options or PollingOptions()
        interval_ms = options.interval_ms or self._default_interval_ms
        timeout_ms = options.timeout_ms or self._default_timeout_ms
        max_attempts = options.max_attempts or max(1, timeout_ms // interval_ms)

        self._require(operation_id)
        deadline = time.monotonic() + timeout_ms / 1000.0
        attempts = 0

        with self._tasks.track(operation_id, stop_event) as task:
            while True:
                status = self.get_async_operation_status(operation_id)
                attempts += 1
                self._metrics.record_poll()
                if is_terminal(status):
                    return status

                remaining = deadline - time.monotonic()
                if attempts >= max_attempts or remaining <= 0:
                    break

                if task.wait(min(interval_ms / 1000.0, remaining)):
                    return self._status_after_stop(operation_id)

        self._log.warning(
            "polling_timed_out",
            operation_id=operation_id,
            attempts=attempts,
            timeout_ms=timeout_ms,
        )
        msg = f"Polling timed out after {attempts} attempts"
        raise TM1TimeoutError(msg, timeout_ms=timeout_ms)

    def wait_for_async_operation(
        self,
        operation_id: str,
        timeout_ms: int | None = None,
        interval_ms: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> Any:
        """Block until the operation finishes and return its result.

        On timeout the operation is forced into TIMEOUT.

        Raises:
            OperationNotFoundError: If the id is unknown.
            OperationFailedError: If the operation failed.
            OperationCancelledError: If the operation was cancelled.
            TM1TimeoutError: If the operation timed out.
            PollingStoppedError: If the loop was stopped early.
        """
        return self._await_terminal(
            operation_id, timeout_ms, interval_ms, None, stop_event
        )

    def monitor_async_operation(
        self,
        operation_id: str,
        progress_callback: ProgressCallback | None = None,
        timeout_ms: int | None = None,
        interval_ms: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> Any:
        """Like wait_for_async_operation, reporting a snapshot every tick.

        The callback runs before the terminal check, so it always sees the
        final snapshot as well.
        """
        return self._await_terminal(
            operation_id, timeout_ms, interval_ms, progress_callback, stop_event
        )

    def list_active_async_operations(self) -> list[AsyncOperation]:
        """Refresh every non-terminal operation and return those still active."""
        with self._lock:
            candidates = [
                op_id
                for op_id, op in self._operations.items()
                if not is_terminal(op.status)
            ]

        active: list[AsyncOperation] = []
        for operation_id in candidates:
            try:
                status = self.get_async_operation_status(operation_id)
            except OperationNotFoundError:
                continue
            if is_terminal(status):
                continue
            snapshot = self.get_operation(operation_id)
            if snapshot is not None:
                active.append(snapshot)
        return active

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_completed_operations(
        self, max_age_ms: int = DEFAULT_CLEANUP_MAX_AGE_MS
    ) -> int:
        """Remove finished operations whose end time is old enough.

        Args:
            max_age_ms: Minimum age of the end time, in milliseconds.

        Returns:
            Number of operations removed.
        """
        cutoff = self._clock() - timedelta(milliseconds=max_age_ms)
        with self._lock:
            stale = [
                op_id
                for op_id, op in self._operations.items()
                if is_terminal(op.status)
                and op.end_time is not None
                and op.end_time <= cutoff
            ]
            for op_id in stale:
                del self._operations[op_id]
            remaining = len(self._operations)

        for op_id in stale:
            self._tasks.stop_for(op_id)

        self._metrics.record_cleaned(len(stale))
        self._log.info(
            "operations_cleaned_up",
            removed=len(stale),
            remaining=remaining,
            max_age_ms=max_age_ms,
        )
        return len(stale)

    def cleanup(self) -> None:
        """Stop every outstanding polling loop."""
        stopped = self._tasks.stop_all()
        self._log.info("poll_tasks_stopped", count=stopped)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        """Draw an unused id. Caller holds the lock."""
        while True:
            candidate = f"{OPERATION_ID_PREFIX}{uuid.uuid4().hex}"
            if candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

    def _get_record(self, operation_id: str) -> AsyncOperation:
        """Look up a live record. Caller holds the lock."""
        record = self._operations.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)
        return record

    def _require(self, operation_id: str) -> None:
        with self._lock:
            self._get_record(operation_id)

    def _apply_transition(  # noqa: PLR0913
        self,
        record: AsyncOperation,
        status: OperationStatus,
        result: Any = None,
        error: str | None = None,
        progress: float | None = None,
    ) -> None:
        """Validate and apply a status change. Caller holds the lock."""
        from_status = record.status
        ensure_transition(record.id, from_status, status)

        record.status = status
        if progress is not None:
            record.progress = progress
        if result is not None:
            record.result = result
        if error is not None:
            record.error = error
        if is_terminal(status):
            record.end_time = self._clock()

        if from_status is not status:
            self._metrics.record_transition(status)
            self._log.info(
                "operation_state_transition",
                operation_id=record.id,
                from_state=from_status.name,
                to_state=status.name,
            )

    def _await_terminal(  # noqa: PLR0913
        self,
        operation_id: str,
        timeout_ms: int | None,
        interval_ms: int | None,
        progress_callback: ProgressCallback | None,
        stop_event: threading.Event | None,
    ) -> Any:
        timeout_ms = timeout_ms or self._default_timeout_ms
        interval_ms = interval_ms or self._default_interval_ms

        self._require(operation_id)
        deadline = time.monotonic() + timeout_ms / 1000.0

        with self._tasks.track(operation_id, stop_event) as task:
            while True:
                status = self.get_async_operation_status(operation_id)
                self._metrics.record_poll()
                if progress_callback is not None:
                    progress_callback(self._snapshot(operation_id))
                if is_terminal(status):
                    return self._resolve(operation_id, timeout_ms)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return self._expire(operation_id, timeout_ms)

                if task.wait(min(interval_ms / 1000.0, remaining)):
                    self._status_after_stop(operation_id)
                    return self._resolve(operation_id, timeout_ms)

    def _status_after_stop(self, operation_id: str) -> OperationStatus:
        """Re-check once after a stop signal; raise unless finished."""
        status = self.get_async_operation_status(operation_id)
        if is_terminal(status):
            return status
        msg = f"Polling for operation {operation_id} was stopped"
        raise PollingStoppedError(msg)

    def _expire(self, operation_id: str, timeout_ms: int) -> Any:
        forced = False
        with self._lock:
            record = self._get_record(operation_id)
            if not is_terminal(record.status):
                self._apply_transition(record, OperationStatus.TIMEOUT)
                forced = True

        if forced:
            self._log.warning(
                "operation_timed_out",
                operation_id=operation_id,
                timeout_ms=timeout_ms,
            )
            self._tasks.stop_for(operation_id)
        return self._resolve(operation_id, timeout_ms)

    def _snapshot(self, operation_id: str) -> AsyncOperation:
        with self._lock:
            return self._get_record(operation_id).model_copy(deep=True)

    def _resolve(self, operation_id: str, timeout_ms: int | None = None) -> Any:
        """Translate a terminal record into a return value or an error.

        ``timeout_ms`` is the wait that observed the record; it is reported
        on TIMEOUT in preference to the operation's own timeout.
        """
        snapshot = self._snapshot(operation_id)
        if snapshot.status is OperationStatus.COMPLETED:
            return snapshot.result
        if snapshot.status is OperationStatus.FAILED:
            raise OperationFailedError(operation_id, snapshot.error)
        if snapshot.status is OperationStatus.CANCELLED:
            raise OperationCancelledError(operation_id)
        if snapshot.status is OperationStatus.TIMEOUT:
            msg = f"Operation {operation_id} timed out"
            if timeout_ms is None:
                timeout_ms = snapshot.timeout_ms
            raise TM1TimeoutError(msg, timeout_ms=timeout_ms)
        msg = f"Operation {operation_id} has not finished"
        raise TM1Error(msg)
