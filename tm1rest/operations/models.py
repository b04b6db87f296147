"""Data models for long-running asynchronous operations."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class OperationStatus(str, Enum):
    """Lifecycle status of an async operation.

    State transitions:
        PENDING -> RUNNING: Remote work started
        PENDING/RUNNING -> COMPLETED | FAILED | CANCELLED | TIMEOUT: Finished

    The four finishing states are terminal: no transition leaves them.
    """

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMEOUT = "Timeout"


TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.COMPLETED,
        OperationStatus.FAILED,
        OperationStatus.CANCELLED,
        OperationStatus.TIMEOUT,
    }
)

# Vendor status strings reported by the server (case-sensitive)
VENDOR_STATUS_MAP: dict[str, OperationStatus] = {
    "Running": OperationStatus.RUNNING,
    "CompletedSuccessfully": OperationStatus.COMPLETED,
    "CompletedWithErrors": OperationStatus.FAILED,
    "Cancelled": OperationStatus.CANCELLED,
    "Timeout": OperationStatus.TIMEOUT,
}


def is_terminal(status: OperationStatus) -> bool:
    """Check if a status is terminal."""
    return status in TERMINAL_STATUSES


def map_vendor_status(vendor_status: object) -> OperationStatus | None:
    """Map a server status string to a local status.

    Args:
        vendor_status: Value of the server's ``Status`` field.

    Returns:
        The mapped status, or None to leave the local status as is.
    """
    if not isinstance(vendor_status, str):
        return None
    return VENDOR_STATUS_MAP.get(vendor_status)


class OperationType(str, Enum):
    """Kind of remote work an operation represents."""

    PROCESS_EXECUTION = "ProcessExecution"
    MDX_QUERY = "MdxQuery"
    VIEW_EXECUTION = "ViewExecution"
    BULK_OPERATION = "BulkOperation"
    CUSTOM = "Custom"


class OperationSpec(BaseModel):
    """Definition supplied when creating an async operation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: OperationType
    name: Annotated[str, Field(min_length=1)]
    parameters: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    timeout_ms: Annotated[int, Field(gt=0)] | None = None
    retry_attempts: Annotated[int, Field(ge=0)] | None = None


class AsyncOperation(BaseModel):
    """Record of one long-running operation.

    Owned by the registry; callers only ever receive deep copies.
    ``end_time`` is set if and only if the status is terminal.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    type: OperationType
    name: str
    status: OperationStatus = OperationStatus.PENDING
    progress: Annotated[float, Field(ge=0.0, le=100.0)] | None = None
    start_time: datetime
    end_time: datetime | None = None
    result: Any = None
    error: str | None = None
    parameters: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    timeout_ms: int | None = None
    retry_attempts: int | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the operation has finished."""
        return is_terminal(self.status)


class PollingOptions(BaseModel):
    """Options for poll_process_execution.

    Unset values fall back to the registry defaults; ``max_attempts``
    defaults to ``timeout_ms // interval_ms``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval_ms: Annotated[int, Field(gt=0)] | None = None
    max_attempts: Annotated[int, Field(ge=1)] | None = None
    timeout_ms: Annotated[int, Field(gt=0)] | None = None


class Schedule(BaseModel):
    """Recurrence description for scheduled operations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    frequency: Literal["once", "hourly", "daily", "weekly", "monthly"]
    start_time: datetime | None = None
    end_time: datetime | None = None
    interval: Annotated[int, Field(ge=1)] | None = None
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] | None = None
    days_of_month: list[Annotated[int, Field(ge=1, le=31)]] | None = None
