"""Tracking and polling of long-running TM1 operations."""

from tm1rest.operations.metrics import OperationMetrics
from tm1rest.operations.models import (
    TERMINAL_STATUSES,
    VENDOR_STATUS_MAP,
    AsyncOperation,
    OperationSpec,
    OperationStatus,
    OperationType,
    PollingOptions,
    Schedule,
    is_terminal,
    map_vendor_status,
)
from tm1rest.operations.polling import PollTask, PollTaskSet
from tm1rest.operations.protocols import OperationTransport
from tm1rest.operations.registry import AsyncOperationRegistry
from tm1rest.operations.state_machine import (
    VALID_TRANSITIONS,
    can_transition,
    ensure_transition,
)


__all__ = [
    # Registry
    "AsyncOperationRegistry",
    "OperationTransport",
    # Models
    "AsyncOperation",
    "OperationSpec",
    "OperationStatus",
    "OperationType",
    "PollingOptions",
    "Schedule",
    "TERMINAL_STATUSES",
    "VENDOR_STATUS_MAP",
    "is_terminal",
    "map_vendor_status",
    # State machine
    "VALID_TRANSITIONS",
    "can_transition",
    "ensure_transition",
    # Polling
    "PollTask",
    "PollTaskSet",
    # Metrics
    "OperationMetrics",
]
