"""Async operation status state machine."""

import structlog

from tm1rest.errors import InvalidStateTransitionError
from tm1rest.operations.models import OperationStatus


logger = structlog.get_logger()

_FINISHED = {
    OperationStatus.COMPLETED,
    OperationStatus.FAILED,
    OperationStatus.CANCELLED,
    OperationStatus.TIMEOUT,
}

VALID_TRANSITIONS: dict[OperationStatus, set[OperationStatus]] = {
    OperationStatus.PENDING: {
        OperationStatus.PENDING,
        OperationStatus.RUNNING,
        *_FINISHED,
    },
    OperationStatus.RUNNING: {
        OperationStatus.RUNNING,
        *_FINISHED,
    },
    OperationStatus.COMPLETED: set(),  # Terminal state
    OperationStatus.FAILED: set(),  # Terminal state
    OperationStatus.CANCELLED: set(),  # Terminal state
    OperationStatus.TIMEOUT: set(),  # Terminal state
}


def can_transition(from_status: OperationStatus, to_status: OperationStatus) -> bool:
    """Check if a transition is valid.

    Args:
        from_status: The current status.
        to_status: The target status.

    Returns:
        True if the transition is valid, False otherwise.
    """
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def ensure_transition(
    operation_id: str,
    from_status: OperationStatus,
    to_status: OperationStatus,
) -> None:
    """Validate a transition, logging and raising on violation.

    Args:
        operation_id: Operation being mutated, for logging.
        from_status: The current status.
        to_status: The target status.

    Raises:
        InvalidStateTransitionError: If the transition is invalid.
    """
    if can_transition(from_status, to_status):
        return

    logger.error(
        "invariant_violation",
        component="operations",
        error_type="illegal_state_transition",
        operation_id=operation_id,
        from_state=from_status.name,
        to_state=to_status.name,
    )
    raise InvalidStateTransitionError(operation_id, from_status.name, to_status.name)
