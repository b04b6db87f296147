"""Python client core for the TM1 / Planning Analytics REST API.

The package is organised in three layers:
- auth: selects one authentication mode from supplied credential fields
- transport: session with retries, re-authentication and health probes
- operations: registry and poller for long-running asynchronous operations
"""

from tm1rest.auth import AuthenticationMode, CredentialFields
from tm1rest.errors import (
    AuthenticationConfigError,
    ConnectionConfigError,
    InvalidStateTransitionError,
    OperationCancelledError,
    OperationFailedError,
    OperationNotFoundError,
    PollingStoppedError,
    ScheduleNotSupportedError,
    TM1Error,
    TM1TimeoutError,
    TransportError,
)
from tm1rest.operations import (
    AsyncOperation,
    AsyncOperationRegistry,
    OperationSpec,
    OperationStatus,
    OperationType,
    PollingOptions,
)
from tm1rest.transport import ConnectionConfig, RetryPolicy, TransportSession


__all__ = [
    # Auth
    "AuthenticationMode",
    "CredentialFields",
    # Transport
    "ConnectionConfig",
    "RetryPolicy",
    "TransportSession",
    # Operations
    "AsyncOperation",
    "AsyncOperationRegistry",
    "OperationSpec",
    "OperationStatus",
    "OperationType",
    "PollingOptions",
    # Errors
    "AuthenticationConfigError",
    "ConnectionConfigError",
    "InvalidStateTransitionError",
    "OperationCancelledError",
    "OperationFailedError",
    "OperationNotFoundError",
    "PollingStoppedError",
    "ScheduleNotSupportedError",
    "TM1Error",
    "TM1TimeoutError",
    "TransportError",
]
