"""Domain-specific error types for the TM1 REST client."""


class TM1Error(Exception):
    """Base class for every error raised by tm1rest."""


class TransportError(TM1Error):
    """A request failed after the retry policy was applied.

    Attributes:
        status_code: HTTP status code, or None when no response was received.
        response_body: Decoded response body if one was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: object | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body


class TM1TimeoutError(TM1Error, TimeoutError):
    """A client-side request or a long-running operation timed out.

    Attributes:
        timeout_ms: The timeout that was exceeded, when known.
    """

    def __init__(self, message: str, timeout_ms: float | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.timeout_ms = timeout_ms


class AuthenticationConfigError(TM1Error):
    """No supported credential combination was supplied."""


class OperationNotFoundError(TM1Error):
    """Raised when an operation id is unknown to the registry."""

    def __init__(self, operation_id: str) -> None:
        """Initialize the error.

        Args:
            operation_id: The id that was looked up.
        """
        self.operation_id = operation_id
        super().__init__(f"Operation with ID {operation_id} not found")


class InvalidStateTransitionError(TM1Error):
    """Raised when an operation is moved along an illegal transition."""

    def __init__(self, operation_id: str, from_status: str, to_status: str) -> None:
        """Initialize the error.

        Args:
            operation_id: The operation being mutated.
            from_status: The current status name.
            to_status: The attempted target status name.
        """
        self.operation_id = operation_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid state transition for operation {operation_id}: "
            f"{from_status} -> {to_status}"
        )


class OperationFailedError(TM1Error):
    """The remote operation finished with errors."""

    def __init__(self, operation_id: str, error: str | None) -> None:
        self.operation_id = operation_id
        self.error = error
        super().__init__(f"Operation failed: {error}")


class OperationCancelledError(TM1Error):
    """The awaited operation was cancelled."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} was cancelled")


class PollingStoppedError(TM1Error):
    """A polling loop was stopped before the operation reached a final state."""


class ScheduleNotSupportedError(TM1Error, NotImplementedError):
    """Scheduling operations for later execution is not available."""


class ConnectionConfigError(TM1Error):
    """Raised when a connection configuration file fails validation."""

    def __init__(self, errors: list[dict[str, str]], file_path: str) -> None:
        """Initialize the error.

        Args:
            errors: Flattened validation error details.
            file_path: Path to the file that failed validation.
        """
        self.errors = errors
        self.file_path = file_path
        super().__init__(f"Validation failed for {file_path}: {len(errors)} errors")
