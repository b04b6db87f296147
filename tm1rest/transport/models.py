"""Data models for the transport layer."""

import random
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from tm1rest.constants import HTTP_STATUS_OK_MAX, HTTP_STATUS_OK_MIN


class FailureClass(str, Enum):
    """Classification of request failures for retry decisions and metrics.

    - TIMEOUT: Client-side timeout, never retried
    - UNAUTHORIZED: 401, answered by a single re-authentication
    - CONNECTION_ERROR: No response was received (reset, refused, DNS)
    - HTTP_5XX: Retryable server error
    - HTTP_4XX: Non-retryable client error
    - MALFORMED_RESPONSE: Body could not be decoded
    - UNKNOWN: Unclassified error
    """

    TIMEOUT = "TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    HTTP_5XX = "HTTP_5XX"
    HTTP_4XX = "HTTP_4XX"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    UNKNOWN = "UNKNOWN"


RETRYABLE_FAILURES = frozenset({FailureClass.CONNECTION_ERROR, FailureClass.HTTP_5XX})


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Controls how many times transient failures are retried and the backoff
    strategy. Uses exponential backoff:
    delay = base_delay_ms * (exponential_base ^ retry_number)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    base_delay_ms: Annotated[int, Field(ge=0, le=60000)] = 1000
    max_delay_ms: Annotated[int, Field(ge=0, le=300000)] = 30000
    exponential_base: Annotated[float, Field(ge=1.0, le=5.0)] = 2.0
    jitter_factor: Annotated[float, Field(ge=0.0, le=1.0)] = 0.0

    def should_retry(self, failure: FailureClass, attempt: int) -> bool:
        """Determine if a failed request should be retried.

        Args:
            failure: Classification of the failure.
            attempt: Current retry number (0-indexed).

        Returns:
            True if the request should be retried.
        """
        if attempt >= self.max_retries:
            return False
        return failure in RETRYABLE_FAILURES

    def get_delay_ms(self, attempt: int) -> int:
        """Calculate delay before the next retry attempt.

        Args:
            attempt: Current retry number (0-indexed).

        Returns:
            Delay in milliseconds.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay_ms)

        jitter = delay * self.jitter_factor * random.random()  # noqa: S311
        return int(delay + jitter)


class ResponseEnvelope(BaseModel):
    """Decoded response returned by the verb primitives."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: int = Field(ge=100, le=599, description="HTTP status code")
    data: Any = Field(default=None, description="Decoded JSON, text, or None")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers"
    )

    @property
    def is_success(self) -> bool:
        """Check if the status is 2xx."""
        return HTTP_STATUS_OK_MIN <= self.status < HTTP_STATUS_OK_MAX


class HealthReport(BaseModel):
    """Result of a single health probe."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    healthy: bool
    latency_ms: float = Field(ge=0.0)
    server_name: str | None = None
    error: str | None = None


class ConnectionDiagnostics(BaseModel):
    """Structured report produced by TransportSession.test_connection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    health: HealthReport
    authenticated: bool = False
    session_active: bool = False
    user_name: str | None = None
    session_id_present: bool = False
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check that every probe passed."""
        return self.health.healthy and self.authenticated and self.session_active
