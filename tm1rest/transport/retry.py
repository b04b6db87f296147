"""Retry and recovery policy applied to every TM1 request."""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

from tm1rest.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_SERVER_ERROR_MAX,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_UNAUTHORIZED,
)
from tm1rest.errors import TM1TimeoutError, TransportError
from tm1rest.transport.metrics import TransportMetrics
from tm1rest.transport.models import FailureClass, RetryPolicy


logger = structlog.get_logger()


def extract_error_message(response: httpx.Response) -> str:
    """Extract a human-readable error message from an error response.

    Prefers the server's structured ``error.message``, then the JSON of the
    ``error`` object, and finally falls back to ``HTTP <status>: <reason>``.

    Args:
        response: The failed HTTP response.

    Returns:
        Error message.
    """
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        payload = response.json()
    except ValueError:
        return fallback

    if not isinstance(payload, dict) or not payload.get("error"):
        return fallback

    error = payload["error"]
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return json.dumps(error)


def classify_status(status_code: int) -> FailureClass | None:
    """Classify an HTTP status code.

    Args:
        status_code: HTTP status code.

    Returns:
        FailureClass for error statuses, None for success.
    """
    if status_code == HTTP_STATUS_UNAUTHORIZED:
        return FailureClass.UNAUTHORIZED
    if HTTP_STATUS_SERVER_ERROR_MIN <= status_code < HTTP_STATUS_SERVER_ERROR_MAX:
        return FailureClass.HTTP_5XX
    if status_code >= HTTP_STATUS_BAD_REQUEST:
        return FailureClass.HTTP_4XX
    return None


@dataclass(frozen=True)
class AttemptFailure:
    """A classified failed attempt."""

    failure: FailureClass
    error: TransportError
    cause: BaseException | None = None


def _response_body(response: httpx.Response) -> object | None:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class RetryExecutor:
    """Executes a request callable under the retry and re-auth policy.

    Failure handling, in priority order:
    - Client-side timeouts raise TM1TimeoutError immediately
    - A 401 triggers exactly one re-authentication and re-issue
    - Connection errors and 5xx are retried with exponential backoff
    - Anything else raises TransportError immediately
    """

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            policy: Retry policy to apply.
            sleep: Sleep function taking seconds; injectable for tests.
        """
        self._policy = policy
        self._sleep = sleep
        self._metrics = TransportMetrics.get_instance()

    @property
    def policy(self) -> RetryPolicy:
        """Get the retry policy."""
        return self._policy

    def execute(
        self,
        send: Callable[[], httpx.Response],
        reauthenticate: Callable[[], None] | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> httpx.Response:
        """Execute a request with retries.

        ``send`` is called once per attempt and must rebuild its headers
        each time, so that an attempt made after re-authentication carries
        the refreshed session.

        Args:
            send: Callable issuing one HTTP request.
            reauthenticate: Callable refreshing the session on 401. When
                None, a 401 is surfaced immediately.
            log: Bound logger for request context.

        Returns:
            The first successful (non-error) response.

        Raises:
            TM1TimeoutError: On a client-side timeout.
            TransportError: On a non-retryable failure or when retries
                are exhausted.
        """
        log = log or logger.bind(component="retry")
        reauthenticated = False
        retry = 0

        while True:
            outcome = self._attempt(send, log)
            if isinstance(outcome, httpx.Response):
                return outcome

            failure = outcome.failure
            if failure is FailureClass.UNAUTHORIZED:
                if not reauthenticated and reauthenticate is not None:
                    reauthenticated = True
                    self._metrics.record_reauth()
                    log.info(
                        "reauth_attempt", status_code=HTTP_STATUS_UNAUTHORIZED
                    )
                    reauthenticate()
                    continue
                if reauthenticated:
                    log.warning(
                        "reauth_rejected", status_code=HTTP_STATUS_UNAUTHORIZED
                    )

            if not self._policy.should_retry(failure, retry):
                self._metrics.record_failure(failure)
                if retry > 0:
                    log.warning(
                        "retries_exhausted",
                        failure=failure.value,
                        retries=retry,
                        error=outcome.error.message,
                    )
                if outcome.cause is not None:
                    raise outcome.error from outcome.cause
                raise outcome.error

            delay_ms = self._policy.get_delay_ms(retry)
            retry += 1
            self._metrics.record_retry()
            log.debug(
                "retry_attempt",
                attempt=retry,
                delay_ms=delay_ms,
                max_retries=self._policy.max_retries,
                failure=failure.value,
            )
            self._sleep(delay_ms / 1000.0)

    def _attempt(
        self,
        send: Callable[[], httpx.Response],
        log: structlog.stdlib.BoundLogger,
    ) -> httpx.Response | AttemptFailure:
        """Issue one attempt and classify its outcome.

        Returns:
            The response on success, otherwise the classified failure.

        Raises:
            TM1TimeoutError: On a client-side timeout.
        """
        start_ns = time.perf_counter_ns()
        try:
            response = send()
        except httpx.TimeoutException as exc:
            self._metrics.record_failure(FailureClass.TIMEOUT)
            log.warning("request_timeout", error=str(exc))
            msg = f"Request timeout: {exc}"
            raise TM1TimeoutError(msg) from exc
        except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            log.debug("connection_error", error=str(exc))
            return AttemptFailure(
                failure=FailureClass.CONNECTION_ERROR,
                error=TransportError(f"Connection failed: {exc}"),
                cause=exc,
            )
        except httpx.HTTPError as exc:
            return AttemptFailure(
                failure=FailureClass.UNKNOWN,
                error=TransportError(f"Request failed: {exc}"),
                cause=exc,
            )

        duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
        self._metrics.record_request(response.status_code, duration_ms)

        failure = classify_status(response.status_code)
        if failure is None:
            return response

        return AttemptFailure(
            failure=failure,
            error=TransportError(
                extract_error_message(response),
                status_code=response.status_code,
                response_body=_response_body(response),
            ),
        )
