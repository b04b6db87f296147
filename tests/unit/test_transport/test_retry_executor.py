"""Unit tests for the retry executor."""

from collections.abc import Iterator

import httpx
import pytest

from tm1rest.errors import TM1TimeoutError, TransportError
from tm1rest.transport.metrics import TransportMetrics
from tm1rest.transport.models import FailureClass, RetryPolicy
from tm1rest.transport.retry import (
    RetryExecutor,
    classify_status,
    extract_error_message,
)


REQUEST = httpx.Request("GET", "http://tm1.test/api/v1/Cubes")


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    """Reset metrics singleton around each test."""
    TransportMetrics.reset()
    yield
    TransportMetrics.reset()


class ScriptedSend:
    """Returns scripted responses or raises scripted errors, in order."""

    def __init__(self, *outcomes: int | Exception) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def __call__(self) -> httpx.Response:
        outcome = self._outcomes[min(self.calls, len(self._outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, request=REQUEST)


class TestClassifyStatus:
    """Tests for status classification."""

    def test_success_is_none(self) -> None:
        """Test that 2xx statuses are not failures."""
        assert classify_status(200) is None
        assert classify_status(204) is None

    def test_unauthorized(self) -> None:
        """Test that 401 is UNAUTHORIZED."""
        assert classify_status(401) is FailureClass.UNAUTHORIZED

    def test_server_errors(self) -> None:
        """Test that 5xx is HTTP_5XX."""
        assert classify_status(500) is FailureClass.HTTP_5XX
        assert classify_status(503) is FailureClass.HTTP_5XX

    def test_client_errors(self) -> None:
        """Test that other 4xx is HTTP_4XX."""
        assert classify_status(404) is FailureClass.HTTP_4XX
        assert classify_status(403) is FailureClass.HTTP_4XX


class TestExtractErrorMessage:
    """Tests for error message extraction."""

    def test_structured_error_message(self) -> None:
        """Test that error.message is preferred."""
        response = httpx.Response(
            400, json={"error": {"code": "278", "message": "Cube not found"}}
        )
        assert extract_error_message(response) == "Cube not found"

    def test_error_object_serialized(self) -> None:
        """Test that an error object without message is serialized."""
        response = httpx.Response(400, json={"error": {"code": "278"}})
        assert extract_error_message(response) == '{"code": "278"}'

    def test_fallback_to_status_line(self) -> None:
        """Test that a non-JSON body falls back to the status line."""
        response = httpx.Response(404, text="nope")
        assert extract_error_message(response) == "HTTP 404: Not Found"


class TestRetryExecutor:
    """Tests for retry, backoff and re-authentication."""

    def test_success_first_attempt(self) -> None:
        """Test that a success is returned without retries."""
        sleeps: list[float] = []
        send = ScriptedSend(200)

        response = RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert response.status_code == 200
        assert send.calls == 1
        assert sleeps == []

    def test_503_retried_with_exponential_backoff(self) -> None:
        """Test that a persistent 503 makes four attempts with 1s, 2s, 4s waits."""
        sleeps: list[float] = []
        send = ScriptedSend(503)

        with pytest.raises(TransportError) as exc_info:
            RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert send.calls == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert exc_info.value.status_code == 503
        metrics = TransportMetrics.get_instance()
        assert metrics.http_retry_total == 3
        assert metrics.http_failures_total == {"HTTP_5XX": 1}

    def test_recovers_after_transient_failure(self) -> None:
        """Test that a retry succeeding ends the loop."""
        sleeps: list[float] = []
        send = ScriptedSend(502, 200)

        response = RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert response.status_code == 200
        assert send.calls == 2
        assert sleeps == [1.0]

    def test_connection_error_retried(self) -> None:
        """Test that connection errors are retried."""
        sleeps: list[float] = []
        send = ScriptedSend(httpx.ConnectError("refused", request=REQUEST), 200)

        response = RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert response.status_code == 200
        assert sleeps == [1.0]

    def test_connection_error_exhausted_chains_cause(self) -> None:
        """Test that the last network error is chained when retries run out."""
        send = ScriptedSend(httpx.ConnectError("refused", request=REQUEST))

        with pytest.raises(TransportError, match="Connection failed") as exc_info:
            RetryExecutor(RetryPolicy(max_retries=1), sleep=lambda _: None).execute(
                send
            )

        assert send.calls == 2
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_timeout_not_retried(self) -> None:
        """Test that a client-side timeout raises TM1TimeoutError at once."""
        sleeps: list[float] = []
        send = ScriptedSend(httpx.ReadTimeout("slow", request=REQUEST))

        with pytest.raises(TM1TimeoutError):
            RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert send.calls == 1
        assert sleeps == []

    def test_404_fails_immediately(self) -> None:
        """Test that a 4xx response is not retried."""
        sleeps: list[float] = []
        send = ScriptedSend(404)

        with pytest.raises(TransportError) as exc_info:
            RetryExecutor(RetryPolicy(), sleep=sleeps.append).execute(send)

        assert send.calls == 1
        assert sleeps == []
        assert exc_info.value.status_code == 404

    def test_401_reauthenticates_once(self) -> None:
        """Test that a 401 triggers one re-auth and the request is re-issued."""
        reauths: list[int] = []
        send = ScriptedSend(401, 200)

        response = RetryExecutor(RetryPolicy(), sleep=lambda _: None).execute(
            send, reauthenticate=lambda: reauths.append(1)
        )

        assert response.status_code == 200
        assert send.calls == 2
        assert reauths == [1]

    def test_second_401_surfaces(self) -> None:
        """Test that a 401 after re-auth is raised without another re-auth."""
        reauths: list[int] = []
        send = ScriptedSend(401, 401)

        with pytest.raises(TransportError) as exc_info:
            RetryExecutor(RetryPolicy(), sleep=lambda _: None).execute(
                send, reauthenticate=lambda: reauths.append(1)
            )

        assert exc_info.value.status_code == 401
        assert send.calls == 2
        assert reauths == [1]
        assert TransportMetrics.get_instance().http_reauth_total == 1

    def test_401_without_reauth_callable(self) -> None:
        """Test that a 401 is raised immediately when re-auth is unavailable."""
        send = ScriptedSend(401)

        with pytest.raises(TransportError):
            RetryExecutor(RetryPolicy(), sleep=lambda _: None).execute(send)

        assert send.calls == 1

    def test_error_carries_response_body(self) -> None:
        """Test that the decoded error body is attached to the exception."""

        def send() -> httpx.Response:
            return httpx.Response(
                400, json={"error": {"message": "Bad MDX"}}, request=REQUEST
            )

        with pytest.raises(TransportError, match="Bad MDX") as exc_info:
            RetryExecutor(RetryPolicy(), sleep=lambda _: None).execute(send)

        assert exc_info.value.response_body == {"error": {"message": "Bad MDX"}}
