"""Unit tests for transport metrics."""

from collections.abc import Iterator

import pytest

from tm1rest.transport.metrics import TransportMetrics
from tm1rest.transport.models import FailureClass


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    """Reset metrics singleton around each test."""
    TransportMetrics.reset()
    yield
    TransportMetrics.reset()


class TestTransportMetrics:
    """Tests for TransportMetrics."""

    def test_singleton(self) -> None:
        """Test that get_instance returns the same object until reset."""
        first = TransportMetrics.get_instance()
        assert TransportMetrics.get_instance() is first

        TransportMetrics.reset()

        assert TransportMetrics.get_instance() is not first

    def test_records_requests_and_average(self) -> None:
        """Test request counters and average duration."""
        metrics = TransportMetrics.get_instance()

        metrics.record_request(200, 10.0)
        metrics.record_request(200, 30.0)
        metrics.record_request(503, 20.0)

        assert metrics.http_requests_total == {200: 2, 503: 1}
        assert metrics.avg_duration_ms == 20.0

    def test_average_without_requests(self) -> None:
        """Test that the average is zero before any request."""
        assert TransportMetrics.get_instance().avg_duration_ms == 0.0

    def test_to_dict(self) -> None:
        """Test dictionary export."""
        metrics = TransportMetrics.get_instance()
        metrics.record_retry()
        metrics.record_reauth()
        metrics.record_failure(FailureClass.TIMEOUT)

        exported = metrics.to_dict()

        assert exported["http_retry_total"] == 1
        assert exported["http_reauth_total"] == 1
        assert exported["http_failures_total"] == {"TIMEOUT": 1}
