"""Metrics collection for the async operation registry."""

from dataclasses import dataclass, field
from typing import ClassVar

from tm1rest.operations.models import OperationStatus


@dataclass
class OperationMetrics:
    """Metrics for async operation tracking.

    Attributes:
        operations_created_total: Operations registered.
        transitions_total: Status changes keyed by target status.
        polls_total: Status checks issued by polling loops.
        status_check_failures_total: Remote status checks that failed.
        remote_cancel_failures_total: Remote cancel notifications that failed.
        operations_cleaned_total: Finished operations removed.
    """

    operations_created_total: int = 0
    transitions_total: dict[str, int] = field(default_factory=dict)
    polls_total: int = 0
    status_check_failures_total: int = 0
    remote_cancel_failures_total: int = 0
    operations_cleaned_total: int = 0

    _instance: ClassVar["OperationMetrics | None"] = None

    @classmethod
    def get_instance(cls) -> "OperationMetrics":
        """Get singleton metrics instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        cls._instance = None

    def record_created(self) -> None:
        """Record a newly registered operation."""
        self.operations_created_total += 1

    def record_transition(self, status: OperationStatus) -> None:
        """Record a status change.

        Args:
            status: The status transitioned into.
        """
        key = status.name
        self.transitions_total[key] = self.transitions_total.get(key, 0) + 1

    def record_poll(self) -> None:
        """Record a polling tick."""
        self.polls_total += 1

    def record_status_check_failure(self) -> None:
        """Record a failed remote status check."""
        self.status_check_failures_total += 1

    def record_remote_cancel_failure(self) -> None:
        """Record a failed remote cancel notification."""
        self.remote_cancel_failures_total += 1

    def record_cleaned(self, count: int) -> None:
        """Record removed operations.

        Args:
            count: Number of operations removed.
        """
        self.operations_cleaned_total += count

    def to_dict(self) -> dict[str, int | dict[str, int]]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        return {
            "operations_created_total": self.operations_created_total,
            "transitions_total": dict(self.transitions_total),
            "polls_total": self.polls_total,
            "status_check_failures_total": self.status_check_failures_total,
            "remote_cancel_failures_total": self.remote_cancel_failures_total,
            "operations_cleaned_total": self.operations_cleaned_total,
        }
