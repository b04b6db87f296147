"""Background connection health monitoring."""

import threading
from collections.abc import Callable

import structlog

from tm1rest.transport.models import HealthReport


logger = structlog.get_logger()


class ConnectionMonitor:
    """Runs a recurring health probe on a daemon thread.

    The callback is edge-triggered: the first probe establishes the
    baseline, and ``on_change`` fires only when ``healthy`` flips between
    consecutive probes.
    """

    def __init__(
        self,
        probe: Callable[[], HealthReport],
        interval_ms: int,
        on_change: Callable[[HealthReport], None],
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Callable returning a HealthReport; must not raise.
            interval_ms: Delay between probes in milliseconds.
            on_change: Callback invoked with the report on every transition.
        """
        if interval_ms <= 0:
            msg = "interval_ms must be positive"
            raise ValueError(msg)
        self._probe = probe
        self._interval_ms = interval_ms
        self._on_change = on_change
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_healthy: bool | None = None
        self._log = logger.bind(component="monitor")

    @property
    def last_healthy(self) -> bool | None:
        """Get the health state seen by the last probe, None before the first."""
        return self._last_healthy

    @property
    def running(self) -> bool:
        """Check if the monitor thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitor thread. Starting twice is a no-op."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="tm1rest-connection-monitor", daemon=True
        )
        self._thread.start()
        self._log.info("connection_monitor_started", interval_ms=self._interval_ms)

    def stop(self) -> None:
        """Stop the monitor thread and wait for it to exit."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        self._log.info("connection_monitor_stopped")

    def check_once(self) -> HealthReport:
        """Run one probe and fire the callback on a transition.

        Returns:
            The probe's report.
        """
        report = self._probe()
        previous = self._last_healthy
        self._last_healthy = report.healthy

        if previous is not None and previous != report.healthy:
            self._log.info(
                "connection_health_changed",
                healthy=report.healthy,
                error=report.error,
            )
            try:
                self._on_change(report)
            except Exception as e:  # noqa: BLE001
                self._log.error("connection_monitor_callback_error", error=str(e))

        return report

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check_once()
            if self._stop.wait(self._interval_ms / 1000.0):
                break
