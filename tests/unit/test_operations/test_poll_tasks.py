"""Unit tests for poll task bookkeeping."""

import threading

from tm1rest.operations.polling import PollTask, PollTaskSet


class TestPollTask:
    """Tests for PollTask."""

    def test_wait_times_out_when_not_stopped(self) -> None:
        """Test that wait returns False after the timeout."""
        task = PollTask("op-1")

        assert task.wait(0.01) is False
        assert task.stopped is False

    def test_stop_wakes_wait(self) -> None:
        """Test that a stopped task returns True immediately."""
        task = PollTask("op-1")
        task.stop()

        assert task.wait(5.0) is True
        assert task.stopped is True

    def test_external_event(self) -> None:
        """Test that a caller-owned event stops the task."""
        event = threading.Event()
        task = PollTask("op-1", event)

        event.set()

        assert task.stopped is True
        assert task.wait(5.0) is True

    def test_external_event_set_during_wait(self) -> None:
        """Test that setting the caller's event wakes a waiting task."""
        event = threading.Event()
        task = PollTask("op-1", event, check_interval=0.01)
        timer = threading.Timer(0.05, event.set)
        timer.start()

        try:
            assert task.wait(5.0) is True
        finally:
            timer.cancel()

    def test_external_event_times_out(self) -> None:
        """Test that wait with an unset caller event still times out."""
        task = PollTask("op-1", threading.Event(), check_interval=0.01)

        assert task.wait(0.03) is False

    def test_stop_leaves_external_event_unset(self) -> None:
        """Test that stopping a task never sets the caller's event."""
        event = threading.Event()
        task = PollTask("op-1", event)

        task.stop()

        assert task.stopped is True
        assert event.is_set() is False


class TestPollTaskSet:
    """Tests for PollTaskSet."""

    def test_track_registers_and_removes(self) -> None:
        """Test that tasks live only inside the tracking block."""
        tasks = PollTaskSet()

        with tasks.track("op-1"):
            assert tasks.active_count == 1

        assert tasks.active_count == 0

    def test_stop_for_targets_one_operation(self) -> None:
        """Test that stop_for only signals matching tasks."""
        tasks = PollTaskSet()

        with tasks.track("op-1") as first, tasks.track("op-2") as second:
            assert tasks.stop_for("op-1") == 1
            assert first.stopped is True
            assert second.stopped is False

    def test_stop_all(self) -> None:
        """Test that stop_all signals every task."""
        tasks = PollTaskSet()

        with tasks.track("op-1") as first, tasks.track("op-2") as second:
            assert tasks.stop_all() == 2
            assert first.stopped is True
            assert second.stopped is True

    def test_shared_event_not_set_by_stop_for(self) -> None:
        """Test that stopping one operation's tasks spares a shared event."""
        tasks = PollTaskSet()
        shared = threading.Event()

        with (
            tasks.track("op-1", shared) as first,
            tasks.track("op-2", shared) as second,
        ):
            tasks.stop_for("op-1")

            assert first.stopped is True
            assert second.stopped is False
            assert shared.is_set() is False
