"""
Unit tests for the sequence scheduler.

This module tests scheduler configuration, thread lifecycle and tick mutual
exclusion.
"""

import time
import pytest
from datetime import datetime
from unittest.mock import Mock

from coach_sequences.services.scheduler.core import SequenceScheduler, get_sequence_scheduler

SUMMARY = {'processed': 0, 'dispatched': 0, 'completed': 0, 'cancelled': 0, 'waiting': 0, 'errors': 0}


@pytest.fixture
def runner():
    runner = Mock()
    runner.run_tick.return_value = dict(SUMMARY)
    return runner


@pytest.fixture
def scheduler(app, runner):
    """Create a scheduler instance for testing."""
    return SequenceScheduler(app=app, runner=runner)


class TestSequenceScheduler:
    """Test the main SequenceScheduler class."""

    def test_scheduler_initialization(self, app):
        """Test scheduler initialization from app config."""
        app.config['TICK_INTERVAL_SECONDS'] = 30
        app.config['TICK_WORKERS'] = 4

        scheduler = SequenceScheduler(app=app)

        assert scheduler.running is False
        assert scheduler.thread is None
        assert scheduler.tick_interval == 30
        assert scheduler.workers == 4
        assert scheduler.last_tick_at is None

    def test_tick_runs_runner(self, app, scheduler, runner):
        now = datetime(2024, 1, 1, 9, 0)

        summary = scheduler.tick(now=now)

        assert summary == SUMMARY
        runner.run_tick.assert_called_once_with(now=now, workers=1, app=app)
        assert scheduler.last_tick_at == now
        assert scheduler.last_summary == SUMMARY

    def test_overlapping_tick_is_skipped(self, scheduler, runner):
        """Test that a tick is skipped while the previous one still holds the lock."""
        scheduler._tick_lock.acquire()
        try:
            assert scheduler.tick() is None
        finally:
            scheduler._tick_lock.release()

        runner.run_tick.assert_not_called()
        assert scheduler.tick() == SUMMARY

    def test_lock_released_after_failure(self, scheduler, runner):
        runner.run_tick.side_effect = RuntimeError("database unavailable")

        with pytest.raises(RuntimeError):
            scheduler.tick()

        runner.run_tick.side_effect = None
        assert scheduler.tick() == SUMMARY

    def test_tick_without_app(self, runner):
        scheduler = SequenceScheduler(runner=runner)
        with pytest.raises(RuntimeError):
            scheduler.tick()

    def test_scheduler_start_stop(self, scheduler, runner):
        """Test that the background thread ticks and stops promptly."""
        scheduler.tick_interval = 60

        scheduler.start()
        assert scheduler.running is True
        assert scheduler.thread.daemon is True

        deadline = time.time() + 5
        while runner.run_tick.call_count == 0 and time.time() < deadline:
            time.sleep(0.01)

        scheduler.stop(timeout=5)

        assert scheduler.running is False
        assert not scheduler.thread.is_alive()
        assert runner.run_tick.call_count == 1

    def test_start_twice_is_noop(self, scheduler):
        scheduler.tick_interval = 60
        scheduler.start()
        thread = scheduler.thread
        try:
            scheduler.start()
            assert scheduler.thread is thread
        finally:
            scheduler.stop(timeout=5)

    def test_loop_survives_tick_errors(self, scheduler, runner):
        runner.run_tick.side_effect = RuntimeError("boom")
        scheduler.tick_interval = 0.01

        scheduler.start()
        deadline = time.time() + 5
        while runner.run_tick.call_count < 2 and time.time() < deadline:
            time.sleep(0.01)
        scheduler.stop(timeout=5)

        assert runner.run_tick.call_count >= 2

    def test_stop_when_not_running(self, scheduler):
        scheduler.stop()
        assert scheduler.running is False


def test_get_sequence_scheduler_is_singleton():
    assert get_sequence_scheduler() is get_sequence_scheduler()
