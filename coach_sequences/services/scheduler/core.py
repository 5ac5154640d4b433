"""
Core scheduler functionality.

This module contains the main scheduler class and core functionality:
- SequenceScheduler class
- Thread management
- Tick mutual exclusion
- Scheduler lifecycle management

Run the scheduler in exactly one process per database: the tick lock only
excludes overlapping ticks within this process.
"""

import logging
import threading
from datetime import datetime

from coach_sequences.services.sequence_engine import SequenceRunner

logger = logging.getLogger(__name__)

# Global scheduler instance
_sequence_scheduler = None

def get_sequence_scheduler():
    """Get the global scheduler instance."""
    global _sequence_scheduler
    if _sequence_scheduler is None:
        _sequence_scheduler = SequenceScheduler()
    return _sequence_scheduler

class SequenceScheduler:
    """Background scheduler that runs a sequence tick at a fixed interval."""

    def __init__(self, app=None, runner=None):
        self.app = app
        self.runner = runner  # Initialize lazily
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

        self.tick_interval = 120  # 2 minutes
        self.workers = 1
        self.last_tick_at = None
        self.last_summary = None

        if app is not None:
            self.init_app(app)

    def _get_runner(self):
        """Get sequence runner instance (lazy initialization)."""
        if self.runner is None:
            self.runner = SequenceRunner()
        return self.runner

    def init_app(self, app):
        """Initialize the scheduler with the Flask app."""
        self.app = app

        # Load configuration from app config
        self.tick_interval = app.config.get('TICK_INTERVAL_SECONDS', 120)
        self.workers = max(1, app.config.get('TICK_WORKERS', 1))

        logger.info(f"Scheduler initialized: tick every {self.tick_interval}s with {self.workers} worker(s)")

    def start(self):
        """Start the background processing thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._process_loop, daemon=True)
        self.thread.start()
        logger.info("Sequence scheduler started successfully")

    def stop(self, timeout=30):
        """Stop the background processing thread."""
        if not self.running:
            logger.info("Scheduler is already stopped")
            return

        logger.info("Stopping scheduler...")
        self.running = False
        self._stop_event.set()

        if self.thread and self.thread.is_alive():
            logger.info("Waiting for scheduler thread to terminate...")
            self.thread.join(timeout=timeout)

            if self.thread.is_alive():
                logger.warning(f"Scheduler thread did not terminate within {timeout} seconds")

        logger.info("Scheduler stopped")

    def _process_loop(self):
        """Main processing loop for the scheduler."""
        logger.info("Starting scheduler processing loop")

        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in scheduler processing loop: {str(e)}")

            # Sleep until the next tick, waking early on stop
            self._stop_event.wait(self.tick_interval)

        logger.info("Scheduler processing loop ended")

    def tick(self, now=None):
        """
        Run one tick unless another tick is already in progress.

        Returns:
            The tick summary, or None if the tick was skipped
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous tick still running - skipping this tick")
            return None

        try:
            if self.app is None:
                raise RuntimeError("Scheduler has no Flask app; call init_app first")

            with self.app.app_context():
                summary = self._get_runner().run_tick(now=now, workers=self.workers, app=self.app)

            self.last_tick_at = now or datetime.utcnow()
            self.last_summary = summary
            return summary
        finally:
            self._tick_lock.release()
