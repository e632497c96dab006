"""
Scheduler Driver

Runs one reconciliation pass per tick on a background thread and exposes a
manual trigger for operational recovery.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from .reconciler import CampaignLifecycleReconciler, ReconciliationSummary

logger = logging.getLogger(__name__)

# Manual trigger action -> which parts of a pass to run
TRIGGER_ACTIONS: Dict[str, Dict[str, bool]] = {
    "run_all": {"activate": True, "complete": True, "retry_archival": True},
    "check_expired_campaigns": {"activate": False, "complete": True, "retry_archival": True},
    "activate_pending_campaigns": {"activate": True, "complete": False, "retry_archival": False},
    "archive_completed_assets": {"activate": False, "complete": False, "retry_archival": True},
}


class SchedulerDriver:
    """Periodic and on-demand reconciliation.

    Passes are not serialized: a manual trigger may overlap a scheduled
    tick. Each campaign update is a compare-and-set in the store, so an
    overlapping pass can only lose the race, never double-apply an edge.
    """

    def __init__(self, reconciler: CampaignLifecycleReconciler, interval_seconds: float = 3600):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self._runs = 0
        self._failed_runs = 0
        self._last_run_at: Optional[datetime] = None
        self._last_summary: Optional[ReconciliationSummary] = None

    def run_once(self, **options) -> ReconciliationSummary:
        """Run one pass; never raises."""
        try:
            summary = self.reconciler.run_pass(**options)
        except Exception as e:
            logger.exception("Reconciliation pass failed")
            summary = ReconciliationSummary(errors=[f"pass failed: {e}"])
            with self._stats_lock:
                self._failed_runs += 1

        with self._stats_lock:
            self._runs += 1
            self._last_run_at = datetime.now(timezone.utc)
            self._last_summary = summary
        return summary

    def trigger(self, action: str) -> ReconciliationSummary:
        """Manual entry point, e.g. ``trigger("check_expired_campaigns")``."""
        options = TRIGGER_ACTIONS.get(action)
        if options is None:
            logger.warning(f"Unknown scheduler action: {action}")
            return ReconciliationSummary(
                errors=[f"Unknown action '{action}'. Valid: {', '.join(sorted(TRIGGER_ACTIONS))}"]
            )

        logger.info(f"Manual trigger: {action}")
        return self.run_once(**options)

    def start(self, interval_seconds: Optional[float] = None, run_immediately: bool = True) -> None:
        """Begin periodic ticking on a daemon thread."""
        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("Interval must be positive")
            self.interval_seconds = interval_seconds

        if self.is_running():
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(run_immediately,),
            name="campaign-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Campaign scheduler started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Halt ticking; waits for an in-flight pass to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Campaign scheduler stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, run_immediately: bool) -> None:
        if not run_immediately and self._stop_event.wait(self.interval_seconds):
            return
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.interval_seconds):
                break

    def get_status(self) -> dict:
        with self._stats_lock:
            return {
                "running": self.is_running(),
                "interval_seconds": self.interval_seconds,
                "runs": self._runs,
                "failed_runs": self._failed_runs,
                "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
                "last_summary": self._last_summary.to_dict() if self._last_summary else None,
                "actions": sorted(TRIGGER_ACTIONS),
            }
