# sharing_detector/scheduler/scanner.py
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sharing_detector.exceptions import ScanAlreadyRunning

logger = logging.getLogger(__name__)

MANUAL_SCAN = 'manual'
AUTOMATIC_SCAN = 'automatic'


class ScanState(enum.Enum):
    IDLE = 'idle'
    RUNNING = 'running'


@dataclass
class ScanSummary:
    scan_type: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    saved_count: int = 0
    purged_count: int = 0
    unreachable_nas: List[dict] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self):
        return {
            'scan_type': self.scan_type,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'scanned': self.scanned,
            'saved_count': self.saved_count,
            'purged_count': self.purged_count,
            'unreachable_nas': self.unreachable_nas,
            'error': self.error
        }


class ScanScheduler:
    """
    Runs detection scans on demand and once a day at the configured time.

    Only one scan runs at a time whatever triggered it. The background
    thread wakes every `check_interval` seconds and starts the automatic
    scan when the local HH:MM matches the configured scan time and no
    automatic scan has run yet that day.
    """
    def __init__(self, live_analyzer, history_store, settings_manager,
                 check_interval=30, clock=datetime.now):
        self.live_analyzer = live_analyzer
        self.history_store = history_store
        self.settings_manager = settings_manager
        self.check_interval = check_interval
        self.clock = clock

        self._state = ScanState.IDLE
        self._running_type = None
        self._state_lock = threading.Lock()
        self.last_scan_date = None
        self.last_summary = None

        self.running = threading.Event()
        self._stop_requested = threading.Event()
        self.scheduler_thread = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ScanState.RUNNING

    def try_start(self, scan_type) -> bool:
        with self._state_lock:
            if self._state == ScanState.RUNNING:
                return False
            self._state = ScanState.RUNNING
            self._running_type = scan_type
            return True

    def finish(self):
        with self._state_lock:
            self._state = ScanState.IDLE
            self._running_type = None

    def run_scan(self, scan_type=MANUAL_SCAN) -> ScanSummary:
        """
        Take a snapshot, persist the results at or above the minimum level
        and apply retention.

        Raises ScanAlreadyRunning if another scan holds the running state.
        """
        if not self.try_start(scan_type):
            raise ScanAlreadyRunning(self._running_type)

        try:
            settings = self.settings_manager.get()
            summary = ScanSummary(scan_type=scan_type, started_at=self.clock())
            logger.info(f"Starting {scan_type} sharing detection scan")

            snapshot = self.live_analyzer.snapshot(settings)
            summary.scanned = len(snapshot.results)
            summary.unreachable_nas = snapshot.unreachable_nas

            to_save = [
                r for r in snapshot.results
                if r.suspicion_level.at_least(settings.min_suspicion_level)
            ]
            try:
                summary.saved_count = self.history_store.save_results(
                    to_save, scan_type, detected_at=summary.started_at
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to save {scan_type} scan results: {e}")
                summary.error = f"failed to save results: {e}"

            try:
                summary.purged_count = self.history_store.purge_older_than(settings.retention_days)
            except SQLAlchemyError as e:
                logger.error(f"Retention cleanup failed: {e}")
                if summary.error is None:
                    summary.error = f"retention cleanup failed: {e}"

            summary.finished_at = self.clock()
            self.last_summary = summary
            logger.info(
                f"{scan_type.capitalize()} scan completed: {summary.scanned} sessions, "
                f"{summary.saved_count} saved, {summary.purged_count} purged"
            )
            return summary
        finally:
            self.finish()

    def check_due(self, now=None) -> bool:
        """Whether the automatic scan should start at `now`"""
        now = now or self.clock()
        settings = self.settings_manager.get()
        if not settings.enabled:
            return False
        if self.last_scan_date == now.date():
            return False
        return settings.scan_hour_minute == (now.hour, now.minute)

    def _tick(self, now=None):
        now = now or self.clock()
        if not self.check_due(now):
            return None
        # Marked before running so a slow or failed scan is not retried the same day
        self.last_scan_date = now.date()
        try:
            return self.run_scan(AUTOMATIC_SCAN)
        except ScanAlreadyRunning:
            logger.info("Skipping automatic scan, another scan is in progress")
            return None

    def _run(self):
        logger.info(f"Sharing detection scheduler started (check every {self.check_interval}s)")
        while self.running.is_set():
            try:
                self._tick()
            except SQLAlchemyError as e:
                logger.error(f"Error reading scan settings: {e}")
            except Exception as e:
                logger.error(f"Error in automatic scan: {e}", exc_info=True)
            if self._stop_requested.wait(self.check_interval):
                break
        logger.info("Sharing detection scheduler stopped")

    def start(self):
        """Start the scheduler thread"""
        if self.scheduler_thread and self.scheduler_thread.is_alive():
            logger.info("Scheduler already running")
            return

        self._stop_requested.clear()
        self.running.set()
        self.scheduler_thread = threading.Thread(target=self._run, daemon=True)
        self.scheduler_thread.start()

    def stop(self):
        """Stop the scheduler thread"""
        if not self.running.is_set():
            logger.info("Scheduler already stopped")
            return

        logger.info("Stopping sharing detection scheduler...")
        self._stop_requested.set()
        self.running.clear()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5.0)
