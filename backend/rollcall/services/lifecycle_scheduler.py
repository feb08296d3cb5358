"""Background routines that move sessions through their lifecycle.

Each routine re-reads persisted state on every tick and flips sessions with
conditional updates, so ticks can overlap with requests (or with each other)
and a crashed worker resumes by simply running again.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from flask import Flask

from rollcall import db
from rollcall.models.attendance_session import AttendanceSession, SessionStatus
from rollcall.services.attendance_service import AttendanceService
from rollcall.services.time_window import TimeWindow
from rollcall.utils.clock import now as clock_now

logger = logging.getLogger(__name__)

@dataclass
class RoutineResult:
    """Outcome of one routine over one batch of sessions."""
    routine: str
    processed: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'routine': self.routine,
            'processed': self.processed,
            'skipped': self.skipped,
            'failed': list(self.failed)
        }

def _run_batch(routine: str, sessions, step) -> RoutineResult:
    """Apply ``step`` to each session; one failure never stops the batch."""
    result = RoutineResult(routine)
    for session in sessions:
        attendance_id = session.attendance_id
        try:
            if step(session):
                result.processed += 1
            else:
                result.skipped += 1
        except Exception:
            db.session.rollback()
            logger.exception('%s failed for attendance %s', routine, attendance_id)
            result.failed.append(attendance_id)

    if result.processed or result.failed:
        logger.info('%s: %d processed, %d skipped, %d failed',
                    routine, result.processed, result.skipped, len(result.failed))
    return result

class LifecycleScheduler:
    """Periodic driver for the activate, close and finalize routines."""

    ROUTINES = ('activate', 'close', 'finalize')

    def __init__(self, app: Flask, interval: Optional[int] = None):
        self.app = app
        self.interval = interval or app.config.get('SCHEDULER_INTERVAL_SECONDS', 60)
        self._stop = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread = None

    # --------------------------------------------------------------- routines

    @staticmethod
    def activate_due(now: datetime) -> RoutineResult:
        """Seed and open every upcoming session dated today."""
        sessions = AttendanceSession.query.filter_by(
            status=SessionStatus.UPCOMING,
            class_date=now.date(),
            initialized=False
        ).all()
        return _run_batch('activate', sessions, lambda session: AttendanceService.activate(session, now))

    @staticmethod
    def close_expired(now: datetime) -> RoutineResult:
        """Close running sessions past their closing instant and lapsed reopens."""
        def close(session: AttendanceSession) -> bool:
            if session.reopened:
                if session.reopened_until is None or now <= session.reopened_until:
                    return False
                changed = AttendanceSession.query.filter_by(
                    id=session.id, status=SessionStatus.ACTIVE, reopened=True
                ).update(
                    {'status': SessionStatus.CLOSED, 'reopened': False, 'updated_at': now},
                    synchronize_session=False
                )
            else:
                if now <= TimeWindow.closing_instant(session):
                    return False
                changed = AttendanceSession.query.filter_by(
                    id=session.id, status=SessionStatus.ACTIVE, reopened=False
                ).update(
                    {'status': SessionStatus.CLOSED, 'updated_at': now},
                    synchronize_session=False
                )
            db.session.commit()
            if changed:
                logger.info('Attendance %s closed', session.attendance_id)
            return bool(changed)

        sessions = AttendanceSession.query.filter(
            AttendanceSession.status == SessionStatus.ACTIVE,
            AttendanceSession.class_date <= now.date()
        ).all()
        return _run_batch('close', sessions, close)

    @staticmethod
    def finalize_due(now: datetime) -> RoutineResult:
        """Finalize auto-ending sessions once no normal mark can arrive."""
        def finalize(session: AttendanceSession) -> bool:
            if now <= TimeWindow.settling_instant(session):
                return False
            return AttendanceService.finalize_session(session, now) is not None

        sessions = AttendanceSession.query.filter(
            AttendanceSession.auto_end.is_(True),
            AttendanceSession.reopened.is_(False),
            AttendanceSession.finalized_at.is_(None),
            AttendanceSession.status.in_([SessionStatus.ACTIVE, SessionStatus.CLOSED]),
            AttendanceSession.class_date <= now.date()
        ).all()
        return _run_batch('finalize', sessions, finalize)

    @classmethod
    def run_once(cls, routine: str = 'all', now: Optional[datetime] = None) -> Dict[str, RoutineResult]:
        """Run one or all routines against current data.

        Must be called inside an application context.
        """
        now = now or clock_now()
        selected = cls.ROUTINES if routine == 'all' else (routine,)
        handlers = {
            'activate': cls.activate_due,
            'close': cls.close_expired,
            'finalize': cls.finalize_due
        }
        results = {}
        for name in selected:
            if name not in handlers:
                raise ValueError(f'Unknown routine: {name}')
            results[name] = handlers[name](now)
        return results

    # ------------------------------------------------------------------- loop

    def tick(self) -> Optional[Dict[str, RoutineResult]]:
        """One pass of every routine; skipped if the previous pass still runs."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning('Previous scheduler tick still running; skipping')
            return None
        try:
            with self.app.app_context():
                try:
                    return self.run_once()
                finally:
                    db.session.remove()
        finally:
            self._tick_lock.release()

    def _loop(self) -> None:
        logger.info('Lifecycle scheduler started (every %ss)', self.interval)
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception('Scheduler tick failed')
            self._stop.wait(self.interval)
        logger.info('Lifecycle scheduler stopped')

    def start(self) -> None:
        """Run the loop in a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='lifecycle-scheduler', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self) -> None:
        """Run the loop in the calling thread until interrupted."""
        self._stop.clear()
        try:
            self._loop()
        except KeyboardInterrupt:
            self._stop.set()
