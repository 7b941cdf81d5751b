#!/usr/bin/env python3
"""
Progress reporting for verification runs.

ProgressTracker keeps one session per run id and turns state changes into
ProgressEvents; a ProgressChannel carries those events to whoever observes
the run (a queue drained by another thread, a callback, or nothing).
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Destination for progress events"""

    def publish(self, event: ProgressEvent) -> None:
        raise NotImplementedError


class NullProgressChannel(ProgressChannel):
    def publish(self, event: ProgressEvent) -> None:
        pass


class QueueProgressChannel(ProgressChannel):
    """Thread-safe FIFO of events for a consumer on another thread"""

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)

    def publish(self, event: ProgressEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(f"Progress queue full, dropping event for run {event.run_id}")

    def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        """Block until the next event arrives (raises queue.Empty on timeout)"""
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[ProgressEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class CallbackProgressChannel(ProgressChannel):
    """Delivers each event to a callable; listener failures are logged, not raised"""

    def __init__(self, listener: Callable[[ProgressEvent], None]):
        self.listener = listener

    def publish(self, event: ProgressEvent) -> None:
        try:
            self.listener(event)
        except Exception as e:
            logger.warning(f"Progress listener failed for run {event.run_id}: {e}")


@dataclass
class ProgressSession:
    run_id: str
    start_time: float
    total_tables: int
    completed_tables: int = 0
    stage: str = "initializing"
    current_table: Optional[str] = None
    finished_at: Optional[float] = None


class ProgressTracker:
    """
    Per-run progress bookkeeping.

    Calls for an unknown run id are ignored. Finished sessions are kept for
    `retention` seconds so late readers can still query them, then pruned.
    """

    def __init__(self, channel: Optional[ProgressChannel] = None, retention: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.channel = channel or NullProgressChannel()
        self.retention = retention
        self._clock = clock
        self._sessions: Dict[str, ProgressSession] = {}
        self._lock = threading.Lock()

    def _percent(self, session: ProgressSession) -> int:
        if session.total_tables <= 0:
            return 0
        return round(session.completed_tables / session.total_tables * 100)

    def _estimate_remaining(self, session: ProgressSession) -> Optional[float]:
        if session.completed_tables <= 0:
            return None
        elapsed = self._clock() - session.start_time
        remaining = session.total_tables - session.completed_tables
        return round(elapsed / session.completed_tables * remaining, 1)

    def _event(self, session: ProgressSession, message: str, percent: Optional[int] = None,
               with_estimate: bool = False) -> ProgressEvent:
        return ProgressEvent(
            run_id=session.run_id,
            stage=session.stage,
            current_table=session.current_table,
            tables_completed=session.completed_tables,
            total_tables=session.total_tables,
            percent_complete=self._percent(session) if percent is None else percent,
            estimated_time_remaining=self._estimate_remaining(session) if with_estimate else None,
            message=message,
        )

    def start_session(self, run_id: str, total_tables: int) -> None:
        self.prune()
        session = ProgressSession(run_id=run_id, start_time=self._clock(), total_tables=total_tables)
        with self._lock:
            self._sessions[run_id] = session
            event = self._event(session, f"Starting verification of {total_tables} tables...", percent=0)
        logger.info(f"Progress session started for run {run_id} ({total_tables} tables)")
        self.channel.publish(event)

    def update_progress(self, run_id: str, stage: str, current_table: Optional[str] = None,
                        message: Optional[str] = None) -> None:
        with self._lock:
            session = self._sessions.get(run_id)
            if session is None:
                logger.debug(f"Session not found for progress update: {run_id}")
                return
            session.stage = stage
            session.current_table = current_table
            event = self._event(session, message or f"Processing {current_table or 'tables'}...",
                                with_estimate=True)
        self.channel.publish(event)

    def complete_table(self, run_id: str, table_name: str) -> None:
        with self._lock:
            session = self._sessions.get(run_id)
            if session is None:
                return
            session.completed_tables += 1
            session.stage = "processing"
            session.current_table = table_name
            event = self._event(
                session,
                f"Completed verification of table: {table_name} "
                f"({session.completed_tables}/{session.total_tables})",
                with_estimate=True,
            )
        self.channel.publish(event)

    def complete_session(self, run_id: str, success: bool, message: str) -> None:
        with self._lock:
            session = self._sessions.get(run_id)
            if session is None:
                return
            session.stage = "completed" if success else "failed"
            session.current_table = None
            session.finished_at = self._clock()
            event = self._event(session, message, percent=100)
        logger.info(f"Progress session {run_id} {event.stage}")
        self.channel.publish(event)

    def get_session(self, run_id: str) -> Optional[ProgressSession]:
        with self._lock:
            return self._sessions.get(run_id)

    def prune(self) -> int:
        """Drop sessions finished more than `retention` seconds ago"""
        now = self._clock()
        with self._lock:
            stale = [
                run_id for run_id, s in self._sessions.items()
                if s.finished_at is not None and now - s.finished_at >= self.retention
            ]
            for run_id in stale:
                del self._sessions[run_id]
        for run_id in stale:
            logger.debug(f"Session cleaned up: {run_id}")
        return len(stale)
