"""
In-memory flow session store with idle timeout.

One live session per (sender, flow). Sessions idle longer than the
timeout are treated as absent on read and removed by a background sweep
started with ``start()``. Nothing here survives a restart.
"""
from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from models.schemas import FlowSession, utcnow

logger = structlog.get_logger()

DEFAULT_TIMEOUT_MINUTES = 30
DEFAULT_CLEANUP_INTERVAL_MINUTES = 5


def session_key(sender_id: str, flow_name: str) -> str:
    return f"{sender_id}-{flow_name}"


class SessionStore:
    """
    Thread-safe map of session key → FlowSession.

    Every read hands back a copy; mutate through ``update()``.
    """

    def __init__(
        self,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        cleanup_interval_minutes: int = DEFAULT_CLEANUP_INTERVAL_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._timeout = timedelta(minutes=timeout_minutes)
        self._interval = timedelta(minutes=cleanup_interval_minutes)
        self._clock = clock
        self._sessions: dict[str, FlowSession] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def _expired(self, session: FlowSession, now: datetime) -> bool:
        return now - session.last_activity_at > self._timeout

    # ── CRUD ──────────────────────────────────────────

    def create(
        self,
        flow_name: str,
        current_step_id: str,
        sender_id: str,
        channel: str,
    ) -> FlowSession:
        """Start a session, replacing any existing one for the same key."""
        now = self._clock()
        session = FlowSession(
            flow_name=flow_name,
            current_step_id=current_step_id,
            sender_id=sender_id,
            channel=channel,
            started_at=now,
            last_activity_at=now,
        )
        with self._lock:
            self._sessions[session.key] = session
        logger.info("flow_session_created", key=session.key, step_id=current_step_id)
        return session.model_copy(deep=True)

    def get(self, key: str) -> Optional[FlowSession]:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[key]
                logger.info("flow_session_expired", key=key)
                return None
            session.last_activity_at = now
            return session.model_copy(deep=True)

    def update(self, key: str, **patch: Any) -> Optional[FlowSession]:
        """
        Merge ``patch`` into the session. ``variables`` are merged key by
        key; other fields are replaced. Returns None when the session is
        missing or expired.
        """
        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[key]
                logger.info("flow_session_expired", key=key)
                return None

            variables = patch.pop("variables", None)
            data = session.model_dump()
            data.update(patch)
            if variables:
                data["variables"] = {**session.variables, **variables}
            data["last_activity_at"] = now

            updated = FlowSession.model_validate(data)
            self._sessions[key] = updated
            return updated.model_copy(deep=True)

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(key, None)
        if removed:
            logger.info("flow_session_deleted", key=key)
        return removed is not None

    def list_active(self) -> list[FlowSession]:
        now = self._clock()
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()
                    if not self._expired(s, now)]

    def clear(self):
        with self._lock:
            self._sessions.clear()

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ── Expiry sweep ──────────────────────────────────

    def sweep_expired(self) -> int:
        """Drop every idle session. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, s in self._sessions.items() if self._expired(s, now)]
            for key in stale:
                del self._sessions[key]
        if stale:
            logger.info("flow_sessions_swept", removed=len(stale))
        return len(stale)

    async def _sweep_loop(self):
        interval = self._interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            self.sweep_expired()

    async def start(self):
        """Start the background sweep on the running event loop."""
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info("session_sweeper_started",
                    interval_s=self._interval.total_seconds())

    async def stop(self):
        if not self._sweeper:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("session_sweeper_stopped")

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
