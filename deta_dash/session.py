"""
Explicit per-user session state.

A session starts with a sign-in (custom token or anonymous) and ends with an
explicit sign-out. Each session tracks its in-flight analyses so that only
the latest request's result becomes the session's current dashboard.
"""

import hashlib
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from .schemas import DashboardConfig

logger = logging.getLogger(__name__)


@dataclass
class Session:
    session_id: str
    user_id: str
    anonymous: bool
    current_dashboard: Optional[DashboardConfig] = None
    current_dashboard_id: Optional[str] = None
    _latest_seq: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def begin_analysis(self) -> int:
        """Register a new analysis request; any earlier in-flight one is superseded."""
        with self._lock:
            self._latest_seq += 1
            return self._latest_seq

    def is_current(self, seq: int) -> bool:
        with self._lock:
            return seq == self._latest_seq

    def complete_analysis(self, seq: int, dashboard: DashboardConfig, dashboard_id: Optional[str] = None) -> bool:
        """Install ``dashboard`` as current if ``seq`` is still the latest request."""
        with self._lock:
            if seq != self._latest_seq:
                logger.info(
                    "session.result_superseded session_id=%s seq=%d latest=%d",
                    self.session_id,
                    seq,
                    self._latest_seq,
                )
                return False
            self.current_dashboard = dashboard
            self.current_dashboard_id = dashboard_id
            return True

    def record_saved(self, seq: int, dashboard_id: str) -> bool:
        """Attach the stored id to the current dashboard if ``seq`` is still the latest request."""
        with self._lock:
            if seq != self._latest_seq:
                logger.info(
                    "session.saved_superseded session_id=%s seq=%d latest=%d dashboard_id=%s",
                    self.session_id,
                    seq,
                    self._latest_seq,
                    dashboard_id,
                )
                return False
            self.current_dashboard_id = dashboard_id
            return True


def user_id_for_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:28]


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def sign_in(self, token: Optional[str] = None) -> Session:
        if token:
            session = Session(session_id=str(uuid.uuid4()), user_id=user_id_for_token(token), anonymous=False)
        else:
            session = Session(session_id=str(uuid.uuid4()), user_id=uuid.uuid4().hex[:28], anonymous=True)
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(
            "session.signed_in session_id=%s user_id=%s anonymous=%s",
            session.session_id,
            session.user_id,
            session.anonymous,
        )
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def sign_out(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info("session.signed_out session_id=%s user_id=%s", session_id, session.user_id)
        return True
