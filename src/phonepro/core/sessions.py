from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone

from phonepro.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Thread-safe registry holding at most one session per device address."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def put(self, session: Session) -> Session | None:
        """Store ``session``, returning the one it replaced."""
        with self._lock:
            previous = self._sessions.get(session.address)
            self._sessions[session.address] = session
        if previous is not None:
            logger.debug("Replaced session for %s", session.address)
        return previous

    def get(self, address: str) -> Session | None:
        with self._lock:
            return self._sessions.get(address)

    def delete(self, address: str) -> bool:
        with self._lock:
            return self._sessions.pop(address, None) is not None

    def discard(self, session: Session) -> bool:
        """Remove ``session`` only if it is still the stored one."""
        with self._lock:
            if self._sessions.get(session.address) is not session:
                return False
            del self._sessions[session.address]
            return True

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [
                address
                for address, session in self._sessions.items()
                if session.is_expired(now)
            ]
            for address in expired:
                del self._sessions[address]
        if expired:
            logger.debug("Purged %d expired sessions", len(expired))
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def all(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._sessions


async def run_periodic_purge(store: SessionStore, interval: float) -> None:
    """Purge expired sessions every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        store.purge_expired()
