# behavioral_auth/core/locks.py
"""
Per-user exclusive locks for template and context profile writes
"""
import threading
import logging
from contextlib import contextmanager
from typing import Dict, Optional

from behavioral_auth.core.errors import ConcurrentWriteConflict

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """One re-entrant lock per user id; users never contend with each other"""

    def __init__(self, wait_timeout: Optional[float] = None):
        self.wait_timeout = wait_timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, user_id: str) -> threading.RLock:
        # The registry lock only guards creation of the per-user entry
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str):
        """Serialize writers for one user behind whoever holds the lock"""
        lock = self.lock_for(user_id)
        if not lock.acquire(blocking=False):
            logger.info(f"Write for user {user_id} queued behind a concurrent attempt")
            acquired = lock.acquire(timeout=self.wait_timeout) if self.wait_timeout else lock.acquire()
            if not acquired:
                raise ConcurrentWriteConflict(f"Timed out waiting for write lock of user {user_id}")
        try:
            yield lock
        finally:
            lock.release()
