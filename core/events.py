"""Change notifications from the progress store.

Stores publish after a write has been committed. Listeners register a
callback and get back a Subscription they can cancel. How the store learns
about changes (its own writes, polling, a database change feed) is up to the
store.
"""

import logging
import threading

logger = logging.getLogger(__name__)

PROGRESS_UPDATED = 'progress.updated'
ACHIEVEMENT_AWARDED = 'achievement.awarded'
PROGRESS_RESET = 'progress.reset'


class Subscription:
    def __init__(self, feed: 'ProgressFeed', key: int):
        self._feed = feed
        self._key = key
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self._key)
            self.active = False


class ProgressFeed:
    """Fan-out of store change events to registered callbacks."""

    def __init__(self):
        self._listeners = {}  # key -> (user_id or None, callback)
        self._next_key = 0
        self._lock = threading.Lock()

    def subscribe(self, user_id: str | None, callback) -> Subscription:
        """Call `callback(event, user_id, data)` for a user's changes (None = all users)."""
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._listeners[key] = (user_id, callback)
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)

    def publish(self, event: str, user_id: str, **data) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for wanted_user, callback in listeners:
            if wanted_user is not None and wanted_user != user_id:
                continue
            try:
                callback(event, user_id, data)
            except Exception as e:
                logger.error(f"Progress listener failed on {event} for {user_id}: {e}")

    def __len__(self) -> int:
        return len(self._listeners)
