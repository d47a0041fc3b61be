"""
User notification delivery and rate limiting.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Dict, List

from faultline.models.interception import UserNotification
from faultline.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationRateLimiter:
    """
    Thread-safe sliding-window limiter for user notifications.

    At most `max_notifications` are allowed in any trailing window of
    `window_seconds`; excess requests are refused, not queued.

    Args:
        max_notifications: Notifications allowed per window
        window_seconds: Length of the sliding window
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        max_notifications: int = 3,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_notifications = max_notifications
        self.window_seconds = window_seconds
        self._clock = clock
        self._sent: Deque[float] = deque()
        self._lock = threading.Lock()
        self.refused = 0

    def _cleanup(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= self.window_seconds:
            self._sent.popleft()

    def try_acquire(self) -> bool:
        """
        Claim one notification slot.

        Returns:
            True if the notification may be shown
        """
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            if len(self._sent) >= self.max_notifications:
                self.refused += 1
                logger.debug(
                    f"Notification suppressed: {len(self._sent)}/{self.max_notifications} "
                    f"in the last {self.window_seconds}s"
                )
                return False
            self._sent.append(now)
            return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._cleanup(self._clock())
            return {
                "sent_in_window": len(self._sent),
                "max_notifications": self.max_notifications,
                "window_seconds": self.window_seconds,
                "refused": self.refused,
            }

    def reset(self) -> None:
        with self._lock:
            self._sent.clear()
            self.refused = 0


class UserNotifier(ABC):
    """Hands a notification to whatever surfaces errors to the user."""

    @abstractmethod
    async def notify(self, notification: UserNotification) -> None:
        """Deliver one notification."""


class LoggingNotifier(UserNotifier):
    """Records notifications and writes them to the diagnostic channel."""

    def __init__(self, history_size: int = 100):
        self.history: Deque[UserNotification] = deque(maxlen=history_size)

    async def notify(self, notification: UserNotification) -> None:
        self.history.append(notification)
        logger.info(
            f"User notification: {notification.message}",
            extra={
                "failure_id": notification.failure_id,
                "severity": notification.severity.value,
            },
        )

    def recent(self) -> List[UserNotification]:
        return list(self.history)
