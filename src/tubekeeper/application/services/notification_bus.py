"""In-memory notification feed polled by clients.

Hey future me - clients ask for updates every few seconds, so a retention of a
minute would do. We keep 15 minutes so a client whose connection dropped for a
while still catches up when it comes back. Nothing here is persisted: the job
history in the DB is the durable record, this is only the live feed.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Any

from tubekeeper.domain.entities import utc_now


class NotificationMessage:
    """Message types of the feed."""

    STATUS_UPDATE = "st-up"
    OPERATION_PROGRESS = "st-op-prog"
    OPERATION_END = "st-op-end"


class NotificationBus:
    """Ring buffer of notifications, safe to use from threads and tasks."""

    def __init__(self, retention_seconds: int = 15 * 60) -> None:
        self._retention = timedelta(seconds=retention_seconds)
        self._events: deque[dict[str, Any]] = deque()
        self._next_id = 0
        self._lock = threading.Lock()

    def publish(
        self,
        message: str,
        user_id: int | None = None,
        now: datetime | None = None,
        **payload: Any,
    ) -> dict[str, Any]:
        """Append an event and trim events older than the retention window.

        Args:
            message: One of NotificationMessage
            user_id: Recipient, None broadcasts to everybody
            now: Timestamp override (tests)
            **payload: Extra fields copied into the event

        Returns:
            The stored event
        """
        now = now or utc_now()
        with self._lock:
            event = {
                "time": now,
                "msg": message,
                "id": self._next_id,
                "uid": user_id,
            }
            event.update(payload)
            self._events.append(event)
            self._next_id += 1

            threshold = now - self._retention
            while self._events and self._events[0]["time"] < threshold:
                self._events.popleft()

        return event

    def get(
        self, user_id: int | None, last_received_id: int | None = None
    ) -> list[dict[str, Any]]:
        """Return events newer than last_received_id visible to user_id."""
        with self._lock:
            return [
                event
                for event in self._events
                if (last_received_id is None or event["id"] > last_received_id)
                and (event["uid"] is None or event["uid"] == user_id)
            ]

    def current_id(self) -> int:
        """Return the id the next event will get."""
        with self._lock:
            return self._next_id

    def notify_status_update(self, status: str, user_id: int | None = None) -> None:
        self.publish(NotificationMessage.STATUS_UPDATE, user_id=user_id, status=status)

    def notify_operation_progress(
        self,
        operation_id: Any,
        status: str,
        progress: float | None,
        user_id: int | None = None,
    ) -> None:
        self.publish(
            NotificationMessage.OPERATION_PROGRESS,
            user_id=user_id,
            operation=operation_id,
            status=status,
            progress=progress,
        )

    def notify_operation_ended(
        self, operation_id: Any, status: str, user_id: int | None = None
    ) -> None:
        self.publish(
            NotificationMessage.OPERATION_END,
            user_id=user_id,
            operation=operation_id,
            status=status,
        )
