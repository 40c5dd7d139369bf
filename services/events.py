"""
Maintenance event channel.

A small observable that maintenance services publish to (sale cancelled,
piece status fixed) and callers subscribe to, e.g. to surface a notification
or refresh a view. Each channel is owned by a MaintenanceContext; there is no
module-level subscriber list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SALE_CANCELLED = "sale_cancelled"
    PIECE_STATUS_FIXED = "piece_status_fixed"


@dataclass(frozen=True, slots=True)
class MaintenanceEvent:
    event_type: EventType
    entity_id: str
    occurred_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[MaintenanceEvent], None]


class EventChannel:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register `callback` for every published event.

        Returns:
            A function that removes the subscription; calling it twice is safe
        """

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: MaintenanceEvent) -> None:
        """Deliver `event` to every subscriber; a failing subscriber is logged and skipped."""

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed",
                    extra={"event_type": event.event_type.value, "entity_id": event.entity_id},
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


__all__ = ["EventChannel", "EventType", "MaintenanceEvent", "Subscriber"]
