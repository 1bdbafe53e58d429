"""
Notification channel for advisory tracker signals.

Subscribers register a callback per signal name. Publishing never fails
from the publisher's point of view: a callback that raises is logged and
the remaining callbacks still run.
"""

import structlog
from collections import defaultdict
from dataclasses import dataclass, asdict
from typing import Any, Callable

logger = structlog.get_logger(__name__)

LOW_DEDUPLICATION_SIGNAL = "tiktok_low_deduplication"

Callback = Callable[[Any], None]


@dataclass(frozen=True)
class LowDeduplicationAlert:
    """Payload of the low deduplication signal."""
    deduplication_rate: float
    browser_server_match_rate: float
    timestamp: int  # ms epoch

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationChannel:
    def __init__(self):
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)

    def subscribe(self, signal: str, callback: Callback) -> None:
        if callback not in self._subscribers[signal]:
            self._subscribers[signal].append(callback)

    def unsubscribe(self, signal: str, callback: Callback) -> None:
        callbacks = self._subscribers.get(signal, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, signal: str, payload: Any) -> int:
        """Deliver payload to every subscriber of signal. Returns the number called."""
        delivered = 0
        for callback in list(self._subscribers.get(signal, [])):
            delivered += 1
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    "notification_callback_failed",
                    signal=signal,
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                )
        return delivered

    def subscriber_count(self, signal: str) -> int:
        return len(self._subscribers.get(signal, []))
