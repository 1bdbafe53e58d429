"""
Event Deduplication Tracker — Watches browser/server event-id matching.

Ad networks deduplicate a conversion sent both by the browser pixel and by
the server-side events API only when the two carry the same event_id. This
tracker keeps the most recent dispatches and, after each one, measures how
many event ids inside a short trailing window were seen more than once and
how many were seen from both sides. A low rate means the two emitters are
drifting apart and the ad platform is double counting.
"""

import json
import math
import time
import structlog
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..metrics import (
    BROWSER_SERVER_MATCH_RATE,
    DEDUPLICATION_RATE,
    EVENT_BUFFER_SIZE,
    EVENTS_RECORDED,
    LOW_DEDUP_ALERTS,
    STORAGE_ERRORS,
)
from ..notifications import (
    LOW_DEDUPLICATION_SIGNAL,
    LowDeduplicationAlert,
    NotificationChannel,
)
from ..storage.kv_store import KeyValueStore, NullStore
from ..validation.record_validator import RecordValidator

logger = structlog.get_logger(__name__)

STORAGE_KEY = "tiktok_event_monitor"
STATS_WINDOW_MS = 24 * 60 * 60 * 1000
SUMMARY_SIZE = 10


def _coerce_value(value) -> Optional[float]:
    """Order value as a finite float, None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _coerce_text(value) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


class EventSource(str, Enum):
    BROWSER = "browser"
    SERVER = "server"


@dataclass(frozen=True)
class EventRecord:
    """One tracked dispatch. Never changed after creation."""
    event_id: str
    event_type: str
    timestamp: int  # ms epoch
    source: str
    content_id: Optional[str] = None
    value: Optional[float] = None
    currency: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "timestamp": self.timestamp,
            "source": self.source,
        }
        if self.content_id is not None:
            data["contentId"] = self.content_id
        if self.value is not None:
            data["value"] = self.value
        if self.currency is not None:
            data["currency"] = self.currency
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EventRecord":
        return cls(
            event_id=data["eventId"],
            event_type=data["eventType"],
            timestamp=int(data["timestamp"]),
            source=data["source"],
            content_id=data.get("contentId"),
            value=data.get("value"),
            currency=data.get("currency"),
        )


@dataclass(frozen=True)
class DeduplicationReport:
    total_groups: int
    duplicate_groups: int
    matched_groups: int
    deduplication_rate: float
    browser_server_match_rate: float

    @property
    def status(self) -> str:
        return "GOOD" if self.deduplication_rate >= 80 else "NEEDS_IMPROVEMENT"


class EventDeduplicationTracker:
    """
    Bounded buffer of recent tracking dispatches for one runtime context.

    Construct once per process and hand the instance to call sites. The
    buffer is loaded from the store at construction and written back after
    every change; storage failures only cost continuity across restarts.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        channel: Optional[NotificationChannel] = None,
        validator: Optional[RecordValidator] = None,
        max_events: int = 100,
        window_seconds: int = 300,
        retention_days: int = 7,
        min_sample: int = 5,
        low_rate_threshold: float = 80.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else NullStore()
        self.channel = channel if channel is not None else NotificationChannel()
        self.validator = validator if validator is not None else RecordValidator()
        self.max_events = max_events
        self.window_ms = window_seconds * 1000
        self.retention_ms = retention_days * 24 * 60 * 60 * 1000
        self.min_sample = min_sample
        self.low_rate_threshold = low_rate_threshold
        self._clock = clock

        self._events: list[EventRecord] = []
        self.last_report: Optional[DeduplicationReport] = None

        self._load_events()

    @classmethod
    def from_config(
        cls,
        config: dict,
        store: KeyValueStore,
        channel: NotificationChannel,
        validator: Optional[RecordValidator] = None,
    ) -> "EventDeduplicationTracker":
        """Build a tracker from the ``tracker`` config section."""
        return cls(
            store=store,
            channel=channel,
            validator=validator,
            max_events=config.get("max_events", 100),
            window_seconds=config.get("window_seconds", 300),
            retention_days=config.get("retention_days", 7),
            min_sample=config.get("min_sample", 5),
            low_rate_threshold=float(config.get("low_rate_threshold", 80.0)),
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def events(self) -> tuple[EventRecord, ...]:
        return tuple(self._events)

    def record_event(
        self,
        event_id: str,
        event_type: str,
        source: str,
        metadata: Optional[dict] = None,
    ) -> EventRecord:
        """Record one dispatch, persist the buffer and re-run the analysis."""
        metadata = metadata or {}
        source = str(source).lower()
        if source not in (EventSource.BROWSER.value, EventSource.SERVER.value):
            logger.warning("unknown_event_source", event_id=event_id, source=source)

        # metadata is coerced to the persisted record types so the buffer
        # always serializes and reloads
        content_id = metadata.get("contentId", metadata.get("content_id"))
        event = EventRecord(
            event_id=str(event_id),
            event_type=str(event_type),
            timestamp=self._now_ms(),
            source=source,
            content_id=_coerce_text(content_id),
            value=_coerce_value(metadata.get("value")),
            currency=_coerce_text(metadata.get("currency")),
        )

        self._events.append(event)
        if len(self._events) > self.max_events:
            self._events = self._events[-self.max_events:]

        EVENTS_RECORDED.labels(source=source, event_type=event_type).inc()
        EVENT_BUFFER_SIZE.set(len(self._events))
        logger.debug(
            "event_recorded",
            event_id=event_id,
            event_type=event_type,
            source=source,
            buffer_size=len(self._events),
        )

        self._save_events()
        self.analyze_deduplication()
        return event

    def analyze_deduplication(self) -> DeduplicationReport:
        """
        Group the records of the trailing window by event id and compute
        the duplicate and browser/server match rates.
        """
        now = self._now_ms()
        groups: dict[str, list[EventRecord]] = defaultdict(list)
        for event in self._events:
            if now - event.timestamp <= self.window_ms:
                groups[event.event_id].append(event)

        total_groups = len(groups)
        duplicate_groups = 0
        matched_groups = 0

        for events in groups.values():
            if len(events) > 1:
                duplicate_groups += 1
                sources = {e.source for e in events}
                if EventSource.BROWSER.value in sources and EventSource.SERVER.value in sources:
                    matched_groups += 1

        deduplication_rate = duplicate_groups / total_groups * 100 if total_groups else 0.0
        match_rate = matched_groups / total_groups * 100 if total_groups else 0.0

        report = DeduplicationReport(
            total_groups=total_groups,
            duplicate_groups=duplicate_groups,
            matched_groups=matched_groups,
            deduplication_rate=deduplication_rate,
            browser_server_match_rate=match_rate,
        )
        self.last_report = report

        DEDUPLICATION_RATE.set(deduplication_rate)
        BROWSER_SERVER_MATCH_RATE.set(match_rate)

        logger.info(
            "deduplication_analysis",
            total_groups=total_groups,
            duplicate_groups=duplicate_groups,
            matched_groups=matched_groups,
            deduplication_rate=round(deduplication_rate, 1),
            browser_server_match_rate=round(match_rate, 1),
            status=report.status,
        )

        if total_groups >= self.min_sample and deduplication_rate < self.low_rate_threshold:
            self._report_low_deduplication(report, now)

        return report

    def _report_low_deduplication(self, report: DeduplicationReport, now: int) -> None:
        logger.warning(
            "low_deduplication_rate_detected",
            deduplication_rate=round(report.deduplication_rate, 1),
            browser_server_match_rate=round(report.browser_server_match_rate, 1),
            recommendation="Check event_id consistency between browser and server events",
            recent_events=self.recent_events_summary(),
        )
        LOW_DEDUP_ALERTS.inc()

        alert = LowDeduplicationAlert(
            deduplication_rate=report.deduplication_rate,
            browser_server_match_rate=report.browser_server_match_rate,
            timestamp=now,
        )
        self.channel.publish(LOW_DEDUPLICATION_SIGNAL, alert)

    def recent_events_summary(self) -> list[dict]:
        now = self._now_ms()
        recent = [e for e in self._events if now - e.timestamp <= self.window_ms]
        return [
            {
                "event_id": e.event_id,
                "event_type": e.event_type,
                "source": e.source,
                "time_ago": f"{round((now - e.timestamp) / 1000)}s ago",
            }
            for e in recent[-SUMMARY_SIZE:]
        ]

    def check_event_id(self, event_id: str) -> dict:
        matches = [e for e in self._events if e.event_id == event_id]
        if not matches:
            return {"found": False}

        sources = list(dict.fromkeys(e.source for e in matches))
        return {
            "found": True,
            "count": len(matches),
            "sources": sources,
            "has_duplication": len(matches) > 1,
            "has_browser_server_match": (
                EventSource.BROWSER.value in sources and EventSource.SERVER.value in sources
            ),
            "events": [
                {"source": e.source, "timestamp": e.timestamp, "event_type": e.event_type}
                for e in matches
            ],
        }

    def get_stats(self) -> dict:
        now = self._now_ms()
        last_24_hours = [e for e in self._events if now - e.timestamp <= STATS_WINDOW_MS]

        events_by_type: dict[str, int] = defaultdict(int)
        events_by_source: dict[str, int] = defaultdict(int)
        for event in last_24_hours:
            events_by_type[event.event_type] += 1
            events_by_source[event.source] += 1

        return {
            "total_events": len(last_24_hours),
            "events_by_type": dict(events_by_type),
            "events_by_source": dict(events_by_source),
            "time_range": "24 hours",
        }

    def clear(self) -> None:
        self._events = []
        EVENT_BUFFER_SIZE.set(0)
        self._save_events()
        logger.info("event_buffer_cleared")

    def _save_events(self) -> None:
        try:
            self.store.set(STORAGE_KEY, json.dumps([e.to_dict() for e in self._events]))
        except Exception as e:
            STORAGE_ERRORS.labels(operation="write").inc()
            logger.warning("event_buffer_save_failed", error=str(e))

    def _load_events(self) -> None:
        try:
            stored = self.store.get(STORAGE_KEY)
            entries = json.loads(stored) if stored else []
        except Exception as e:
            STORAGE_ERRORS.labels(operation="read").inc()
            logger.warning("event_buffer_load_failed", error=str(e))
            entries = []

        if not isinstance(entries, list):
            logger.warning("event_buffer_corrupt", type=type(entries).__name__)
            entries = []

        cutoff = self._now_ms() - self.retention_ms
        events = []
        dropped_invalid = 0
        for entry in entries:
            if not self.validator.validate(entry).is_valid:
                dropped_invalid += 1
                continue
            try:
                event = EventRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError):
                dropped_invalid += 1
                continue
            if event.timestamp > cutoff:
                events.append(event)

        # the stored blob may have been written with a larger cap
        events.sort(key=lambda e: e.timestamp)
        events = events[-self.max_events:]

        self._events = events
        EVENT_BUFFER_SIZE.set(len(events))

        if entries:
            logger.info(
                "event_buffer_loaded",
                stored=len(entries),
                kept=len(events),
                dropped_invalid=dropped_invalid,
            )
