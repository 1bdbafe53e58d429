"""
Prometheus metrics for the tracking service.
"""

import structlog
from prometheus_client import Counter, Gauge, start_http_server

logger = structlog.get_logger(__name__)

# --- Counters ---
EVENTS_RECORDED = Counter(
    "tracking_events_recorded_total",
    "Total tracking dispatches recorded by the deduplication tracker",
    ["source", "event_type"],
)

LOW_DEDUP_ALERTS = Counter(
    "tracking_low_deduplication_alerts_total",
    "Total low deduplication signals raised",
)

CONTENT_IDS_RESOLVED = Counter(
    "tracking_content_ids_resolved_total",
    "Total content ids resolved, by extraction source",
    ["source", "confidence"],
)

STORAGE_ERRORS = Counter(
    "tracking_storage_errors_total",
    "Total key-value storage failures swallowed",
    ["operation"],
)

# --- Gauges ---
EVENT_BUFFER_SIZE = Gauge(
    "tracking_event_buffer_size",
    "Number of records held in the deduplication buffer",
)

DEDUPLICATION_RATE = Gauge(
    "tracking_deduplication_rate_percent",
    "Share of event ids seen more than once in the trailing window",
)

BROWSER_SERVER_MATCH_RATE = Gauge(
    "tracking_browser_server_match_rate_percent",
    "Share of event ids seen from both browser and server in the trailing window",
)


class MetricsServer:
    """Prometheus metrics HTTP server."""

    def __init__(self, config: dict):
        self.port = config.get("port", 9090)

    async def start(self):
        start_http_server(self.port)
        logger.info("metrics_server_started", port=self.port)

    async def stop(self):
        pass  # prometheus_client handles cleanup
