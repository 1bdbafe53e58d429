"""
Tracking Service — Main Entry Point

Server-side companion of the ad pixels that:
1. Resolves content ids for conversion events sent to TikTok/Meta
2. Records every browser and server dispatch by event_id
3. Measures browser/server deduplication over a trailing window
4. Raises an advisory signal when deduplication drops
5. Exposes health, diagnostics and Prometheus metrics
"""

import asyncio
import logging
import signal
import structlog

from .api.health import HealthServer
from .config import load_config
from .content_id.resolver import ContentIdResolver
from .deduplication.tracker import EventDeduplicationTracker
from .metrics import MetricsServer
from .notifications import (
    LOW_DEDUPLICATION_SIGNAL,
    LowDeduplicationAlert,
    NotificationChannel,
)
from .storage.kv_store import build_store
from .validation.record_validator import RecordValidator

logger = structlog.get_logger(__name__)


def configure_logging(config: dict) -> None:
    """Set the structlog level and renderer from the ``logging`` section."""
    level_name = str(config.get("level", "info")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if config.get("json", True)
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def log_low_deduplication(alert: LowDeduplicationAlert) -> None:
    logger.warning("low_deduplication_alert", alert=alert.to_dict())


class TrackingService:
    """
    Owns the single tracker and resolver of this process and hands them
    to the diagnostics API. Call sites that dispatch to the ad networks
    receive the same instances from here.
    """

    def __init__(self, config_path: str = "config/tracking.yaml"):
        self.config = load_config(config_path)
        self.service_id = self.config.get("service", {}).get("id", "tracking")
        self._stopped = asyncio.Event()

        configure_logging(self.config.get("logging", {}))

        # Core components
        self.store = build_store(self.config["storage"])
        self.channel = NotificationChannel()
        self.channel.subscribe(LOW_DEDUPLICATION_SIGNAL, log_low_deduplication)

        self.resolver = ContentIdResolver(
            context=self.config["content_id"].get("context", "server"),
            store=self.store,
        )
        self.tracker = EventDeduplicationTracker.from_config(
            self.config["tracker"],
            store=self.store,
            channel=self.channel,
            validator=RecordValidator(
                schema_dir=self.config.get("validation", {}).get("schema_dir")
            ),
        )

        # Infrastructure
        self.health_server = HealthServer(
            self.config.get("health", {}), self.tracker, self.resolver
        )
        self.metrics_server = MetricsServer(self.config.get("metrics", {}))

        logger.info(
            "tracking_service_initialized",
            service_id=self.service_id,
            buffered_events=len(self.tracker.events),
        )

    async def start(self):
        await self.metrics_server.start()
        await self.health_server.start()
        logger.info("tracking_service_started", service_id=self.service_id)
        await self._stopped.wait()

    async def stop(self):
        """Graceful shutdown."""
        logger.info("tracking_service_shutdown_started")
        await self.health_server.stop()
        await self.metrics_server.stop()
        self._stopped.set()
        logger.info("tracking_service_shutdown_completed")


async def main():
    service = TrackingService()

    # Handle graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

    await service.start()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
