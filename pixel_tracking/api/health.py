"""
Health check and diagnostics API for the tracking service.
"""

import asyncio
import threading
import structlog
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from uvicorn import Config, Server

from ..content_id.resolver import ContentIdResolver
from ..deduplication.tracker import EventDeduplicationTracker, EventSource
from ..events import build_event_id, normalize_event_name

logger = structlog.get_logger(__name__)


class RecordEventRequest(BaseModel):
    event_type: str = Field(..., min_length=1)
    source: EventSource
    event_id: Optional[str] = Field(None, min_length=1)
    content_id: Optional[str] = None
    value: Optional[float] = None
    currency: Optional[str] = None
    # order/product fields the event id and content id are derived from
    data: dict[str, Any] = Field(default_factory=dict)


class ResolveContentIdRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


class HealthServer:
    """Health probes plus read/record access to the tracker for dashboards."""

    def __init__(
        self,
        config: dict,
        tracker: EventDeduplicationTracker,
        resolver: ContentIdResolver,
    ):
        self.port = config.get("port", 8080)
        self.path = config.get("path", "/health")
        self.tracker = tracker
        self.resolver = resolver
        self.app = FastAPI(title="Tracking Diagnostics")
        self._server = None
        self._lock = threading.Lock()
        self._setup_routes()

    def _setup_routes(self):
        tracker = self.tracker
        resolver = self.resolver
        lock = self._lock

        @self.app.get(self.path)
        async def health():
            report = tracker.last_report
            return {
                "status": "healthy",
                "service": "pixel-tracking",
                "checks": {
                    "buffer_size": len(tracker.events),
                    "deduplication": report.status if report else "NO_DATA",
                },
            }

        @self.app.get("/ready")
        async def readiness():
            return {"status": "ready"}

        # Routes touching the tracker or resolver are sync so FastAPI runs
        # them in its threadpool (the file store writes and fsyncs). The lock
        # keeps the tracker single-caller across those threads.

        @self.app.get("/stats")
        def stats():
            with lock:
                return tracker.get_stats()

        @self.app.get("/events/{event_id}")
        def check_event(event_id: str):
            with lock:
                result = tracker.check_event_id(event_id)
            if not result["found"]:
                raise HTTPException(status_code=404, detail=f"Event {event_id} not tracked")
            return result

        @self.app.post("/events", status_code=201)
        def record_event(request: RecordEventRequest):
            event_type = normalize_event_name(request.event_type)
            event_id = request.event_id or build_event_id(event_type, request.data)

            with lock:
                content_id = request.content_id
                if content_id is None and request.data:
                    content_id = resolver.extract(request.data)

                event = tracker.record_event(
                    event_id,
                    event_type,
                    request.source.value,
                    metadata={
                        "contentId": content_id,
                        "value": request.value,
                        "currency": request.currency,
                    },
                )
                report = tracker.last_report
            return {
                "event": event.to_dict(),
                "deduplication_rate": report.deduplication_rate,
                "browser_server_match_rate": report.browser_server_match_rate,
            }

        @self.app.post("/content-id/resolve")
        def resolve_content_id(request: ResolveContentIdRequest):
            with lock:
                resolved = resolver.resolve(request.data)
                resolver.record_extraction(resolved.source, resolved.is_generated)
            optimized = resolver.optimize_for_catalog(resolved.value, request.data)
            quality = resolver.analyze_quality(optimized)
            return {
                **resolved.to_dict(),
                "catalog_id": optimized,
                "quality": {
                    "score": quality.score,
                    "issues": quality.issues,
                    "recommendations": quality.recommendations,
                },
            }

        @self.app.get("/content-id/stats")
        def content_id_stats():
            with lock:
                return resolver.get_extraction_stats()

    async def start(self):
        config = Config(app=self.app, host="0.0.0.0", port=self.port, log_level="warning")
        self._server = Server(config)
        asyncio.create_task(self._server.serve())
        logger.info("health_server_started", port=self.port)

    async def stop(self):
        if self._server:
            self._server.should_exit = True
