import pytest
from fastapi.testclient import TestClient

from pixel_tracking.api.health import HealthServer
from pixel_tracking.content_id.resolver import ContentIdResolver
from pixel_tracking.deduplication.tracker import EventDeduplicationTracker


@pytest.fixture
def client(store, clock):
    tracker = EventDeduplicationTracker(store=store, clock=clock)
    resolver = ContentIdResolver(context="server", store=store, clock=clock)
    server = HealthServer({"port": 0}, tracker, resolver)
    return TestClient(server.app)


def test_health_and_ready(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["checks"]["deduplication"] == "NO_DATA"
    assert client.get("/ready").json() == {"status": "ready"}


def test_record_and_check_event(client):
    response = client.post("/events", json={
        "event_id": "evt-1", "event_type": "Purchase", "source": "browser", "value": 25.0,
    })
    assert response.status_code == 201
    assert response.json()["event"]["eventId"] == "evt-1"

    response = client.post("/events", json={
        "event_id": "evt-1", "event_type": "Purchase", "source": "server",
    })
    assert response.json()["browser_server_match_rate"] == 100.0

    result = client.get("/events/evt-1").json()
    assert result["has_browser_server_match"] is True
    assert client.get("/stats").json()["total_events"] == 2


def test_rejects_unknown_source(client):
    response = client.post("/events", json={
        "event_id": "evt-1", "event_type": "Purchase", "source": "mobile",
    })
    assert response.status_code == 422


def test_unknown_event_is_404(client):
    assert client.get("/events/nope").status_code == 404


def test_resolve_content_id(client):
    uuid = "550e8400-e29b-41d4-a716-446655440000"
    body = client.post("/content-id/resolve", json={"data": {"product_id": uuid, "sku": "12345"}}).json()

    assert body["value"] == uuid
    assert body["source"] == "product_id"
    assert body["confidence"] == "high"
    assert body["catalog_id"] == "12345"
    assert body["quality"]["score"] == 100

    assert client.get("/content-id/stats").json() == {"product_id": 1}


def test_event_id_and_content_id_are_derived_from_order_data(client):
    order = {"order_number": "ORD-9", "product_id": "p-1", "timestamp": 1_700_000_001}

    browser = client.post("/events", json={
        "event_type": "purchase", "source": "browser", "data": order,
    }).json()["event"]
    client.post("/events", json={"event_type": "Purchase", "source": "server", "data": order})

    assert browser["eventId"] == "Purchase_ORD-9_00001000"
    assert browser["eventType"] == "Purchase"
    assert browser["contentId"] == "p-1"
    assert client.get("/events/Purchase_ORD-9_00001000").json()["has_browser_server_match"] is True
