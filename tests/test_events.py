from pixel_tracking.events import build_event_id, normalize_event_name

NOW_MS = 1_700_000_000_123


def test_normalize_event_name():
    assert normalize_event_name("purchase") == "Purchase"
    assert normalize_event_name("ON_WEB_ORDER") == "CompletePayment"
    assert normalize_event_name("lead") == "SubmitForm"
    assert normalize_event_name("add_to_cart") == "AddToCart"
    assert normalize_event_name("CustomThing") == "CustomThing"


def test_explicit_event_id_wins():
    assert build_event_id("Purchase", {"event_id": " evt-42 ", "order_number": "9"}, NOW_MS) == "evt-42"


def test_event_id_anchored_on_first_business_id():
    data = {"order_number": "ORD-9", "content_id": "c-1"}
    assert build_event_id("Purchase", data, NOW_MS) == "Purchase_ORD-9_00000123"


def test_event_id_uses_seconds_timestamp_from_data():
    data = {"content_id": "c-1", "timestamp": 1_700_000_001}
    assert build_event_id("AddToCart", data, NOW_MS) == "AddToCart_c-1_00001000"


def test_event_id_without_business_id():
    assert build_event_id("ViewContent", {}, NOW_MS) == "ViewContent_1700000000123_0000"


def test_browser_and_server_derive_the_same_id():
    order = {"transaction_id": 5501, "timestamp": 1_700_000_500}
    assert build_event_id("Purchase", dict(order)) == build_event_id("Purchase", dict(order))
