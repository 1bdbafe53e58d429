"""
Event naming helpers shared by the browser pixel and the server events API.

Both sides must send the same event name and the same event_id for the
ad network to collapse the pair into one conversion.
"""

import time
from typing import Optional

from .content_id.resolver import normalize_candidate

# Legacy and snake_case names mapped onto the TikTok standard events
STANDARD_EVENT_NAMES = {
    "CompletePayment": "CompletePayment",
    "Purchase": "Purchase",
    "purchase": "Purchase",
    "PlaceAnOrder": "PlaceAnOrder",
    "ON_WEB_ORDER": "CompletePayment",
    "SUCCESSORDER_PAY": "CompletePayment",
    "ViewContent": "ViewContent",
    "view_content": "ViewContent",
    "AddToCart": "AddToCart",
    "add_to_cart": "AddToCart",
    "InitiateCheckout": "InitiateCheckout",
    "initiate_checkout": "InitiateCheckout",
    "SubmitForm": "SubmitForm",
    "lead": "SubmitForm",
    "ClickButton": "ClickButton",
}

EVENT_ID_BASE_FIELDS = [
    "transaction_id",
    "order_number",
    "content_id",
    "product_id",
    "landing_page_id",
]


def normalize_event_name(event_name: str) -> str:
    return STANDARD_EVENT_NAMES.get(event_name, event_name)


def build_event_id(event_name: str, data: dict, now_ms: Optional[int] = None) -> str:
    """
    Build the event_id both emitters derive from the same order/product data.

    An explicit ``event_id`` in data wins. Otherwise the id is anchored on
    the first business id available, falling back to the timestamp alone.
    ``data["timestamp"]`` is taken as epoch seconds.
    """
    explicit = normalize_candidate(data.get("event_id"))
    if explicit:
        return explicit

    seconds = data.get("timestamp")
    if isinstance(seconds, (int, float)) and not isinstance(seconds, bool) and seconds > 0:
        timestamp = int(seconds * 1000)
    elif now_ms is not None:
        timestamp = now_ms
    else:
        timestamp = int(time.time() * 1000)

    base_id = None
    for key in EVENT_ID_BASE_FIELDS:
        base_id = normalize_candidate(data.get(key))
        if base_id:
            break

    if base_id:
        return f"{event_name}_{base_id}_{str(timestamp)[-8:]}"
    return f"{event_name}_{timestamp}_{str(timestamp // 1000)[-4:]}"
