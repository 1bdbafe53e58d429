"""
Content ID Resolver — Picks a catalog content id for ad-conversion events.

Ad pixels reject or fail to attribute events that carry no content id.
Page and order handlers build event data from whatever state they have
at hand, so the id is looked up across the commerce fields in a fixed
priority order. When none is usable, a readable fallback id is generated
from the product name, category and price.
"""

import json
import math
import random
import re
import string
import time
import structlog
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..metrics import CONTENT_IDS_RESOLVED, STORAGE_ERRORS
from ..storage.kv_store import KeyValueStore, NullStore

logger = structlog.get_logger(__name__)

STATS_KEY = "content_id_extraction_stats"
GENERATED_SOURCE = "generated"

_BASE36 = string.digits + string.ascii_lowercase
_VALID_ID = re.compile(r"[a-zA-Z0-9_-]+")
_NUMERIC_ID = re.compile(r"[0-9]+")


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# (label, field, confidence) in resolution order
CANDIDATE_FIELDS = [
    ("content_ids[0]", "content_ids", Confidence.HIGH),
    ("content_id", "content_id", Confidence.HIGH),
    ("product_id", "product_id", Confidence.HIGH),
    ("sku", "sku", Confidence.HIGH),
    ("item_id", "item_id", Confidence.HIGH),
    ("id", "id", Confidence.MEDIUM),
    ("landing_page_id", "landing_page_id", Confidence.MEDIUM),
    ("transaction_id", "transaction_id", Confidence.MEDIUM),
    ("order_number", "order_number", Confidence.MEDIUM),
    ("order_id", "order_id", Confidence.MEDIUM),
]

CATALOG_NUMERIC_FIELDS = ["numeric_id", "catalog_id", "variant_id", "sku"]

BASE_PREFIXES = {
    "client": "product",
    "server": "server_product",
}


@dataclass(frozen=True)
class ResolvedContentId:
    value: str
    source: str
    is_generated: bool
    confidence: Confidence

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "source": self.source,
            "is_generated": self.is_generated,
            "confidence": self.confidence.value,
        }


@dataclass
class QualityReport:
    score: int
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def number_to_str(value) -> str:
    """Render a number the way it reads in a catalog: 12.0 -> "12"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_candidate(value: Any) -> Optional[str]:
    """
    Clean a candidate id. Numbers become decimal strings, strings are
    trimmed. Returns None for anything that cannot serve as an id.
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        if value == 0 or (isinstance(value, float) and (math.isnan(value) or math.isinf(value))):
            return None
        return number_to_str(value)

    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned and cleaned not in ("undefined", "null"):
            return cleaned

    return None


def validate_content_id(content_id: Any) -> bool:
    """True if content_id can be sent as-is."""
    return (
        isinstance(content_id, str)
        and len(content_id.strip()) > 0
        and content_id.strip() not in ("undefined", "null")
    )


def _slug(text: Any, length: int) -> str:
    return re.sub(r"[^a-z0-9]", "", str(text).lower())[:length]


def _first_present(data: dict, *keys: str):
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


class ContentIdResolver:
    """
    Resolves content ids for one runtime context ("client" or "server").

    The context only changes the base prefix of generated ids. Extraction
    statistics are kept in the injected store under ``STATS_KEY``.
    """

    def __init__(
        self,
        context: str = "client",
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        if context not in BASE_PREFIXES:
            raise ValueError(f"Unknown content id context: {context}")
        self.context = context
        self.store = store if store is not None else NullStore()
        self._clock = clock
        self._rng = rng or random.Random()

    def resolve(self, data: Optional[dict]) -> ResolvedContentId:
        """Return the first usable id from data, or a generated fallback."""
        data = data if isinstance(data, dict) else {}

        for label, key, confidence in CANDIDATE_FIELDS:
            raw = data.get(key)
            if key == "content_ids":
                raw = raw[0] if isinstance(raw, (list, tuple)) and raw else None

            content_id = normalize_candidate(raw)
            if content_id:
                CONTENT_IDS_RESOLVED.labels(source=label, confidence=confidence.value).inc()
                return ResolvedContentId(
                    value=content_id,
                    source=label,
                    is_generated=False,
                    confidence=confidence,
                )

        resolved = self._generate_fallback(data)
        CONTENT_IDS_RESOLVED.labels(
            source=GENERATED_SOURCE, confidence=resolved.confidence.value
        ).inc()
        return resolved

    def _generate_fallback(self, data: dict) -> ResolvedContentId:
        timestamp_ms = int(self._clock() * 1000)
        random_suffix = "".join(self._rng.choice(_BASE36) for _ in range(4))

        prefix = BASE_PREFIXES[self.context]
        confidence = Confidence.LOW

        name = _first_present(data, "content_name", "product_name")
        category = _first_present(data, "content_category", "product_category")
        name_slug = _slug(name, 8) if name else ""
        category_slug = _slug(category, 6) if category else ""

        if name_slug:
            prefix = name_slug
            confidence = Confidence.MEDIUM
        elif category_slug:
            prefix = category_slug
            confidence = Confidence.MEDIUM

        price = _first_present(data, "value", "price")
        if price and not isinstance(price, bool):
            digits = re.sub(r"[^0-9]", "", number_to_str(price))[:4]
            if digits:
                prefix = f"{prefix}_{digits}"
                confidence = Confidence.MEDIUM

        content_id = f"{prefix}_{str(timestamp_ms)[-8:]}_{random_suffix}"

        logger.warning(
            "content_id_generated",
            content_id=content_id,
            prefix=prefix,
            confidence=confidence.value,
            context=self.context,
            available_fields=sorted(str(key) for key in data),
        )

        return ResolvedContentId(
            value=content_id,
            source=GENERATED_SOURCE,
            is_generated=True,
            confidence=confidence,
        )

    def optimize_for_catalog(self, content_id: str, data: Optional[dict]) -> str:
        """
        Swap a UUID-like id for a numeric catalog id when the event data has one.
        Catalog feeds are usually keyed by numeric ids.
        """
        if "-" in content_id and len(content_id) > 20:
            data = data if isinstance(data, dict) else {}
            for key in CATALOG_NUMERIC_FIELDS:
                cleaned = normalize_candidate(data.get(key))
                if cleaned and _NUMERIC_ID.fullmatch(cleaned):
                    logger.info(
                        "content_id_optimized_for_catalog",
                        original=content_id,
                        optimized=cleaned,
                        field=key,
                    )
                    return cleaned

        return content_id

    def analyze_quality(self, content_id: str) -> QualityReport:
        issues = []
        recommendations = []
        score = 100

        if len(content_id) < 3:
            issues.append("Content ID too short")
            score -= 30
        if len(content_id) > 100:
            issues.append("Content ID too long")
            score -= 10

        if not _VALID_ID.fullmatch(content_id):
            issues.append("Contains special characters")
            score -= 20
            recommendations.append("Use only alphanumeric characters, underscores, and hyphens")

        if "product_" in content_id and "_" in content_id:
            issues.append("Generated content ID")
            score -= 15
            recommendations.append("Use actual product IDs from your catalog")

        if "-" in content_id and len(content_id) > 30:
            issues.append("UUID format may not match catalog")
            score -= 10
            recommendations.append("Consider using numeric product IDs")

        return QualityReport(
            score=max(0, score),
            issues=issues,
            recommendations=recommendations,
        )

    # --- Extraction statistics ---

    def get_extraction_stats(self) -> dict[str, int]:
        try:
            raw = self.store.get(STATS_KEY)
            stats = json.loads(raw) if raw else {}
        except Exception as e:
            STORAGE_ERRORS.labels(operation="read").inc()
            logger.warning("extraction_stats_read_failed", error=str(e))
            return {}

        if not isinstance(stats, dict):
            return {}
        # counters only; anything else in the blob is corrupt
        return {
            key: count
            for key, count in stats.items()
            if isinstance(count, int) and not isinstance(count, bool) and count >= 0
        }

    def record_extraction(self, source: str, is_generated: bool) -> None:
        key = f"generated_{source}" if is_generated else source
        stats = self.get_extraction_stats()
        stats[key] = stats.get(key, 0) + 1

        try:
            self.store.set(STATS_KEY, json.dumps(stats))
        except Exception as e:
            STORAGE_ERRORS.labels(operation="write").inc()
            logger.warning("extraction_stats_write_failed", error=str(e))

    def extract(self, data: Optional[dict]) -> str:
        """Resolve, count the extraction, and return just the id."""
        resolved = self.resolve(data)
        self.record_extraction(resolved.source, resolved.is_generated)
        return resolved.value
