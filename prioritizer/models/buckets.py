"""
Bucket domain model — the 3×3 weighting/limit table.

Models:
    - Bucket: one (category, level) cell with weight, limit, title,
      description and the derived occupancy count / over-limit flag.

A bucket table is a plain nested dict ``{category: {level: Bucket}}`` so
callers index it the same way they index the serialized form.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from prioritizer.core.exceptions import ValidationError
from prioritizer.models.constants import CATEGORIES, LEVELS
from prioritizer.services import bucket_service

logger = logging.getLogger(__name__)

# ── Defaults ─────────────────────────────────────────────────────────────

BUCKET_DEFAULTS: dict[str, dict[int, dict]] = {
    "urgency": {
        1: {
            "limit": 30,
            "weight": 1,
            "title": "WHENEVER",
            "description": (
                '"Whenever" represents the lowest band of urgency. The total value '
                "isn't massively affected by delay. Most cost-reducing initiatives "
                "normally fall into this band, as do initiatives with little or no "
                "competition."
            ),
        },
        2: {
            "limit": 30,
            "weight": 2,
            "title": "SOON",
            "description": (
                '"Soon" represents the middle band of urgency. If we don\'t deliver '
                "this soon, the value will start to decline or the risk of loss will "
                "increase: reduced market share, reduced opportunity size. Whether "
                "soon means days, weeks or months depends on your context."
            ),
        },
        3: {
            "limit": 30,
            "weight": 3,
            "title": "ASAP",
            "description": (
                '"ASAP" represents the highest band of urgency. If we don\'t deliver '
                "this ASAP, the value will quickly evaporate: someone gets there "
                "before us or the opportunity is massively impaired."
            ),
        },
    },
    "value": {
        1: {
            "limit": 30,
            "weight": 1,
            "title": "MEH",
            "description": (
                '"Meh" represents the lowest total value band. Still worth doing, '
                "but not the sort of thing customers rave about. Maintenance-level "
                "work that keeps the lights on without moving the needle."
            ),
        },
        2: {
            "limit": 30,
            "weight": 2,
            "title": "BONUS",
            "description": (
                '"Bonus" represents the middle band of total value. Delighting '
                "things worth telling customers about, or valuable enough that "
                "delivering them grows revenue or cuts costs enough for everyone "
                'to "make bonus" this year.'
            ),
        },
        3: {
            "limit": 30,
            "weight": 3,
            "title": "KILLER",
            "description": (
                '"Killer" represents the highest band of total value. The few things '
                "where doing them makes an absolute killing, or not doing them will "
                "probably kill us. Try hard to avoid inflation here."
            ),
        },
    },
    "duration": {
        1: {"limit": None, "weight": 1, "title": "1-3d", "description": "TBD"},
        2: {"limit": None, "weight": 2, "title": "1-3w", "description": "TBD"},
        3: {"limit": None, "weight": 3, "title": "1-3mo", "description": "TBD"},
    },
}

BUCKET_FIELDS = ("limit", "weight", "title", "description")


@dataclass
class Bucket:
    """One (category, level) configuration cell."""

    weight: float
    title: str
    description: str = ""
    limit: int | None = None
    count: int = 0
    over_limit: bool = False

    def refresh_count(self, count: int) -> None:
        """Store a fresh occupancy count and re-derive ``over_limit``."""
        self.count = count
        self.over_limit = self.limit is not None and count > self.limit

    def to_dict(self) -> dict:
        return asdict(self)


def _stored_count(value) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


def _bucket_from_defaults(category: str, level: int, overrides: dict | None = None) -> Bucket:
    """Build one cell from the defaults, keeping only stored fields that validate."""
    overrides = overrides or {}
    data = dict(BUCKET_DEFAULTS[category][level])
    for key in BUCKET_FIELDS:
        if key not in overrides:
            continue
        val = overrides[key]
        if key == "limit" and val is None:
            data[key] = None
            continue
        try:
            data[key] = bucket_service.FIELD_VALIDATORS[key](val)
        except ValidationError:
            logger.warning("Ignoring stored bucket %s/%s %s=%r", category, level, key, val)
    return Bucket(
        weight=data["weight"],
        title=data["title"],
        description=data.get("description", ""),
        limit=data.get("limit"),
        count=_stored_count(overrides.get("count")),
    )


def initialize_buckets() -> dict[str, dict[int, Bucket]]:
    """Return a fresh 3×3 bucket table populated with the defaults."""
    return {
        category: {level: _bucket_from_defaults(category, level) for level in LEVELS}
        for category in CATEGORIES
    }


def normalize_buckets(raw) -> dict[str, dict[int, Bucket]]:
    """Merge a possibly partial / serialized table over the defaults.

    Accepts ``Bucket`` instances or dicts, and string level keys as they come
    back from JSON. Unknown categories and levels are dropped.
    """
    raw = raw if isinstance(raw, dict) else {}
    table: dict[str, dict[int, Bucket]] = {}
    for category in CATEGORIES:
        raw_levels = raw.get(category)
        if not isinstance(raw_levels, dict):
            raw_levels = {}
        table[category] = {}
        for level in LEVELS:
            cell = raw_levels.get(level, raw_levels.get(str(level)))
            if isinstance(cell, Bucket):
                cell = cell.to_dict()
            table[category][level] = _bucket_from_defaults(
                category, level, cell if isinstance(cell, dict) else None,
            )
    return table


def calculate_bucket_counts(items) -> dict[str, dict[int, int]]:
    """Count how many items sit in each (category, level) bucket."""
    counts = {category: {level: 0 for level in LEVELS} for category in CATEGORIES}
    for item in items:
        for category in CATEGORIES:
            level = item.level_of(category)
            if level in counts[category]:
                counts[category][level] += 1
    return counts


def update_bucket_counts(buckets: dict[str, dict[int, Bucket]], items) -> dict[str, dict[int, Bucket]]:
    """Recompute ``count`` / ``over_limit`` on all 9 buckets from ``items``."""
    counts = calculate_bucket_counts(items)
    for category in CATEGORIES:
        for level in LEVELS:
            buckets[category][level].refresh_count(counts[category][level])
    return buckets


def buckets_to_dict(buckets: dict[str, dict[int, Bucket]]) -> dict:
    return {
        category: {level: bucket.to_dict() for level, bucket in levels.items()}
        for category, levels in buckets.items()
    }
