"""Bucket Configuration Store — validated writes to the 3×3 bucket table.

Every setter validates category, level and the new value before touching
the table and raises ``ValidationError`` otherwise. ``set_weight`` returns
the affected category so the caller can cascade the metric recompute; the
store itself never looks at items.

Usage:
    from prioritizer.services import bucket_service

    affected = bucket_service.set_weight(state.buckets, "urgency", 2, 5)
    metrics.recompute_all(items, state.buckets, affected_category=affected)
"""

import logging
import math

from prioritizer.core.exceptions import ValidationError
from prioritizer.models.constants import CATEGORIES, LEVELS

logger = logging.getLogger(__name__)


# ── Field validators ─────────────────────────────────────────────────────
# Each returns the processed value to store or raises ValidationError.


def _validate_limit(value):
    if isinstance(value, bool):
        raise ValidationError("Limit must be a non-negative integer", {"field": "limit"})
    try:
        if isinstance(value, str):
            num = int(value.strip())
        elif isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            num = int(value)
        else:
            num = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Limit must be a non-negative integer", {"field": "limit"})
    if num < 0:
        raise ValidationError("Limit must be a non-negative integer", {"field": "limit"})
    return num


def _validate_weight(value):
    if isinstance(value, bool):
        raise ValidationError("Weight must be a non-negative number", {"field": "weight"})
    try:
        num = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValidationError("Weight must be a non-negative number", {"field": "weight"})
    if not math.isfinite(num) or num < 0:
        raise ValidationError("Weight must be a non-negative number", {"field": "weight"})
    return int(num) if num.is_integer() else num


def _validate_title(value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Title cannot be empty", {"field": "title"})
    return value


def _validate_description(value):
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Description must be text", {"field": "description"})
    return value


FIELD_VALIDATORS = {
    "limit": _validate_limit,
    "weight": _validate_weight,
    "title": _validate_title,
    "description": _validate_description,
}


# ── Lookup helpers ───────────────────────────────────────────────────────


def validate_cell(category, level):
    """Raise unless (category, level) names one of the 9 buckets."""
    if category not in CATEGORIES:
        raise ValidationError(f"Invalid category: {category}", {"field": "category"})
    if isinstance(level, bool) or level not in LEVELS:
        raise ValidationError(f"Invalid level: {level}. Must be 1, 2, or 3.", {"field": "level"})


def prepare_bucket_field(category, level, field, value):
    """Validate a write without applying it. Returns the processed value."""
    validate_cell(category, level)
    validator = FIELD_VALIDATORS.get(field)
    if validator is None:
        raise ValidationError(f"Invalid field: {field}", {"field": field})
    return validator(value)


# ── Setters ──────────────────────────────────────────────────────────────


def set_bucket_field(buckets, category, level, field, value):
    """Validate and write one field. Returns the category for weight writes."""
    processed = prepare_bucket_field(category, level, field, value)
    setattr(buckets[category][level], field, processed)
    logger.info("Bucket %s/%s %s set to %r", category, level, field, processed)

    if field == "limit":
        bucket = buckets[category][level]
        bucket.refresh_count(bucket.count)
    if field == "weight":
        return category
    return None


def set_limit(buckets, category, level, value):
    return set_bucket_field(buckets, category, level, "limit", value)


def set_weight(buckets, category, level, value):
    """Write a weight; returns the affected category for the recompute."""
    return set_bucket_field(buckets, category, level, "weight", value)


def set_title(buckets, category, level, value):
    return set_bucket_field(buckets, category, level, "title", value)


def set_description(buckets, category, level, value):
    return set_bucket_field(buckets, category, level, "description", value)


def get_bucket(buckets, category, level):
    validate_cell(category, level)
    return buckets[category][level]
