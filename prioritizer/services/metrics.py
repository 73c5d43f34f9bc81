"""
Item Metric Calculator — derived fields for a single item.

Pipeline, per item, in order:
    1. board_position  — (row=value, col=urgency, duration) cell on the board
    2. cost_of_delay   — urgency weight × value weight
    3. cd3             — cost_of_delay / duration weight
    4. confidence_weighted_cd3 — same formula with every bucket weight scaled
       by the survey's confidence average for that category

Weights come from the bucket table and are used as-is: a weight of 0 is a
legitimate value, never a signal to fall back to a default.

Usage:
    from prioritizer.services.metrics import recompute_item_metrics, recompute_all

    recompute_item_metrics(item, state.buckets, state.confidence_weights)
    recompute_all(items, state.buckets, affected_category="urgency")
"""

from __future__ import annotations

import logging

from prioritizer.models.constants import CATEGORIES, CONFIDENCE_LEVELS, DEFAULT_CONFIDENCE_WEIGHTS
from prioritizer.models.items import BoardPosition

logger = logging.getLogger(__name__)


def _weight(buckets, category: str, level: int) -> float:
    return buckets[category][level].weight


# ═════════════════════════════════════════════════════════════════════════════
# Core calculations
# ═════════════════════════════════════════════════════════════════════════════


def calculate_board_position(item) -> BoardPosition:
    urgency = item.level_of("urgency")
    value = item.level_of("value")
    duration = item.level_of("duration")

    if urgency == 0 and value == 0 and duration == 0:
        return BoardPosition(0, 0, None)
    if value > 0:
        return BoardPosition(value, urgency, duration or None)
    if urgency > 0:
        return BoardPosition(0, urgency, None)
    return BoardPosition(0, 0, None)


def calculate_cost_of_delay(item, buckets) -> float:
    """urgency weight × value weight; 0 while either category is unset."""
    if not (item.is_set("urgency") and item.is_set("value")):
        return 0
    return _weight(buckets, "urgency", item.level_of("urgency")) * _weight(
        buckets, "value", item.level_of("value")
    )


def calculate_cd3(item, buckets) -> float:
    """cost_of_delay / duration weight.

    0 when duration is unset, cost of delay is 0, or the duration weight
    is 0 (there is nothing meaningful to divide by).
    """
    if not item.is_set("duration") or item.cost_of_delay == 0:
        return 0
    duration_weight = _weight(buckets, "duration", item.level_of("duration"))
    if duration_weight == 0:
        return 0
    return item.cost_of_delay / duration_weight


def confidence_average(counts: dict, confidence_weights: dict) -> float | None:
    """Vote-weighted mean confidence for one dimension; None without votes."""
    total_votes = 0
    weighted = 0.0
    for level in CONFIDENCE_LEVELS:
        votes = counts.get(level, 0)
        total_votes += votes
        weighted += votes * confidence_weights[level]
    if total_votes == 0:
        return None
    return weighted / total_votes


def calculate_confidence_weighted_cd3(item, buckets, confidence_weights=None):
    """Return ``(weighted_cd3, weighted_values)`` or ``(None, None)``.

    Scope confidence is collected by the survey but does not enter the
    formula.
    """
    survey = item.confidence_survey
    if survey is None:
        return None, None
    if not all(item.is_set(cat) for cat in CATEGORIES):
        return None, None

    confidence_weights = confidence_weights or DEFAULT_CONFIDENCE_WEIGHTS
    weighted_values = {}
    for category in CATEGORIES:
        average = confidence_average(
            survey.votes.get(f"{category}_confidence", {}), confidence_weights,
        )
        if average is None:
            return None, None
        weighted_values[category] = _weight(buckets, category, item.level_of(category)) * average

    weighted_values["cost_of_delay"] = weighted_values["urgency"] * weighted_values["value"]
    if weighted_values["duration"] == 0:
        return None, weighted_values
    return weighted_values["cost_of_delay"] / weighted_values["duration"], weighted_values


# ═════════════════════════════════════════════════════════════════════════════
# Pipelines
# ═════════════════════════════════════════════════════════════════════════════


def refresh_confidence_metrics(item, buckets, confidence_weights=None) -> None:
    weighted_cd3, weighted_values = calculate_confidence_weighted_cd3(
        item, buckets, confidence_weights,
    )
    item.confidence_weighted_cd3 = weighted_cd3
    item.confidence_weighted_values = weighted_values


def recompute_item_metrics(item, buckets, confidence_weights=None):
    """Run the full pipeline on one item. Idempotent."""
    item.board_position = calculate_board_position(item)
    item.cost_of_delay = calculate_cost_of_delay(item, buckets)
    item.cd3 = calculate_cd3(item, buckets)
    refresh_confidence_metrics(item, buckets, confidence_weights)
    return item


def recompute_all(items, buckets, affected_category=None, confidence_weights=None):
    """Recompute the fields a weight change in ``affected_category`` touches.

    urgency / value → cost of delay and CD3; duration → CD3 only;
    None → the whole pipeline. Confidence-weighted CD3 is refreshed for
    every surveyed item in all cases.
    """
    logger.debug("Recomputing metrics for %d items (category=%s)", len(items), affected_category)
    for item in items:
        if affected_category is None:
            recompute_item_metrics(item, buckets, confidence_weights)
            continue
        if affected_category in ("urgency", "value"):
            item.cost_of_delay = calculate_cost_of_delay(item, buckets)
        item.cd3 = calculate_cd3(item, buckets)
        refresh_confidence_metrics(item, buckets, confidence_weights)
    return items
