"""
Migration & normalization of persisted engine state.

Everything loaded from a persistence adapter goes through here before the
engine touches it:

    1. version-gated migrations (v0 → v1: ``entry_stage`` → ``current_stage``)
    2. normalization of the AppState (every key present and valid)
    3. normalization of the items (defaults, unique ids, notes, links)
    4. metric recompute against the current buckets and bucket recount

Documents written by the original browser application use camelCase keys
(``currentStage``, ``urgencySet``, ``CD3`` ...); they are translated to the
snake_case shape first.

Usage:
    from prioritizer.services.migrator import normalize

    state, items = normalize(adapter.load_state(), adapter.load_items())
"""

import logging
import math
import time
import uuid

from prioritizer.models.app_state import AppState
from prioritizer.models.buckets import normalize_buckets, update_bucket_counts
from prioritizer.models.constants import (
    CONFIDENCE_LEVELS,
    DEFAULT_CONFIDENCE_LEVEL_LABELS,
    DEFAULT_CONFIDENCE_WEIGHTS,
    SCHEMA_VERSION,
    STAGE_ITEM_LISTING,
    STAGE_ORDER,
)
from prioritizer.models.items import Item
from prioritizer.services import metrics, sequencing

logger = logging.getLogger(__name__)

# ── Legacy key translation ───────────────────────────────────────────────

_LEGACY_STATE_KEYS = {
    "currentStage": "current_stage",
    "entryStage": "entry_stage",
    "visitedStages": "visited_stages",
    "resultsManuallyReordered": "results_manually_reordered",
    "confidenceWeights": "confidence_weights",
    "confidenceLevelLabels": "confidence_level_labels",
    "_version": "version",
}

_LEGACY_ITEM_KEYS = {
    "urgencySet": "urgency_set",
    "valueSet": "value_set",
    "durationSet": "duration_set",
    "costOfDelay": "cost_of_delay",
    "CD3": "cd3",
    "confidenceWeightedCD3": "confidence_weighted_cd3",
    "addedToManuallySequencedList": "added_to_manually_sequenced_list",
    "isNewItem": "is_new_item",
    "hasConfidenceSurvey": "has_confidence_survey",
    "confidenceSurvey": "confidence_survey",
    "createdAt": "created_at",
}

_LEGACY_SURVEY_KEYS = {
    "scopeConfidence": "scope_confidence",
    "urgencyConfidence": "urgency_confidence",
    "valueConfidence": "value_confidence",
    "durationConfidence": "duration_confidence",
}

_LEGACY_BUCKET_KEYS = {"overLimit": "over_limit"}


def _translate(raw: dict, mapping: dict) -> dict:
    """Copy ``raw`` with legacy keys renamed; snake_case keys win on clash."""
    out = {}
    for key, val in raw.items():
        new_key = mapping.get(key, key)
        if new_key != key and new_key in raw:
            continue
        out[new_key] = val
    return out


def mint_item_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


# ═════════════════════════════════════════════════════════════════════════════
# AppState
# ═════════════════════════════════════════════════════════════════════════════


def migrate(raw_state):
    """Apply version-gated migrations. Returns a snake_case dict or None."""
    if not raw_state or not isinstance(raw_state, dict):
        return None
    state = _translate(raw_state, _LEGACY_STATE_KEYS)
    try:
        from_version = int(state.get("version") or 0)
    except (TypeError, ValueError):
        from_version = 0

    if from_version < 1:
        if state.get("entry_stage") and not state.get("current_stage"):
            state["current_stage"] = state["entry_stage"]
            logger.info("Migrated entry_stage → current_stage (%s)", state["current_stage"])
        state.pop("entry_stage", None)

    state["version"] = SCHEMA_VERSION
    return state


def _normalize_level_map(raw, defaults, cast):
    result = dict(defaults)
    if not isinstance(raw, dict):
        return result
    for level in CONFIDENCE_LEVELS:
        val = raw.get(level, raw.get(str(level)))
        if val is None:
            continue
        try:
            val = cast(val)
        except (TypeError, ValueError):
            continue
        if isinstance(val, float) and not math.isfinite(val):
            continue
        result[level] = val
    return result


def normalize_state(raw_state) -> AppState:
    """Fill every AppState key, falling back to defaults for bad values."""
    data = migrate(raw_state)
    if data is None:
        return AppState()

    current = data.get("current_stage")
    if current not in STAGE_ORDER:
        current = STAGE_ITEM_LISTING

    visited = data.get("visited_stages")
    if isinstance(visited, list):
        visited = [s for i, s in enumerate(visited) if s in STAGE_ORDER and s not in visited[:i]]
    else:
        visited = list(STAGE_ORDER[:STAGE_ORDER.index(current) + 1])
    if STAGE_ITEM_LISTING not in visited:
        visited.insert(0, STAGE_ITEM_LISTING)
    if current not in visited:
        visited.append(current)

    raw_buckets = data.get("buckets") or {}
    if isinstance(raw_buckets, dict):
        raw_buckets = {
            cat: {
                lvl: _translate(cell, _LEGACY_BUCKET_KEYS) if isinstance(cell, dict) else cell
                for lvl, cell in (levels or {}).items()
            }
            for cat, levels in raw_buckets.items()
            if isinstance(levels, dict)
        }

    locked = data.get("locked")
    reordered = data.get("results_manually_reordered")
    return AppState(
        current_stage=current,
        visited_stages=visited,
        locked=True if locked is None else bool(locked),
        results_manually_reordered=bool(reordered) if reordered is not None else False,
        confidence_weights=_normalize_level_map(
            data.get("confidence_weights"), DEFAULT_CONFIDENCE_WEIGHTS, float,
        ),
        confidence_level_labels=_normalize_level_map(
            data.get("confidence_level_labels"), DEFAULT_CONFIDENCE_LEVEL_LABELS, str,
        ),
        buckets=normalize_buckets(raw_buckets),
        version=SCHEMA_VERSION,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════


def _normalize_item_dict(raw: dict) -> dict:
    data = _translate(raw, _LEGACY_ITEM_KEYS)
    survey = data.get("confidence_survey")
    if isinstance(survey, dict):
        data["confidence_survey"] = _translate(survey, _LEGACY_SURVEY_KEYS)
    return data


def normalize_items(raw_items, state: AppState) -> list[Item]:
    """Build items from stored dicts: defaults, unique ids, fresh metrics."""
    if not isinstance(raw_items, list):
        return []

    items = []
    seen_ids = set()
    for raw in raw_items:
        if not isinstance(raw, dict):
            logger.warning("Dropping non-object item entry: %r", raw)
            continue
        item = Item.from_dict(_normalize_item_dict(raw))
        if not item.id or item.id in seen_ids:
            old_id = item.id
            item.id = mint_item_id()
            logger.info("Re-minted duplicate item id %s → %s", old_id, item.id)
        seen_ids.add(item.id)
        metrics.recompute_item_metrics(item, state.buckets, state.confidence_weights)
        items.append(item)

    if not sequencing.sequence_is_contiguous(items):
        logger.info("Closing gaps in stored sequence numbers")
        sequencing.close_sequence_gaps(items)
    return items


def normalize(raw_state, raw_items):
    """Migrate + normalize state and items together. Returns (state, items)."""
    state = normalize_state(raw_state)
    items = normalize_items(raw_items, state)
    update_bucket_counts(state.buckets, items)
    return state, items
