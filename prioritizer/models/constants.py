"""Shared constants for categories, levels, stages and storage keys."""

CATEGORIES = ("urgency", "value", "duration")
LEVELS = (1, 2, 3)

# ── Stages ───────────────────────────────────────────────────────────────
# Item Listing → urgency → value → duration → Results → CD3 (terminal)
STAGE_ITEM_LISTING = "Item Listing"
STAGE_RESULTS = "Results"
STAGE_CD3 = "CD3"

STAGE_ORDER = (
    STAGE_ITEM_LISTING,
    "urgency",
    "value",
    "duration",
    STAGE_RESULTS,
    STAGE_CD3,
)

STAGE_DISPLAY_NAMES = {
    STAGE_ITEM_LISTING: "Items",
    "urgency": "Urgency",
    "value": "Value",
    "duration": "Duration",
    STAGE_RESULTS: "Results",
    STAGE_CD3: "CD3",
}

# Which stage edits a category, and which categories must be set first.
PROPERTY_META = {
    "urgency": {"stage": "urgency", "prerequisites": ()},
    "value": {"stage": "value", "prerequisites": ("urgency",)},
    "duration": {"stage": "duration", "prerequisites": ("value",)},
}

# ── Confidence survey ────────────────────────────────────────────────────
CONFIDENCE_LEVELS = (1, 2, 3, 4)

CONFIDENCE_DIMENSIONS = (
    "scope_confidence",
    "urgency_confidence",
    "value_confidence",
    "duration_confidence",
)

CONFIDENCE_DIMENSION_NAMES = {
    "scope_confidence": "Scope Confidence",
    "urgency_confidence": "Urgency Confidence",
    "value_confidence": "Value Confidence",
    "duration_confidence": "Duration Confidence",
}

DEFAULT_CONFIDENCE_WEIGHTS = {1: 0.30, 2: 0.50, 3: 0.70, 4: 0.90}

DEFAULT_CONFIDENCE_LEVEL_LABELS = {
    1: "Not Confident (rarely, unlikely, low probability)",
    2: "Somewhat Confident (maybe, possibly, moderate probability)",
    3: "Confident (likely, probably, high probability)",
    4: "Very Confident (almost certainly, almost always, certainly)",
}

# ── Persistence keys ─────────────────────────────────────────────────────
STORAGE_KEY = "priority_items"
APP_STATE_KEY = "app_state"

SCHEMA_VERSION = 1
