"""
Stage State Machine — which stage is active and what may be edited.

Stages, in order:
    Item Listing → urgency → value → duration → Results → CD3

CD3 is a terminal sentinel. Each stage has a declarative exit rule
(``STAGE_RULES``); advancing or jumping forward evaluates the exit rules of
every stage being left, left to right, and reports the first failure.

All checks return result dicts ({"can_advance": bool, "reason": str} etc.)
and never raise, so the facade can surface the reason verbatim.

Also hosts the parking-lot queries used by the categorization stages.

Usage:
    from prioritizer.services import stage_service

    check = stage_service.can_advance(state.current_stage, items)
    if not check["can_advance"]:
        return {"success": False, "error": check["reason"]}
"""

import logging

from prioritizer.models.constants import (
    PROPERTY_META,
    STAGE_DISPLAY_NAMES,
    STAGE_ITEM_LISTING,
    STAGE_ORDER,
)

logger = logging.getLogger(__name__)


# ── Exit rules ───────────────────────────────────────────────────────────
# Each rule takes the item list and returns True or a failure message.

STAGE_RULES = {
    STAGE_ITEM_LISTING: [
        lambda items: len(items) > 0
        or "You must have at least one item before advancing to Urgency stage.",
    ],
    "urgency": [
        lambda items: all(i.urgency_set for i in items)
        or "All items need urgency set before advancing to Value stage.",
    ],
    "value": [
        lambda items: all(i.value_set for i in items)
        or "All items need value set before advancing to Duration stage.",
    ],
    "duration": [
        lambda items: all(i.level_of("duration") > 0 for i in items)
        or "All items need duration set before advancing to Results.",
    ],
    "Results": [],
    "CD3": [],
}


def validate_stage(stage, items) -> dict:
    """Run the exit rules of ``stage``. Returns {"valid", "reason"?}."""
    for rule in STAGE_RULES.get(stage, []):
        result = rule(items)
        if result is not True:
            return {"valid": False, "reason": result}
    return {"valid": True}


# ── Ordering ─────────────────────────────────────────────────────────────


def stage_index(stage) -> int:
    """Position of ``stage`` in the order, or -1 if unknown."""
    try:
        return STAGE_ORDER.index(stage)
    except ValueError:
        return -1


def get_next_stage(current_stage):
    idx = stage_index(current_stage)
    if idx == -1 or idx >= len(STAGE_ORDER) - 1:
        return None
    return STAGE_ORDER[idx + 1]


def get_previous_stage(current_stage):
    idx = stage_index(current_stage)
    if idx <= 0:
        return None
    return STAGE_ORDER[idx - 1]


def get_stage_display_name(stage) -> str:
    return STAGE_DISPLAY_NAMES.get(stage, stage)


# ── Transition checks ────────────────────────────────────────────────────


def can_advance(current_stage, items) -> dict:
    if get_next_stage(current_stage) is None:
        return {"can_advance": False, "reason": "Already at the final stage"}
    validation = validate_stage(current_stage, items)
    if not validation["valid"]:
        return {"can_advance": False, "reason": validation["reason"]}
    return {"can_advance": True, "reason": ""}


def can_go_back(current_stage) -> dict:
    if get_previous_stage(current_stage) is None:
        return {"can_go_back": False, "reason": "Already at the first stage"}
    return {"can_go_back": True, "reason": ""}


def get_button_states(current_stage, items) -> dict:
    advance = can_advance(current_stage, items)
    back = can_go_back(current_stage)
    return {
        "can_advance": advance["can_advance"],
        "advance_reason": advance["reason"],
        "can_go_back": back["can_go_back"],
        "back_reason": back["reason"],
    }


def can_navigate_to_stage(target_stage, current_stage, visited_stages, items) -> dict:
    """Check a jump from ``current_stage`` to ``target_stage``.

    Backward jumps need the target to have been visited. Forward jumps need
    the exit rule of every stage from current up to (not including) target.
    """
    if target_stage not in STAGE_ORDER:
        return {"can_navigate": False, "reason": "Invalid stage"}

    target_idx = stage_index(target_stage)
    current_idx = stage_index(current_stage)

    if target_idx == current_idx:
        return {"can_navigate": False, "reason": "Already at this stage"}

    if target_idx < current_idx:
        if target_stage in visited_stages:
            return {"can_navigate": True, "reason": ""}
        return {"can_navigate": False, "reason": "Stage not yet visited"}

    for idx in range(max(current_idx, 0), target_idx):
        validation = validate_stage(STAGE_ORDER[idx], items)
        if not validation["valid"]:
            return {"can_navigate": False, "reason": validation["reason"]}
    return {"can_navigate": True, "reason": ""}


def navigate_to_stage(target_stage, current_stage, visited_stages, items) -> dict:
    """Check the jump and, on success, return the grown visited list.

    Returns:
        {"success": True, "visited_stages": [...]} or
        {"success": False, "error": reason}
    """
    check = can_navigate_to_stage(target_stage, current_stage, visited_stages, items)
    if not check["can_navigate"]:
        return {"success": False, "error": check["reason"] or "Cannot navigate to this stage"}

    updated = list(visited_stages)
    target_idx = stage_index(target_stage)
    current_idx = stage_index(current_stage)
    if target_idx > current_idx:
        for stage in STAGE_ORDER[max(current_idx, 0):target_idx + 1]:
            if stage not in updated:
                updated.append(stage)
    return {"success": True, "visited_stages": updated}


def get_stage_navigation_state(current_stage, visited_stages, items) -> dict:
    """Per-stage status for the stage navigator.

    status is one of current / visited / future / locked; locked stages
    carry the reason they cannot be reached yet.
    """
    current_idx = stage_index(current_stage)
    stages = []
    for idx, stage in enumerate(STAGE_ORDER):
        reason = ""
        if stage == current_stage:
            status, navigable = "current", False
        elif idx < current_idx:
            status, navigable = "visited", True
        else:
            check = can_navigate_to_stage(stage, current_stage, visited_stages, items)
            if check["can_navigate"]:
                status, navigable = "future", True
            else:
                status, navigable = "locked", False
                reason = check["reason"] or "Prerequisites not met"
        stages.append({
            "name": stage,
            "display_name": get_stage_display_name(stage),
            "status": status,
            "can_navigate": navigable,
            "reason": reason,
        })
    return {"current_stage": current_stage, "stages": stages}


# ── Editing gate ─────────────────────────────────────────────────────────


def can_edit_category(current_stage, locked, category) -> dict:
    """Whether ``category`` may be edited right now.

    Locked mode: only the category of the active stage.
    Unlocked mode: any category whose stage is at or before the active one.
    """
    meta = PROPERTY_META.get(category)
    if meta is None:
        return {"can_edit": False, "reason": f"Invalid property: {category}"}

    label = category.capitalize()
    if locked:
        if current_stage != meta["stage"]:
            return {
                "can_edit": False,
                "reason": (
                    f'Error: Cannot set {label}. Current stage is "{current_stage}". '
                    f'You must be on the "{meta["stage"]}" stage to set {category} values. '
                    f'Use "Advance Stage" or "Back Stage" commands to navigate.'
                ),
            }
    elif stage_index(meta["stage"]) > stage_index(current_stage):
        return {
            "can_edit": False,
            "reason": (
                f'Error: Cannot set {label}. Current stage is "{current_stage}". '
                f'You must be on the "{meta["stage"]}" stage or later to set {category} values. '
                f'Use "Advance Stage" command to navigate.'
            ),
        }
    return {"can_edit": True, "reason": ""}


# ── Parking lot & progress queries ───────────────────────────────────────


def get_parking_lot_items(items, category):
    """Items still waiting for a level in ``category``."""
    return [i for i in items if not i.is_set(category)]


def get_value_parking_lot_items(items):
    """Items with urgency set that are still waiting for a value."""
    return [i for i in items if i.urgency_set and not i.value_set]


def all_items_have(items, category) -> bool:
    return len(items) > 0 and all(i.is_set(category) for i in items)


def has_advanced_items(items) -> bool:
    """True once any item has urgency set, i.e. prioritization has started."""
    return any(i.urgency_set for i in items)


def has_new_items(items) -> bool:
    return any(i.is_new_item for i in items)
