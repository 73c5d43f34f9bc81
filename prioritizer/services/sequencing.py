"""
Sequencing Engine — the 1..N order shown on the Results stage.

Two regimes:
    - automatic: ranks follow CD3 order (CD3 descending, name ascending);
    - manual: once the user has reordered anything, newly scored items are
      slotted in next to their CD3 neighbours instead of reshuffling the
      list the user arranged.

Every operation keeps the non-null sequences equal to exactly {1..K}.

Usage:
    from prioritizer.services import sequencing

    sequencing.insert_item_into_sequence(item, items, manually_reordered=False)
    sequencing.reorder_item_sequence(items, item_id, "up")
"""

import logging

from prioritizer.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

REORDER_DIRECTIONS = ("up", "down")


def _sort_key(item):
    return (-(item.cd3 or 0), (item.name or "").lower())


def get_items_sorted_by_cd3(items):
    """Copy of ``items`` by CD3 descending, then name case-insensitively."""
    return sorted(items, key=_sort_key)


def _sequenced(items):
    return [i for i in items if i.sequence is not None]


def max_sequence(items) -> int:
    return max((i.sequence for i in _sequenced(items)), default=0)


def assign_sequence_numbers(items):
    """Give every unranked item a rank after the current highest one.

    Unranked items are taken in CD3 order; already-ranked items keep their
    rank. With nothing ranked yet this is plain 1..N by CD3.
    """
    next_rank = max_sequence(items) + 1
    for item in get_items_sorted_by_cd3(items):
        if item.sequence is None:
            item.sequence = next_rank
            next_rank += 1
    return items


def close_sequence_gaps(items):
    """Renumber the ranked items densely, preserving their relative order."""
    for rank, item in enumerate(sorted(_sequenced(items), key=lambda i: i.sequence), start=1):
        item.sequence = rank
    return items


def sequence_is_contiguous(items) -> bool:
    ranks = sorted(i.sequence for i in _sequenced(items))
    return ranks == list(range(1, len(ranks) + 1))


# ── Manual reordering ────────────────────────────────────────────────────


def validate_reorder(items, item_id, direction):
    """Raise unless a move of ``item_id`` one step ``direction`` is possible.

    Returns ``(item, displaced_item)``.
    """
    if direction not in REORDER_DIRECTIONS:
        raise ValidationError(f"Invalid direction: {direction}. Must be 'up' or 'down'.")
    item = next((i for i in items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Item", item_id)
    if item.sequence is None:
        raise ValidationError("Item not found or has no sequence")

    target = item.sequence - 1 if direction == "up" else item.sequence + 1
    if target < 1 or target > max_sequence(items):
        raise ValidationError("Cannot move item beyond bounds")

    displaced = next((i for i in items if i.sequence == target and i is not item), None)
    return item, displaced


def reorder_item_sequence(items, item_id, direction):
    """Swap ``item_id`` with its neighbour above or below.

    The caller is responsible for raising ``results_manually_reordered``.
    """
    item, displaced = validate_reorder(items, item_id, direction)
    current = item.sequence
    target = current - 1 if direction == "up" else current + 1
    if displaced is not None:
        displaced.sequence = current
    item.sequence = target
    item.reordered = True
    item.added_to_manually_sequenced_list = False
    logger.debug("Moved item %s %s to rank %d", item_id, direction, target)
    return item


# ── Insertion of newly scored items ──────────────────────────────────────


def insert_item_into_sequence(item, items, manually_reordered):
    """Place ``item`` after its CD3 moved from 0 to a positive value.

    Automatic regime: every item with CD3 > 0 is re-ranked 1..M in CD3
    order and items with CD3 == 0 lose their rank.

    Manual regime: the item takes the rank of the highest-CD3 ranked item
    whose CD3 is strictly lower (ties: the lowest rank), pushing that rank
    and everything after it down by one. With no such item it goes to the
    end of the list.
    """
    if not manually_reordered:
        scored = [i for i in get_items_sorted_by_cd3(items) if (i.cd3 or 0) > 0]
        for rank, scored_item in enumerate(scored, start=1):
            scored_item.sequence = rank
        for other in items:
            if (other.cd3 or 0) <= 0:
                other.sequence = None
        return items

    if item.sequence is not None:
        item.sequence = None
        close_sequence_gaps(items)

    others = [i for i in _sequenced(items) if i is not item]
    lower = [i for i in others if (i.cd3 or 0) < item.cd3]
    if lower:
        anchor = max(lower, key=lambda i: (i.cd3 or 0, -i.sequence))
        position = anchor.sequence
        for other in others:
            if other.sequence >= position:
                other.sequence += 1
        item.sequence = position
    else:
        item.sequence = max_sequence(others) + 1

    item.added_to_manually_sequenced_list = True
    logger.debug("Inserted item %s at rank %d", item.id, item.sequence)
    return items


def reset_results_order(items):
    """Drop every rank and manual flag, then re-rank purely by CD3."""
    for item in items:
        item.sequence = None
        item.added_to_manually_sequenced_list = False
        item.reordered = False
    return assign_sequence_numbers(items)


def get_results(items):
    """Items in Results order.

    Ranked items by rank, unranked ones after them in CD3 order; pure CD3
    order while nothing is ranked.
    """
    ranked = sorted(_sequenced(items), key=lambda i: i.sequence)
    if not ranked:
        return get_items_sorted_by_cd3(items)
    unranked = get_items_sorted_by_cd3([i for i in items if i.sequence is None])
    return ranked + unranked
