"""
Item domain model — one backlog entry being prioritized.

Models:
    - CategoryState: tagged selection for urgency / value / duration
      (Unset, or Set at level 1..3). Once Set it can never go back to Unset.
    - BoardPosition: derived (row, col, duration) cell on the 3×3 board
    - Note: free-text note with created / modified timestamps
    - ConfidenceSurvey: vote counts per confidence level for four dimensions
    - Item: the entry itself, with derived metrics and sequencing fields

Derived fields (board_position, cost_of_delay, cd3, confidence_weighted_*)
are owned by ``prioritizer.services.metrics`` and never hand-edited.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

from prioritizer.models.constants import (
    CATEGORIES,
    CONFIDENCE_DIMENSIONS,
    CONFIDENCE_LEVELS,
    LEVELS,
)

_URL_PATTERN = re.compile(r"^https?://.+", re.IGNORECASE)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_valid_url(value) -> bool:
    """True if ``value`` is an http(s) URL with a host."""
    if not value or not isinstance(value, str):
        return False
    value = value.strip()
    if not _URL_PATTERN.match(value):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def clean_link(value) -> str | None:
    """Return the trimmed link if valid, otherwise None."""
    return value.strip() if is_valid_url(value) else None


# ═════════════════════════════════════════════════════════════════════════════
# Category state
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CategoryState:
    """Urgency / value / duration selection.

    ``level == 0`` is the Unset tag; 1..3 is Set. ``assign`` is the only way
    to move between states and refuses Set → Unset.
    """

    level: int = 0

    def __post_init__(self) -> None:
        if self.level not in (0, *LEVELS):
            raise ValueError(f"level must be 0-3, got {self.level!r}")

    @property
    def is_set(self) -> bool:
        return self.level > 0

    def assign(self, level: int) -> CategoryState:
        if level == 0:
            if self.is_set:
                raise ValueError("a set category cannot be unset")
            return UNSET
        return CategoryState(level)


UNSET = CategoryState(0)


@dataclass(frozen=True)
class BoardPosition:
    row: int = 0
    col: int = 0
    duration: int | None = None

    def to_dict(self) -> dict:
        return {"row": self.row, "col": self.col, "duration": self.duration}


# ═════════════════════════════════════════════════════════════════════════════
# Notes & confidence survey
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class Note:
    text: str
    created_at: str = field(default_factory=utcnow_iso)
    modified_at: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_raw(cls, raw) -> Note | None:
        """Build a note from its dict form or from a legacy plain string.

        Returns None for anything else.
        """
        if isinstance(raw, str):
            return cls(text=raw)
        if not isinstance(raw, dict):
            return None
        created = raw.get("created_at") or raw.get("createdAt")
        created = created if isinstance(created, str) else utcnow_iso()
        modified = raw.get("modified_at") or raw.get("modifiedAt")
        modified = modified if isinstance(modified, str) else created
        return cls(text=str(raw.get("text") or ""), created_at=created, modified_at=modified)

    def to_dict(self) -> dict:
        return {"text": self.text, "created_at": self.created_at, "modified_at": self.modified_at}


def _empty_votes() -> dict[str, dict[int, int]]:
    return {dim: {level: 0 for level in CONFIDENCE_LEVELS} for dim in CONFIDENCE_DIMENSIONS}


@dataclass
class ConfidenceSurvey:
    """Vote counts per confidence level (1..4) for each of four dimensions."""

    votes: dict[str, dict[int, int]] = field(default_factory=_empty_votes)

    @classmethod
    def from_dict(cls, raw: dict | None) -> ConfidenceSurvey:
        votes = _empty_votes()
        raw = raw if isinstance(raw, dict) else {}
        for dim in CONFIDENCE_DIMENSIONS:
            counts = raw.get(dim)
            if not isinstance(counts, dict):
                continue
            for level in CONFIDENCE_LEVELS:
                value = counts.get(level, counts.get(str(level), 0))
                try:
                    votes[dim][level] = max(0, int(value or 0))
                except (TypeError, ValueError):
                    votes[dim][level] = 0
        return cls(votes=votes)

    def total_votes(self, dimension: str) -> int:
        return sum(self.votes.get(dimension, {}).values())

    @property
    def selections_count(self) -> int:
        """Number of (dimension, level) cells that received at least one vote."""
        return sum(1 for counts in self.votes.values() for n in counts.values() if n > 0)

    def to_dict(self) -> dict:
        return {dim: dict(counts) for dim, counts in self.votes.items()}


# ═════════════════════════════════════════════════════════════════════════════
# Item
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class Item:
    """A backlog entry plus everything derived from its categorization."""

    id: str
    name: str
    link: str | None = None
    urgency: CategoryState = UNSET
    value: CategoryState = UNSET
    duration: CategoryState = UNSET
    board_position: BoardPosition = field(default_factory=BoardPosition)
    cost_of_delay: float = 0
    cd3: float = 0
    confidence_weighted_cd3: float | None = None
    confidence_weighted_values: dict | None = None
    sequence: int | None = None
    added_to_manually_sequenced_list: bool = False
    reordered: bool = False
    active: bool = True
    is_new_item: bool = False
    notes: list[Note] = field(default_factory=list)
    confidence_survey: ConfidenceSurvey | None = None
    created_at: str = field(default_factory=utcnow_iso)

    # ── category access ──────────────────────────────────────────────────

    def category_state(self, category: str) -> CategoryState:
        if category not in CATEGORIES:
            raise KeyError(category)
        return getattr(self, category)

    def level_of(self, category: str) -> int:
        return self.category_state(category).level

    def is_set(self, category: str) -> bool:
        return self.category_state(category).is_set

    @property
    def urgency_set(self) -> bool:
        return self.urgency.is_set

    @property
    def value_set(self) -> bool:
        return self.value.is_set

    @property
    def duration_set(self) -> bool:
        return self.duration.is_set

    @property
    def has_confidence_survey(self) -> bool:
        return self.confidence_survey is not None

    # ── serialization ────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "link": self.link,
            "urgency": self.urgency.level,
            "value": self.value.level,
            "duration": self.duration.level,
            "urgency_set": self.urgency_set,
            "value_set": self.value_set,
            "duration_set": self.duration_set,
            "board_position": self.board_position.to_dict(),
            "cost_of_delay": self.cost_of_delay,
            "cd3": self.cd3,
            "confidence_weighted_cd3": self.confidence_weighted_cd3,
            "confidence_weighted_values": (
                dict(self.confidence_weighted_values)
                if self.confidence_weighted_values is not None else None
            ),
            "sequence": self.sequence,
            "added_to_manually_sequenced_list": self.added_to_manually_sequenced_list,
            "reordered": self.reordered,
            "active": self.active,
            "is_new_item": self.is_new_item,
            "notes": [n.to_dict() for n in self.notes],
            "has_confidence_survey": self.has_confidence_survey,
            "confidence_survey": (
                self.confidence_survey.to_dict() if self.confidence_survey else None
            ),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Item:
        """Build an item from its serialized (snake_case) form.

        Lenient: every missing field takes its default. Derived metrics are
        not trusted and must be recomputed by the caller.
        """
        survey = None
        if data.get("has_confidence_survey") and isinstance(data.get("confidence_survey"), dict):
            survey = ConfidenceSurvey.from_dict(data["confidence_survey"])

        notes = data.get("notes")
        notes = [Note.from_raw(n) for n in notes] if isinstance(notes, list) else []

        sequence = data.get("sequence")
        try:
            sequence = int(sequence) if sequence is not None else None
        except (TypeError, ValueError):
            sequence = None
        if sequence is not None and sequence < 1:
            sequence = None

        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            link=clean_link(data.get("link")),
            urgency=_state_from(data, "urgency"),
            value=_state_from(data, "value"),
            duration=_state_from(data, "duration"),
            sequence=sequence,
            added_to_manually_sequenced_list=bool(data.get("added_to_manually_sequenced_list", False)),
            reordered=bool(data.get("reordered", False)),
            active=data.get("active") is not False,
            is_new_item=bool(data.get("is_new_item", False)),
            notes=[n for n in notes if n is not None],
            confidence_survey=survey,
            created_at=data.get("created_at") or utcnow_iso(),
        )


def _state_from(data: dict, category: str) -> CategoryState:
    """Read a category level, dropping anything outside 0..3.

    A stored ``<category>_set`` flag without a level cannot be represented
    as a tagged state and normalizes to Unset.
    """
    try:
        level = int(data.get(category) or 0)
    except (TypeError, ValueError):
        level = 0
    return CategoryState(level) if level in LEVELS else UNSET
