"""
Application state model — everything the engine tracks besides the items.

Models:
    - AppState: active stage, visited stages, locked flag, manual-reorder
      flag, confidence weights / labels, the bucket table and the schema
      version tag.

Loading and normalizing a stored AppState is the migrator's job
(``prioritizer.services.migrator``); this module only knows the defaults
and the serialized shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from prioritizer.models.buckets import Bucket, buckets_to_dict, initialize_buckets
from prioritizer.models.constants import (
    DEFAULT_CONFIDENCE_LEVEL_LABELS,
    DEFAULT_CONFIDENCE_WEIGHTS,
    SCHEMA_VERSION,
    STAGE_ITEM_LISTING,
)


@dataclass
class AppState:
    current_stage: str = STAGE_ITEM_LISTING
    visited_stages: list[str] = field(default_factory=lambda: [STAGE_ITEM_LISTING])
    locked: bool = True
    results_manually_reordered: bool = False
    confidence_weights: dict[int, float] = field(
        default_factory=lambda: dict(DEFAULT_CONFIDENCE_WEIGHTS)
    )
    confidence_level_labels: dict[int, str] = field(
        default_factory=lambda: dict(DEFAULT_CONFIDENCE_LEVEL_LABELS)
    )
    buckets: dict[str, dict[int, Bucket]] = field(default_factory=initialize_buckets)
    version: int = SCHEMA_VERSION

    def mark_visited(self, stage: str) -> None:
        if stage not in self.visited_stages:
            self.visited_stages.append(stage)

    def to_dict(self) -> dict:
        return {
            "current_stage": self.current_stage,
            "visited_stages": list(self.visited_stages),
            "locked": self.locked,
            "results_manually_reordered": self.results_manually_reordered,
            "confidence_weights": dict(self.confidence_weights),
            "confidence_level_labels": dict(self.confidence_level_labels),
            "buckets": buckets_to_dict(self.buckets),
            "version": self.version,
        }
