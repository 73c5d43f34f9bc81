"""
Prioritization Engine — the single entry point for every user intent.

Each command runs the same pipeline to completion before returning:

    validate → mutate → recompute dependents → recount buckets
             → persist → notify subscribers → analytics

Validation happens entirely before the first mutation, so a rejected intent
leaves items, buckets and AppState untouched. Validation and not-found
failures come back as ``{"success": False, "error": message}``; nothing
raises out of a command except persistence failures.

The engine owns its AppState, items, id counter, persistence adapter,
analytics client and subscribers. There is no module-level state.

Usage:
    from prioritizer.services.prioritization_engine import PrioritizationEngine

    engine = PrioritizationEngine()
    engine.add_item("Checkout redesign", "https://example.com/ticket/1")
    engine.advance_stage()
    engine.set_item_property(item_id, "urgency", 3)
"""

import logging
import time

from prioritizer.core.exceptions import NotFoundError, ValidationError
from prioritizer.models.app_state import AppState
from prioritizer.models.buckets import initialize_buckets, update_bucket_counts
from prioritizer.models.constants import (
    CONFIDENCE_DIMENSION_NAMES,
    CONFIDENCE_DIMENSIONS,
    CONFIDENCE_LEVELS,
    PROPERTY_META,
    STAGE_ITEM_LISTING,
    STAGE_RESULTS,
)
from prioritizer.models.items import ConfidenceSurvey, Item, Note, clean_link, is_valid_url, utcnow_iso
from prioritizer.services import (
    analytics as analytics_service,
    bucket_service,
    export_service,
    metrics,
    migrator,
    sequencing,
    stage_service,
)
from prioritizer.services.persistence import InMemoryAdapter

logger = logging.getLogger(__name__)

_SET_EVENTS = {"urgency": "Set Urgency", "value": "Set Value", "duration": "Set Duration"}

_LEGACY_SURVEY_KEYS = {
    "scopeConfidence": "scope_confidence",
    "urgencyConfidence": "urgency_confidence",
    "valueConfidence": "value_confidence",
    "durationConfidence": "duration_confidence",
}


def _as_int(value):
    """Strict integer coercion: ints and digit strings only (never bools)."""
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(value)


def parse_bulk_line(line):
    """Split ``"name[, url]"`` on the last comma.

    The tail only counts as a link when it is a valid http(s) URL; otherwise
    the whole line is the name.
    """
    comma = line.rfind(",")
    if comma > 0:
        name, tail = line[:comma].strip(), line[comma + 1:].strip()
        if tail and is_valid_url(tail):
            return name, tail
    return line, None


class PrioritizationEngine:
    """Stateful facade over the stage machine, metrics, buckets and sequencing."""

    def __init__(self, persistence=None, analytics=None):
        self.persistence = persistence if persistence is not None else InMemoryAdapter()
        self.analytics = analytics if analytics is not None else analytics_service.NullAnalytics()
        self._subscribers = []
        self._pending_events = []
        self._id_counter = 0
        self.state = AppState()
        self.items = []
        self.reload()

    # ═════════════════════════════════════════════════════════════════════
    # Pipeline plumbing
    # ═════════════════════════════════════════════════════════════════════

    def reload(self):
        """(Re)load from persistence, migrating and normalizing on the way in."""
        self.state, self.items = migrator.normalize(
            self.persistence.load_state(), self.persistence.load_items(),
        )
        logger.info(
            "Loaded prioritizer state: %d items, stage %s",
            len(self.items), self.state.current_stage,
            extra={"stage": self.state.current_stage},
        )

    def _execute(self, name, validate, apply, persist=True):
        try:
            validate()
        except (ValidationError, NotFoundError) as exc:
            logger.info("%s rejected: %s", name, exc)
            return {"success": False, "error": str(exc)}

        self._pending_events.clear()
        extra = apply() or {}
        if persist:
            update_bucket_counts(self.state.buckets, self.items)
            self._persist()
            self._notify()
        self._flush_events()
        return {"success": True, **extra}

    def _persist(self):
        self.persistence.save_state(self.state.to_dict())
        self.persistence.save_items([item.to_dict() for item in self.items])

    def _notify(self):
        if not self._subscribers:
            return
        state, items = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(state, items)
            except Exception:
                logger.warning("Subscriber %r failed; intent unaffected", callback, exc_info=True)

    def _track(self, name, properties=None):
        self._pending_events.append((name, properties or {}))

    def _flush_events(self):
        events, self._pending_events = self._pending_events, []
        for name, properties in events:
            analytics_service.safe_track(self.analytics, name, properties)

    def _find_item(self, item_id):
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError("Item", item_id)
        return item

    def _next_id(self):
        self._id_counter += 1
        candidate = f"{int(time.time() * 1000)}-{self._id_counter}"
        if self.get_item(candidate) is not None:
            candidate = migrator.mint_item_id()
        return candidate

    def _new_item(self, name, link, mark_new):
        item = Item(id=self._next_id(), name=name, link=clean_link(link), is_new_item=mark_new)
        metrics.recompute_item_metrics(item, self.state.buckets, self.state.confidence_weights)
        return item

    def _require_item_listing(self, verb):
        stage = self.state.current_stage
        if stage != STAGE_ITEM_LISTING:
            raise ValidationError(
                f'Error: Cannot {verb}. Current stage is "{stage}". You must be on the '
                f'"Item Listing" stage to add new items. Use "Back Stage" command to '
                f"return to Item Listing stage."
            )

    # ═════════════════════════════════════════════════════════════════════
    # Subscribers & queries
    # ═════════════════════════════════════════════════════════════════════

    def subscribe(self, callback):
        """Register ``callback(state_dict, items_list)``; returns an unsubscribe callable."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self):
        """Detached copies of the current state and items."""
        return self.state.to_dict(), [item.to_dict() for item in self.items]

    def get_state(self):
        return self.state.to_dict()

    def get_items(self):
        return [item.to_dict() for item in self.items]

    def get_item(self, item_id):
        return next((i for i in self.items if i.id == item_id), None)

    def get_item_notes(self, item_id):
        item = self.get_item(item_id)
        if item is None:
            return None
        return [note.to_dict() for note in item.notes]

    def get_results(self):
        return [item.to_dict() for item in sequencing.get_results(self.items)]

    def get_stage_navigation_state(self):
        return stage_service.get_stage_navigation_state(
            self.state.current_stage, self.state.visited_stages, self.items,
        )

    def get_button_states(self):
        return stage_service.get_button_states(self.state.current_stage, self.items)

    def export_csv(self):
        return export_service.generate_items_csv(self.items, self.state)

    def export_xlsx(self):
        return export_service.generate_items_xlsx(self.items, self.state)

    # ═════════════════════════════════════════════════════════════════════
    # Items
    # ═════════════════════════════════════════════════════════════════════

    def add_item(self, name, link=None):
        def validate():
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Item name is required")
            self._require_item_listing("add item")

        def apply():
            mark_new = stage_service.has_advanced_items(self.items)
            item = self._new_item(name.strip(), link, mark_new)
            self.items.append(item)
            logger.info("Added item %s", item.id, extra={"item_id": item.id})
            self._track("Add Item", {"items_count": len(self.items)})
            return {"item_id": item.id}

        return self._execute("add_item", validate, apply)

    def bulk_add_items(self, text):
        lines = []

        def validate():
            self._require_item_listing("bulk add items")
            if not isinstance(text, str):
                raise ValidationError(
                    "Error: Invalid input. Please provide item names separated by newlines."
                )
            lines.extend(line.strip() for line in text.split("\n") if line.strip())
            if not lines:
                raise ValidationError(
                    "Error: No valid item names found. Please enter at least one item name."
                )

        def apply():
            mark_new = stage_service.has_advanced_items(self.items)
            added, with_links, errors = 0, 0, []
            for index, line in enumerate(lines, start=1):
                item_name, item_link = parse_bulk_line(line)
                if not item_name:
                    errors.append(f"Line {index}: Empty item name")
                    continue
                self.items.append(self._new_item(item_name, item_link, mark_new))
                added += 1
                if item_link:
                    with_links += 1
            logger.info("Bulk added %d of %d items", added, len(lines))
            self._track("Bulk Add Items", {"items_count": added, "items_with_links_count": with_links})
            return {"added": added, "total": len(lines), "errors": errors}

        return self._execute("bulk_add_items", validate, apply)

    def remove_item(self, item_id):
        def validate():
            self._find_item(item_id)

        def apply():
            item = self._find_item(item_id)
            self.items.remove(item)
            sequencing.close_sequence_gaps(self.items)
            logger.info("Removed item %s", item_id, extra={"item_id": item_id})

        return self._execute("remove_item", validate, apply)

    def set_item_active(self, item_id, active):
        def validate():
            self._find_item(item_id)
            if not isinstance(active, bool):
                raise ValidationError("Active must be true or false")

        def apply():
            self._find_item(item_id).active = active

        return self._execute("set_item_active", validate, apply)

    def set_item_property(self, item_id, prop, value):
        """Set urgency / value / duration (0..3) on one item.

        Gated by the editing rules of the current stage, the prerequisite
        categories and the set-once latch.
        """
        parsed = {}

        def validate():
            item = self._find_item(item_id)
            meta = PROPERTY_META.get(prop)
            if meta is None:
                raise ValidationError(f"Invalid property: {prop}")
            try:
                level = _as_int(value)
            except ValueError:
                raise ValidationError(f"Invalid value: {value}. Must be 0, 1, 2, or 3.")
            if level not in (0, 1, 2, 3):
                raise ValidationError(f"Invalid value: {value}. Must be 0, 1, 2, or 3.")

            gate = stage_service.can_edit_category(self.state.current_stage, self.state.locked, prop)
            if not gate["can_edit"]:
                raise ValidationError(gate["reason"])

            label = prop.capitalize()
            for prereq in meta["prerequisites"]:
                if not item.is_set(prereq):
                    other = prereq.capitalize()
                    raise ValidationError(
                        f"Error: Cannot set {label}. Item must have {other} set first. "
                        f"Please set {other} (1-3) before setting {label}."
                    )

            if level == 0 and item.is_set(prop):
                raise ValidationError(
                    f"Error: Cannot unset {label}. Once {label} has been set, it cannot be "
                    f"changed back to 0. You can change it to a different value (1-3), "
                    f"but not unset it."
                )
            parsed["level"] = level

        def apply():
            item = self._find_item(item_id)
            level = parsed["level"]
            old_cd3 = item.cd3 or 0

            setattr(item, prop, item.category_state(prop).assign(level))
            if prop == "urgency" and level > 0:
                item.is_new_item = False
            metrics.recompute_item_metrics(item, self.state.buckets, self.state.confidence_weights)

            if old_cd3 == 0 and (item.cd3 or 0) > 0:
                sequencing.insert_item_into_sequence(
                    item, self.items, self.state.results_manually_reordered,
                )
            logger.info(
                "Item %s %s set to %d (cd3=%.4f)", item_id, prop, level, item.cd3,
                extra={"item_id": item_id},
            )
            bucket = self.state.buckets[prop].get(level)
            self._track(_SET_EVENTS[prop], {
                "bucket": level,
                "bucket_name": bucket.title if bucket else f"Bucket {level}",
                "item_id": item_id,
            })

        return self._execute("set_item_property", validate, apply)

    # ═════════════════════════════════════════════════════════════════════
    # Stages
    # ═════════════════════════════════════════════════════════════════════

    def _enter_stage(self, stage):
        self.state.current_stage = stage
        self.state.mark_visited(stage)
        if stage == STAGE_RESULTS and not any(i.sequence is not None for i in self.items):
            sequencing.assign_sequence_numbers(self.items)
        logger.info("Entered stage %s", stage, extra={"stage": stage})
        event = analytics_service.stage_view_event(stage, self.items)
        if event is not None:
            self._track(*event)

    def navigate_to_stage(self, stage):
        outcome = {}

        def validate():
            result = stage_service.navigate_to_stage(
                stage, self.state.current_stage, self.state.visited_stages, self.items,
            )
            if not result["success"]:
                raise ValidationError(result["error"])
            outcome.update(result)

        def apply():
            self.state.visited_stages = outcome["visited_stages"]
            self._enter_stage(stage)
            return {"current_stage": stage}

        return self._execute("navigate_to_stage", validate, apply)

    def advance_stage(self):
        def validate():
            check = stage_service.can_advance(self.state.current_stage, self.items)
            if not check["can_advance"]:
                raise ValidationError(f"Error: Cannot advance stage. {check['reason']}")

        def apply():
            stage = stage_service.get_next_stage(self.state.current_stage)
            self._enter_stage(stage)
            return {"current_stage": stage}

        return self._execute("advance_stage", validate, apply)

    def back_stage(self):
        def validate():
            if not stage_service.can_go_back(self.state.current_stage)["can_go_back"]:
                raise ValidationError(
                    "Error: Already at the first stage (Item Listing). Cannot go back further."
                )

        def apply():
            stage = stage_service.get_previous_stage(self.state.current_stage)
            self._enter_stage(stage)
            return {"current_stage": stage}

        return self._execute("back_stage", validate, apply)

    def set_locked(self, locked):
        def validate():
            if not isinstance(locked, bool):
                raise ValidationError("Locked must be true or false")

        def apply():
            self.state.locked = locked
            logger.info("Locked mode %s", "on" if locked else "off")
            return {"locked": locked}

        return self._execute("set_locked", validate, apply)

    def toggle_locked(self):
        return self.set_locked(not self.state.locked)

    # ═════════════════════════════════════════════════════════════════════
    # Buckets
    # ═════════════════════════════════════════════════════════════════════

    def set_bucket_field(self, category, level, field, value):
        def validate():
            bucket_service.prepare_bucket_field(category, level, field, value)

        def apply():
            affected = bucket_service.set_bucket_field(self.state.buckets, category, level, field, value)
            if affected is not None:
                metrics.recompute_all(
                    self.items, self.state.buckets,
                    affected_category=affected,
                    confidence_weights=self.state.confidence_weights,
                )

        return self._execute("set_bucket_field", validate, apply)

    def set_limit(self, category, level, value):
        return self.set_bucket_field(category, level, "limit", value)

    def set_weight(self, category, level, value):
        return self.set_bucket_field(category, level, "weight", value)

    def set_title(self, category, level, value):
        return self.set_bucket_field(category, level, "title", value)

    def set_description(self, category, level, value):
        return self.set_bucket_field(category, level, "description", value)

    # ═════════════════════════════════════════════════════════════════════
    # Notes
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _validate_note_text(text):
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Note text is required")

    @staticmethod
    def _validate_note_index(item, index):
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError("Note index is required")
        if index < 0 or index >= len(item.notes):
            raise NotFoundError("Note", index)

    def add_item_note(self, item_id, text):
        def validate():
            self._find_item(item_id)
            self._validate_note_text(text)

        def apply():
            item = self._find_item(item_id)
            item.notes.append(Note(text=text.strip()))
            return {"note_index": len(item.notes) - 1}

        return self._execute("add_item_note", validate, apply)

    def update_item_note(self, item_id, index, text):
        def validate():
            item = self._find_item(item_id)
            self._validate_note_index(item, index)
            self._validate_note_text(text)

        def apply():
            note = self._find_item(item_id).notes[index]
            note.text = text.strip()
            note.modified_at = utcnow_iso()

        return self._execute("update_item_note", validate, apply)

    def delete_item_note(self, item_id, index):
        def validate():
            self._validate_note_index(self._find_item(item_id), index)

        def apply():
            del self._find_item(item_id).notes[index]

        return self._execute("delete_item_note", validate, apply)

    # ═════════════════════════════════════════════════════════════════════
    # Confidence survey
    # ═════════════════════════════════════════════════════════════════════

    def _results_position(self, item):
        if item.sequence is not None:
            return item.sequence
        ordered = sequencing.get_results(self.items)
        return ordered.index(item) + 1

    def open_confidence_survey(self, item_id):
        def validate():
            item = self._find_item(item_id)
            if not all(item.is_set(cat) for cat in PROPERTY_META):
                raise ValidationError(
                    "Item must have urgency, value, and duration set before running confidence survey"
                )

        def apply():
            item = self._find_item(item_id)
            self._track("Run Confidence Survey", {
                "item_id": item_id, "sequence": self._results_position(item),
            })
            return {"survey": item.confidence_survey.to_dict() if item.confidence_survey else None}

        return self._execute("open_confidence_survey", validate, apply, persist=False)

    @staticmethod
    def _parse_survey(data):
        """Validate raw survey data into a ConfidenceSurvey."""
        if not isinstance(data, dict):
            raise ValidationError("Invalid survey data")
        data = {_LEGACY_SURVEY_KEYS.get(k, k): v for k, v in data.items()}

        votes = {}
        for dim in CONFIDENCE_DIMENSIONS:
            counts = data.get(dim)
            if not isinstance(counts, dict):
                raise ValidationError(f"Missing or invalid {dim} data")
            votes[dim] = {}
            for level in CONFIDENCE_LEVELS:
                raw = counts.get(level, counts.get(str(level)))
                if raw is None:
                    votes[dim][level] = 0
                    continue
                try:
                    count = _as_int(raw)
                except ValueError:
                    raise ValidationError(f"Invalid vote count for {dim} level {level}")
                if count < 0:
                    raise ValidationError(f"Invalid vote count for {dim} level {level}")
                votes[dim][level] = count

        missing = [
            CONFIDENCE_DIMENSION_NAMES[dim] for dim in CONFIDENCE_DIMENSIONS
            if sum(votes[dim].values()) == 0
        ]
        if missing:
            raise ValidationError(
                "Please enter at least one vote in each section. "
                f"Missing votes in: {', '.join(missing)}"
            )
        return ConfidenceSurvey(votes=votes)

    def submit_confidence_survey(self, item_id, data):
        parsed = {}

        def validate():
            self._find_item(item_id)
            parsed["survey"] = self._parse_survey(data)

        def apply():
            item = self._find_item(item_id)
            item.confidence_survey = parsed["survey"]
            metrics.refresh_confidence_metrics(
                item, self.state.buckets, self.state.confidence_weights,
            )
            selections = item.confidence_survey.selections_count
            logger.info(
                "Confidence survey saved for %s (weighted cd3=%s)",
                item_id, item.confidence_weighted_cd3, extra={"item_id": item_id},
            )
            self._track("Submit Confidence Survey", {
                "item_id": item_id, "selections_count": selections,
            })
            return {
                "selections_count": selections,
                "confidence_weighted_cd3": item.confidence_weighted_cd3,
            }

        return self._execute("submit_confidence_survey", validate, apply)

    def delete_confidence_survey(self, item_id):
        def validate():
            self._find_item(item_id)

        def apply():
            item = self._find_item(item_id)
            item.confidence_survey = None
            item.confidence_weighted_cd3 = None
            item.confidence_weighted_values = None
            self._track("Delete Survey", {"item_id": item_id})

        return self._execute("delete_confidence_survey", validate, apply)

    def cancel_confidence_survey(self, item_id):
        def validate():
            self._find_item(item_id)

        return self._execute("cancel_confidence_survey", validate, lambda: None, persist=False)

    # ═════════════════════════════════════════════════════════════════════
    # Results ordering
    # ═════════════════════════════════════════════════════════════════════

    def reorder_item_sequence(self, item_id, direction):
        def validate():
            sequencing.validate_reorder(self.items, item_id, direction)

        def apply():
            item = sequencing.reorder_item_sequence(self.items, item_id, direction)
            self.state.results_manually_reordered = True
            self._track(
                "Reorder Results Up" if direction == "up" else "Reorder Results Down",
                {"item_id": item_id},
            )
            return {"sequence": item.sequence}

        return self._execute("reorder_item_sequence", validate, apply)

    def reset_results_order(self):
        def apply():
            sequencing.reset_results_order(self.items)
            self.state.results_manually_reordered = False
            self._track("Reset Order", {"items_count": len(self.items)})

        return self._execute("reset_results_order", lambda: None, apply)

    # ═════════════════════════════════════════════════════════════════════
    # Data reset
    # ═════════════════════════════════════════════════════════════════════

    def start_app(self):
        """Wipe everything and start over with default settings."""
        def apply():
            self.persistence.clear()
            self.state = AppState()
            self.items = []
            logger.info("App started, all data cleared")

        return self._execute("start_app", lambda: None, apply)

    def clear_item_data_only(self):
        """Drop every item and return to Item Listing; bucket settings stay."""
        def apply():
            self.persistence.clear_items()
            self.items = []
            self.state.current_stage = STAGE_ITEM_LISTING
            self.state.visited_stages = [STAGE_ITEM_LISTING]
            self.state.results_manually_reordered = False
            logger.info("Item data cleared, settings preserved")

        return self._execute("clear_item_data_only", lambda: None, apply)

    def clear_all_data(self, clear_settings=False):
        """Drop items and state; bucket settings survive unless ``clear_settings``."""
        def validate():
            if not isinstance(clear_settings, bool):
                raise ValidationError("clear_settings must be true or false")

        def apply():
            buckets = initialize_buckets() if clear_settings else self.state.buckets
            self.persistence.clear()
            self.state = AppState(buckets=buckets)
            self.items = []
            logger.info("All data cleared (settings %s)", "reset" if clear_settings else "kept")

        return self._execute("clear_all_data", validate, apply)
