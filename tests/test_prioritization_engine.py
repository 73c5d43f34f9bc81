"""
Tests: PrioritizationEngine — the intent pipeline end to end.

Scenarios:
    A. happy path: add → categorize → Results ranks by CD3
    B. latches: a set category never returns to 0; prerequisites enforced
    C. manual reordering survives newly scored items
    D. weight changes cascade into CD3 and weighted CD3
    E. confidence survey submit / delete
Plus validation atomicity, persistence, subscribers and analytics.
"""

import pytest

from prioritizer.core.exceptions import PersistenceError
from prioritizer.services.persistence import InMemoryAdapter
from prioritizer.services.prioritization_engine import PrioritizationEngine, parse_bulk_line

from tests.conftest import RecordingAnalytics, build_scored_engine, categorize

SURVEY = {
    "scope_confidence": {1: 1},
    "urgency_confidence": {2: 1},
    "value_confidence": {3: 1},
    "duration_confidence": {4: 1},
}


def _result_names(engine):
    return [i["name"] for i in engine.get_results()]


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════


class TestAddItems:
    def test_add_item(self, engine):
        result = engine.add_item("  Checkout  ", "https://example.com/t/1")
        assert result["success"] is True
        item = engine.get_item(result["item_id"])
        assert item.name == "Checkout"
        assert item.link == "https://example.com/t/1"
        assert item.cd3 == 0
        assert item.is_new_item is False

    def test_invalid_link_dropped(self, engine):
        item_id = engine.add_item("No link", "ftp://nope")["item_id"]
        assert engine.get_item(item_id).link is None

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_name_required(self, engine, name):
        assert engine.add_item(name) == {"success": False, "error": "Item name is required"}
        assert engine.get_items() == []

    def test_ids_unique(self, engine):
        ids = {engine.add_item(f"I{n}")["item_id"] for n in range(20)}
        assert len(ids) == 20

    def test_add_only_on_item_listing(self, engine):
        engine.add_item("First")
        engine.advance_stage()
        result = engine.add_item("Late")
        assert result["success"] is False
        assert 'Current stage is "urgency"' in result["error"]

    def test_item_added_after_prioritization_started_is_new(self, engine):
        first = engine.add_item("First")["item_id"]
        engine.advance_stage()
        engine.set_item_property(first, "urgency", 2)
        engine.back_stage()
        late = engine.add_item("Late")["item_id"]
        assert engine.get_item(late).is_new_item is True
        engine.advance_stage()
        engine.set_item_property(late, "urgency", 1)
        assert engine.get_item(late).is_new_item is False

    def test_bulk_add(self, engine):
        result = engine.bulk_add_items("Alpha\nBeta, https://example.com/b\n\n  \nGamma, not a url\n")
        assert result["success"] is True
        assert result["added"] == 3
        assert result["total"] == 3
        names = [i["name"] for i in engine.get_items()]
        assert names == ["Alpha", "Beta", "Gamma, not a url"]
        assert engine.get_items()[1]["link"] == "https://example.com/b"

    def test_bulk_add_empty(self, engine):
        result = engine.bulk_add_items("\n   \n")
        assert result["error"].startswith("Error: No valid item names found.")

    def test_parse_bulk_line_uses_last_comma(self):
        assert parse_bulk_line("Fix a, b, https://x.io/1") == ("Fix a, b", "https://x.io/1")
        assert parse_bulk_line("Plain") == ("Plain", None)

    def test_remove_item_closes_gaps(self, scored_engine):
        scored_engine.remove_item(scored_engine.item_ids["Beta"])
        sequences = sorted(i["sequence"] for i in scored_engine.get_items())
        assert sequences == [1, 2]

    def test_remove_unknown(self, engine):
        assert engine.remove_item("missing") == {"success": False, "error": "Item not found"}

    def test_set_active_is_cosmetic(self, scored_engine):
        alpha = scored_engine.item_ids["Alpha"]
        assert scored_engine.set_item_active(alpha, False)["success"]
        item = scored_engine.get_item(alpha)
        assert item.active is False
        assert item.cd3 == 9
        assert _result_names(scored_engine)[0] == "Alpha"

    def test_set_active_requires_bool(self, engine):
        item_id = engine.add_item("x")["item_id"]
        assert engine.set_item_active(item_id, "no")["success"] is False


# ═════════════════════════════════════════════════════════════════════════════
# Scenario A: happy path
# ═════════════════════════════════════════════════════════════════════════════


class TestHappyPath:
    def test_results_ranked_by_cd3(self, scored_engine):
        assert scored_engine.state.current_stage == "Results"
        assert _result_names(scored_engine) == ["Alpha", "Beta", "Gamma"]
        alpha = scored_engine.get_item(scored_engine.item_ids["Alpha"])
        assert alpha.cost_of_delay == 9
        assert alpha.cd3 == 9
        assert [i["sequence"] for i in scored_engine.get_results()] == [1, 2, 3]

    def test_bucket_counts_follow_items(self, scored_engine):
        buckets = scored_engine.state.buckets
        assert buckets["urgency"][3].count == 1
        assert buckets["duration"][2].count == 1
        assert buckets["value"][1].count == 1

    def test_advance_blocked_without_items(self, engine):
        assert engine.advance_stage() == {
            "success": False,
            "error": "Error: Cannot advance stage. You must have at least one item "
                     "before advancing to Urgency stage.",
        }

    def test_back_from_first_stage(self, engine):
        assert engine.back_stage()["error"].startswith("Error: Already at the first stage")

    def test_advance_to_terminal_and_stop(self, scored_engine):
        assert scored_engine.advance_stage()["current_stage"] == "CD3"
        assert scored_engine.advance_stage()["success"] is False


# ═════════════════════════════════════════════════════════════════════════════
# Scenario B: latches and gates
# ═════════════════════════════════════════════════════════════════════════════


class TestCategoryRules:
    def test_cannot_unset(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        engine.set_item_property(item_id, "urgency", 2)
        result = engine.set_item_property(item_id, "urgency", 0)
        assert result["error"].startswith("Error: Cannot unset Urgency.")
        assert engine.get_item(item_id).urgency.level == 2

    def test_change_between_levels_allowed(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        engine.set_item_property(item_id, "urgency", 2)
        assert engine.set_item_property(item_id, "urgency", 3)["success"] is True

    def test_zero_on_unset_category_is_a_noop(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        assert engine.set_item_property(item_id, "urgency", 0)["success"] is True
        assert engine.get_item(item_id).urgency_set is False

    def test_unlocked_mode_blocks_later_category(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.set_locked(False)
        engine.advance_stage()
        result = engine.set_item_property(item_id, "duration", 1)
        assert result["success"] is False
        assert "stage or later" in result["error"]

    def test_value_needs_urgency(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.set_locked(False)
        engine.state.current_stage = "value"
        result = engine.set_item_property(item_id, "value", 2)
        assert result["error"] == (
            "Error: Cannot set Value. Item must have Urgency set first. "
            "Please set Urgency (1-3) before setting Value."
        )

    def test_locked_mode_blocks_other_stage(self, engine):
        item_id = engine.add_item("x")["item_id"]
        result = engine.set_item_property(item_id, "urgency", 1)
        assert 'You must be on the "urgency" stage' in result["error"]

    def test_unlocked_mode_edits_earlier_category(self, scored_engine):
        scored_engine.set_locked(False)
        gamma = scored_engine.item_ids["Gamma"]
        assert scored_engine.set_item_property(gamma, "urgency", 3)["success"] is True
        assert scored_engine.get_item(gamma).cd3 == 1

    @pytest.mark.parametrize("value", [4, -1, "high", True, 2.5])
    def test_invalid_values(self, engine, value):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        assert engine.set_item_property(item_id, "urgency", value)["error"].startswith("Invalid value")

    def test_numeric_string_accepted(self, engine):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        assert engine.set_item_property(item_id, "urgency", "3")["success"] is True

    def test_invalid_property(self, engine):
        item_id = engine.add_item("x")["item_id"]
        assert engine.set_item_property(item_id, "size", 1)["error"] == "Invalid property: size"

    def test_toggle_locked(self, engine):
        assert engine.toggle_locked()["locked"] is False
        assert engine.toggle_locked()["locked"] is True
        assert engine.set_locked("yes")["success"] is False


class TestAtomicity:
    def test_rejected_intent_changes_nothing(self, scored_engine):
        before = scored_engine.snapshot()
        persisted = scored_engine.persistence.load_items()
        for rejected in (
            lambda: scored_engine.set_item_property(scored_engine.item_ids["Alpha"], "urgency", 0),
            lambda: scored_engine.set_weight("urgency", 9, 2),
            lambda: scored_engine.reorder_item_sequence(scored_engine.item_ids["Alpha"], "up"),
            lambda: scored_engine.navigate_to_stage("Results"),
            lambda: scored_engine.add_item_note("missing", "text"),
        ):
            assert rejected()["success"] is False
        assert scored_engine.snapshot() == before
        assert scored_engine.persistence.load_items() == persisted


# ═════════════════════════════════════════════════════════════════════════════
# Scenario C: manual ordering
# ═════════════════════════════════════════════════════════════════════════════


class TestManualOrdering:
    def test_reorder_marks_manual(self, scored_engine):
        gamma = scored_engine.item_ids["Gamma"]
        result = scored_engine.reorder_item_sequence(gamma, "up")
        assert result == {"success": True, "sequence": 2}
        assert scored_engine.state.results_manually_reordered is True
        assert _result_names(scored_engine) == ["Alpha", "Gamma", "Beta"]

    def test_new_item_slots_into_manual_order(self, scored_engine):
        scored_engine.reorder_item_sequence(scored_engine.item_ids["Gamma"], "up")
        assert scored_engine.navigate_to_stage("Item Listing")["success"]
        delta = scored_engine.add_item("Delta")["item_id"]
        categorize(scored_engine, delta, 2, 3, 1)
        assert scored_engine.get_item(delta).cd3 == 6
        assert _result_names(scored_engine) == ["Alpha", "Gamma", "Delta", "Beta"]
        assert scored_engine.get_item(delta).added_to_manually_sequenced_list is True

    def test_new_item_reranks_in_automatic_mode(self, scored_engine):
        scored_engine.navigate_to_stage("Item Listing")
        delta = scored_engine.add_item("Delta")["item_id"]
        categorize(scored_engine, delta, 2, 3, 1)
        assert _result_names(scored_engine) == ["Alpha", "Delta", "Beta", "Gamma"]

    def test_reset_order(self, scored_engine):
        scored_engine.reorder_item_sequence(scored_engine.item_ids["Gamma"], "up")
        assert scored_engine.reset_results_order()["success"]
        assert scored_engine.state.results_manually_reordered is False
        assert _result_names(scored_engine) == ["Alpha", "Beta", "Gamma"]

    def test_reorder_beyond_bounds(self, scored_engine):
        result = scored_engine.reorder_item_sequence(scored_engine.item_ids["Alpha"], "up")
        assert result == {"success": False, "error": "Cannot move item beyond bounds"}


# ═════════════════════════════════════════════════════════════════════════════
# Scenario D: bucket weight cascade
# ═════════════════════════════════════════════════════════════════════════════


class TestBucketCascade:
    def test_weight_change_recomputes(self, scored_engine):
        beta = scored_engine.item_ids["Beta"]
        assert scored_engine.set_weight("urgency", 2, 3)["success"]
        assert scored_engine.set_weight("value", 2, 3)["success"]
        assert scored_engine.set_weight("duration", 2, 4)["success"]
        item = scored_engine.get_item(beta)
        assert item.cost_of_delay == 9
        assert item.cd3 == pytest.approx(2.25)

    def test_weight_change_keeps_ranks(self, scored_engine):
        scored_engine.set_weight("duration", 1, 100)
        assert _result_names(scored_engine) == ["Alpha", "Beta", "Gamma"]
        assert scored_engine.get_item(scored_engine.item_ids["Alpha"]).cd3 == pytest.approx(0.09)

    def test_limit_flags_over_limit(self, scored_engine):
        scored_engine.set_limit("urgency", 3, 0)
        assert scored_engine.state.buckets["urgency"][3].over_limit is True

    def test_title_and_description(self, engine):
        assert engine.set_title("value", 3, "GAME CHANGER")["success"]
        assert engine.set_description("value", 3, "Big")["success"]
        assert engine.get_state()["buckets"]["value"][3]["title"] == "GAME CHANGER"

    def test_invalid_bucket_write(self, engine):
        assert engine.set_limit("urgency", 1, -5) == {
            "success": False, "error": "Limit must be a non-negative integer",
        }


# ═════════════════════════════════════════════════════════════════════════════
# Scenario E: confidence survey
# ═════════════════════════════════════════════════════════════════════════════


class TestConfidenceSurvey:
    @pytest.fixture()
    def beta_engine(self, engine):
        """Beta scored u=2 v=2 d=1 on Results."""
        item_id = engine.add_item("Beta")["item_id"]
        categorize(engine, item_id, 2, 2, 1)
        engine.item_id = item_id
        return engine

    def test_open_requires_all_categories(self, engine):
        item_id = engine.add_item("x")["item_id"]
        result = engine.open_confidence_survey(item_id)
        assert result["error"].startswith("Item must have urgency, value, and duration set")

    def test_open_does_not_persist(self, beta_engine):
        saved = beta_engine.persistence.load_items()
        result = beta_engine.open_confidence_survey(beta_engine.item_id)
        assert result == {"success": True, "survey": None}
        assert beta_engine.persistence.load_items() == saved

    def test_submit(self, beta_engine):
        result = beta_engine.submit_confidence_survey(beta_engine.item_id, SURVEY)
        assert result["success"] is True
        assert result["selections_count"] == 4
        assert result["confidence_weighted_cd3"] == pytest.approx(1.5556, abs=1e-4)
        values = beta_engine.get_item(beta_engine.item_id).confidence_weighted_values
        assert values["urgency"] == pytest.approx(1.0)
        assert values["value"] == pytest.approx(1.4)
        assert values["duration"] == pytest.approx(0.9)

    def test_submit_accepts_camel_case_and_string_levels(self, beta_engine):
        result = beta_engine.submit_confidence_survey(beta_engine.item_id, {
            "scopeConfidence": {"1": "2"},
            "urgencyConfidence": {"2": 1},
            "valueConfidence": {"3": 1},
            "durationConfidence": {"4": 1},
        })
        assert result["success"] is True

    def test_submit_requires_votes_everywhere(self, beta_engine):
        data = dict(SURVEY, value_confidence={1: 0})
        result = beta_engine.submit_confidence_survey(beta_engine.item_id, data)
        assert result["error"] == (
            "Please enter at least one vote in each section. Missing votes in: Value Confidence"
        )

    @pytest.mark.parametrize("data,message", [
        ("nope", "Invalid survey data"),
        ({"scope_confidence": {1: 1}}, "Missing or invalid urgency_confidence data"),
        (dict(SURVEY, scope_confidence={1: -2}), "Invalid vote count for scope_confidence level 1"),
    ])
    def test_submit_validation(self, beta_engine, data, message):
        assert beta_engine.submit_confidence_survey(beta_engine.item_id, data)["error"] == message

    def test_weight_change_refreshes_weighted_cd3(self, beta_engine):
        beta_engine.submit_confidence_survey(beta_engine.item_id, SURVEY)
        beta_engine.set_weight("duration", 1, 2)
        item = beta_engine.get_item(beta_engine.item_id)
        assert item.confidence_weighted_cd3 == pytest.approx(1.4 / 1.8)

    def test_delete(self, beta_engine):
        beta_engine.submit_confidence_survey(beta_engine.item_id, SURVEY)
        assert beta_engine.delete_confidence_survey(beta_engine.item_id)["success"]
        item = beta_engine.get_item(beta_engine.item_id)
        assert item.confidence_survey is None
        assert item.confidence_weighted_cd3 is None

    def test_cancel(self, beta_engine):
        assert beta_engine.cancel_confidence_survey(beta_engine.item_id) == {"success": True}
        assert beta_engine.cancel_confidence_survey("missing")["success"] is False


# ═════════════════════════════════════════════════════════════════════════════
# Notes
# ═════════════════════════════════════════════════════════════════════════════


class TestNotes:
    def test_note_lifecycle(self, engine):
        item_id = engine.add_item("x")["item_id"]
        assert engine.add_item_note(item_id, " first ")["note_index"] == 0
        engine.add_item_note(item_id, "second")
        assert engine.update_item_note(item_id, 0, "edited")["success"]
        assert [n["text"] for n in engine.get_item_notes(item_id)] == ["edited", "second"]
        assert engine.delete_item_note(item_id, 1)["success"]
        assert len(engine.get_item_notes(item_id)) == 1

    def test_note_validation(self, engine):
        item_id = engine.add_item("x")["item_id"]
        assert engine.add_item_note(item_id, "  ")["error"] == "Note text is required"
        assert engine.update_item_note(item_id, 3, "x")["error"] == "Note not found"
        assert engine.delete_item_note(item_id, "0")["error"] == "Note index is required"
        assert engine.get_item_notes("missing") is None


# ═════════════════════════════════════════════════════════════════════════════
# Reset intents
# ═════════════════════════════════════════════════════════════════════════════


class TestReset:
    def test_clear_item_data_keeps_settings(self, scored_engine):
        scored_engine.set_weight("urgency", 1, 5)
        scored_engine.reorder_item_sequence(scored_engine.item_ids["Gamma"], "up")
        assert scored_engine.clear_item_data_only()["success"]
        assert scored_engine.get_items() == []
        assert scored_engine.state.current_stage == "Item Listing"
        assert scored_engine.state.visited_stages == ["Item Listing"]
        assert scored_engine.state.results_manually_reordered is False
        assert scored_engine.state.buckets["urgency"][1].weight == 5

    def test_clear_all_keeps_buckets_by_default(self, scored_engine):
        scored_engine.set_weight("urgency", 1, 5)
        scored_engine.clear_all_data()
        assert scored_engine.state.buckets["urgency"][1].weight == 5
        assert scored_engine.state.current_stage == "Item Listing"

    def test_clear_all_with_settings(self, scored_engine):
        scored_engine.set_weight("urgency", 1, 5)
        scored_engine.clear_all_data(clear_settings=True)
        assert scored_engine.state.buckets["urgency"][1].weight == 1

    def test_start_app(self, scored_engine):
        scored_engine.set_locked(False)
        assert scored_engine.start_app()["success"]
        assert scored_engine.get_items() == []
        assert scored_engine.state.locked is True


# ═════════════════════════════════════════════════════════════════════════════
# Collaborators
# ═════════════════════════════════════════════════════════════════════════════


class FailingAdapter(InMemoryAdapter):
    def save_items(self, items):
        raise PersistenceError("save", "priority_items")


class ExplodingAnalytics(RecordingAnalytics):
    def track_event(self, name, properties=None):
        raise RuntimeError("analytics down")


class TestCollaborators:
    def test_reload_restores_state(self, scored_engine):
        again = PrioritizationEngine(persistence=scored_engine.persistence)
        assert again.state.current_stage == "Results"
        assert _result_names(again) == ["Alpha", "Beta", "Gamma"]

    def test_persistence_failure_propagates(self):
        engine = PrioritizationEngine(persistence=FailingAdapter())
        with pytest.raises(PersistenceError):
            engine.add_item("x")

    def test_subscribers_notified_with_snapshot(self, engine):
        seen = []
        unsubscribe = engine.subscribe(lambda state, items: seen.append((state["current_stage"], len(items))))
        engine.add_item("x")
        unsubscribe()
        engine.add_item("y")
        assert seen == [("Item Listing", 1)]

    def test_failing_subscriber_does_not_break_intent(self, engine):
        def broken(state, items):
            raise RuntimeError("boom")

        engine.subscribe(broken)
        assert engine.add_item("x")["success"] is True

    def test_rejected_intent_not_broadcast(self, engine):
        seen = []
        engine.subscribe(lambda state, items: seen.append(1))
        engine.add_item("")
        assert seen == []

    def test_analytics_events(self, scored_engine, analytics):
        names = analytics.names
        assert names.count("Add Item") == 3
        assert "View Urgency" in names
        assert "Set Duration" in names
        assert names[-1] == "View Results"
        scored_engine.reorder_item_sequence(scored_engine.item_ids["Beta"], "down")
        assert analytics.events[-1] == ("Reorder Results Down", {"item_id": scored_engine.item_ids["Beta"]})

    def test_set_event_carries_bucket_title(self, engine, analytics):
        item_id = engine.add_item("x")["item_id"]
        engine.advance_stage()
        engine.set_item_property(item_id, "urgency", 3)
        assert analytics.events[-1] == (
            "Set Urgency", {"bucket": 3, "bucket_name": "ASAP", "item_id": item_id},
        )

    def test_failing_analytics_is_ignored(self):
        engine = PrioritizationEngine(analytics=ExplodingAnalytics())
        assert engine.add_item("x")["success"] is True


class TestWorkedScenarios:
    def test_two_item_ranking(self, engine):
        ids = build_scored_engine(engine, [("B", 2, 2, 1), ("A", 1, 1, 1)])
        b, a = engine.get_item(ids["B"]), engine.get_item(ids["A"])
        assert (b.cost_of_delay, b.cd3) == (4, 4)
        assert (a.cost_of_delay, a.cd3) == (1, 1)
        assert _result_names(engine) == ["B", "A"]

    def test_blocked_advance_keeps_stage(self, engine):
        engine.add_item("x")
        engine.advance_stage()
        result = engine.advance_stage()
        assert result["success"] is False
        assert result["error"]
        assert engine.state.current_stage == "urgency"

    def test_urgency_weight_change_touches_only_matching_items(self, engine):
        ids = build_scored_engine(engine, [("Two", 2, 1, 1), ("Three", 3, 1, 1)])
        engine.set_weight("urgency", 2, 5)
        assert engine.get_item(ids["Two"]).cost_of_delay == 5
        assert engine.get_item(ids["Two"]).cd3 == 5
        assert engine.get_item(ids["Three"]).cd3 == 3
