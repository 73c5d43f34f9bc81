"""
Prioritizer blueprint — HTTP surface over the PrioritizationEngine.

Every command is forwarded to the single engine held in
``app.extensions["prioritizer_engine"]`` while holding
``app.extensions["prioritizer_lock"]``, so intents are applied one at a
time. Engine results map onto HTTP as:
    success            → 200 (201 for item creation)
    item/note missing  → 404
    any other refusal  → 400
    persistence error  → 503 (app-level handler)

Queries:
    GET    /api/v1/prioritizer/state
    GET    /api/v1/prioritizer/items
    GET    /api/v1/prioritizer/items/<item_id>/notes
    GET    /api/v1/prioritizer/results
    GET    /api/v1/prioritizer/stages
    GET    /api/v1/prioritizer/export.csv
    GET    /api/v1/prioritizer/export.xlsx

Commands:
    POST   /items                               {name, link?}
    POST   /items/bulk                          {text}
    DELETE /items/<item_id>
    PUT    /items/<item_id>/active              {active}
    PUT    /items/<item_id>/properties/<prop>   {value}
    POST   /items/<item_id>/notes               {text}
    PUT    /items/<item_id>/notes/<index>       {text}
    DELETE /items/<item_id>/notes/<index>
    GET    /items/<item_id>/survey              open survey
    POST   /items/<item_id>/survey              {scope_confidence, ...}
    DELETE /items/<item_id>/survey
    POST   /items/<item_id>/survey/cancel
    POST   /items/<item_id>/reorder             {direction: up|down}
    POST   /results/reset
    POST   /stages/navigate                     {stage}
    POST   /stages/advance
    POST   /stages/back
    PUT    /lock                                {locked}
    POST   /lock/toggle
    PUT    /buckets/<category>/<level>/<field>  {value}
    POST   /start
    POST   /clear-items
    POST   /clear                               {clear_settings?}
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request

from prioritizer.services import export_service
from prioritizer.utils.errors import E, api_error, result_response

logger = logging.getLogger(__name__)

prioritizer_bp = Blueprint("prioritizer_bp", __name__, url_prefix="/api/v1/prioritizer")


# ── Helpers ──────────────────────────────────────────────────────────


def _engine():
    return current_app.extensions["prioritizer_engine"]


def _run(command, *args, success_status=200):
    """Invoke an engine command under the app lock and map the result."""
    with current_app.extensions["prioritizer_lock"]:
        result = getattr(_engine(), command)(*args)
    return result_response(result, success_status=success_status)


def _body():
    return request.get_json(silent=True) or {}


def _coerce_int(raw):
    """Digit strings from URLs/forms become ints; anything else passes through."""
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return raw


# ═════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/state", methods=["GET"])
def get_state():
    engine = _engine()
    with current_app.extensions["prioritizer_lock"]:
        return jsonify({
            "state": engine.get_state(),
            "button_states": engine.get_button_states(),
        })


@prioritizer_bp.route("/items", methods=["GET"])
def list_items():
    with current_app.extensions["prioritizer_lock"]:
        items = _engine().get_items()
    return jsonify({"items": items, "total": len(items)})


@prioritizer_bp.route("/items/<item_id>/notes", methods=["GET"])
def list_notes(item_id):
    with current_app.extensions["prioritizer_lock"]:
        notes = _engine().get_item_notes(item_id)
    if notes is None:
        return api_error(E.NOT_FOUND, "Item not found")
    return jsonify({"notes": notes})


@prioritizer_bp.route("/results", methods=["GET"])
def list_results():
    with current_app.extensions["prioritizer_lock"]:
        engine = _engine()
        results = engine.get_results()
        manually_reordered = engine.state.results_manually_reordered
    return jsonify({"results": results, "results_manually_reordered": manually_reordered})


@prioritizer_bp.route("/stages", methods=["GET"])
def list_stages():
    with current_app.extensions["prioritizer_lock"]:
        stages = _engine().get_stage_navigation_state()
    return jsonify({"stages": stages})


@prioritizer_bp.route("/export.csv", methods=["GET"])
def export_csv():
    with current_app.extensions["prioritizer_lock"]:
        content = _engine().export_csv()
    filename = export_service.generate_export_filename("csv")
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@prioritizer_bp.route("/export.xlsx", methods=["GET"])
def export_xlsx():
    with current_app.extensions["prioritizer_lock"]:
        content = _engine().export_xlsx()
    filename = export_service.generate_export_filename("xlsx")
    return Response(
        content.getvalue(),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ═════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/items", methods=["POST"])
def add_item():
    data = _body()
    return _run("add_item", data.get("name"), data.get("link"), success_status=201)


@prioritizer_bp.route("/items/bulk", methods=["POST"])
def bulk_add_items():
    return _run("bulk_add_items", _body().get("text"), success_status=201)


@prioritizer_bp.route("/items/<item_id>", methods=["DELETE"])
def remove_item(item_id):
    return _run("remove_item", item_id)


@prioritizer_bp.route("/items/<item_id>/active", methods=["PUT"])
def set_item_active(item_id):
    return _run("set_item_active", item_id, _body().get("active"))


@prioritizer_bp.route("/items/<item_id>/properties/<prop>", methods=["PUT"])
def set_item_property(item_id, prop):
    return _run("set_item_property", item_id, prop, _coerce_int(_body().get("value")))


# ── Notes ────────────────────────────────────────────────────────────


@prioritizer_bp.route("/items/<item_id>/notes", methods=["POST"])
def add_note(item_id):
    return _run("add_item_note", item_id, _body().get("text"), success_status=201)


@prioritizer_bp.route("/items/<item_id>/notes/<int:index>", methods=["PUT"])
def update_note(item_id, index):
    return _run("update_item_note", item_id, index, _body().get("text"))


@prioritizer_bp.route("/items/<item_id>/notes/<int:index>", methods=["DELETE"])
def delete_note(item_id, index):
    return _run("delete_item_note", item_id, index)


# ── Confidence survey ────────────────────────────────────────────────


@prioritizer_bp.route("/items/<item_id>/survey", methods=["GET"])
def open_survey(item_id):
    return _run("open_confidence_survey", item_id)


@prioritizer_bp.route("/items/<item_id>/survey", methods=["POST"])
def submit_survey(item_id):
    return _run("submit_confidence_survey", item_id, request.get_json(silent=True))


@prioritizer_bp.route("/items/<item_id>/survey", methods=["DELETE"])
def delete_survey(item_id):
    return _run("delete_confidence_survey", item_id)


@prioritizer_bp.route("/items/<item_id>/survey/cancel", methods=["POST"])
def cancel_survey(item_id):
    return _run("cancel_confidence_survey", item_id)


# ═════════════════════════════════════════════════════════════════════════
# Results ordering
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/items/<item_id>/reorder", methods=["POST"])
def reorder_item(item_id):
    return _run("reorder_item_sequence", item_id, _body().get("direction"))


@prioritizer_bp.route("/results/reset", methods=["POST"])
def reset_results_order():
    return _run("reset_results_order")


# ═════════════════════════════════════════════════════════════════════════
# Stages & lock
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/stages/navigate", methods=["POST"])
def navigate_to_stage():
    return _run("navigate_to_stage", _body().get("stage"))


@prioritizer_bp.route("/stages/advance", methods=["POST"])
def advance_stage():
    return _run("advance_stage")


@prioritizer_bp.route("/stages/back", methods=["POST"])
def back_stage():
    return _run("back_stage")


@prioritizer_bp.route("/lock", methods=["PUT"])
def set_locked():
    return _run("set_locked", _body().get("locked"))


@prioritizer_bp.route("/lock/toggle", methods=["POST"])
def toggle_locked():
    return _run("toggle_locked")


# ═════════════════════════════════════════════════════════════════════════
# Buckets
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/buckets/<category>/<level>/<field>", methods=["PUT"])
def set_bucket_field(category, level, field):
    return _run("set_bucket_field", category, _coerce_int(level), field, _body().get("value"))


# ═════════════════════════════════════════════════════════════════════════
# Data reset
# ═════════════════════════════════════════════════════════════════════════


@prioritizer_bp.route("/start", methods=["POST"])
def start_app():
    return _run("start_app")


@prioritizer_bp.route("/clear-items", methods=["POST"])
def clear_item_data_only():
    return _run("clear_item_data_only")


@prioritizer_bp.route("/clear", methods=["POST"])
def clear_all_data():
    return _run("clear_all_data", _body().get("clear_settings", False))
