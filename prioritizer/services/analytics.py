"""
Analytics collaborator — fire-and-forget usage events.

Clients:
    - LoggingAnalytics: writes each event to the ``prioritizer.analytics``
      logger with ``event_type`` set (``PRIORITIZER_ANALYTICS=log``)
    - NullAnalytics: drops everything (``PRIORITIZER_ANALYTICS=none``)

``track_event`` never raises into the caller: the engine wraps every call
in ``safe_track`` and a failing client is only logged.

``stage_view_event`` builds the per-stage "View ..." event sent when a
stage is entered.
"""

import logging
from abc import ABC, abstractmethod

from prioritizer.models.constants import STAGE_ITEM_LISTING, STAGE_RESULTS
from prioritizer.services import stage_service

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("prioritizer.analytics")


class AnalyticsClient(ABC):
    """Receives usage events; implementations must not block the caller."""

    @abstractmethod
    def track_event(self, name: str, properties: dict | None = None) -> None:
        ...


class NullAnalytics(AnalyticsClient):
    def track_event(self, name, properties=None):
        return None


class LoggingAnalytics(AnalyticsClient):
    def track_event(self, name, properties=None):
        event_logger.info(
            "Analytics event: %s %s", name, properties or {},
            extra={"event_type": name},
        )


def build_analytics(kind: str) -> AnalyticsClient:
    """Client for the ``PRIORITIZER_ANALYTICS`` setting."""
    if kind == "log":
        return LoggingAnalytics()
    if kind == "none":
        return NullAnalytics()
    raise ValueError(f"Unknown PRIORITIZER_ANALYTICS: {kind!r}")


def safe_track(client, name, properties=None) -> None:
    """Send an event, logging and swallowing any client failure."""
    if client is None:
        return
    try:
        client.track_event(name, properties or {})
    except Exception:
        logger.warning("Analytics event %s failed; intent unaffected", name, exc_info=True)


def stage_view_event(stage, items):
    """Return ``(event_name, properties)`` for entering ``stage``, or None."""
    if stage == STAGE_ITEM_LISTING:
        return "View Items", {"items_count": len(items)}
    if stage == "urgency":
        return "View Urgency", {
            "parking_lot_count": len(stage_service.get_parking_lot_items(items, "urgency")),
        }
    if stage == "value":
        return "View Value", {
            "parking_lot_count": len(stage_service.get_value_parking_lot_items(items)),
        }
    if stage == "duration":
        return "View Duration", {"total_items": len(items)}
    if stage == STAGE_RESULTS:
        return "View Results", {"results_count": len(items)}
    return None
