"""
Shared pytest fixtures for the CD3 Prioritizer test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test table recreate + fresh engine (autouse)
    - client: Flask test client (function-scoped)
    - engine: Standalone in-memory PrioritizationEngine (no Flask)
    - scored_engine: engine with three fully categorized items on Results
"""

import pytest

from prioritizer import create_app, init_engine
from prioritizer.models import db as _db
from prioritizer.services.analytics import AnalyticsClient
from prioritizer.services.persistence import InMemoryAdapter
from prioritizer.services.prioritization_engine import PrioritizationEngine


class RecordingAnalytics(AnalyticsClient):
    """Collects (name, properties) pairs instead of sending them."""

    def __init__(self):
        self.events = []

    def track_event(self, name, properties=None):
        self.events.append((name, properties or {}))

    @property
    def names(self):
        return [name for name, _ in self.events]


def categorize(engine, item_id, urgency, value, duration):
    """Walk one item through urgency → value → duration in locked mode.

    Uses stage jumps, so the engine may end on any stage; callers navigate
    afterwards as needed.
    """
    for stage, level in (("urgency", urgency), ("value", value), ("duration", duration)):
        if engine.state.current_stage != stage:
            result = engine.navigate_to_stage(stage)
            assert result["success"], result
        result = engine.set_item_property(item_id, stage, level)
        assert result["success"], result


def build_scored_engine(engine, rows):
    """Add ``rows`` of (name, u, v, d) on Item Listing, score them all, go to Results."""
    ids = {}
    for name, *_ in rows:
        ids[name] = engine.add_item(name)["item_id"]
    for stage, offset in (("urgency", 1), ("value", 2), ("duration", 3)):
        result = engine.navigate_to_stage(stage)
        assert result["success"], result
        for row in rows:
            assert engine.set_item_property(ids[row[0]], stage, row[offset])["success"]
    assert engine.navigate_to_stage("Results")["success"]
    return ids


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: empty tables and a fresh engine loaded from them."""
    with app.app_context():
        _db.drop_all()
        _db.create_all()
        init_engine(app)
        yield
        _db.session.rollback()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def analytics():
    return RecordingAnalytics()


@pytest.fixture()
def engine(analytics):
    """In-memory engine with recorded analytics."""
    return PrioritizationEngine(persistence=InMemoryAdapter(), analytics=analytics)


@pytest.fixture()
def scored_engine(engine):
    """Alpha 9.0, Beta 2.0, Gamma 0.333 CD3 with default weights, on Results."""
    engine.item_ids = build_scored_engine(engine, [
        ("Alpha", 3, 3, 1),
        ("Beta", 2, 2, 2),
        ("Gamma", 1, 1, 3),
    ])
    return engine
