"""
Persistence adapters for the prioritization engine.

The engine stores two JSON documents: the AppState (``app_state``) and the
item list (``priority_items``). Adapters only move those documents in and
out of storage; migration and normalization happen in
``prioritizer.services.migrator``.

Adapters:
    - InMemoryAdapter: process-local dict (tests, ``PRIORITIZER_STORAGE=memory``)
    - SQLAlchemyAdapter: ``prioritizer_documents`` table via Flask-SQLAlchemy

Loads never raise: unreadable documents come back as None / [] and the
engine falls back to defaults. Saves and clears raise ``PersistenceError``.
"""

import json
import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError

from prioritizer.core.exceptions import PersistenceError
from prioritizer.models import db
from prioritizer.models.constants import APP_STATE_KEY, STORAGE_KEY
from prioritizer.models.store import PrioritizerDocument

logger = logging.getLogger(__name__)


class PersistenceAdapter(ABC):
    """Interface shared by the adapters."""

    @abstractmethod
    def load_state(self) -> dict | None:
        ...

    @abstractmethod
    def load_items(self) -> list[dict]:
        ...

    @abstractmethod
    def save_state(self, state: dict) -> None:
        ...

    @abstractmethod
    def save_items(self, items: list[dict]) -> None:
        ...

    @abstractmethod
    def clear_state(self) -> None:
        ...

    @abstractmethod
    def clear_items(self) -> None:
        ...

    def clear(self) -> None:
        self.clear_state()
        self.clear_items()


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════


class InMemoryAdapter(PersistenceAdapter):
    """Keeps JSON text per key, so callers never share mutable objects."""

    def __init__(self, state: dict | None = None, items: list | None = None):
        self._documents: dict[str, str] = {}
        if state is not None:
            self.save_state(state)
        if items is not None:
            self.save_items(items)

    def _load(self, key):
        text = self._documents.get(key)
        return json.loads(text) if text is not None else None

    def load_state(self):
        state = self._load(APP_STATE_KEY)
        return state if isinstance(state, dict) else None

    def load_items(self):
        items = self._load(STORAGE_KEY)
        return items if isinstance(items, list) else []

    def save_state(self, state):
        self._documents[APP_STATE_KEY] = json.dumps(state)

    def save_items(self, items):
        self._documents[STORAGE_KEY] = json.dumps(items)

    def clear_state(self):
        self._documents.pop(APP_STATE_KEY, None)

    def clear_items(self):
        self._documents.pop(STORAGE_KEY, None)


# ═════════════════════════════════════════════════════════════════════════════
# SQLAlchemy
# ═════════════════════════════════════════════════════════════════════════════


class SQLAlchemyAdapter(PersistenceAdapter):
    """Key/value documents in ``prioritizer_documents``.

    Needs an application context. Every save commits on its own.
    """

    def _load(self, key):
        try:
            doc = db.session.get(PrioritizerDocument, key)
        except SQLAlchemyError:
            logger.warning("Loading %s failed", key, exc_info=True)
            db.session.rollback()
            return None
        if doc is None:
            return None
        try:
            return json.loads(doc.payload)
        except (TypeError, ValueError):
            logger.warning("Stored %s document is not valid JSON, ignoring it", key)
            return None

    def _save(self, key, payload):
        try:
            doc = db.session.get(PrioritizerDocument, key)
            if doc is None:
                doc = PrioritizerDocument(key=key)
                db.session.add(doc)
            doc.payload = json.dumps(payload)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Saving %s failed: %s", key, exc)
            raise PersistenceError("save", key) from exc

    def _delete(self, key):
        try:
            PrioritizerDocument.query.filter_by(key=key).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Clearing %s failed: %s", key, exc)
            raise PersistenceError("clear", key) from exc

    def load_state(self):
        state = self._load(APP_STATE_KEY)
        return state if isinstance(state, dict) else None

    def load_items(self):
        items = self._load(STORAGE_KEY)
        return items if isinstance(items, list) else []

    def save_state(self, state):
        self._save(APP_STATE_KEY, state)

    def save_items(self, items):
        self._save(STORAGE_KEY, items)

    def clear_state(self):
        self._delete(APP_STATE_KEY)

    def clear_items(self):
        self._delete(STORAGE_KEY)


def build_adapter(kind: str) -> PersistenceAdapter:
    """Adapter for the ``PRIORITIZER_STORAGE`` setting."""
    if kind == "memory":
        return InMemoryAdapter()
    if kind == "database":
        return SQLAlchemyAdapter()
    raise ValueError(f"Unknown PRIORITIZER_STORAGE: {kind!r}")
