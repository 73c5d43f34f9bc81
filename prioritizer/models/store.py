"""
CD3 Prioritizer
Document store model.

Models:
    - PrioritizerDocument: one JSON payload per persistence key
      (``app_state`` or ``priority_items``)

The engine keeps its whole state as two documents, so a key/value table is
all the persistence layer needs.
"""

from datetime import datetime, timezone

from prioritizer.models import db


class PrioritizerDocument(db.Model):
    """A serialized engine document keyed by its storage key."""

    __tablename__ = "prioritizer_documents"

    key = db.Column(db.String(64), primary_key=True)
    payload = db.Column(db.Text, nullable=False, default="null", comment="JSON text")
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "key": self.key,
            "payload": self.payload,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<PrioritizerDocument {self.key}>"
