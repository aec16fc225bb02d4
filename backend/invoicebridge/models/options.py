from __future__ import annotations

from ..extensions import db


class Option(db.Model):
    """
    Process-wide key/value settings (schema version, migration status,
    progress snapshot, batch lock). Values are JSON-encoded text.
    """
    __tablename__ = "options"

    key = db.Column(db.String(191), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False)
