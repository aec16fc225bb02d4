from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class HostRecord(db.Model):
    """
    Host-owned record (the CMS "post") that legacy invoices live on.

    WHY: Invoices were historically stored as one host record plus a bag of
    meta fields. The migration core only reads these records, marks them as
    migrated, and keeps the creation timestamp in sync with the relational
    invoice when the lifecycle service moves it.
    """
    __tablename__ = "host_records"
    __table_args__ = (
        db.Index("ix_host_records_type_created", "record_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    record_type = db.Column(db.String(32), nullable=False, index=True)  # e.g. "invoice"
    title = db.Column(db.String(255), nullable=False, default="")
    status = db.Column(db.String(20), nullable=False, default="publish")
    author_id = db.Column(db.Integer, nullable=True)

    # Externally-visible creation timestamp (downstream systems order by this)
    created_at = db.Column(db.DateTime, nullable=False)
    modified_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "record_type": self.record_type,
            "title": self.title,
            "status": self.status,
            "author_id": self.author_id,
            "created_at": to_utc_z(self.created_at),
            "modified_at": to_utc_z(self.modified_at),
        }


class HostRecordMeta(db.Model):
    """One meta field on a host record. Values are JSON-encoded text."""
    __tablename__ = "host_record_meta"
    __table_args__ = (
        db.UniqueConstraint("record_id", "meta_key", name="uq_host_record_meta_record_key"),
        db.Index("ix_host_record_meta_key_record", "meta_key", "record_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(
        db.Integer,
        db.ForeignKey("host_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    meta_key = db.Column(db.String(191), nullable=False)
    meta_value = db.Column(db.Text, nullable=True)
