# Overview: Key-value access to host records and their meta fields.

"""
Key-value entity store.

The legacy invoice representation is one host record plus a bag of meta
fields. Everything the migration core needs from that store goes through the
KeyValueStore protocol so the engine and the lifecycle service never touch the
host tables directly. PostMetaStore is the SQL-backed implementation.

Writes only flush; the caller owns the transaction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Protocol

import sqlalchemy as sa

from ..extensions import db
from ..models import HostRecord, HostRecordMeta
from ..time_utils import utcnow


@dataclass(frozen=True)
class HostRecordInfo:
    id: int
    record_type: str
    status: str
    author_id: Optional[int]
    created_at: datetime
    modified_at: datetime


class KeyValueStore(Protocol):
    def get_field(self, entity_id: int, key: str, default: Any = None) -> Any: ...

    def get_fields(self, entity_id: int) -> dict[str, Any]: ...

    def set_field(self, entity_id: int, key: str, value: Any) -> None: ...

    def delete_field(self, entity_id: int, key: str) -> None: ...

    def query_entities(
        self,
        record_type: str,
        *,
        missing_keys: Iterable[str] = (),
        present_keys: Iterable[str] = (),
        equals: Mapping[str, Any] | None = None,
        order_by: str = "id",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        random_order: bool = False,
    ) -> list[int]: ...

    def count_entities(
        self,
        record_type: str,
        *,
        missing_keys: Iterable[str] = (),
        present_keys: Iterable[str] = (),
        equals: Mapping[str, Any] | None = None,
    ) -> int: ...

    def create_entity(
        self,
        record_type: str,
        *,
        author_id: int | None = None,
        title: str = "",
        created_at: datetime | None = None,
    ) -> int: ...

    def delete_entity(self, entity_id: int) -> bool: ...

    def get_entity(self, entity_id: int) -> HostRecordInfo | None: ...

    def set_created_at(self, entity_id: int, created_at: datetime) -> bool: ...


def encode_meta_value(value: Any) -> str:
    # Decimal, date and datetime are stored as their str() form
    return json.dumps(value, default=str, sort_keys=True)


def decode_meta_value(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        # Raw text written by older code paths
        return raw


def _meta_exists(key: str):
    return sa.exists().where(
        HostRecordMeta.record_id == HostRecord.id,
        HostRecordMeta.meta_key == key,
    )


def _meta_equals(key: str, value: Any):
    return sa.exists().where(
        HostRecordMeta.record_id == HostRecord.id,
        HostRecordMeta.meta_key == key,
        HostRecordMeta.meta_value == encode_meta_value(value),
    )


class PostMetaStore:
    """KeyValueStore backed by host_records / host_record_meta."""

    _ORDERABLE = {
        "id": HostRecord.id,
        "created_at": HostRecord.created_at,
        "modified_at": HostRecord.modified_at,
    }

    def _meta_row(self, entity_id: int, key: str) -> HostRecordMeta | None:
        return db.session.execute(
            sa.select(HostRecordMeta).where(
                HostRecordMeta.record_id == entity_id,
                HostRecordMeta.meta_key == key,
            )
        ).scalar_one_or_none()

    def get_field(self, entity_id: int, key: str, default: Any = None) -> Any:
        row = self._meta_row(entity_id, key)
        if row is None:
            return default
        return decode_meta_value(row.meta_value)

    def get_fields(self, entity_id: int) -> dict[str, Any]:
        rows = db.session.execute(
            sa.select(HostRecordMeta.meta_key, HostRecordMeta.meta_value)
            .where(HostRecordMeta.record_id == entity_id)
        ).all()
        return {key: decode_meta_value(value) for key, value in rows}

    def set_field(self, entity_id: int, key: str, value: Any) -> None:
        row = self._meta_row(entity_id, key)
        encoded = encode_meta_value(value)
        if row is None:
            db.session.add(HostRecordMeta(record_id=entity_id, meta_key=key, meta_value=encoded))
        else:
            row.meta_value = encoded
        db.session.flush()

    def delete_field(self, entity_id: int, key: str) -> None:
        db.session.execute(
            sa.delete(HostRecordMeta).where(
                HostRecordMeta.record_id == entity_id,
                HostRecordMeta.meta_key == key,
            )
        )

    def _filtered(self, stmt, record_type, missing_keys, present_keys, equals):
        stmt = stmt.where(HostRecord.record_type == record_type)
        for key in missing_keys:
            stmt = stmt.where(~_meta_exists(key))
        for key in present_keys:
            stmt = stmt.where(_meta_exists(key))
        for key, value in (equals or {}).items():
            stmt = stmt.where(_meta_equals(key, value))
        return stmt

    def query_entities(
        self,
        record_type: str,
        *,
        missing_keys: Iterable[str] = (),
        present_keys: Iterable[str] = (),
        equals: Mapping[str, Any] | None = None,
        order_by: str = "id",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        random_order: bool = False,
    ) -> list[int]:
        stmt = self._filtered(sa.select(HostRecord.id), record_type, missing_keys, present_keys, equals)
        if random_order:
            stmt = stmt.order_by(sa.func.random())
        else:
            column = self._ORDERABLE.get(order_by, HostRecord.id)
            if descending:
                stmt = stmt.order_by(column.desc(), HostRecord.id.desc())
            else:
                stmt = stmt.order_by(column.asc(), HostRecord.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(db.session.execute(stmt).scalars())

    def count_entities(
        self,
        record_type: str,
        *,
        missing_keys: Iterable[str] = (),
        present_keys: Iterable[str] = (),
        equals: Mapping[str, Any] | None = None,
    ) -> int:
        stmt = self._filtered(
            sa.select(sa.func.count(HostRecord.id)), record_type, missing_keys, present_keys, equals
        )
        return int(db.session.execute(stmt).scalar() or 0)

    def create_entity(
        self,
        record_type: str,
        *,
        author_id: int | None = None,
        title: str = "",
        created_at: datetime | None = None,
    ) -> int:
        now = utcnow()
        record = HostRecord(
            record_type=record_type,
            title=title or "",
            status="publish",
            author_id=author_id,
            created_at=created_at or now,
            modified_at=now,
        )
        db.session.add(record)
        db.session.flush()
        return record.id

    def delete_entity(self, entity_id: int) -> bool:
        db.session.execute(sa.delete(HostRecordMeta).where(HostRecordMeta.record_id == entity_id))
        result = db.session.execute(sa.delete(HostRecord).where(HostRecord.id == entity_id))
        return bool(result.rowcount)

    def get_entity(self, entity_id: int) -> HostRecordInfo | None:
        record = db.session.get(HostRecord, entity_id)
        if record is None:
            return None
        return HostRecordInfo(
            id=record.id,
            record_type=record.record_type,
            status=record.status,
            author_id=record.author_id,
            created_at=record.created_at,
            modified_at=record.modified_at,
        )

    def set_created_at(self, entity_id: int, created_at: datetime) -> bool:
        result = db.session.execute(
            sa.update(HostRecord)
            .where(HostRecord.id == entity_id)
            .values(created_at=created_at, modified_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)
