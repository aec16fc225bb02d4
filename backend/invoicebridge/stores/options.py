# Overview: Narrow get/set/delete interface over process-wide options.

from __future__ import annotations

from typing import Any, Protocol

import sqlalchemy as sa

from ..extensions import db
from ..models import Option
from ..time_utils import utcnow
from .kv_store import decode_meta_value, encode_meta_value


class OptionStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def insert(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_if(self, key: str, expected: Any) -> bool: ...


class DbOptionStore:
    """
    OptionStore backed by the options table.

    insert() flushes immediately so a duplicate key raises
    sqlalchemy.exc.IntegrityError at the call site (used by the batch lock).
    delete_if() is a single conditional DELETE, so of two callers that observed
    the same value only one removes it.
    """

    def get(self, key: str, default: Any = None) -> Any:
        row = db.session.get(Option, key)
        if row is None:
            return default
        return decode_meta_value(row.value)

    def set(self, key: str, value: Any) -> None:
        row = db.session.get(Option, key)
        if row is None:
            db.session.add(Option(key=key, value=encode_meta_value(value), updated_at=utcnow()))
        else:
            row.value = encode_meta_value(value)
            row.updated_at = utcnow()
        db.session.flush()

    def insert(self, key: str, value: Any) -> None:
        db.session.add(Option(key=key, value=encode_meta_value(value), updated_at=utcnow()))
        db.session.flush()

    def delete(self, key: str) -> None:
        row = db.session.get(Option, key)
        if row is not None:
            db.session.delete(row)
            db.session.flush()

    def delete_if(self, key: str, expected: Any) -> bool:
        """Delete the option only while it still holds `expected`."""
        result = db.session.execute(
            sa.delete(Option).where(Option.key == key, Option.value == encode_meta_value(expected))
        )
        db.session.flush()
        return result.rowcount > 0
