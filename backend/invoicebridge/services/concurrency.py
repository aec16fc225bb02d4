# Overview: Retry and locking helpers for migration bookkeeping writes.

from __future__ import annotations

import time
import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..stores.legacy_keys import MIGRATION_LOCK_OPTION
from ..stores.options import OptionStore
from ..time_utils import coerce_datetime, format_sql_datetime, utcnow


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on lock contention.

    Retries on OperationalError ("database is locked", deadlocks). The
    session is rolled back before each retry, so func must redo its whole
    unit of work.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning("Retrying after lock contention (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class MigrationLock:
    """
    Mutual exclusion for batch execution, held as a row in the options table.

    The primary key on the option makes the insert the arbitration point: of
    two concurrent acquirers exactly one insert succeeds. A lock older than
    timeout_seconds is treated as abandoned (crashed worker) and taken over;
    the takeover deletes only the exact stale value that was observed.
    """

    def __init__(self, options: OptionStore, *, timeout_seconds: int = 300):
        self.options = options
        self.timeout_seconds = timeout_seconds
        self._token: str | None = None

    def holder(self) -> dict | None:
        return self.options.get(MIGRATION_LOCK_OPTION)

    def is_stale(self, holder: dict, now: datetime) -> bool:
        try:
            acquired_at = coerce_datetime((holder or {}).get("acquired_at"))
        except ValueError:
            acquired_at = None
        if acquired_at is None:
            return True
        return (now - acquired_at).total_seconds() >= self.timeout_seconds

    def acquire(self, *, now: datetime | None = None) -> bool:
        now = now or utcnow()
        token = uuid.uuid4().hex

        def _op():
            holder = self.holder()
            if holder is not None:
                if not self.is_stale(holder, now):
                    return False
                if not self.options.delete_if(MIGRATION_LOCK_OPTION, holder):
                    # Another worker replaced the stale lock first
                    db.session.rollback()
                    return False
                current_app.logger.warning("Took over stale migration lock: %s", holder)
            try:
                self.options.insert(MIGRATION_LOCK_OPTION, {"acquired_at": format_sql_datetime(now), "token": token})
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                return False
            return True

        acquired = run_with_retry(_op)
        if acquired:
            self._token = token
        return acquired

    def release(self) -> None:
        if self._token is None:
            return
        holder = self.holder()
        if holder is not None and holder.get("token") == self._token:
            self.options.delete(MIGRATION_LOCK_OPTION)
            db.session.commit()
        self._token = None
