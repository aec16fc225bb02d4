# Overview: Shared plumbing for relational repositories: results, cache keys, guarded reads and writes, filters.

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, Mapping, TypeVar

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.exc import SQLAlchemyError

from ..cache import TTLCache
from ..database.schema import effective_date, invoices
from ..errors import TransportError, ValidationError
from ..extensions import db
from ..time_utils import coerce_datetime


T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass
class WriteResult:
    """
    Outcome of a repository write.

    error_kind: validation | integrity | not_found | transport | unavailable
    """
    ok: bool
    id: int | None = None
    errors: list[str] = field(default_factory=list)
    error_kind: str | None = None
    affected: int = 0

    @classmethod
    def success(cls, id: int | None = None, *, affected: int = 1) -> "WriteResult":
        return cls(ok=True, id=id, affected=affected)

    @classmethod
    def failure(cls, errors: list[str] | str, kind: str) -> "WriteResult":
        if isinstance(errors, str):
            errors = [errors]
        return cls(ok=False, errors=list(errors), error_kind=kind)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "id": self.id,
            "errors": self.errors,
            "error_kind": self.error_kind,
            "affected": self.affected,
        }


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0

    def to_dict(self, serialize: Callable[[T], Any] = lambda item: item.to_dict()) -> dict:
        return {
            "items": [serialize(item) for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "pages": self.pages,
        }


def normalize_paging(page: int | None, page_size: int | None) -> tuple[int, int]:
    page = max(int(page or 1), 1)
    page_size = int(page_size or DEFAULT_PAGE_SIZE)
    return page, min(max(page_size, 1), MAX_PAGE_SIZE)


# ----------------------------------------------------------------------
# Cache keys
# ----------------------------------------------------------------------

def invoice_key(invoice_id: int) -> str:
    return f"invoice:{invoice_id}"


def invoice_number_key(invoice_number: str) -> str:
    digest = hashlib.md5(invoice_number.encode("utf-8")).hexdigest()
    return f"invoice:number:{digest}"


def invoice_host_key(host_id: int) -> str:
    return f"invoice:host:{host_id}"


def items_key(invoice_id: int) -> str:
    return f"items:{invoice_id}"


def payments_key(invoice_id: int) -> str:
    return f"payments:{invoice_id}"


# ----------------------------------------------------------------------
# Invoice criteria (shared by every list/aggregate touching dates)
# ----------------------------------------------------------------------

INVOICE_FILTER_COLUMNS = ("kind", "workflow_status", "customer_id", "author_id", "invoice_number", "old_post_id")
SEARCH_COLUMNS = ("invoice_number", "buyer_name", "buyer_tax_id", "buyer_phone")


def parse_date_bound(value: Any, *, end: bool = False) -> datetime:
    """
    date_from / date_to bound. A bare date covers the whole day: date_to
    "2024-01-14" means strictly before 2024-01-15 00:00.
    """
    try:
        parsed = coerce_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"Invalid date filter: {value!r}")
    if end and parsed.time() == datetime.min.time():
        return parsed + timedelta(days=1)
    return parsed


def invoice_filters(criteria: Mapping[str, Any] | None) -> list:
    clauses = []
    eff = effective_date(invoices)
    for key, value in (criteria or {}).items():
        if value is None or value == "":
            continue
        if key == "date_from":
            clauses.append(eff >= parse_date_bound(value))
        elif key == "date_to":
            bound = parse_date_bound(value, end=True)
            if bound.time() == datetime.min.time():
                clauses.append(eff < bound)
            else:
                clauses.append(eff <= bound)
        elif key == "search":
            pattern = f"%{str(value).strip()}%"
            clauses.append(sa.or_(*(invoices.c[name].ilike(pattern) for name in SEARCH_COLUMNS)))
        elif key in INVOICE_FILTER_COLUMNS:
            column = invoices.c[key]
            if isinstance(value, (list, tuple, set)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        else:
            raise ValidationError(f"Unsupported filter: {key}")
    return clauses


INVOICE_ORDER_COLUMNS = {
    "effective_date": lambda: effective_date(invoices),
    "created_at": lambda: invoices.c.created_at,
    "invoice_number": lambda: invoices.c.invoice_number,
    "total_amount": lambda: invoices.c.total_amount,
    "balance": lambda: invoices.c.balance,
    "id": lambda: invoices.c.id,
}


def ordering_key(order_by: str | None) -> str:
    """Validated ordering name shared by the relational and legacy readers."""
    key = order_by or "effective_date"
    if key not in INVOICE_ORDER_COLUMNS:
        raise ValidationError(f"Unsupported ordering: {order_by}")
    return key


def is_descending(direction: str | None) -> bool:
    return (direction or "desc").lower() != "asc"


def invoice_ordering(order_by: str | None, direction: str | None) -> list:
    column = INVOICE_ORDER_COLUMNS[ordering_key(order_by)]()
    if is_descending(direction):
        return [column.desc(), invoices.c.id.desc()]
    return [column.asc(), invoices.c.id.asc()]


# ----------------------------------------------------------------------
# Base repository
# ----------------------------------------------------------------------

class RelationalRepository:
    """
    Guarded access to one target table.

    Reads: driver faults are logged, the session is rolled back, and a
    TransportError is raised. Writes never raise for data problems or driver
    faults; they return a WriteResult. Writes only flush.
    """

    table: sa.Table

    def __init__(self, cache: TTLCache):
        self.cache = cache

    def _rollback(self) -> None:
        db.session.rollback()
        # Entries may have been populated from rows the rollback discarded
        self.cache.clear()

    def _cached(self, key: str, loader: Callable[[], Any]) -> Any:
        marker = object()
        value = self.cache.get(key, marker)
        if value is not marker:
            return value
        value = loader()
        if value is not None:
            self.cache.set(key, value)
        return value

    def _read(self, operation: str, fn: Callable[[], T], **context) -> T:
        try:
            return fn()
        except SQLAlchemyError as exc:
            self._rollback()
            current_app.logger.exception(
                "Repository read failed: %s", {"operation": operation, "table": self.table.name, **context}
            )
            raise TransportError(f"{operation} failed: {exc.__class__.__name__}", operation=operation) from exc

    def _write(self, operation: str, fn: Callable[[], WriteResult], **context) -> WriteResult:
        try:
            return fn()
        except TransportError as exc:
            # Nested read already rolled back and logged
            return WriteResult.failure(str(exc), "transport")
        except DBIntegrityError as exc:
            self._rollback()
            current_app.logger.warning(
                "Repository write rejected: %s", {"operation": operation, "table": self.table.name, **context}
            )
            return WriteResult.failure(f"Integrity constraint violated: {exc.orig}", "integrity")
        except SQLAlchemyError as exc:
            self._rollback()
            current_app.logger.exception(
                "Repository write failed: %s", {"operation": operation, "table": self.table.name, **context}
            )
            return WriteResult.failure(f"Database error during {operation}: {exc.__class__.__name__}", "transport")

    def _invoice_exists(self, invoice_id: int) -> bool:
        if not invoice_id or invoice_id <= 0:
            return False
        row = db.session.execute(sa.select(invoices.c.id).where(invoices.c.id == invoice_id)).first()
        return row is not None
