# Overview: Relational repository for deduplicated customers.

from __future__ import annotations

import sqlalchemy as sa

from ..database.schema import customers
from ..dto.customer import CustomerDTO
from ..extensions import db
from ..time_utils import utcnow
from .base import RelationalRepository, WriteResult


def _row_to_customer(row) -> CustomerDTO | None:
    if row is None:
        return None
    return CustomerDTO.from_dict(dict(row._mapping))


class RelationalCustomerRepository(RelationalRepository):
    table = customers

    def find_by_id(self, customer_id: int) -> CustomerDTO | None:
        return self._read(
            "find_customer_by_id",
            lambda: _row_to_customer(
                db.session.execute(sa.select(customers).where(customers.c.id == customer_id)).first()
            ),
            customer_id=customer_id,
        )

    def find_by_tax_id(self, tax_id: str) -> CustomerDTO | None:
        """Oldest customer carrying this tax id."""
        tax_id = (tax_id or "").strip()
        if not tax_id:
            return None
        return self._read(
            "find_customer_by_tax_id",
            lambda: _row_to_customer(
                db.session.execute(
                    sa.select(customers).where(customers.c.tax_id == tax_id).order_by(customers.c.id.asc()).limit(1)
                ).first()
            ),
        )

    def create(self, customer: CustomerDTO) -> WriteResult:
        errors = customer.validate()
        if errors:
            return WriteResult.failure(errors, "validation")

        def _op():
            now = utcnow()
            row = customer.to_row()
            row["created_at"] = customer.created_at or now
            row["updated_at"] = now
            result = db.session.execute(sa.insert(customers).values(**row))
            return WriteResult.success(result.inserted_primary_key[0])

        return self._write("create_customer", _op)

    def count(self) -> int:
        return self._read(
            "count_customers",
            lambda: int(db.session.execute(sa.select(sa.func.count(customers.c.id))).scalar() or 0),
        )
