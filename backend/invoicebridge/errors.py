# Overview: Error taxonomy shared by the transcoder, repositories, migration engine and routes.

from __future__ import annotations


class InvoiceBridgeError(Exception):
    """Base class for domain errors."""


class ValidationError(InvoiceBridgeError, ValueError):
    """An entity failed one or more business rules (400-level)."""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(InvoiceBridgeError, LookupError):
    """Referenced entity does not exist (404-level)."""


class SchemaError(InvoiceBridgeError, RuntimeError):
    """The reconciler could not bring a target table to the declared shape."""


class TransportError(InvoiceBridgeError, RuntimeError):
    """The store connection or a query failed unexpectedly."""

    def __init__(self, message: str, *, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class MigrationLockedError(InvoiceBridgeError, RuntimeError):
    """Another migration batch currently holds the lock."""
