"""Exceptions raised by the catalog, ledger and import layers."""
from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for errors surfaced to the HTTP layer."""


class PersistenceError(ServiceError):
    """A backing store call failed (network, validation, conflict)."""

    def __init__(self, table: str, operation: str, detail: str = "") -> None:
        self.table = table
        self.operation = operation
        self.detail = detail
        message = f"{operation} on {table} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotFoundError(ServiceError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class SessionRequiredError(ServiceError):
    """An operation needing a logged-in store was called while logged out."""


class PermissionDeniedError(ServiceError):
    """The active session may not perform the operation."""


class InvalidOrderError(ServiceError):
    """A submitted order line cannot be turned into an order item."""


class ParseError(ServiceError):
    """The uploaded import file could not be read at all."""


class PartialReconciliationFailure(ServiceError):
    """Some per-item stock decrements of a delivered order failed.

    The order keeps its ``Delivered`` status and the successful decrements are
    not reverted.
    """

    def __init__(self, order_id: str, failures: dict[str, Any]) -> None:
        self.order_id = order_id
        self.failures = dict(failures)
        products = ", ".join(sorted(self.failures))
        super().__init__(f"Stock reconciliation for order {order_id} failed for: {products}")


__all__ = [
    "ServiceError",
    "PersistenceError",
    "NotFoundError",
    "ParseError",
    "SessionRequiredError",
    "PermissionDeniedError",
    "InvalidOrderError",
    "PartialReconciliationFailure",
]
