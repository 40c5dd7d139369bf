"""
Domain: error taxonomy for the reservation consistency layer.

- NotFoundError: a referenced piece or sale does not exist. Terminal for the
  current operation; never retried.
- StoreUnavailableError: a read or write against the status store failed.
  Propagated as-is; only the retry helper retries it.
- MalformedRowError: a row came back that does not decode (unknown status,
  bad timestamp or amount). Never retried; batch operations skip the item.

A conditional write that matches zero rows is not an error: repositories
report it as ``False`` and callers treat it as "state already changed".
Ambiguous states (Sold without a completed sale, several completed sales) are
reported through results, not raised.
"""

from __future__ import annotations


class ConsistencyError(Exception):
    """Base class for errors raised by the consistency layer."""


class NotFoundError(ConsistencyError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class StoreUnavailableError(ConsistencyError, RuntimeError):
    """Raised when the status store cannot serve a read or write."""

    def __init__(self, action: str, cause: object = None):
        self.action = action
        self.cause = cause
        message = f"Failed to {action}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class MalformedRowError(ConsistencyError, ValueError):
    """Raised when a store row cannot be decoded into a domain entity."""

    def __init__(self, table: str, row_id: object, cause: object):
        self.table = table
        self.row_id = row_id
        self.cause = cause
        super().__init__(f"Malformed {table} row {row_id}: {cause}")


__all__ = [
    "ConsistencyError",
    "MalformedRowError",
    "NotFoundError",
    "StoreUnavailableError",
]
