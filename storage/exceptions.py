"""
Storage Exceptions.

============================================================
PURPOSE
============================================================
Exception hierarchy for the ledger persistence layer.

StorageError (base)
├── DatabaseConnectionError
├── PersistenceError
├── RecordNotFoundError
└── ImmutableRecordError

============================================================
"""

from typing import Any, Optional


class StorageError(Exception):
    """
    Base exception for all storage operations.

    Business layers can catch this for generic error handling.
    """

    def __init__(
        self,
        message: str,
        table: str = "",
        operation: str = "",
        details: Optional[dict] = None,
    ) -> None:
        self.message = message
        self.table = table
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.table:
            return f"[{self.table}] {self.operation}: {self.message}"
        return self.message


class DatabaseConnectionError(StorageError):
    """Raised when the database cannot be reached."""


class PersistenceError(StorageError):
    """Raised when a transaction fails and was rolled back."""


class RecordNotFoundError(StorageError):
    """Raised when a record expected to exist cannot be found."""

    def __init__(self, table: str, record_id: Any) -> None:
        super().__init__(
            message=f"Record with id={record_id} not found",
            table=table,
            operation="get",
            details={"id": str(record_id)},
        )
        self.record_id = record_id


class ImmutableRecordError(StorageError):
    """
    Raised when a write would violate a one-way ledger transition.

    Covers re-setting a decision outcome and reopening a CLOSED position.
    """

    def __init__(self, table: str, record_id: Any, field_name: str) -> None:
        super().__init__(
            message=f"Cannot change {field_name} of record {record_id}",
            table=table,
            operation="update",
            details={"record_id": str(record_id), "field": field_name},
        )
        self.record_id = record_id
        self.field_name = field_name
