"""
Storage Package.

Ledger persistence for the trading engine.

Modules:
- database: Async engine and session management
- models/: ORM models
- repository: All ledger queries
- exceptions: Storage error hierarchy
"""

from storage.database import Database, DatabaseConfig
from storage.exceptions import (
    DatabaseConnectionError,
    ImmutableRecordError,
    PersistenceError,
    RecordNotFoundError,
    StorageError,
)
from storage.repository import TradingRepository


__all__ = [
    "Database",
    "DatabaseConfig",
    "TradingRepository",
    "StorageError",
    "DatabaseConnectionError",
    "PersistenceError",
    "RecordNotFoundError",
    "ImmutableRecordError",
]
