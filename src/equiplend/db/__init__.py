"""Document store for local SQLite storage."""

from .models import Collections, Document
from .retry import is_retryable, with_retry
from .schemas import InputModel, StoreModel, Timestamp
from .sqlite import Database, get_db, reset_db
from .store import DocumentStore, FieldFilter, WriteBatch, where

__all__ = [
    "Collections",
    "Document",
    "is_retryable",
    "with_retry",
    "InputModel",
    "StoreModel",
    "Timestamp",
    "Database",
    "get_db",
    "reset_db",
    "DocumentStore",
    "FieldFilter",
    "WriteBatch",
    "where",
]
