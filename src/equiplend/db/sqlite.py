"""SQLite document store.

Handles database connection, session management, and the document
operations every service builds on.
"""

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Iterable, Optional, TypeVar

import structlog
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import NotFoundError, PreconditionFailedError, TransientStoreError
from .models import Base, Document, generate_id, utc_now_iso
from .retry import with_retry
from .store import DocumentStore, FieldFilter, WriteBatch

logger = structlog.get_logger("equiplend")

T = TypeVar("T")

_MISSING = object()


def _lookup(data: dict[str, Any], path: str) -> Any:
    """Read a dotted path out of a nested dict."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _is_lock_error(error: OperationalError) -> bool:
    message = str(error.orig).lower() if error.orig else str(error).lower()
    return "locked" in message or "busy" in message


class Database(DocumentStore):
    """Database connection and document operations manager."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:". If None,
                     uses EQUIPLEND_DB_PATH or the default location.
            retry_attempts: Attempts per operation on transient errors
            retry_base_delay: First retry delay in seconds
            sleep: Sleep function used between retries
        """
        if db_path is None or retry_attempts is None or retry_base_delay is None:
            config = get_config()
            db_path = db_path if db_path is not None else str(config.db_path)
            retry_attempts = retry_attempts or config.retry_max
            if retry_base_delay is None:
                retry_base_delay = config.retry_base_delay

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep or time.sleep

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 5},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager.

        A locked or busy database surfaces as TransientStoreError so callers
        can retry it.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            if _is_lock_error(e):
                raise TransientStoreError(str(e), code="unavailable") from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _run(self, operation: Callable[[], T]) -> T:
        return with_retry(
            operation,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            sleep=self._sleep,
        )

    # ========================================================================
    # Document Operations
    # ========================================================================

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Get a document by ID."""

        def _get() -> Optional[dict[str, Any]]:
            with self.get_session() as s:
                doc = s.get(Document, (collection, doc_id))
                return doc.to_dict() if doc else None

        return self._run(_get)

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create or replace a document."""

        def _put() -> dict[str, Any]:
            with self.get_session() as s:
                self._put(s, collection, doc_id, data)
            return {**data, "id": doc_id}

        return self._run(_put)

    def add(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a document under a generated ID."""
        return self.put(collection, generate_id(), data)

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expect: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Merge changes into a document, checking preconditions first."""

        def _update() -> dict[str, Any]:
            with self.get_session() as s:
                doc = self._update(s, collection, doc_id, changes, expect or {})
                return doc.to_dict()

        return self._run(_update)

    def delete(
        self,
        collection: str,
        doc_id: str,
        expect: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Delete a document."""

        def _delete() -> bool:
            with self.get_session() as s:
                doc = s.get(Document, (collection, doc_id))
                if not doc:
                    return False
                self._check_expect(doc, expect or {})
                s.delete(doc)
                return True

        return self._run(_delete)

    def query(
        self,
        collection: str,
        filters: Iterable[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Query documents by field values."""
        filters = list(filters)

        def _query() -> list[dict[str, Any]]:
            with self.get_session() as s:
                stmt = select(Document).where(Document.collection == collection)
                for f in filters:
                    stmt = stmt.where(self._condition(f))
                if order_by:
                    key = self._field(order_by)
                    stmt = stmt.order_by(key.desc() if descending else key.asc())
                stmt = stmt.order_by(Document.id)
                if limit is not None:
                    stmt = stmt.limit(limit)
                return [doc.to_dict() for doc in s.execute(stmt).scalars().all()]

        return self._run(_query)

    def count(self, collection: str, filters: Iterable[FieldFilter] = ()) -> int:
        """Count documents matching the filters."""
        filters = list(filters)

        def _count() -> int:
            with self.get_session() as s:
                stmt = (
                    select(func.count())
                    .select_from(Document)
                    .where(Document.collection == collection)
                )
                for f in filters:
                    stmt = stmt.where(self._condition(f))
                return int(s.execute(stmt).scalar_one())

        return self._run(_count)

    def commit(self, batch: WriteBatch) -> None:
        """Apply a batch in one transaction. Nothing is written on failure."""

        def _commit() -> None:
            with self.get_session() as s:
                for op in batch.ops:
                    if op.kind == "put":
                        self._put(s, op.collection, op.doc_id, op.data)
                    elif op.kind == "update":
                        self._update(s, op.collection, op.doc_id, op.data, op.expect)
                    elif op.kind == "delete":
                        doc = s.get(Document, (op.collection, op.doc_id))
                        if doc:
                            self._check_expect(doc, op.expect)
                            s.delete(doc)
                    else:
                        raise ValueError(f"Unknown batch operation: {op.kind}")
                    s.flush()

        self._run(_commit)
        logger.debug("batch_committed", writes=len(batch))

    # ========================================================================
    # Helpers
    # ========================================================================

    def _put(self, s: Session, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        body = {k: v for k, v in data.items() if k != "id"}
        doc = s.get(Document, (collection, doc_id))
        if doc:
            doc.data = body
            doc.updated_at = utc_now_iso()
        else:
            s.add(Document(collection=collection, id=doc_id, data=body))

    def _update(
        self,
        s: Session,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expect: dict[str, Any],
    ) -> Document:
        doc = s.get(Document, (collection, doc_id))
        if not doc:
            raise NotFoundError(collection, doc_id)
        self._check_expect(doc, expect)
        # Assign a new dict so the JSON column is flagged dirty
        doc.data = {**doc.data, **{k: v for k, v in changes.items() if k != "id"}}
        doc.updated_at = utc_now_iso()
        return doc

    @staticmethod
    def _check_expect(doc: Document, expect: dict[str, Any]) -> None:
        for field_name, expected in expect.items():
            actual = _lookup(doc.data, field_name)
            if actual is _MISSING:
                actual = None
            if actual != expected:
                raise PreconditionFailedError(
                    doc.collection, doc.id, field_name, expected, actual
                )

    @staticmethod
    def _field(path: str):
        if path == "id":
            return Document.id
        return func.json_extract(Document.data, f"$.{path}")

    def _condition(self, f: FieldFilter):
        column = self._field(f.field)
        if f.op == "==":
            return column.is_(None) if f.value is None else column == f.value
        if f.op == "!=":
            return column.is_not(None) if f.value is None else column != f.value
        if f.op == "<":
            return column < f.value
        if f.op == "<=":
            return column <= f.value
        if f.op == ">":
            return column > f.value
        if f.op == ">=":
            return column >= f.value
        return column.in_(list(f.value))


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
