"""Abstract document store.

Services only talk to this interface. Records are plain dicts keyed by
``(collection, id)``; the returned dicts always carry their ``id``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")


@dataclass(frozen=True)
class FieldFilter:
    """A ``field op value`` condition. Dotted fields reach into nested maps."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")


def where(field_name: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field_name, op, value)


@dataclass
class BatchOp:
    """One write inside a batch."""

    kind: str  # put, update, delete
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    expect: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Collects writes to commit atomically with ``DocumentStore.commit``.

    ``expect`` maps field names to the values they must currently hold; if any
    precondition fails at commit time nothing in the batch is written.
    """

    def __init__(self) -> None:
        self.ops: list[BatchOp] = []

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> "WriteBatch":
        self.ops.append(BatchOp("put", collection, doc_id, dict(data)))
        return self

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expect: Optional[dict[str, Any]] = None,
    ) -> "WriteBatch":
        self.ops.append(
            BatchOp("update", collection, doc_id, dict(changes), dict(expect or {}))
        )
        return self

    def delete(
        self,
        collection: str,
        doc_id: str,
        expect: Optional[dict[str, Any]] = None,
    ) -> "WriteBatch":
        self.ops.append(BatchOp("delete", collection, doc_id, expect=dict(expect or {})))
        return self

    def __len__(self) -> int:
        return len(self.ops)


class DocumentStore(ABC):
    """Transactional document API."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Fetch one document, or None."""

    @abstractmethod
    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create or fully replace a document."""

    @abstractmethod
    def add(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a document under a generated ID."""

    @abstractmethod
    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expect: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Merge ``changes`` into an existing document.

        Raises:
            NotFoundError: If the document does not exist.
            PreconditionFailedError: If an ``expect`` condition does not hold.
        """

    @abstractmethod
    def delete(
        self,
        collection: str,
        doc_id: str,
        expect: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Delete a document. Returns False if it did not exist."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Iterable[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Query by field, optionally ordered (an ordered range scan)."""

    @abstractmethod
    def commit(self, batch: WriteBatch) -> None:
        """Apply every write in ``batch`` atomically."""

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def count(self, collection: str, filters: Sequence[FieldFilter] = ()) -> int:
        return len(self.query(collection, filters))
