"""Exception hierarchy for equiplend.

Every error raised by the services derives from EquipLendError so callers
(the CLI, a web layer) can catch the whole family in one place.
"""

from typing import Any, Iterable, Optional


class EquipLendError(Exception):
    """Base exception for all equiplend errors."""

    pass


class ValidationError(EquipLendError):
    """Raised when input fails a shape, range or format rule.

    Never retried. ``errors`` holds every individual problem found, so a
    multi-field validation can report all of them at once.
    """

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]

    @classmethod
    def from_pydantic(cls, message: str, error: Any) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping one line per problem."""
        errors = [
            f"{'.'.join(str(p) for p in e['loc']) or 'payload'}: {e['msg']}"
            for e in error.errors()
        ]
        return cls(message, errors)


class CategoryLimitExceededError(ValidationError):
    """Raised when a user already holds the maximum items of a category."""

    def __init__(self, message: str, current_count: int, limit: int):
        super().__init__(message)
        self.current_count = current_count
        self.limit = limit


class NotFoundError(EquipLendError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class InvalidStateTransitionError(EquipLendError):
    """Raised when a status guard fails."""

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        target: Optional[str] = None,
    ):
        super().__init__(message)
        self.current = current
        self.target = target


class PermissionDeniedError(EquipLendError):
    """Raised when the acting user lacks the role an operation requires."""

    pass


class ExternalServiceError(EquipLendError):
    """Raised by notification and webhook delivery."""

    pass


class TransientStoreError(EquipLendError):
    """Raised by the store for errors worth retrying.

    ``code`` is one of ``unavailable``, ``deadline-exceeded``,
    ``resource-exhausted`` or ``aborted``.
    """

    def __init__(self, message: str, code: str = "unavailable"):
        super().__init__(message)
        self.code = code


class PreconditionFailedError(EquipLendError):
    """Raised when a conditional write finds a field in an unexpected state."""

    def __init__(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        actual: Any,
    ):
        super().__init__(
            f"{collection}/{doc_id}: expected {field}={expected!r}, found {actual!r}"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.field = field
        self.expected = expected
        self.actual = actual
