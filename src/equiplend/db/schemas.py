"""Shared pydantic building blocks for stored records."""

from datetime import datetime, timezone
from typing import Annotated, Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


def format_timestamp(value: datetime) -> str:
    """Render a datetime as fixed-width UTC ISO-8601.

    Every stored timestamp has the same width, so string comparison in the
    store matches chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


Timestamp = Annotated[datetime, PlainSerializer(format_timestamp, return_type=str)]


def datetime_to_day(value: Any) -> Any:
    """Accept datetimes and ISO datetime strings where a calendar day is expected."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


ModelT = TypeVar("ModelT", bound="StoreModel")


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoreModel(CamelModel):
    """Base for records persisted as documents."""

    id: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage (the ID lives in the key, not the body)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})

    @classmethod
    def from_document(cls: type[ModelT], doc: dict[str, Any]) -> ModelT:
        """Build a model from a stored document."""
        return cls.model_validate(doc)


class InputModel(BaseModel):
    """Base for caller-supplied payloads. Unknown fields are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )
