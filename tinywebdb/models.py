"""
Record model for TinyWebDB.

A Record is the immutable unit of storage: a tag, the value stored under it
and the time of the write that produced it.

Invariants:
    - tag is a string that is non-empty after trimming whitespace
    - value is a string (possibly empty)
    - date is timezone-aware UTC, truncated to millisecond precision so the
      serialized ISO-8601 form round-trips exactly

How to change safely:
    - The serialized form is persisted by the KV adapter; only add keys
    - Keep from_dict() tolerant of both "Z" and "+00:00" suffixes
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .errors import ValidationError


def is_valid_tag(tag: Any) -> bool:
    """Whether tag is a string with at least one non-whitespace character."""
    return isinstance(tag, str) and len(tag.strip()) > 0


def validate_tag(tag: Any) -> str:
    """Return tag unchanged, or raise ValidationError if it is invalid.

    Raises:
        ValidationError: If tag is not a string or is empty after trimming
    """
    if not is_valid_tag(tag):
        raise ValidationError("Tag cannot be empty", field_name="tag")
    return tag


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds."""
    return _truncate_to_millis(datetime.now(timezone.utc))


def format_timestamp(date: datetime) -> str:
    """Format a datetime as ISO-8601 with milliseconds and a Z suffix."""
    date = _as_utc(date)
    return date.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime) into UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if isinstance(value, datetime):
        return _truncate_to_millis(_as_utc(value))
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return _truncate_to_millis(_as_utc(datetime.fromisoformat(text)))


def _as_utc(date: datetime) -> datetime:
    # Naive datetimes are taken to already be UTC
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


def _truncate_to_millis(date: datetime) -> datetime:
    return date.replace(microsecond=(date.microsecond // 1000) * 1000)


@dataclass(frozen=True)
class Record:
    """A tag-value pair stored in TinyWebDB.

    Attributes:
        tag: Unique tag identifying the record (never empty)
        value: Value stored under the tag
        date: When the record was written (UTC, millisecond precision)

    Example:
        >>> record = Record.create("score", "42")
        >>> Record.from_dict(record.to_dict()) == record
        True
    """

    tag: str
    value: str
    date: datetime

    def __post_init__(self) -> None:
        validate_tag(self.tag)
        if not isinstance(self.value, str):
            raise ValidationError("Value must be a string", field_name="value")
        if not isinstance(self.date, datetime):
            raise ValidationError("Date must be a datetime", field_name="date")
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "date", _truncate_to_millis(_as_utc(self.date)))

    @classmethod
    def create(cls, tag: str, value: str, date: Optional[datetime] = None) -> Record:
        """Create a record stamped with the current time unless date is given."""
        return cls(tag=tag, value=value, date=date or utc_now())

    def to_dict(self) -> Dict[str, str]:
        """Convert to the serialized form."""
        return {
            "tag": self.tag,
            "value": self.value,
            "date": format_timestamp(self.date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Record:
        """Create from the serialized form.

        The date may be an ISO-8601 string or a datetime; when missing the
        current time is used.

        Raises:
            ValidationError: If the tag is invalid
            KeyError: If tag or value is missing
            ValueError: If the date string cannot be parsed
        """
        raw_date = data.get("date")
        date = parse_timestamp(raw_date) if raw_date is not None else utc_now()
        return cls(tag=data["tag"], value=data["value"], date=date)

    def __str__(self) -> str:
        return f"Record(tag={self.tag}, date={format_timestamp(self.date)})"
