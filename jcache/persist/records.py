"""
Cache record model and wire format.

A record is the persisted unit: the caller's original key, a free-form payload,
its kind (data or file), the expiry window and creation/update timestamps.

Wire shape (JSON):
    {originalKey, data, dataType: "data"|"file", expiryMillis, createdAt, updatedAt}

Older layouts are accepted on read:
- missing originalKey (recovered from the payload)
- expiryDays (integer days) or expiryDuration (milliseconds)
"""

import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from jcache.errors import InvalidExpiryError

RESOURCE_URL = "resourceUrl"
RESOURCE_PATH = "resourcePath"


class RecordKind(str, Enum):
    """Discriminates how a record's payload is interpreted."""

    DATA = "data"
    FILE = "file"


def validate_expiry(expiry: timedelta) -> timedelta:
    """Reject negative or non-duration expiry values."""
    if not isinstance(expiry, timedelta):
        raise TypeError(f"expiry must be a timedelta, got {type(expiry).__name__}")
    if expiry < timedelta(0):
        raise InvalidExpiryError(f"expiry must be non-negative, got {expiry}")
    return expiry


class CacheRecord(BaseModel):
    """A single persisted cache entry."""

    original_key: str = Field(..., description="Caller-supplied key, unhashed")
    data: Dict[str, Any] = Field(default_factory=dict, description="Payload: {key, data} or {key, resourceUrl, resourcePath}")
    kind: RecordKind = Field(RecordKind.DATA, description="Payload interpretation")
    expiry: timedelta = Field(..., description="Time-to-live measured from updated_at")
    created_at: datetime = Field(..., description="First insertion time")
    updated_at: datetime = Field(..., description="Last touching read or write")

    @field_validator("expiry")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError(f"expiry must be non-negative, got {value}")
        return value

    @classmethod
    def for_data(cls, key: str, value: Any, expiry: timedelta, now: datetime) -> "CacheRecord":
        """Build a data-kind record stamped at ``now``."""
        return cls(
            original_key=key,
            data={"key": key, "data": value},
            kind=RecordKind.DATA,
            expiry=expiry,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def for_file(cls, url: str, path: str, expiry: timedelta, now: datetime) -> "CacheRecord":
        """Build a file-kind record stamped at ``now``."""
        return cls(
            original_key=url,
            data={"key": url, RESOURCE_URL: url, RESOURCE_PATH: path},
            kind=RecordKind.FILE,
            expiry=expiry,
            created_at=now,
            updated_at=now,
        )

    @property
    def expires_at(self) -> datetime:
        return self.updated_at + self.expiry

    def is_expired(self, now: datetime) -> bool:
        """A record is live iff now < updated_at + expiry."""
        return not now < _comparable(self.expires_at, now)

    @property
    def value(self) -> Any:
        """Decoded payload for data records."""
        return self.data.get("data")

    @property
    def resource_path(self) -> Optional[str]:
        """Backing file path for file records."""
        return self.data.get(RESOURCE_PATH)

    def touch(self, now: datetime, expiry: Optional[timedelta] = None) -> None:
        """Refresh updated_at (sliding expiry); replace expiry only when given."""
        self.updated_at = now
        if expiry is not None:
            self.expiry = validate_expiry(expiry)

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to the JSON wire shape."""
        return {
            "originalKey": self.original_key,
            "data": self.data,
            "dataType": self.kind.value,
            "expiryMillis": round(self.expiry / timedelta(milliseconds=1)),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_storage_dict(cls, raw: Dict[str, Any]) -> "CacheRecord":
        """
        Load from the wire shape, tolerating older layouts.

        Raises:
            KeyError, TypeError, ValueError: If the layout cannot be interpreted
        """
        data = raw["data"]
        if not isinstance(data, dict):
            raise TypeError(f"record payload must be an object, got {type(data).__name__}")

        original_key = raw.get("originalKey")
        if original_key is None:
            for candidate in ("originalKey", "originalUrl", "key", RESOURCE_URL):
                if data.get(candidate) is not None:
                    original_key = data[candidate]
                    break
            else:
                raise KeyError("originalKey")

        if "expiryMillis" in raw:
            expiry = timedelta(milliseconds=raw["expiryMillis"])
        elif "expiryDuration" in raw:
            expiry = timedelta(milliseconds=raw["expiryDuration"])
        elif "expiryDays" in raw:
            expiry = timedelta(days=raw["expiryDays"])
        else:
            raise KeyError("expiryMillis")

        kind = raw.get("dataType")
        if kind is None:
            kind = RecordKind.FILE if RESOURCE_PATH in data else RecordKind.DATA

        return cls(
            original_key=original_key,
            data=data,
            kind=RecordKind(kind),
            expiry=expiry,
            created_at=_parse_timestamp(raw["createdAt"]),
            updated_at=_parse_timestamp(raw["updatedAt"]),
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_storage_dict(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, blob: bytes) -> "CacheRecord":
        return cls.from_storage_dict(json.loads(blob.decode("utf-8")))


def _parse_timestamp(value: str) -> datetime:
    # Naive timestamps were written in local time
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _comparable(moment: datetime, reference: datetime) -> datetime:
    if reference.tzinfo is None and moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    if reference.tzinfo is not None and moment.tzinfo is None:
        return moment.astimezone()
    return moment
