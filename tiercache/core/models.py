"""
Cache Data Model

- Metadata: tags plus the freshness window of an entry
- Entry: Metadata plus the payload
- CacheRecord: an Entry as read from a tier, with its size, derived status
  and the tier it came from
- Durations: options accepted by tag invalidation
- EXPIRED: marker returned by a tier for an entry that exists but expired

Timestamps are epoch milliseconds; stale/revalidate/expire are seconds
relative to the timestamp.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any, Final

import orjson

from tiercache.core.config.constants import CacheSource, CacheStatus
from tiercache.core.exceptions import MalformedMetadataError
from tiercache.core.stream import Payload, PayloadSource

METADATA_FIELDS: Final = ("tags", "timestamp", "stale", "expire", "revalidate")


@dataclass(frozen=True)
class Metadata:
    """Freshness metadata of a cache entry."""

    tags: tuple[str, ...]
    timestamp: float
    stale: float
    revalidate: float
    expire: float

    def __post_init__(self):
        if isinstance(self.tags, str):
            raise TypeError("tags must be an iterable of strings, not a string")
        object.__setattr__(self, "tags", tuple(self.tags))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": list(self.tags),
            "timestamp": self.timestamp,
            "stale": self.stale,
            "expire": self.expire,
            "revalidate": self.revalidate,
        }

    def to_json(self) -> str:
        return orjson.dumps(self.to_dict()).decode("utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Metadata":
        try:
            tags = data["tags"]
            if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
                raise TypeError("tags must be a list of strings")
            return cls(
                tags=tuple(tags),
                timestamp=float(data["timestamp"]),
                stale=float(data["stale"]),
                revalidate=float(data["revalidate"]),
                expire=float(data["expire"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedMetadataError.from_exception(e, message=f"Invalid metadata: {e}")

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Metadata":
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MalformedMetadataError.from_exception(e, message="Metadata is not valid JSON")
        if not isinstance(data, dict):
            raise MalformedMetadataError("Metadata is not a JSON object")
        return cls.from_dict(data)


@dataclass(frozen=True)
class Entry(Metadata):
    """
    A cache entry: metadata plus payload.

    `value` is whatever the producer handed in (bytes, text, an async
    iterable of chunks, ...) until the orchestrator materialises it; entries
    stored in or read from a tier always carry a `Payload`.
    """

    value: PayloadSource = field(default=b"", compare=False)

    @property
    def metadata(self) -> Metadata:
        return Metadata(**{f.name: getattr(self, f.name) for f in fields(Metadata)})

    @property
    def payload(self) -> Payload:
        if not isinstance(self.value, Payload):
            raise TypeError("Entry value has not been materialised")
        return self.value

    def with_value(self, value: PayloadSource) -> "Entry":
        return replace(self, value=value)

    @classmethod
    def from_metadata(cls, metadata: Metadata, value: PayloadSource) -> "Entry":
        return cls(
            tags=metadata.tags,
            timestamp=metadata.timestamp,
            stale=metadata.stale,
            revalidate=metadata.revalidate,
            expire=metadata.expire,
            value=value,
        )


@dataclass(frozen=True)
class Durations:
    """Tag invalidation options. `expire` is in seconds."""

    expire: float | None = None

    @classmethod
    def coerce(cls, durations: "Durations | Mapping[str, Any] | None") -> "Durations":
        if durations is None:
            return cls()
        if isinstance(durations, Durations):
            return durations
        return cls(expire=durations.get("expire"))


@dataclass(frozen=True)
class CacheRecord:
    """An entry as read from a tier."""

    entry: Entry
    size: int
    status: CacheStatus = CacheStatus.FRESH
    source: CacheSource = CacheSource.NONE


class _Expired:
    """Falsy marker: the entry exists but has expired and must be purged."""

    __slots__ = ()

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EXPIRED"


EXPIRED: Final = _Expired()


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """Tags as a tuple; a bare string is one tag."""
    if isinstance(tags, str):
        return (tags,)
    return tuple(tags)
