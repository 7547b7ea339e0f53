"""Data models for the synchronization engine."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ErrorKind, ParseError


class Collection(str, Enum):
    """Named collections kept in sync between backends."""
    TRACKS = "tracks"
    APPROVED = "approvedTracks"
    PENDING = "pendingTracks"
    PLAYLIST = "playlist"

    @classmethod
    def parse(cls, name: str) -> "Collection":
        """Resolve a collection from its storage name."""
        return cls(name)


# Collections holding Track records that the reconciler works on
TRACK_COLLECTIONS = (Collection.TRACKS, Collection.APPROVED, Collection.PENDING)

# Key under which the remote document stores its modification time
LAST_UPDATED_KEY = "lastUpdated"


class SyncMode(Enum):
    """Whether remote credentials were usable for the last operation."""
    LOCAL = "local"
    REMOTE = "remote"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_isoformat(value: Any) -> Optional[datetime]:
    """Inverse of ``isoformat``; None for missing or unreadable values."""
    if not isinstance(value, str):
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


_COLLECTION_ATTRS = {
    Collection.TRACKS: "tracks",
    Collection.APPROVED: "approved_tracks",
    Collection.PENDING: "pending_tracks",
    Collection.PLAYLIST: "playlist",
}


@dataclass
class RemoteDocument:
    """Contents of the data file inside the hosted document.

    A collection left as ``None`` is absent from the remote file, which is
    different from an empty list: pulling never overwrites local data with
    a collection the remote side does not have.
    """
    tracks: Optional[List[Dict[str, Any]]] = None
    approved_tracks: Optional[List[Dict[str, Any]]] = None
    pending_tracks: Optional[List[Dict[str, Any]]] = None
    playlist: Optional[List[Any]] = None
    last_updated: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # unknown top-level keys

    @classmethod
    def empty(cls) -> "RemoteDocument":
        """Initial content for a freshly created document."""
        return cls(
            tracks=[],
            approved_tracks=[],
            pending_tracks=[],
            playlist=[],
            last_updated=isoformat(utc_now()),
        )

    def get(self, name) -> Optional[List[Any]]:
        return getattr(self, _COLLECTION_ATTRS[Collection.parse(name)])

    def set(self, name, value: Optional[List[Any]]) -> None:
        setattr(self, _COLLECTION_ATTRS[Collection.parse(name)], value)

    def collections(self) -> Dict[Collection, List[Any]]:
        """Collections present in the document."""
        return {
            collection: self.get(collection)
            for collection in Collection
            if self.get(collection) is not None
        }

    def merged(self, fields: Dict[Any, Any]) -> "RemoteDocument":
        """Copy with ``fields`` replacing the named collections only."""
        document = replace(self, extra=dict(self.extra))
        for name, value in fields.items():
            document.set(name, value)
        document.last_updated = isoformat(utc_now())
        return document

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        for collection, value in self.collections().items():
            data[collection.value] = value
        if self.last_updated is not None:
            data[LAST_UPDATED_KEY] = self.last_updated
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "RemoteDocument":
        if not isinstance(data, dict):
            raise ParseError(f"Remote document must be a JSON object, got {type(data).__name__}")

        document = cls()
        extra = dict(data)
        for collection in Collection:
            if collection.value not in extra:
                continue
            value = extra.pop(collection.value)
            if value is not None and not isinstance(value, list):
                raise ParseError(f"Remote collection '{collection.value}' is not a list")
            document.set(collection, value)

        last_updated = extra.pop(LAST_UPDATED_KEY, None)
        document.last_updated = str(last_updated) if last_updated is not None else None
        document.extra = extra
        return document


@dataclass(frozen=True)
class ErrorRecord:
    """Last error reported by the coordinator."""
    kind: ErrorKind
    message: str
    at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class SyncState:
    """Process-wide synchronization state, replaced wholesale on change."""
    initialized: bool = False
    mode: SyncMode = SyncMode.LOCAL
    last_error: Optional[ErrorRecord] = None
    last_sync: Optional[datetime] = None
    credentials_valid: bool = False


@dataclass
class ForceSyncResult:
    """Outcome of a full push-then-pull synchronization."""
    success: bool
    tracks: List[Dict[str, Any]] = field(default_factory=list)
    approved_tracks: List[Dict[str, Any]] = field(default_factory=list)
    pending_tracks: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "tracks": self.tracks,
            "approvedTracks": self.approved_tracks,
            "pendingTracks": self.pending_tracks,
        }
