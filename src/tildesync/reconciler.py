"""Merge and deduplication rules for track collections.

Everything here is pure: inputs are never mutated and the same inputs
always give the same result, so reconciliation can be re-run at will.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import ValidationError
from .models import Collection, TRACK_COLLECTIONS

Track = Dict[str, Any]

LEGACY_DURATION = "medium"
DEFAULT_DURATION_POLICY = "energetic"


def _track_id(track: Track) -> Optional[str]:
    value = track.get('id')
    return None if value is None else str(value)


def _title_artist(track: Track) -> Optional[Tuple[Any, Any]]:
    title, artist = track.get('title'), track.get('artist')
    if title is None or artist is None:
        return None
    return title, artist


def same_track(a: Track, b: Track) -> bool:
    """Identity rule: same ``id``, or same ``title`` and ``artist``."""
    a_id, b_id = _track_id(a), _track_id(b)
    if a_id is not None and a_id == b_id:
        return True
    pair = _title_artist(a)
    return pair is not None and pair == _title_artist(b)


class TrackIndex:
    """Lookup of tracks by id and by title/artist pair."""

    def __init__(self, tracks: Iterable[Track] = ()):
        self._ids: Set[str] = set()
        self._pairs: Set[Tuple[Any, Any]] = set()
        for track in tracks:
            self.add(track)

    def add(self, track: Track) -> None:
        track_id = _track_id(track)
        if track_id is not None:
            self._ids.add(track_id)
        pair = _title_artist(track)
        if pair is not None:
            self._pairs.add(pair)

    def __contains__(self, track: Track) -> bool:
        track_id = _track_id(track)
        if track_id is not None and track_id in self._ids:
            return True
        pair = _title_artist(track)
        return pair is not None and pair in self._pairs


def dedupe(tracks: List[Track]) -> List[Track]:
    """Drop entries matching an earlier entry; first occurrence wins."""
    index = TrackIndex()
    kept = []
    for track in tracks:
        if track not in index:
            kept.append(track)
            index.add(track)
    return kept


def merge_into(base: List[Track], additions: List[Track]) -> Tuple[List[Track], bool]:
    """Append every entry of ``additions`` not already in ``base``.

    Returns:
        Tuple of (merged list, whether anything was appended)
    """
    index = TrackIndex(base)
    merged = list(base)
    for track in additions:
        if track not in index:
            merged.append(track)
            index.add(track)
    return merged, len(merged) != len(base)


def remove_matching(tracks: List[Track], others: List[Track]) -> List[Track]:
    """Entries of ``tracks`` that match nothing in ``others``."""
    index = TrackIndex(others)
    return [track for track in tracks if track not in index]


def find_new(baseline: List[Track], candidate: List[Track]) -> List[Track]:
    """Entries of ``candidate`` that are not present in ``baseline``."""
    return remove_matching(candidate, baseline)


def sanitize_tracks(tracks: List[Track], duration_policy: str = DEFAULT_DURATION_POLICY) -> List[Track]:
    """Rewrite the legacy ``medium`` duration to ``duration_policy``.

    Affected tracks are copied; the others are returned as-is.
    """
    sanitized = []
    for track in tracks:
        if track.get('duration') == LEGACY_DURATION and duration_policy != LEGACY_DURATION:
            track = {**track, 'duration': duration_policy}
        sanitized.append(track)
    return sanitized


def validate_collection(name, value: Any) -> List[Track]:
    """Check that ``value`` is a list of track objects.

    ``None`` is an absent collection and validates as empty.
    """
    label = Collection.parse(name).value
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"Collection '{label}' must be a list, got {type(value).__name__}")
    for position, track in enumerate(value):
        if not isinstance(track, dict):
            raise ValidationError(
                f"Entry {position} of '{label}' must be an object, got {type(track).__name__}"
            )
    return value


@dataclass
class ReconcileResult:
    """Reconciled collections and the names whose content changed."""
    collections: Dict[Collection, List[Any]] = field(default_factory=dict)
    changed: Set[Collection] = field(default_factory=set)

    def changed_collections(self) -> Dict[Collection, List[Any]]:
        return {name: self.collections[name] for name in Collection if name in self.changed}


def reconcile(
    collections: Mapping[Any, Optional[List[Any]]],
    duration_policy: str = DEFAULT_DURATION_POLICY
) -> ReconcileResult:
    """Restore the cross-collection invariants.

    1. Sanitize legacy duration values in the track collections.
    2. Deduplicate each track collection.
    3. Append approved tracks missing from ``tracks``.
    4. Drop pending tracks that are already approved.

    Args:
        collections: Collection name to list of tracks; absent or ``None``
                     collections count as empty
        duration_policy: Canonical value replacing the legacy ``medium``

    Returns:
        ReconcileResult with every input collection and the changed names
    """
    originals = {Collection.parse(name): value for name, value in collections.items()}
    for name in TRACK_COLLECTIONS:
        originals[name] = validate_collection(name, originals.get(name))

    result = {
        name: dedupe(sanitize_tracks(originals[name], duration_policy))
        for name in TRACK_COLLECTIONS
    }

    approved = result[Collection.APPROVED]
    result[Collection.TRACKS], _ = merge_into(result[Collection.TRACKS], approved)
    result[Collection.PENDING] = remove_matching(result[Collection.PENDING], approved)

    changed = {name for name in TRACK_COLLECTIONS if result[name] != originals[name]}

    if Collection.PLAYLIST in originals:
        result[Collection.PLAYLIST] = originals[Collection.PLAYLIST]

    return ReconcileResult(collections=result, changed=changed)
