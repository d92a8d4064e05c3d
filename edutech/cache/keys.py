"""
Cache Keys

A cache key is an ordered tuple of segments, typically the endpoint path
followed by its filter/pagination parameters:

    ("/api/courses", {"category": "design", "page": 1, "limit": 10})

Keys are normalised so that structurally identical queries produce equal,
hashable keys no matter how the caller built the filter dict.
"""

import hashlib
import json
from typing import Any, Dict, Iterator, Mapping, Tuple


CacheKey = Tuple[Any, ...]


class KeyParams(Mapping):
    """
    Immutable, hashable mapping used for dict segments of a cache key.

    Equality ignores insertion order. None values are dropped on
    construction so {"search": None} and {} address the same entry.
    """

    __slots__ = ("_items", "_hash")

    def __init__(self, source: Mapping = None, **kwargs):
        merged: Dict[str, Any] = dict(source or {}, **kwargs)
        self._items = tuple(sorted(
            ((str(k), normalize_segment(v)) for k, v in merged.items() if v is not None),
            key=lambda item: item[0],
        ))
        self._hash = hash(self._items)

    def __getitem__(self, name: str) -> Any:
        for key, value in self._items:
            if key == name:
                return value
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, KeyParams):
            return self._items == other._items
        if isinstance(other, Mapping):
            return self == KeyParams(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"{{{', '.join(f'{k!r}: {v!r}' for k, v in self._items)}}}"


def _set_order(item: Any):
    # Set members may mix types that do not compare with each other
    return type(item).__name__, repr(item)


def normalize_segment(segment: Any) -> Any:
    """Convert a key segment into its hashable, order-independent form."""
    if isinstance(segment, KeyParams):
        return segment
    if isinstance(segment, Mapping):
        return KeyParams(segment)
    if isinstance(segment, (list, tuple)):
        return tuple(normalize_segment(item) for item in segment)
    if isinstance(segment, (set, frozenset)):
        return tuple(sorted((normalize_segment(item) for item in segment), key=_set_order))
    return segment


def make_key(*segments: Any) -> CacheKey:
    """
    Build a normalised cache key.

    A single list/tuple argument is treated as the whole key, so both
    make_key("/api/courses", filters) and make_key(["/api/courses", filters])
    work.
    """
    if len(segments) == 1 and isinstance(segments[0], (list, tuple)):
        segments = tuple(segments[0])
    return tuple(normalize_segment(segment) for segment in segments)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def key_hash(key: CacheKey) -> str:
    """Stable short digest of a key, for logs and persisted references."""
    key_str = json.dumps(_jsonable(make_key(key)), sort_keys=True, default=str)
    return hashlib.md5(key_str.encode()).hexdigest()[:12]


def _segment_matches(segment: Any, pattern: Any) -> bool:
    if isinstance(pattern, Mapping):
        if not isinstance(segment, Mapping):
            return False
        return all(
            name in segment and _segment_matches(segment[name], value)
            for name, value in pattern.items()
        )
    return segment == pattern


def matches(key: CacheKey, prefix: CacheKey, exact: bool = False) -> bool:
    """
    Check whether a key is addressed by a prefix.

    Prefix segments must equal the leading key segments; a mapping segment
    in the prefix matches when its items are a subset of the key's mapping.
    With exact=True the key must equal the prefix.
    """
    key = make_key(key)
    prefix = make_key(prefix)

    if exact:
        return key == prefix
    if len(prefix) > len(key):
        return False
    return all(
        _segment_matches(segment, pattern)
        for segment, pattern in zip(key, prefix)
    )
