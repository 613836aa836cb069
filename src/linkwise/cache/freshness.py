"""Freshness bookkeeping for derived artifacts.

Tracks, per note, the modification time at which each artifact (embedding,
keywords, link suggestions) was last computed. An artifact is fresh only when
the stored mtime equals the note's current mtime exactly. The same cache keeps
the user's dismissed suggestion pairs and cached insertion-point answers.

Persisted layout (inside the versioned envelope)::

    {
        "embedding_mtimes": {path: mtime},
        "keyword_mtimes": {path: mtime},
        "suggestion_mtimes": {path: mtime},
        "ignored_suggestions": [[source, target, timestamp_ms], ...],
        "insertion_cache": [[path, title, blob], ...],
    }

Older blobs keyed pairs as ``"source|target"`` and ``"path::title"`` strings;
those still load, and keys that do not split into two parts are dropped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, NamedTuple

from ..models import IgnoredSuggestion
from .envelope import Encoding, decode_payload, encode_payload

log = logging.getLogger(__name__)

_LEGACY_PAIR_SEPARATOR = "|"
_LEGACY_INSERTION_SEPARATOR = "::"

# Field order of the positional legacy layout
_FIELDS = (
    "embedding_mtimes",
    "keyword_mtimes",
    "suggestion_mtimes",
    "ignored_suggestions",
    "insertion_cache",
)


class ArtifactKind(StrEnum):
    """Derived artifacts whose freshness is tracked."""

    EMBEDDING = "embedding"
    KEYWORD = "keyword"
    SUGGESTION = "suggestion"


class IgnoreKey(NamedTuple):
    """A dismissed suggestion pair, stored in canonical (sorted) order."""

    source: str
    target: str

    @classmethod
    def of(cls, a: str, b: str) -> IgnoreKey:
        first, second = sorted((a, b))
        return cls(first, second)


class InsertionKey(NamedTuple):
    """Document path plus the title of the link being inserted."""

    path: str
    title: str


def _now_ms() -> int:
    return int(time.time() * 1000)


def _split_legacy(key: str, separator: str) -> tuple[str, str] | None:
    parts = key.split(separator)
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def _load_mtimes(value: Any, name: str) -> dict[str, float]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"{name} must be a mapping, got {type(value).__name__}")
    result: dict[str, float] = {}
    for path, mtime in value.items():
        if not isinstance(path, str) or isinstance(mtime, bool) or not isinstance(mtime, (int, float)):
            raise ValueError(f"Invalid {name} entry: {path!r} -> {mtime!r}")
        result[path] = mtime
    return result


def _load_ignored(value: Any) -> dict[IgnoreKey, int]:
    ignored: dict[IgnoreKey, int] = {}
    if value is None:
        return ignored

    if isinstance(value, dict):
        for raw_key, ts in value.items():
            pair = _split_legacy(str(raw_key), _LEGACY_PAIR_SEPARATOR)
            if pair is None:
                log.debug("Dropping malformed ignored-suggestion key: %r", raw_key)
                continue
            ignored.setdefault(IgnoreKey.of(*pair), int(ts))
        return ignored

    if isinstance(value, list):
        for entry in value:
            if not isinstance(entry, (list, tuple)) or len(entry) != 3:
                log.debug("Dropping malformed ignored-suggestion entry: %r", entry)
                continue
            source, target, ts = entry
            try:
                ignored.setdefault(IgnoreKey.of(str(source), str(target)), int(ts))
            except (TypeError, ValueError):
                log.debug("Dropping ignored-suggestion entry with bad timestamp: %r", entry)
        return ignored

    raise TypeError(f"ignored_suggestions has unsupported type {type(value).__name__}")


def _load_insertions(value: Any) -> dict[InsertionKey, str]:
    insertions: dict[InsertionKey, str] = {}
    if value is None:
        return insertions

    if isinstance(value, dict):
        for raw_key, blob in value.items():
            pair = _split_legacy(str(raw_key), _LEGACY_INSERTION_SEPARATOR)
            if pair is None:
                log.debug("Dropping malformed insertion-cache key: %r", raw_key)
                continue
            insertions[InsertionKey(*pair)] = str(blob)
        return insertions

    if isinstance(value, list):
        for entry in value:
            if not isinstance(entry, (list, tuple)) or len(entry) != 3:
                log.debug("Dropping malformed insertion-cache entry: %r", entry)
                continue
            path, title, blob = entry
            insertions[InsertionKey(str(path), str(title))] = str(blob)
        return insertions

    raise TypeError(f"insertion_cache has unsupported type {type(value).__name__}")


@dataclass
class FreshnessCache:
    """Per-note artifact mtimes, dismissed pairs, and cached insertion answers."""

    embedding_mtimes: dict[str, float] = field(default_factory=dict)
    keyword_mtimes: dict[str, float] = field(default_factory=dict)
    suggestion_mtimes: dict[str, float] = field(default_factory=dict)
    ignored: dict[IgnoreKey, int] = field(default_factory=dict)
    insertions: dict[InsertionKey, str] = field(default_factory=dict)

    def _mtimes(self, kind: ArtifactKind | str) -> dict[str, float]:
        kind = ArtifactKind(kind)
        if kind is ArtifactKind.EMBEDDING:
            return self.embedding_mtimes
        if kind is ArtifactKind.KEYWORD:
            return self.keyword_mtimes
        return self.suggestion_mtimes

    # -------------------------------------------------------------------------
    # Freshness
    # -------------------------------------------------------------------------

    def is_fresh(self, kind: ArtifactKind | str, path: str, mtime: float) -> bool:
        """Return True if the artifact was computed at exactly this mtime."""
        stored = self._mtimes(kind).get(path)
        return stored is not None and stored == mtime

    def mark_processed(self, kind: ArtifactKind | str, path: str, mtime: float) -> None:
        """Record that the artifact for path is now current as of mtime."""
        self._mtimes(kind)[path] = mtime

    def invalidate(self, path: str) -> int:
        """Forget every artifact and cached insertion for path.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for mtimes in (self.embedding_mtimes, self.keyword_mtimes, self.suggestion_mtimes):
            if mtimes.pop(path, None) is not None:
                removed += 1
        return removed + self.invalidate_insertions(path)

    # -------------------------------------------------------------------------
    # Ignored suggestions
    # -------------------------------------------------------------------------

    def ignore(self, source: str, target: str, *, timestamp: int | None = None) -> None:
        """Dismiss a suggestion pair. Re-ignoring keeps the first timestamp."""
        key = IgnoreKey.of(source, target)
        if key not in self.ignored:
            self.ignored[key] = _now_ms() if timestamp is None else timestamp

    def unignore(self, source: str, target: str) -> bool:
        """Restore a dismissed pair. Returns False if it was not ignored."""
        return self.ignored.pop(IgnoreKey.of(source, target), None) is not None

    def is_ignored(self, source: str, target: str) -> bool:
        return IgnoreKey.of(source, target) in self.ignored

    def list_ignored(self) -> list[IgnoredSuggestion]:
        """List dismissed pairs, most recent first."""
        ordered = sorted(self.ignored.items(), key=lambda item: (-item[1], item[0]))
        return [IgnoredSuggestion(source=key.source, target=key.target, timestamp=ts) for key, ts in ordered]

    def clear_ignored(self) -> int:
        count = len(self.ignored)
        self.ignored.clear()
        return count

    # -------------------------------------------------------------------------
    # Insertion cache
    # -------------------------------------------------------------------------

    def cache_insertion(self, path: str, title: str, blob: str) -> None:
        self.insertions[InsertionKey(path, title)] = blob

    def get_insertion(self, path: str, title: str) -> str | None:
        return self.insertions.get(InsertionKey(path, title))

    def invalidate_insertions(self, path: str) -> int:
        """Drop cached insertion answers for one document."""
        stale = [key for key in self.insertions if key.path == path]
        for key in stale:
            del self.insertions[key]
        return len(stale)

    def clear_insertions(self) -> int:
        count = len(self.insertions)
        self.insertions.clear()
        return count

    # -------------------------------------------------------------------------
    # Whole-cache operations
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        self.embedding_mtimes.clear()
        self.keyword_mtimes.clear()
        self.suggestion_mtimes.clear()
        self.ignored.clear()
        self.insertions.clear()

    def stats(self) -> dict[str, int]:
        return {
            "embeddings": len(self.embedding_mtimes),
            "keywords": len(self.keyword_mtimes),
            "suggestions": len(self.suggestion_mtimes),
            "ignored": len(self.ignored),
            "insertions": len(self.insertions),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "embedding_mtimes": dict(self.embedding_mtimes),
            "keyword_mtimes": dict(self.keyword_mtimes),
            "suggestion_mtimes": dict(self.suggestion_mtimes),
            "ignored_suggestions": [[key.source, key.target, ts] for key, ts in self.ignored.items()],
            "insertion_cache": [[key.path, key.title, blob] for key, blob in self.insertions.items()],
        }

    @classmethod
    def from_dict(cls, data: Any) -> FreshnessCache:
        """Build a cache from its plain structure.

        Accepts the current layout, the string-keyed legacy layout, and the
        positional legacy layout (a five-element array in field order).

        Raises:
            TypeError: If data is not a mapping or positional array.
            ValueError: If an entry has the wrong shape.
        """
        if isinstance(data, list) and len(data) == len(_FIELDS):
            data = dict(zip(_FIELDS, data))
        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")

        return cls(
            embedding_mtimes=_load_mtimes(data.get("embedding_mtimes"), "embedding_mtimes"),
            keyword_mtimes=_load_mtimes(data.get("keyword_mtimes"), "keyword_mtimes"),
            suggestion_mtimes=_load_mtimes(data.get("suggestion_mtimes"), "suggestion_mtimes"),
            ignored=_load_ignored(data.get("ignored_suggestions")),
            insertions=_load_insertions(data.get("insertion_cache")),
        )

    def serialize(self, encoding: Encoding = "binary") -> bytes:
        """Serialize inside a versioned envelope."""
        return encode_payload(self.to_dict(), encoding)

    @classmethod
    def deserialize(cls, raw: bytes, encoding: Encoding | None = None) -> FreshnessCache:
        """Load a cache written by serialize(), or an older bare blob.

        Raises:
            CacheDecodeError: If the bytes decode in no supported layout.
        """
        cache, _header = decode_payload(raw, cls.from_dict, encoding)
        return cache
