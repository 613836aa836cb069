"""Per-note embedding vectors and extracted keywords.

Both stores persist through the same versioned envelope as the freshness
cache. Freshness is tracked there, not here: these only hold the values.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from ..models import KeywordEntry
from .envelope import Encoding, decode_payload, encode_payload

log = logging.getLogger(__name__)


class EmbeddingStore:
    """Mapping of note path to embedding vector."""

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self._vectors: dict[str, list[float]] = dict(vectors or {})

    def __contains__(self, path: object) -> bool:
        return path in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EmbeddingStore):
            return NotImplemented
        return self._vectors == other._vectors

    @property
    def dimension(self) -> int | None:
        """Length of the first stored vector, or None when empty."""
        for vector in self._vectors.values():
            return len(vector)
        return None

    def set(self, path: str, vector: list[float]) -> None:
        """Store a vector. A length mismatch is logged, not rejected."""
        values = [float(v) for v in vector]
        expected = self.dimension
        if expected is not None and path not in self._vectors and len(values) != expected:
            log.warning(
                "Embedding for %s has %d dimensions, store holds %d; it will never match",
                path,
                len(values),
                expected,
            )
        self._vectors[path] = values

    def get(self, path: str) -> list[float] | None:
        return self._vectors.get(path)

    def remove(self, path: str) -> bool:
        return self._vectors.pop(path, None) is not None

    def paths(self) -> list[str]:
        return list(self._vectors)

    def items(self) -> Iterator[tuple[str, list[float]]]:
        return iter(self._vectors.items())

    def clear(self) -> None:
        self._vectors.clear()

    @staticmethod
    def _load(data: Any) -> EmbeddingStore:
        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping of vectors, got {type(data).__name__}")
        vectors: dict[str, list[float]] = {}
        for path, vector in data.items():
            if not isinstance(vector, list):
                raise ValueError(f"Invalid vector for {path!r}")
            vectors[str(path)] = [float(v) for v in vector]
        return EmbeddingStore(vectors)

    def serialize(self, encoding: Encoding = "binary") -> bytes:
        return encode_payload(self._vectors, encoding)

    @classmethod
    def deserialize(cls, raw: bytes, encoding: Encoding | None = None) -> EmbeddingStore:
        store, _header = decode_payload(raw, cls._load, encoding)
        return store


class KeywordStore:
    """Mapping of note path to extracted keywords.

    Older blobs stored a bare keyword list per path; those load with mtime 0.
    """

    def __init__(self, entries: dict[str, KeywordEntry] | None = None) -> None:
        self._entries: dict[str, KeywordEntry] = dict(entries or {})

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeywordStore):
            return NotImplemented
        return self._entries == other._entries

    def set(self, path: str, keywords: list[str], mtime: float = 0) -> None:
        self._entries[path] = KeywordEntry(keywords=list(keywords), mtime=mtime)

    def get(self, path: str) -> list[str]:
        """Keywords for path, or an empty list."""
        entry = self._entries.get(path)
        return list(entry.keywords) if entry else []

    def entry(self, path: str) -> KeywordEntry | None:
        return self._entries.get(path)

    def remove(self, path: str) -> bool:
        return self._entries.pop(path, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    @staticmethod
    def _load(data: Any) -> KeywordStore:
        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping of keywords, got {type(data).__name__}")
        entries: dict[str, KeywordEntry] = {}
        for path, value in data.items():
            if isinstance(value, list):
                entries[str(path)] = KeywordEntry(keywords=[str(k) for k in value], mtime=0)
            else:
                entries[str(path)] = KeywordEntry.model_validate(value)
        return KeywordStore(entries)

    def serialize(self, encoding: Encoding = "binary") -> bytes:
        data = {path: entry.model_dump() for path, entry in self._entries.items()}
        return encode_payload(data, encoding)

    @classmethod
    def deserialize(cls, raw: bytes, encoding: Encoding | None = None) -> KeywordStore:
        store, _header = decode_payload(raw, cls._load, encoding)
        return store
