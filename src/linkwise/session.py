"""Per-vault session state.

A VaultSession owns the freshness cache, the embedding and keyword stores,
and the loaded note contents for one vault. It is created explicitly,
passed to whatever needs it, and saved explicitly (or on leaving a
``with`` block).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TypeVar

from .cache.envelope import Encoding
from .cache.freshness import ArtifactKind, FreshnessCache
from .cache.stores import EmbeddingStore, KeywordStore
from .config import (
    DEFAULT_CACHE_ENCODING,
    DEFAULT_MAX_SUGGESTIONS,
    DEFAULT_SIMILARITY_THRESHOLD,
    EMBEDDINGS_FILENAME,
    FRESHNESS_CACHE_FILENAME,
    KEYWORDS_FILENAME,
)
from .errors import CacheDecodeError
from .models import FileDescriptor, ScanPlan, SuggestionResponse
from .planner import count_files_needing_embedding, plan_scan
from .ranking.similarity import SimilarityEngine

log = logging.getLogger(__name__)

T = TypeVar("T")


class VaultSession:
    """Everything linkwise knows about one vault.

    Args:
        index_root: Directory holding the persisted blobs.
        encoding: Codec used when saving ("binary" or "text").
    """

    def __init__(self, index_root: Path, encoding: Encoding = DEFAULT_CACHE_ENCODING) -> None:
        self.index_root = index_root
        self.encoding: Encoding = encoding
        self.cache = FreshnessCache()
        self.embeddings = EmbeddingStore()
        self.keywords = KeywordStore()
        self.contents: dict[str, str] = {}
        self.load_warnings: list[str] = []

    # -------------------------------------------------------------------------
    # Construction / teardown
    # -------------------------------------------------------------------------

    @classmethod
    def open(cls, index_root: Path, encoding: Encoding = DEFAULT_CACHE_ENCODING) -> VaultSession:
        """Load a session from index_root.

        Missing files start empty. A file that fails to decode is reported in
        ``load_warnings`` and its component starts empty too, so the next
        scan rebuilds it.
        """
        session = cls(index_root, encoding)
        session.cache = session._load(FRESHNESS_CACHE_FILENAME, FreshnessCache.deserialize, FreshnessCache)
        session.embeddings = session._load(EMBEDDINGS_FILENAME, EmbeddingStore.deserialize, EmbeddingStore)
        session.keywords = session._load(KEYWORDS_FILENAME, KeywordStore.deserialize, KeywordStore)
        return session

    def _load(self, filename: str, deserialize: Callable[[bytes], T], empty: Callable[[], T]) -> T:
        path = self.index_root / filename
        if not path.exists():
            return empty()
        try:
            return deserialize(path.read_bytes())
        except (CacheDecodeError, OSError) as e:
            message = f"Discarding unreadable {filename}: {e}"
            log.warning(message)
            self.load_warnings.append(message)
            return empty()

    def save(self) -> None:
        """Write all three blobs to index_root."""
        self.index_root.mkdir(parents=True, exist_ok=True)
        (self.index_root / FRESHNESS_CACHE_FILENAME).write_bytes(self.cache.serialize(self.encoding))
        (self.index_root / EMBEDDINGS_FILENAME).write_bytes(self.embeddings.serialize(self.encoding))
        (self.index_root / KEYWORDS_FILENAME).write_bytes(self.keywords.serialize(self.encoding))

    def __enter__(self) -> VaultSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.save()

    # -------------------------------------------------------------------------
    # Planning and recording
    # -------------------------------------------------------------------------

    def plan(
        self,
        files: Iterable[FileDescriptor],
        current_file: str | None = None,
        check_suggestions: bool = True,
    ) -> ScanPlan:
        return plan_scan(
            self.cache,
            files,
            current_file=current_file,
            check_suggestions=check_suggestions,
            embeddings=self.embeddings,
        )

    def count_needing_embedding(self, files: Iterable[FileDescriptor]) -> int:
        return count_files_needing_embedding(self.cache, files, self.embeddings)

    def record_embedding(self, path: str, mtime: float, vector: list[float]) -> None:
        self.embeddings.set(path, vector)
        self.cache.mark_processed(ArtifactKind.EMBEDDING, path, mtime)
        # Insertion answers were computed against the old text
        self.cache.invalidate_insertions(path)

    def record_keywords(self, path: str, mtime: float, keywords: list[str]) -> None:
        self.keywords.set(path, keywords, mtime)
        self.cache.mark_processed(ArtifactKind.KEYWORD, path, mtime)

    def record_suggestions(self, path: str, mtime: float) -> None:
        self.cache.mark_processed(ArtifactKind.SUGGESTION, path, mtime)

    def set_content(self, path: str, text: str) -> None:
        self.contents[path] = text

    def remove_document(self, path: str) -> int:
        """Forget a note entirely. Returns the number of cache entries removed."""
        self.embeddings.remove(path)
        self.keywords.remove(path)
        self.contents.pop(path, None)
        return self.cache.invalidate(path)

    # -------------------------------------------------------------------------
    # Suggestions
    # -------------------------------------------------------------------------

    def engine(self) -> SimilarityEngine:
        return SimilarityEngine(self.embeddings, self.keywords, self.contents)

    def suggest_links(
        self,
        path: str,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        top_k: int = DEFAULT_MAX_SUGGESTIONS,
    ) -> SuggestionResponse:
        """Rank link candidates for an indexed note, minus dismissed pairs.

        Args:
            path: Note to suggest links for. Must have an embedding and content.
            threshold: Requested similarity threshold.
            top_k: Maximum suggestions.
        """
        vector = self.embeddings.get(path)
        text = self.contents.get(path)
        if vector is None or text is None:
            missing = "embedding" if vector is None else "content"
            return SuggestionResponse(warnings=[f"No {missing} stored for {path}; run an index first"])

        # Rank the full list so dismissed pairs do not shrink the result below top_k
        response = self.engine().rank(vector, text, path, threshold, len(self.embeddings))
        kept = [c for c in response.candidates if not self.cache.is_ignored(path, c.path)]
        response.candidates = kept[: max(top_k, 0)]
        return response

    def stats(self) -> dict[str, object]:
        return {
            "index_root": str(self.index_root),
            "encoding": self.encoding,
            "documents": len(self.embeddings),
            "keyword_entries": len(self.keywords),
            "embedding_dimension": self.embeddings.dimension,
            "cache": self.cache.stats(),
        }
