"""Scan planning: decide which notes need which artifacts recomputed."""

from __future__ import annotations

from collections.abc import Iterable

from .cache.freshness import ArtifactKind, FreshnessCache
from .cache.stores import EmbeddingStore
from .models import FileDescriptor, ScanPlan, WorkItem


def _work_item(
    cache: FreshnessCache,
    file: FileDescriptor,
    check_suggestions: bool,
    embeddings: EmbeddingStore | None,
) -> WorkItem:
    missing_vector = embeddings is not None and file.path not in embeddings
    needs_embedding = missing_vector or not cache.is_fresh(ArtifactKind.EMBEDDING, file.path, file.mtime)
    # New embeddings invalidate everything derived from them
    needs_keywords = needs_embedding or not cache.is_fresh(ArtifactKind.KEYWORD, file.path, file.mtime)
    needs_suggestions = check_suggestions and (
        needs_embedding or not cache.is_fresh(ArtifactKind.SUGGESTION, file.path, file.mtime)
    )
    return WorkItem(
        path=file.path,
        mtime=file.mtime,
        needs_embedding=needs_embedding,
        needs_keywords=needs_keywords,
        needs_suggestions=needs_suggestions,
    )


def plan_scan(
    cache: FreshnessCache,
    files: Iterable[FileDescriptor],
    current_file: str | None = None,
    check_suggestions: bool = True,
    embeddings: EmbeddingStore | None = None,
) -> ScanPlan:
    """Build the work list for a vault scan.

    Args:
        cache: Freshness cache to consult. Not modified.
        files: Every note in the vault with its current mtime.
        current_file: Path of the note the user is looking at; it is
            processed first.
        check_suggestions: Whether suggestion freshness counts as work.
        embeddings: When given, a note with no stored vector always needs
            an embedding, whatever the cache says.

    Returns:
        ScanPlan with work items ordered current-file-first, then by
        descending mtime, and the skipped paths in input order.
    """
    to_process: list[WorkItem] = []
    to_skip: list[str] = []

    for file in files:
        item = _work_item(cache, file, check_suggestions, embeddings)
        if item.needs_embedding or item.needs_keywords or item.needs_suggestions:
            to_process.append(item)
        else:
            to_skip.append(file.path)

    to_process.sort(key=lambda item: (item.path != current_file, -item.mtime))

    current_index = None
    if current_file is not None and to_process and to_process[0].path == current_file:
        current_index = 0

    return ScanPlan(to_process=to_process, to_skip=to_skip, current_file_index=current_index)


def count_files_needing_embedding(
    cache: FreshnessCache,
    files: Iterable[FileDescriptor],
    embeddings: EmbeddingStore | None = None,
) -> int:
    """Count notes whose embedding is stale or missing."""
    count = 0
    for file in files:
        if embeddings is not None and file.path not in embeddings:
            count += 1
        elif not cache.is_fresh(ArtifactKind.EMBEDDING, file.path, file.mtime):
            count += 1
    return count
