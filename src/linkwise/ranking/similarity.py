"""Similarity ranking of link candidates.

Scores every embedded note against a query vector, then adjusts the raw
cosine similarity with text heuristics:

- a candidate whose title appears in the note text is always included
  (whole-word match for single-word titles, phrase match otherwise)
- candidate keywords found in the text add a capped boost
- titles that contain one another add a small boost

Candidates already linked from the text are dropped, even forced ones.
"""

from __future__ import annotations

import logging
import re

import numpy as np

from ..cache.stores import EmbeddingStore, KeywordStore
from ..config import (
    CONTEXT_MAX_CHARS,
    CONTEXT_MAX_LINES,
    EFFECTIVE_THRESHOLD_FACTOR,
    KEYWORD_BOOST_CAP,
    KEYWORD_MATCH_BOOST,
    PHRASE_TITLE_BOOST,
    SINGLE_WORD_TITLE_BOOST,
    TITLE_CONTAINMENT_BOOST,
)
from ..models import Candidate, SuggestionDiagnostics, SuggestionResponse
from ..parser.links import contains_link_to

log = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for empty vectors, mismatched lengths, or a zero norm.
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def title_from_path(path: str) -> str:
    """Note title: last path segment without the .md extension."""
    name = path.rsplit("/", 1)[-1]
    return name[:-3] if name.endswith(".md") else name


def extract_context(content: str, max_chars: int = CONTEXT_MAX_CHARS) -> str:
    """First lines of a note joined with spaces, truncated with an ellipsis."""
    context = " ".join(content.splitlines()[:CONTEXT_MAX_LINES])
    if len(context) > max_chars:
        return context[:max_chars] + "..."
    return context


def _title_match_boost(title_lower: str, text_lower: str) -> float:
    """Boost for a title mentioned in the text; 0.0 when not mentioned."""
    if not title_lower:
        return 0.0
    if len(title_lower.split()) == 1:
        if re.search(rf"\b{re.escape(title_lower)}\b", text_lower):
            return SINGLE_WORD_TITLE_BOOST
        return 0.0
    if title_lower in text_lower:
        return PHRASE_TITLE_BOOST
    return 0.0


def _keyword_boost(keywords: list[str], text_lower: str) -> float:
    matches = sum(1 for kw in keywords if kw and kw.lower() in text_lower)
    return min(matches * KEYWORD_MATCH_BOOST, KEYWORD_BOOST_CAP)


def _containment_boost(title_lower: str, current_title_lower: str) -> float:
    if not title_lower or not current_title_lower or title_lower == current_title_lower:
        return 0.0
    if title_lower in current_title_lower or current_title_lower in title_lower:
        return TITLE_CONTAINMENT_BOOST
    return 0.0


class SimilarityEngine:
    """Ranks link candidates for a note from stored embeddings and content.

    Args:
        embeddings: Vectors for every indexed note.
        keywords: Extracted keywords per note (may be empty).
        contents: Note text per path; notes without content cannot be suggested.
    """

    def __init__(
        self,
        embeddings: EmbeddingStore,
        keywords: KeywordStore,
        contents: dict[str, str],
    ) -> None:
        self.embeddings = embeddings
        self.keywords = keywords
        self.contents = contents

    def rank(
        self,
        query_vector: list[float],
        text: str,
        current_path: str,
        threshold: float,
        top_k: int,
    ) -> SuggestionResponse:
        """Rank candidate link targets for one note.

        Args:
            query_vector: Embedding of the note being edited.
            text: Its full text, used for title/keyword matching and dedup.
            current_path: Its path, excluded from the candidates. May be empty.
            threshold: Requested similarity threshold; the applied cutoff is
                ``threshold * EFFECTIVE_THRESHOLD_FACTOR`` (strictly greater).
            top_k: Maximum number of candidates returned.

        Returns:
            SuggestionResponse with candidates sorted by descending score.
        """
        text_lower = text.lower()
        current_title_lower = title_from_path(current_path).lower() if current_path else ""
        effective_threshold = threshold * EFFECTIVE_THRESHOLD_FACTOR

        diagnostics = SuggestionDiagnostics()
        warnings: list[str] = []
        candidates: list[Candidate] = []
        saw_current = False

        for path, vector in self.embeddings.items():
            if path == current_path:
                saw_current = True
                continue
            diagnostics.scored += 1

            title = title_from_path(path)
            title_lower = title.lower()

            title_boost = _title_match_boost(title_lower, text_lower)
            forced = title_boost > 0.0
            score = cosine_similarity(query_vector, vector) + title_boost
            score += _keyword_boost(self.keywords.get(path), text_lower)
            score += _containment_boost(title_lower, current_title_lower)

            if not forced and score <= effective_threshold:
                continue

            content = self.contents.get(path)
            if content is None:
                diagnostics.missing_content += 1
                warnings.append(f"No stored content for {path}; excluded from suggestions")
                log.warning("No stored content for %s; excluded from suggestions", path)
                continue

            if contains_link_to(text, title, path.removesuffix(".md")):
                if forced:
                    diagnostics.dropped_forced_existing_link += 1
                    log.debug("Dropping forced candidate %s: already linked", path)
                else:
                    diagnostics.dropped_existing_link += 1
                    log.debug("Dropping candidate %s: already linked", path)
                continue

            if forced:
                diagnostics.forced += 1
                log.debug("Forcing %s: title appears in text", path)
            else:
                diagnostics.above_threshold += 1

            candidates.append(
                Candidate(path=path, title=title, similarity=score, context=extract_context(content))
            )

        if current_path and not saw_current:
            warnings.append(f"Current file {current_path} has no embedding; self-links may not be filtered")
            log.warning("Current file %s not found among embeddings", current_path)

        candidates.sort(key=lambda c: (-c.similarity, c.path))
        return SuggestionResponse(
            candidates=candidates[: max(top_k, 0)],
            warnings=warnings,
            diagnostics=diagnostics,
        )

    def find_similar_notes(self, path: str, top_k: int) -> list[tuple[str, float]]:
        """Notes closest to an indexed note by raw cosine similarity."""
        vector = self.embeddings.get(path)
        if vector is None:
            return []
        scored = [
            (other, cosine_similarity(vector, other_vector))
            for other, other_vector in self.embeddings.items()
            if other != path
        ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[: max(top_k, 0)]

    def find_similar(self, query_vector: list[float], threshold: float) -> list[tuple[str, float]]:
        """All notes whose raw similarity to query_vector exceeds threshold."""
        scored = [
            (path, similarity)
            for path, vector in self.embeddings.items()
            if (similarity := cosine_similarity(query_vector, vector)) > threshold
        ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored
