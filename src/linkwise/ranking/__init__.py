"""Candidate ranking: similarity scoring and external rank fusion."""

from .fusion import apply_rankings, candidates_payload, fuse_rankings, parse_rankings, similarity_only
from .similarity import SimilarityEngine, cosine_similarity, extract_context, title_from_path

__all__ = [
    "SimilarityEngine",
    "apply_rankings",
    "candidates_payload",
    "cosine_similarity",
    "extract_context",
    "fuse_rankings",
    "parse_rankings",
    "similarity_only",
    "title_from_path",
]
