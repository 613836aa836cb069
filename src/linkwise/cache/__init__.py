"""Persistent caches: freshness bookkeeping and artifact stores."""

from .envelope import SCHEMA_VERSION, decode_payload, encode_payload
from .freshness import ArtifactKind, FreshnessCache, IgnoreKey, InsertionKey
from .stores import EmbeddingStore, KeywordStore

__all__ = [
    "SCHEMA_VERSION",
    "ArtifactKind",
    "EmbeddingStore",
    "FreshnessCache",
    "IgnoreKey",
    "InsertionKey",
    "KeywordStore",
    "decode_payload",
    "encode_payload",
]
