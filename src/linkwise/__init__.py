"""linkwise: incremental link suggestions for markdown vaults."""

from .cache import ArtifactKind, EmbeddingStore, FreshnessCache, KeywordStore
from .errors import CacheDecodeError, ErrorCode, LinkwiseError, RankingParseError
from .planner import plan_scan
from .ranking import SimilarityEngine, fuse_rankings, parse_rankings
from .session import VaultSession

__version__ = "0.3.0"

__all__ = [
    "ArtifactKind",
    "CacheDecodeError",
    "EmbeddingStore",
    "ErrorCode",
    "FreshnessCache",
    "KeywordStore",
    "LinkwiseError",
    "RankingParseError",
    "SimilarityEngine",
    "VaultSession",
    "__version__",
    "fuse_rankings",
    "parse_rankings",
    "plan_scan",
]
