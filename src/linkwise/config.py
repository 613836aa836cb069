"""Configuration management for linkwise.

All tunable constants live here with their rationale, along with vault and
index root discovery and the optional ``.linkwise`` YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

CONFIG_FILENAME = ".linkwise"
INDEX_DIRNAME = ".linkwise-cache"


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""

    pass


# =============================================================================
# Root Discovery
# =============================================================================


def _discover_project_config(start_dir: Path | None = None, max_depth: int = 10) -> tuple[Path, dict] | None:
    """Walk up from start_dir looking for a .linkwise file.

    Args:
        start_dir: Directory to start from (defaults to cwd)
        max_depth: Maximum directories to traverse up

    Returns:
        Tuple of (config_dir, parsed_config) if found, None otherwise.
    """
    import yaml

    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(max_depth):
        config_file = current / CONFIG_FILENAME
        if config_file.is_file():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except (OSError, yaml.YAMLError):
                data = None
            if isinstance(data, dict):
                return current, data

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def get_vault_root() -> Path:
    """Get the vault root directory.

    Discovery order:
    1. LINKWISE_VAULT_ROOT environment variable
    2. Walk up from cwd looking for .linkwise (``vault_path`` is relative to it,
       defaulting to the directory holding the file)

    Raises:
        ConfigurationError: If no vault can be found.
    """
    root = os.environ.get("LINKWISE_VAULT_ROOT")
    if root:
        return Path(root)

    found = _discover_project_config()
    if found:
        config_dir, data = found
        vault = (config_dir / str(data.get("vault_path", "."))).resolve()
        if vault.is_dir():
            return vault

    raise ConfigurationError(
        "No vault found. Options:\n"
        "  1. Set LINKWISE_VAULT_ROOT to your notes directory\n"
        "  2. Create a .linkwise file with 'vault_path: <dir>' in a parent directory"
    )


def get_index_root() -> Path:
    """Get the directory holding the persisted caches.

    Discovery order:
    1. LINKWISE_INDEX_ROOT environment variable
    2. {vault_root}/.linkwise-cache/

    Raises:
        ConfigurationError: If no index root can be determined.
    """
    root = os.environ.get("LINKWISE_INDEX_ROOT")
    if root:
        return Path(root)

    try:
        return get_vault_root() / INDEX_DIRNAME
    except ConfigurationError:
        raise ConfigurationError(
            "LINKWISE_INDEX_ROOT is not set and no vault was found. "
            "Set it to the directory where caches should be stored."
        )


def load_project_config() -> dict[str, Any]:
    """Return the parsed .linkwise file, or an empty dict."""
    found = _discover_project_config()
    return found[1] if found else {}


# =============================================================================
# Embedding Model
# =============================================================================

# Sentence-transformers model used by the optional embedder.
# Produces 384-dimensional embeddings.
EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


# =============================================================================
# Link Suggestions
# =============================================================================

# Cosine similarity threshold a caller asks for when nothing else is configured.
DEFAULT_SIMILARITY_THRESHOLD = 0.5

# Number of suggestions returned per note
DEFAULT_MAX_SUGGESTIONS = 10

# The threshold actually applied is loosened by this factor so heuristic
# boosts can lift near-misses over the line.
EFFECTIVE_THRESHOLD_FACTOR = 0.85

# Candidate title is a single word found as a whole word in the note text.
# Also forces inclusion regardless of threshold.
SINGLE_WORD_TITLE_BOOST = 0.50

# Candidate title is a multi-word phrase found in the note text.
# Also forces inclusion regardless of threshold.
PHRASE_TITLE_BOOST = 0.30

# Per candidate keyword that appears in the note text
KEYWORD_MATCH_BOOST = 0.05

# Total keyword boost never exceeds this
KEYWORD_BOOST_CAP = 0.20

# One title contains the other (case-insensitive), applied at most once
TITLE_CONTAINMENT_BOOST = 0.10

# Context snippet: first N lines of the candidate, capped in characters
CONTEXT_MAX_LINES = 5
CONTEXT_MAX_CHARS = 100


# =============================================================================
# LLM Reranking
# =============================================================================

# Default model for reranking, keyword extraction and insertion points
DEFAULT_LLM_MODEL = "claude-3.5-haiku"

# Only the top N similarity candidates are sent to the model; the rest are
# appended afterwards in similarity order.
LLM_CANDIDATE_COUNT = 10

# Per-call timeout for LLM requests
LLM_TIMEOUT_SECONDS = 15.0

# Attempts per rerank request, with a fixed delay between them
LLM_RERANK_ATTEMPTS = 2
LLM_RETRY_DELAY_SECONDS = 2.0

# Characters of note content included in prompts
RERANK_CONTENT_PREVIEW_CHARS = 800
INSERTION_CONTENT_PREVIEW_CHARS = 2000
KEYWORD_CONTENT_PREVIEW_CHARS = 3000


# =============================================================================
# Cache Files
# =============================================================================

FRESHNESS_CACHE_FILENAME = "cache_index.bin"
EMBEDDINGS_FILENAME = "embeddings.bin"
KEYWORDS_FILENAME = "keywords.bin"

# "binary" (MessagePack) or "text" (JSON)
DEFAULT_CACHE_ENCODING = "binary"


# =============================================================================
# Config Sections
# =============================================================================


@dataclass
class SuggestionConfig:
    """Settings from the ``suggestions`` section of .linkwise."""

    threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_results: int = DEFAULT_MAX_SUGGESTIONS


@dataclass
class LLMConfig:
    """Settings from the ``llm`` section of .linkwise."""

    provider: str | None = None
    model: str = DEFAULT_LLM_MODEL
    candidate_count: int = LLM_CANDIDATE_COUNT
    timeout: float = LLM_TIMEOUT_SECONDS


@dataclass
class CacheConfig:
    """Settings from the ``cache`` section of .linkwise."""

    encoding: str = DEFAULT_CACHE_ENCODING


def _section(name: str) -> dict[str, Any]:
    section = load_project_config().get(name)
    return section if isinstance(section, dict) else {}


def get_suggestion_config() -> SuggestionConfig:
    """Load suggestion settings, falling back to defaults."""
    data = _section("suggestions")
    return SuggestionConfig(
        threshold=float(data.get("threshold", DEFAULT_SIMILARITY_THRESHOLD)),
        max_results=int(data.get("max_results", DEFAULT_MAX_SUGGESTIONS)),
    )


def get_llm_config() -> LLMConfig:
    """Load LLM settings, falling back to defaults."""
    data = _section("llm")
    provider = data.get("provider")
    return LLMConfig(
        provider=str(provider) if provider else None,
        model=str(data.get("model", DEFAULT_LLM_MODEL)),
        candidate_count=int(data.get("candidate_count", LLM_CANDIDATE_COUNT)),
        timeout=float(data.get("timeout", LLM_TIMEOUT_SECONDS)),
    )


def get_cache_config() -> CacheConfig:
    """Load cache settings. Unknown encodings fall back to the default."""
    encoding = str(_section("cache").get("encoding", DEFAULT_CACHE_ENCODING))
    if encoding not in ("binary", "text"):
        encoding = DEFAULT_CACHE_ENCODING
    return CacheConfig(encoding=encoding)
