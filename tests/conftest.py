"""Shared test fixtures for the linkwise test suite.

Design:
- tmp_vault: isolated vault + index root in a temp directory, wired via env
- create_note: writes a note with a controlled mtime
- runner: CliRunner for the lw CLI
"""

import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from linkwise.cache.stores import EmbeddingStore, KeywordStore
from linkwise.ranking.similarity import SimilarityEngine


# ─────────────────────────────────────────────────────────────────────────────
# Environment
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep tests independent of the developer's environment."""
    for var in (
        "LINKWISE_VAULT_ROOT",
        "LINKWISE_INDEX_ROOT",
        "LINKWISE_QUIET",
        "ANTHROPIC_API_KEY",
        "OPENROUTER_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tmp_vault(tmp_path, monkeypatch) -> Path:
    """Empty vault with its index root under tmp_path."""
    vault = tmp_path / "vault"
    vault.mkdir()
    monkeypatch.setenv("LINKWISE_VAULT_ROOT", str(vault))
    monkeypatch.setenv("LINKWISE_INDEX_ROOT", str(tmp_path / "index"))
    monkeypatch.chdir(tmp_path)
    return vault


@pytest.fixture
def index_root(tmp_vault) -> Path:
    return Path(os.environ["LINKWISE_INDEX_ROOT"])


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def create_note(vault: Path, path: str, content: str, mtime_ms: int = 1_700_000_000_000) -> Path:
    """Write a note and pin its mtime (epoch milliseconds)."""
    file_path = vault / path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding="utf-8")
    seconds = mtime_ms / 1000
    os.utime(file_path, (seconds, seconds))
    return file_path


def make_engine(
    vectors: dict[str, list[float]],
    contents: dict[str, str] | None = None,
    keywords: dict[str, list[str]] | None = None,
) -> SimilarityEngine:
    """SimilarityEngine over in-memory data; content defaults to a line naming the path."""
    keyword_store = KeywordStore()
    for path, kws in (keywords or {}).items():
        keyword_store.set(path, kws)
    if contents is None:
        contents = {path: f"Notes about {path}" for path in vectors}
    return SimilarityEngine(EmbeddingStore(vectors), keyword_store, contents)
