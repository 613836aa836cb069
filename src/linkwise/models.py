"""Pydantic models for records exchanged between linkwise components."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator


class FileDescriptor(BaseModel):
    """A vault file as reported by the lister."""

    path: str  # Vault-relative path with .md extension
    mtime: float  # Modification time in epoch milliseconds


class WorkItem(BaseModel):
    """A file that needs at least one artifact recomputed."""

    path: str
    mtime: float
    needs_embedding: bool = False
    needs_keywords: bool = False
    needs_suggestions: bool = False


class ScanPlan(BaseModel):
    """Ordered work list produced by the planner.

    Fields:
        to_process: Work items, current file first, then most recently modified.
        to_skip: Paths with nothing to do, in input order.
        current_file_index: Position of the current file in to_process, if present.
    """

    to_process: list[WorkItem] = Field(default_factory=list)
    to_skip: list[str] = Field(default_factory=list)
    current_file_index: int | None = None


class Candidate(BaseModel):
    """A suggested link target with its boosted similarity score."""

    path: str
    title: str
    similarity: float  # Cosine similarity plus heuristic boosts
    context: str = ""  # Short preview of the target's opening lines


class RankedCandidate(Candidate):
    """A candidate after fusion with an external ranking."""

    external_score: float | None = None
    external_reason: str | None = None

    @property
    def is_externally_ranked(self) -> bool:
        return self.external_score is not None and self.external_reason is not None


class RankingItem(BaseModel):
    """One entry of an external model's ranking (1-indexed)."""

    index: int
    score: float
    reason: str = ""


class IgnoredSuggestion(BaseModel):
    """A suggestion pair the user dismissed."""

    source: str
    target: str
    timestamp: int  # Epoch milliseconds


class KeywordEntry(BaseModel):
    """Keywords extracted for one note."""

    keywords: list[str] = Field(default_factory=list)
    mtime: float = 0


class CacheHeader(BaseModel):
    """Header written in front of every persisted blob."""

    version: int = Field(ge=0, lt=2**32)
    encoding: Literal["binary", "text"] = Field(validation_alias=AliasChoices("encoding", "format"))
    created_at: int  # Epoch milliseconds

    @field_validator("encoding", mode="before")
    @classmethod
    def _normalize_encoding(cls, value: Any) -> Any:
        # Older headers named the codec directly
        return {"msgpack": "binary", "json": "text"}.get(value, value)


class VersionedPayload(BaseModel):
    """Envelope wrapping any persisted structure."""

    header: CacheHeader
    data: Any


class SuggestionDiagnostics(BaseModel):
    """Counters explaining how the candidate list was produced."""

    scored: int = 0  # Documents compared against the query
    above_threshold: int = 0  # Kept by score alone
    forced: int = 0  # Kept because the title appears in the text
    dropped_existing_link: int = 0  # Already linked from the text
    dropped_forced_existing_link: int = 0  # Forced, but already linked
    missing_content: int = 0  # Qualified but had no stored content


class SuggestionResponse(BaseModel):
    """Link suggestions for one note."""

    candidates: list[Candidate] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    diagnostics: SuggestionDiagnostics = Field(default_factory=SuggestionDiagnostics)


class RerankResult(BaseModel):
    """Outcome of an LLM rerank, including the similarity-only fallback."""

    suggestions: list[RankedCandidate] = Field(default_factory=list)
    llm_failed: bool = False
    failure_reason: str | None = None


class InsertionResult(BaseModel):
    """Where in a document a new link should be inserted."""

    phrase: str | None = None  # Existing phrase to turn into the link, or None to append
    confidence: float = 0.0
    reason: str = ""
