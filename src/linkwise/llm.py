"""LLM collaborators: reranking, keyword extraction, insertion points.

Supports Anthropic (direct API) and OpenRouter (OpenAI-compatible gateway),
configured via .linkwise or detected from the environment.

Reranking never fails outright: provider errors, timeouts and unparseable
responses fall back to similarity order with ``llm_failed`` set.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .cache.freshness import FreshnessCache
from .config import (
    DEFAULT_LLM_MODEL,
    INSERTION_CONTENT_PREVIEW_CHARS,
    KEYWORD_CONTENT_PREVIEW_CHARS,
    LLM_CANDIDATE_COUNT,
    LLM_RERANK_ATTEMPTS,
    LLM_RETRY_DELAY_SECONDS,
    LLM_TIMEOUT_SECONDS,
    RERANK_CONTENT_PREVIEW_CHARS,
)
from .errors import RankingParseError
from .llm_providers import LLMProviderError, get_async_client, make_completion_async
from .models import Candidate, InsertionResult, RerankResult
from .ranking.fusion import candidates_payload, first_json_object, fuse_rankings, similarity_only

log = logging.getLogger(__name__)


def _get_client() -> tuple[Any, str]:
    """Get an async LLM client with provider info.

    Raises:
        LLMProviderError: If provider cannot be determined.
    """
    return get_async_client()


async def _complete(
    client: Any,
    provider: str,
    prompt: str,
    model: str,
    max_tokens: int,
    timeout: float | None,
    json_mode: bool = False,
) -> str:
    request = make_completion_async(
        client,
        provider,
        model,
        [{"role": "user", "content": prompt}],
        max_tokens=max_tokens,
        json_mode=json_mode,
    )
    if timeout is None:
        return await request
    return await asyncio.wait_for(request, timeout)


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


# ─────────────────────────────────────────────────────────────────────────────
# Reranking
# ─────────────────────────────────────────────────────────────────────────────


def build_rerank_prompt(current_title: str, current_content: str, candidates: list[Candidate]) -> str:
    """Prompt asking for one ``Document N: score - reason`` line per candidate."""
    preview = current_content[:RERANK_CONTENT_PREVIEW_CHARS]
    listing = "\n\n".join(
        f'{i}. Title: "{item["title"]}"\n   Embedding Similarity: {item["similarity"]:.2f}\n   Context: {item["context"]}'
        for i, item in enumerate(candidates_payload(candidates), start=1)
    )
    count = len(candidates)
    return f"""You are ranking {count} documents for relevance to the current document.

Current Document: "{current_title}"
Content: {preview}

Documents to rank:
{listing}

For EACH of the {count} documents, give a relevance score from 0.0 to 10.0
(10 is most relevant) and a brief reason of at most 15 words.

Output only the rankings, one per line, without markdown:
Document 1: [score] - [reason]
Document 2: [score] - [reason]
..."""


async def rerank_candidates(
    current_title: str,
    current_content: str,
    candidates: list[Candidate],
    model: str = DEFAULT_LLM_MODEL,
    candidate_count: int = LLM_CANDIDATE_COUNT,
    timeout: float | None = LLM_TIMEOUT_SECONDS,
    attempts: int = LLM_RERANK_ATTEMPTS,
    retry_delay: float = LLM_RETRY_DELAY_SECONDS,
) -> RerankResult:
    """Rerank similarity candidates with an LLM.

    Only the top ``candidate_count`` candidates by similarity are sent; the
    rest follow the reranked ones in similarity order.

    Args:
        current_title: Title of the note being linked from.
        current_content: Its content (truncated in the prompt).
        candidates: Similarity candidates.
        model: Model ID (canonical or provider-specific).
        candidate_count: How many candidates to send.
        timeout: Seconds per request, or None for no limit.
        attempts: Requests to try before giving up.
        retry_delay: Seconds to wait between attempts.

    Returns:
        RerankResult; on failure the suggestions are similarity-only and
        failure_reason says why.
    """
    if not candidates:
        return RerankResult()

    ordered = sorted(candidates, key=lambda c: -c.similarity)
    sent = ordered[: max(candidate_count, 0)]
    rest = ordered[len(sent) :]
    if not sent:
        return RerankResult(suggestions=similarity_only(candidates))

    try:
        client, provider = _get_client()
    except LLMProviderError as e:
        log.warning("LLM unavailable for reranking: %s", e)
        return RerankResult(suggestions=similarity_only(candidates), llm_failed=True, failure_reason=_describe(e))

    prompt = build_rerank_prompt(current_title, current_content, sent)
    failure: Exception | None = None

    for attempt in range(1, max(attempts, 1) + 1):
        try:
            response_text = await _complete(client, provider, prompt, model, 1000, timeout)
            fused = fuse_rankings(sent, response_text)
            return RerankResult(suggestions=fused + similarity_only(rest))
        except RankingParseError as e:
            log.warning("Unparseable rerank response (attempt %d/%d): %s", attempt, attempts, e)
            failure = e
        except Exception as e:
            log.warning("LLM API error during rerank (attempt %d/%d): %s", attempt, attempts, _describe(e))
            failure = e

        if attempt < attempts:
            await asyncio.sleep(retry_delay)

    return RerankResult(
        suggestions=similarity_only(candidates),
        llm_failed=True,
        failure_reason=_describe(failure) if failure else "LLM reranking failed",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Keyword extraction
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class KeywordExtractionResult:
    """Result of LLM keyword extraction for a note."""

    keywords: list[str]
    """Extracted keywords, lowercased and de-duplicated."""

    success: bool
    """Whether extraction succeeded."""

    error: str | None = None
    """Error message if extraction failed."""


def _keywords_from_response(text: str) -> list[Any]:
    """Find the keyword list in a response.

    Accepts a bare JSON array, an object with a ``keywords`` array, or an
    object whose first array-valued field holds them.

    Raises:
        ValueError: If no list can be found.
    """
    text = text.strip()
    start, end = text.find("["), text.rfind("]")
    candidates = [text]
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            break

    data = first_json_object(text)
    if isinstance(data, dict):
        if isinstance(data.get("keywords"), list):
            return data["keywords"]
        for value in data.values():
            if isinstance(value, list):
                return value
    raise ValueError("No keyword list in response")


async def extract_keywords_llm(
    content: str,
    title: str,
    model: str = DEFAULT_LLM_MODEL,
    max_keywords: int = 15,
    timeout: float | None = LLM_TIMEOUT_SECONDS,
) -> KeywordExtractionResult:
    """Extract key terms from a note using an LLM.

    Args:
        content: Note content.
        title: Note title.
        model: Model ID (canonical or provider-specific).
        max_keywords: Upper bound on returned keywords.
        timeout: Seconds for the request, or None for no limit.

    Returns:
        KeywordExtractionResult with keywords or error info.

    Raises:
        LLMProviderError: If provider not configured.
    """
    client, provider = _get_client()
    preview = content[:KEYWORD_CONTENT_PREVIEW_CHARS]

    prompt = f"""Extract the most important keywords, concepts, and topics from this document titled "{title}".

Document Content:
{preview}

Identify 5-15 key terms: technical terms, named entities, important themes,
and terms other related documents might reference.

Return ONLY a JSON array of strings:
["keyword1", "keyword2", ...]"""

    try:
        response_text = await _complete(client, provider, prompt, model, 300, timeout)
        raw_keywords = _keywords_from_response(response_text)
    except ValueError as e:
        log.warning("Failed to parse LLM keyword response: %s", e)
        return KeywordExtractionResult(keywords=[], success=False, error=f"Parse error: {e}")
    except Exception as e:
        log.warning("LLM API error during keyword extraction: %s", _describe(e))
        return KeywordExtractionResult(keywords=[], success=False, error=_describe(e))

    keywords: list[str] = []
    for kw in raw_keywords:
        cleaned = str(kw).strip().lower() if kw else ""
        if cleaned and cleaned not in keywords:
            keywords.append(cleaned)
    keywords = keywords[:max_keywords]

    if not keywords:
        return KeywordExtractionResult(keywords=[], success=False, error="LLM returned no keywords")
    return KeywordExtractionResult(keywords=keywords, success=True)


# ─────────────────────────────────────────────────────────────────────────────
# Insertion points
# ─────────────────────────────────────────────────────────────────────────────


async def suggest_insertion_point(
    cache: FreshnessCache,
    path: str,
    document_content: str,
    link_title: str,
    link_context: str,
    model: str = DEFAULT_LLM_MODEL,
    timeout: float | None = LLM_TIMEOUT_SECONDS,
) -> InsertionResult:
    """Ask where a link to link_title fits best in a document.

    Answers are cached per (path, link_title) in the freshness cache and
    dropped when the document's embedding is recomputed.

    Args:
        cache: Freshness cache holding insertion answers.
        path: Document path.
        document_content: Document text.
        link_title: Title of the note being linked.
        link_context: Short description of the linked note.
        model: Model ID (canonical or provider-specific).
        timeout: Seconds for the request, or None for no limit.

    Returns:
        InsertionResult. ``phrase`` is None when no natural spot exists or
        the model named text that is not in the document.

    Raises:
        LLMProviderError: If provider not configured.
    """
    cached = cache.get_insertion(path, link_title)
    if cached is not None:
        try:
            return InsertionResult.model_validate_json(cached)
        except ValidationError as e:
            log.debug("Ignoring unreadable cached insertion for %s: %s", path, e)

    client, provider = _get_client()
    preview = document_content[:INSERTION_CONTENT_PREVIEW_CHARS]

    prompt = f"""Find the best place to insert a link to "{link_title}" in this document.

Document Content:
{preview}

Link Context (what the linked document is about):
{link_context}

Pick the exact phrase from the document that should become the link: where a
reader would naturally want more information on what the linked document covers.

Return ONLY JSON:
{{"phrase": "exact text from document", "reason": "why here", "confidence": 0.85}}

If no good insertion point exists, return:
{{"phrase": null, "reason": "No natural insertion point found", "confidence": 0.0}}"""

    try:
        response_text = await _complete(client, provider, prompt, model, 300, timeout, json_mode=True)
        result = InsertionResult.model_validate(first_json_object(response_text))
    except (ValueError, ValidationError) as e:
        log.warning("Failed to parse LLM insertion response: %s", e)
        return InsertionResult(reason=f"Parse error: {e}")
    except Exception as e:
        log.warning("LLM API error during insertion suggestion: %s", _describe(e))
        return InsertionResult(reason=_describe(e))

    if result.phrase is not None and result.phrase not in document_content:
        log.debug("Model phrase not found in %s: %r", path, result.phrase)
        result = InsertionResult(phrase=None, confidence=0.0, reason=f"Phrase not found in document: {result.reason}")

    cache.cache_insertion(path, link_title, result.model_dump_json())
    return result
