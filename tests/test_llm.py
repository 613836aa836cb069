"""Tests for the LLM collaborators with a mocked client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from linkwise.cache.freshness import FreshnessCache
from linkwise.config import LLMConfig
from linkwise.llm import build_rerank_prompt, extract_keywords_llm, rerank_candidates, suggest_insertion_point
from linkwise.llm_providers import LLMProviderError, detect_provider, resolve_model
from linkwise.models import Candidate


def _response(text: str) -> MagicMock:
    return MagicMock(choices=[MagicMock(message=MagicMock(content=text))])


def _client(*texts: str) -> AsyncMock:
    client = AsyncMock()
    client.chat.completions.create = AsyncMock(side_effect=[_response(t) for t in texts])
    return client


def _candidates() -> list[Candidate]:
    return [
        Candidate(path="A.md", title="A", similarity=0.9),
        Candidate(path="B.md", title="B", similarity=0.8),
        Candidate(path="C.md", title="C", similarity=0.7),
    ]


class TestRerankPrompt:
    def test_lists_candidates_in_order(self):
        candidates = [
            Candidate(path="x/Eddy.md", title="Eddy", similarity=0.876, context="Small swirls"),
            Candidate(path="Wake.md", title="Wake", similarity=0.5),
        ]

        prompt = build_rerank_prompt("Cur", "x" * 5000, candidates)

        assert '1. Title: "Eddy"\n   Embedding Similarity: 0.88\n   Context: Small swirls' in prompt
        assert '2. Title: "Wake"' in prompt
        assert "ranking 2 documents" in prompt
        assert "x" * 801 not in prompt


class TestRerankCandidates:
    @pytest.mark.asyncio
    async def test_successful_rerank(self):
        client = _client("Document 3: 9 - closest\nDocument 1: 4 - loose\nDocument 2: 2 - weak")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await rerank_candidates("Cur", "body", _candidates(), retry_delay=0)

        assert not result.llm_failed
        assert [c.path for c in result.suggestions] == ["C.md", "A.md", "B.md"]
        assert result.suggestions[0].external_reason == "closest"

    @pytest.mark.asyncio
    async def test_only_top_candidates_sent(self):
        client = _client("Document 2: 9 - better")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await rerank_candidates("Cur", "body", _candidates(), candidate_count=2, retry_delay=0)

        prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert '"A"' in prompt and '"B"' in prompt
        assert '"C"' not in prompt
        assert [c.path for c in result.suggestions] == ["B.md", "A.md", "C.md"]
        assert [c.is_externally_ranked for c in result.suggestions] == [True, False, False]

    @pytest.mark.asyncio
    async def test_unparseable_response_falls_back_after_retries(self):
        client = _client("I'd rather not.", "Still no.")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await rerank_candidates("Cur", "body", _candidates(), attempts=2, retry_delay=0)

        assert result.llm_failed
        assert result.failure_reason
        assert client.chat.completions.create.await_count == 2
        assert [c.path for c in result.suggestions] == ["A.md", "B.md", "C.md"]
        assert all(not c.is_externally_ranked for c in result.suggestions)

    @pytest.mark.asyncio
    async def test_second_attempt_can_succeed(self):
        client = _client("garbage", "Document 2: 8 - ok")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await rerank_candidates("Cur", "body", _candidates(), attempts=2, retry_delay=0)

        assert not result.llm_failed
        assert result.suggestions[0].path == "B.md"

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        client = AsyncMock()
        client.chat.completions.create = AsyncMock(side_effect=asyncio.TimeoutError())

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await rerank_candidates("Cur", "body", _candidates(), attempts=1)

        assert result.llm_failed
        assert result.failure_reason == "TimeoutError"

    @pytest.mark.asyncio
    async def test_provider_error_falls_back_immediately(self):
        with patch("linkwise.llm._get_client", side_effect=LLMProviderError("No LLM API key configured.")):
            result = await rerank_candidates("Cur", "body", _candidates())

        assert result.llm_failed
        assert "No LLM API key" in result.failure_reason
        assert [c.path for c in result.suggestions] == ["A.md", "B.md", "C.md"]

    @pytest.mark.asyncio
    async def test_no_candidates_skips_llm(self):
        with patch("linkwise.llm._get_client") as get_client:
            result = await rerank_candidates("Cur", "body", [])

        get_client.assert_not_called()
        assert result.suggestions == []
        assert not result.llm_failed


class TestExtractKeywords:
    @pytest.mark.asyncio
    async def test_array_response_is_cleaned(self):
        client = _client('["Vortex", "vortex", " Flow ", ""]')

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await extract_keywords_llm("content", "Title")

        assert result.success
        assert result.keywords == ["vortex", "flow"]

    @pytest.mark.asyncio
    async def test_wrapped_object_response(self):
        client = _client('{"keywords": ["Reynolds number", "laminar"]}')

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await extract_keywords_llm("content", "Title")

        assert result.keywords == ["reynolds number", "laminar"]

    @pytest.mark.asyncio
    async def test_max_keywords(self):
        client = _client('["a", "b", "c", "d"]')

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await extract_keywords_llm("content", "Title", max_keywords=2)

        assert result.keywords == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        client = _client("Sorry, I can't help with that.")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await extract_keywords_llm("content", "Title")

        assert not result.success
        assert result.error.startswith("Parse error")

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        with patch("linkwise.llm._get_client", side_effect=LLMProviderError("nope")):
            with pytest.raises(LLMProviderError):
                await extract_keywords_llm("content", "Title")


class TestSuggestInsertionPoint:
    DOC = "Flow past a cylinder produces vortex shedding at moderate speeds."

    @pytest.mark.asyncio
    async def test_result_is_cached(self):
        cache = FreshnessCache()
        client = _client('{"phrase": "vortex shedding", "reason": "defines it", "confidence": 0.8}')

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            first = await suggest_insertion_point(cache, "cur.md", self.DOC, "Vortex Shedding", "ctx")
            second = await suggest_insertion_point(cache, "cur.md", self.DOC, "Vortex Shedding", "ctx")

        assert first.phrase == "vortex shedding"
        assert first.confidence == pytest.approx(0.8)
        assert second == first
        assert client.chat.completions.create.await_count == 1
        assert client.chat.completions.create.call_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_phrase_not_in_document(self):
        cache = FreshnessCache()
        client = _client('{"phrase": "turbulent wake", "reason": "guess", "confidence": 0.9}')

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await suggest_insertion_point(cache, "cur.md", self.DOC, "Wake", "ctx")

        assert result.phrase is None
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_parse_failure_not_cached(self):
        cache = FreshnessCache()
        client = _client("no json here")

        with patch("linkwise.llm._get_client", return_value=(client, "openrouter")):
            result = await suggest_insertion_point(cache, "cur.md", self.DOC, "Wake", "ctx")

        assert result.phrase is None
        assert result.reason.startswith("Parse error")
        assert cache.get_insertion("cur.md", "Wake") is None


class TestProviders:
    def test_configured_provider_wins(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
        monkeypatch.setenv("OPENROUTER_API_KEY", "b")
        assert detect_provider(LLMConfig(provider="OpenRouter")) == "openrouter"

    def test_invalid_provider(self):
        with pytest.raises(LLMProviderError, match="Invalid llm.provider"):
            detect_provider(LLMConfig(provider="bedrock"))

    def test_single_key_detected(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
        assert detect_provider(LLMConfig()) == "anthropic"

    def test_both_keys_ambiguous(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
        monkeypatch.setenv("OPENROUTER_API_KEY", "b")
        with pytest.raises(LLMProviderError, match="Both"):
            detect_provider(LLMConfig())

    def test_no_keys(self):
        with pytest.raises(LLMProviderError, match="No LLM API key"):
            detect_provider(LLMConfig())

    @pytest.mark.parametrize(
        "model,provider,expected",
        [
            ("claude-3.5-haiku", "anthropic", "claude-3-5-haiku-20241022"),
            ("claude-3.5-haiku", "openrouter", "anthropic/claude-3-5-haiku"),
            ("anthropic/claude-opus", "anthropic", "claude-opus"),
            ("claude-opus", "openrouter", "anthropic/claude-opus"),
            ("openai/gpt-4o-mini", "openrouter", "openai/gpt-4o-mini"),
        ],
    )
    def test_resolve_model(self, model, provider, expected):
        assert resolve_model(model, provider) == expected
