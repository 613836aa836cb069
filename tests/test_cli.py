"""Tests for the lw CLI."""

import json
from unittest.mock import AsyncMock, patch

from conftest import create_note
from linkwise.cache.freshness import ArtifactKind
from linkwise.cli import cli
from linkwise.llm import KeywordExtractionResult
from linkwise.session import VaultSession


def _seed_index(vault, index_root):
    """Three notes with stored embeddings; cur.md is the one we suggest for."""
    create_note(vault, "cur.md", "Thinking about flows.")
    create_note(vault, "Alpha.md", "Alpha body")
    create_note(vault, "sub/Beta.md", "Beta body")
    with VaultSession(index_root) as session:
        session.record_embedding("cur.md", 1_700_000_000_000, [1.0, 0.0])
        session.record_embedding("Alpha.md", 1_700_000_000_000, [1.0, 0.0])
        session.record_embedding("sub/Beta.md", 1_700_000_000_000, [0.9, 0.1])


class TestStatus:
    def test_status_json(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)
        create_note(tmp_vault, "new.md", "Fresh note")

        result = runner.invoke(cli, ["status", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["notes"] == 4
        assert data["documents"] == 3
        assert data["needing_embedding"] == 1
        assert data["cache"]["ignored"] == 0

    def test_status_text(self, runner, tmp_vault):
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Notes:           0" in result.output


class TestPlan:
    def test_plan_json_current_first(self, runner, tmp_vault):
        create_note(tmp_vault, "old.md", "old", mtime_ms=1_000_000)
        create_note(tmp_vault, "newer.md", "newer", mtime_ms=2_000_000)

        result = runner.invoke(cli, ["plan", "--current", "old", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [item["path"] for item in data["to_process"]] == ["old.md", "newer.md"]
        assert data["current_file_index"] == 0
        assert data["to_skip"] == []

    def test_plan_nothing_to_do(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)
        with VaultSession.open(index_root) as session:
            for path in ("cur.md", "Alpha.md", "sub/Beta.md"):
                session.record_keywords(path, 1_700_000_000_000, [])

        result = runner.invoke(cli, ["plan", "--no-suggestions"])

        assert result.exit_code == 0
        assert "Nothing to do (3 notes up to date)" in result.output


class TestIndex:
    def test_index_embeds_and_records(self, runner, tmp_vault, index_root):
        create_note(tmp_vault, "a.md", "---\ntitle: A\n---\nAlpha body")
        create_note(tmp_vault, "b.md", "Beta body")

        with patch("linkwise.embedder.Embedder.embed", side_effect=lambda texts: [[1.0, 0.0] for _ in texts]) as embed:
            result = runner.invoke(cli, ["index"])

        assert result.exit_code == 0, result.output
        assert "Embedded 2 notes, recorded keywords for 0" in result.output
        assert sorted(embed.call_args.args[0]) == ["Alpha body", "Beta body"]

        session = VaultSession.open(index_root)
        assert sorted(session.embeddings.paths()) == ["a.md", "b.md"]
        assert "a.md" not in session.keywords
        assert not session.cache.is_fresh(ArtifactKind.KEYWORD, "a.md", 1_700_000_000_000)

    def test_second_index_is_a_no_op(self, runner, tmp_vault, index_root):
        create_note(tmp_vault, "a.md", "Alpha body")
        with patch("linkwise.embedder.Embedder.embed", side_effect=lambda texts: [[1.0] for _ in texts]):
            runner.invoke(cli, ["index"])
            result = runner.invoke(cli, ["index"])

        assert "Nothing to do (1 notes up to date)" in result.output

    def test_keywords_extracted_after_plain_index(self, runner, tmp_vault, index_root):
        create_note(tmp_vault, "a.md", "Vortex shedding behind a cylinder")
        extract = AsyncMock(return_value=KeywordExtractionResult(keywords=["vortex", "cylinder"], success=True))

        with (
            patch("linkwise.embedder.Embedder.embed", side_effect=lambda texts: [[1.0] for _ in texts]),
            patch("linkwise.llm.extract_keywords_llm", extract),
        ):
            first = runner.invoke(cli, ["index"])
            second = runner.invoke(cli, ["index", "--keywords"])

        assert "Embedded 1 notes, recorded keywords for 0" in first.output
        assert "Embedded 0 notes, recorded keywords for 1" in second.output
        assert extract.await_count == 1
        assert extract.call_args.args[0] == "Vortex shedding behind a cylinder"

        session = VaultSession.open(index_root)
        assert session.keywords.get("a.md") == ["vortex", "cylinder"]
        assert session.cache.is_fresh(ArtifactKind.KEYWORD, "a.md", 1_700_000_000_000)

    def test_failed_extraction_stays_pending(self, runner, tmp_vault, index_root):
        create_note(tmp_vault, "a.md", "text")
        extract = AsyncMock(return_value=KeywordExtractionResult(keywords=[], success=False, error="Parse error"))

        with (
            patch("linkwise.embedder.Embedder.embed", side_effect=lambda texts: [[1.0] for _ in texts]),
            patch("linkwise.llm.extract_keywords_llm", extract),
        ):
            result = runner.invoke(cli, ["index", "--keywords"])

        assert "recorded keywords for 0" in result.output
        assert not VaultSession.open(index_root).cache.is_fresh(ArtifactKind.KEYWORD, "a.md", 1_700_000_000_000)


class TestSuggest:
    def test_suggest_json(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)

        result = runner.invoke(cli, ["suggest", "cur.md", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["path"] == "cur.md"
        assert [s["path"] for s in data["suggestions"]] == ["Alpha.md", "sub/Beta.md"]
        assert data["llm_failed"] is False
        assert data["diagnostics"]["scored"] == 2

        session = VaultSession.open(index_root)
        assert session.cache.is_fresh(ArtifactKind.SUGGESTION, "cur.md", 1_700_000_000_000)

    def test_suggest_respects_ignored_pairs(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)
        runner.invoke(cli, ["ignore", "Alpha", "cur"])

        result = runner.invoke(cli, ["suggest", "cur", "--json", "--limit", "1"])

        data = json.loads(result.output)
        assert [s["path"] for s in data["suggestions"]] == ["sub/Beta.md"]

    def test_suggest_text_table(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)

        result = runner.invoke(cli, ["suggest", "cur.md"])

        assert result.exit_code == 0
        assert "Alpha" in result.output
        assert "TITLE" in result.output

    def test_unknown_note(self, runner, tmp_vault):
        result = runner.invoke(cli, ["suggest", "missing.md"])

        assert result.exit_code == 1
        assert "Document not found: missing.md" in result.output

    def test_unindexed_note_hints_index(self, runner, tmp_vault):
        create_note(tmp_vault, "lonely.md", "text")

        result = runner.invoke(cli, ["suggest", "lonely.md"])

        assert result.exit_code == 1
        assert "lw index" in result.output


class TestFuse:
    def test_fuse_json(self, runner, tmp_path):
        candidates = [
            {"path": "A.md", "title": "A", "similarity": 0.9, "context": ""},
            {"path": "B.md", "title": "B", "similarity": 0.8, "context": ""},
        ]
        (tmp_path / "candidates.json").write_text(json.dumps(candidates))
        (tmp_path / "response.txt").write_text("Document 2: 9 - better\nDocument 1: 1 - worse")

        result = runner.invoke(
            cli, ["fuse", str(tmp_path / "candidates.json"), str(tmp_path / "response.txt"), "--json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [c["path"] for c in data] == ["B.md", "A.md"]
        assert data[0]["external_score"] == 9.0

    def test_fuse_unparseable_response(self, runner, tmp_path):
        (tmp_path / "candidates.json").write_text("[]")
        (tmp_path / "response.txt").write_text("no rankings")

        result = runner.invoke(
            cli, ["--json-errors", "fuse", str(tmp_path / "candidates.json"), str(tmp_path / "response.txt")]
        )

        assert result.exit_code == 1
        assert "RANKING_PARSE_ERROR" in result.output


class TestIgnoredPairs:
    def test_ignore_list_unignore(self, runner, tmp_vault):
        assert runner.invoke(cli, ["ignore", "b", "a.md"]).exit_code == 0

        listed = json.loads(runner.invoke(cli, ["ignored", "--json"]).output)
        assert [(p["source"], p["target"]) for p in listed] == [("a.md", "b.md")]

        result = runner.invoke(cli, ["unignore", "a", "b"])
        assert "No longer ignoring" in result.output
        assert json.loads(runner.invoke(cli, ["ignored", "--json"]).output) == []

    def test_unignore_unknown_pair(self, runner, tmp_vault):
        result = runner.invoke(cli, ["unignore", "a", "b"])
        assert "was not ignored" in result.output


class TestMaintenance:
    def test_invalidate(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)

        result = runner.invoke(cli, ["invalidate", "Alpha.md"])

        assert "Removed 1 cache entries for Alpha.md" in result.output
        assert "Alpha.md" not in VaultSession.open(index_root).embeddings

    def test_clear_only_ignored(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)
        runner.invoke(cli, ["ignore", "a", "b"])

        result = runner.invoke(cli, ["clear", "--ignored"])

        assert "Cleared 1 ignored pairs" in result.output
        assert len(VaultSession.open(index_root).embeddings) == 3

    def test_clear_everything(self, runner, tmp_vault, index_root):
        _seed_index(tmp_vault, index_root)

        runner.invoke(cli, ["clear"])

        assert len(VaultSession.open(index_root).embeddings) == 0


class TestErrors:
    def test_no_vault_json_error(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(cli, ["status", "--json-errors"])

        assert result.exit_code == 1
        error = json.loads(result.output.strip().splitlines()[-1])
        assert error["error"]["code"] == "VAULT_NOT_FOUND"

    def test_typo_suggestion(self, runner):
        result = runner.invoke(cli, ["sugest"])

        assert result.exit_code != 0
        assert "Did you mean 'suggest'?" in result.output
