"""lw: command line interface for linkwise.

Plans incremental scans, indexes notes, and suggests links for a vault.
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__
from ._logging import get_logger
from .errors import format_error_json

log = get_logger(__name__)


def run_async(coro):
    """Drive a coroutine to completion from a sync click command."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Helpers
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        if len(val) > limit:
            val = val[: limit - 3] + "..."
        return val

    widths = {col: max([len(col)] + [len(cell(row, col)) for row in rows]) for col in columns}

    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Echo data, pretty-printed as JSON when as_json is set."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(
    ctx: click.Context,
    error: Exception,
    fallback_message: str | None = None,
    exit_code: int = 1,
) -> NoReturn:
    """Print an error (as JSON under --json-errors) and exit.

    Args:
        ctx: Click context (obj["json_errors"] set by the group).
        error: The exception that occurred.
        fallback_message: Message to use for non-LinkwiseError exceptions.
        exit_code: Process exit code.
    """
    from .errors import LinkwiseError

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, LinkwiseError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
            suggestion = error.details.get("suggestion") if error.details else None
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        message = fallback_message or str(error)
        if json_errors:
            click.echo(format_error_json(_infer_error_code(error), message), err=True)
        else:
            click.echo(f"Error: {message}", err=True)

    sys.exit(exit_code)


def _infer_error_code(error: Exception):
    """Map non-LinkwiseError exceptions to error codes."""
    from .config import ConfigurationError
    from .errors import ErrorCode
    from .llm_providers import LLMProviderError

    if isinstance(error, ConfigurationError):
        return ErrorCode.VAULT_NOT_FOUND
    if isinstance(error, LLMProviderError):
        return ErrorCode.LLM_UNAVAILABLE
    if isinstance(error, FileNotFoundError):
        return ErrorCode.DOCUMENT_NOT_FOUND
    if isinstance(error, (OSError, UnicodeDecodeError)):
        return ErrorCode.FILE_READ_ERROR
    if isinstance(error, ValueError):
        return ErrorCode.INVALID_ARGUMENT
    return ErrorCode.INTERNAL_ERROR


def get_error_code_for_exception(exc: Exception) -> str:
    """Error code for a click parsing failure."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    return "UNKNOWN_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# JSON Error Handling
# ─────────────────────────────────────────────────────────────────────────────


class JsonErrorGroup(click.Group):
    """Click group that formats usage errors as JSON when --json-errors is set.

    Also suggests the closest command name for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        """Catch argument parsing errors, which happen before invoke()."""
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(args, prog_name, complete_var, standalone_mode, **extra)

        # Accept --json-errors anywhere on the command line
        argv = ["--json-errors"] + [a for a in argv if a != "--json-errors"]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            click.echo(format_error_json(get_error_code_for_exception(e), e.format_message()), err=True)
            raise SystemExit(1)
        except SystemExit:
            raise
        except Exception as e:
            click.echo(format_error_json("INTERNAL_ERROR", str(e)), err=True)
            raise SystemExit(1)


# ─────────────────────────────────────────────────────────────────────────────
# Session Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _open_session(ctx: click.Context):
    """Resolve the vault and load its session, exiting on configuration errors."""
    from .config import ConfigurationError, get_cache_config, get_index_root, get_vault_root
    from .session import VaultSession

    try:
        vault_root = get_vault_root()
        index_root = get_index_root()
    except ConfigurationError as exc:
        _handle_error(ctx, exc)

    session = VaultSession.open(index_root, encoding=get_cache_config().encoding)
    for warning in session.load_warnings:
        click.echo(f"Warning: {warning}", err=True)
    return vault_root, session


def _load_contents(session, vault_root: Path, files) -> None:
    from .errors import LinkwiseError
    from .vault import read_note

    for file in files:
        try:
            session.set_content(file.path, read_note(vault_root, file.path))
        except LinkwiseError as e:
            log.warning("%s", e.message)


def _normalize_note_path(path: str) -> str:
    path = path.replace("\\", "/").removeprefix("./")
    return path if path.endswith(".md") else f"{path}.md"


# ─────────────────────────────────────────────────────────────────────────────
# CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=__version__, prog_name="lw")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="LINKWISE_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool):
    """lw: link suggestions for a markdown vault.

    \b
    Quick start:
      lw index                      # Embed new and changed notes
      lw suggest notes/topic.md     # Suggest links for a note
      lw status                     # Cache statistics

    \b
    Configure the vault with LINKWISE_VAULT_ROOT or a .linkwise file:
      vault_path: notes
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet

    if quiet:
        set_quiet_mode(True)


# ─────────────────────────────────────────────────────────────────────────────
# Status and Planning
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool):
    """Show cache statistics and pending work.

    \b
    Examples:
      lw status
      lw status --json
    """
    from .vault import list_markdown_files

    vault_root, session = _open_session(ctx)
    files = list_markdown_files(vault_root)

    data = session.stats()
    data["vault_root"] = str(vault_root)
    data["notes"] = len(files)
    data["needing_embedding"] = session.count_needing_embedding(files)

    if as_json:
        output(data, as_json=True)
        return

    cache = data["cache"]
    click.echo(f"Vault:           {data['vault_root']}")
    click.echo(f"Notes:           {data['notes']}")
    click.echo(f"Embedded:        {data['documents']}")
    click.echo(f"Need embedding:  {data['needing_embedding']}")
    click.echo(f"Keyword entries: {data['keyword_entries']}")
    click.echo(f"Ignored pairs:   {cache['ignored']}")
    click.echo(f"Cached inserts:  {cache['insertions']}")


@cli.command()
@click.option("--current", "current", default=None, help="Note to process first")
@click.option("--no-suggestions", is_flag=True, help="Ignore suggestion freshness")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def plan(ctx: click.Context, current: str | None, no_suggestions: bool, as_json: bool):
    """Show which notes need work without doing it.

    \b
    Examples:
      lw plan
      lw plan --current notes/today.md --json
    """
    from .vault import list_markdown_files

    vault_root, session = _open_session(ctx)
    current_path = _normalize_note_path(current) if current else None
    scan = session.plan(list_markdown_files(vault_root), current_path, check_suggestions=not no_suggestions)

    if as_json:
        output(scan.model_dump(), as_json=True)
        return

    if not scan.to_process:
        click.echo(f"Nothing to do ({len(scan.to_skip)} notes up to date)")
        return

    rows = [
        {
            "path": item.path,
            "embed": "yes" if item.needs_embedding else "",
            "keywords": "yes" if item.needs_keywords else "",
            "suggest": "yes" if item.needs_suggestions else "",
        }
        for item in scan.to_process
    ]
    click.echo(format_table(rows, ["path", "embed", "keywords", "suggest"], {"path": 60}))
    click.echo(f"\n{len(scan.to_process)} to process, {len(scan.to_skip)} up to date")


# ─────────────────────────────────────────────────────────────────────────────
# Indexing
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("--current", "current", default=None, help="Note to process first")
@click.option(
    "--keywords/--no-keywords",
    "with_keywords",
    default=False,
    help="Extract keywords with the configured LLM (default: off, keywords stay pending)",
)
@click.pass_context
def index(ctx: click.Context, current: str | None, with_keywords: bool):
    """Embed new and changed notes.

    \b
    Examples:
      lw index
      lw index --keywords
    """
    from .config import get_llm_config
    from .embedder import Embedder
    from .errors import LinkwiseError
    from .llm import extract_keywords_llm
    from .llm_providers import LLMProviderError
    from .ranking.similarity import title_from_path
    from .vault import list_markdown_files, read_note

    vault_root, session = _open_session(ctx)
    current_path = _normalize_note_path(current) if current else None
    files = list_markdown_files(vault_root)
    scan = session.plan(files, current_path, check_suggestions=False)

    # Without --keywords, stale keywords stay stale for a later --keywords run
    work = scan.to_process if with_keywords else [item for item in scan.to_process if item.needs_embedding]
    if not work:
        click.echo(f"Nothing to do ({len(files) - len(work)} notes up to date)")
        return

    texts: dict[str, str] = {}
    for item in work:
        try:
            texts[item.path] = read_note(vault_root, item.path)
        except LinkwiseError as e:
            log.warning("%s", e.message)

    to_embed = [item for item in work if item.needs_embedding and item.path in texts]
    try:
        vectors = Embedder().embed([texts[item.path] for item in to_embed])
    except LinkwiseError as e:
        _handle_error(ctx, e)
    for item, vector in zip(to_embed, vectors):
        session.record_embedding(item.path, item.mtime, vector)

    llm_config = get_llm_config()
    keyword_count = 0
    for item in work:
        if not with_keywords or not item.needs_keywords or item.path not in texts:
            continue
        try:
            result = run_async(extract_keywords_llm(texts[item.path], title_from_path(item.path), llm_config.model))
        except LLMProviderError as e:
            _handle_error(ctx, e)
        if not result.success:
            # Leave stale so the next run retries
            continue
        session.record_keywords(item.path, item.mtime, result.keywords)
        keyword_count += 1

    session.save()
    click.echo(f"Embedded {len(to_embed)} notes, recorded keywords for {keyword_count}")


# ─────────────────────────────────────────────────────────────────────────────
# Suggestions
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("path")
@click.option("--threshold", type=float, default=None, help="Similarity threshold (default from config)")
@click.option("--limit", "-n", type=int, default=None, help="Maximum suggestions")
@click.option("--rerank", is_flag=True, help="Rerank with the configured LLM")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def suggest(
    ctx: click.Context,
    path: str,
    threshold: float | None,
    limit: int | None,
    rerank: bool,
    as_json: bool,
):
    """Suggest links for an indexed note.

    \b
    Examples:
      lw suggest notes/topic.md
      lw suggest notes/topic.md --rerank --limit 5
    """
    from .config import get_llm_config, get_suggestion_config
    from .errors import LinkwiseError
    from .llm import rerank_candidates
    from .ranking.fusion import similarity_only
    from .ranking.similarity import title_from_path
    from .vault import list_markdown_files

    vault_root, session = _open_session(ctx)
    note_path = _normalize_note_path(path)
    files = list_markdown_files(vault_root)
    current = next((f for f in files if f.path == note_path), None)
    if current is None:
        _handle_error(ctx, LinkwiseError.document_not_found(note_path))
    if note_path not in session.embeddings:
        _handle_error(
            ctx,
            LinkwiseError.document_not_found(note_path, suggestion="Run 'lw index' to embed it first"),
        )

    _load_contents(session, vault_root, files)
    config = get_suggestion_config()
    response = session.suggest_links(
        note_path,
        threshold=config.threshold if threshold is None else threshold,
        top_k=config.max_results if limit is None else limit,
    )
    for warning in response.warnings:
        log.warning("%s", warning)

    llm_failed = False
    failure_reason = None
    if rerank and response.candidates:
        llm_config = get_llm_config()
        result = run_async(
            rerank_candidates(
                title_from_path(note_path),
                session.contents.get(note_path, ""),
                response.candidates,
                model=llm_config.model,
                candidate_count=llm_config.candidate_count,
                timeout=llm_config.timeout,
            )
        )
        suggestions = result.suggestions
        llm_failed = result.llm_failed
        failure_reason = result.failure_reason
    else:
        suggestions = similarity_only(response.candidates)

    session.record_suggestions(note_path, current.mtime)
    session.save()

    if as_json:
        output(
            {
                "path": note_path,
                "suggestions": [s.model_dump() for s in suggestions],
                "warnings": response.warnings,
                "diagnostics": response.diagnostics.model_dump(),
                "llm_failed": llm_failed,
                "failure_reason": failure_reason,
            },
            as_json=True,
        )
        return

    if llm_failed:
        click.echo(f"Warning: LLM rerank failed ({failure_reason}); showing similarity order", err=True)
    if not suggestions:
        click.echo("No suggestions")
        return

    rows = [
        {
            "title": s.title,
            "score": f"{s.similarity:.2f}",
            "llm": f"{s.external_score:.1f}" if s.external_score is not None else "",
            "reason": s.external_reason or s.context,
        }
        for s in suggestions
    ]
    click.echo(format_table(rows, ["title", "score", "llm", "reason"], {"title": 40, "reason": 60}))


@cli.command()
@click.argument("path")
@click.argument("target")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def insertion(ctx: click.Context, path: str, target: str, as_json: bool):
    """Ask the LLM where a link to TARGET fits in PATH.

    \b
    Examples:
      lw insertion notes/topic.md notes/other.md
    """
    from .config import get_llm_config
    from .errors import LinkwiseError
    from .llm import suggest_insertion_point
    from .llm_providers import LLMProviderError
    from .ranking.similarity import extract_context, title_from_path
    from .vault import read_note

    vault_root, session = _open_session(ctx)
    note_path = _normalize_note_path(path)
    target_path = _normalize_note_path(target)
    try:
        document = read_note(vault_root, note_path)
        target_text = read_note(vault_root, target_path)
        result = run_async(
            suggest_insertion_point(
                session.cache,
                note_path,
                document,
                title_from_path(target_path),
                extract_context(target_text),
                model=get_llm_config().model,
            )
        )
    except (LinkwiseError, LLMProviderError) as e:
        _handle_error(ctx, e)

    session.save()
    if as_json:
        output(result.model_dump(), as_json=True)
    elif result.phrase is None:
        click.echo(f"No insertion point: {result.reason}")
    else:
        click.echo(f'Link "{result.phrase}" ({result.confidence:.2f}): {result.reason}')


@cli.command()
@click.argument("candidates_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("response_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fuse(ctx: click.Context, candidates_file: Path, response_file: Path, as_json: bool):
    """Fuse a saved ranking response with a saved candidate list.

    CANDIDATES_FILE is a JSON array of {path, title, similarity, context};
    RESPONSE_FILE holds the raw model output.

    \b
    Examples:
      lw fuse candidates.json response.txt --json
    """
    from pydantic import TypeAdapter, ValidationError

    from .errors import ErrorCode, LinkwiseError, RankingParseError
    from .models import Candidate
    from .ranking.fusion import fuse_rankings

    try:
        candidates = TypeAdapter(list[Candidate]).validate_json(candidates_file.read_bytes())
    except ValidationError as e:
        _handle_error(ctx, LinkwiseError(ErrorCode.INVALID_ARGUMENT, f"Invalid candidates file: {e}"))

    try:
        fused = fuse_rankings(candidates, response_file.read_text(encoding="utf-8"))
    except RankingParseError as e:
        _handle_error(ctx, e)

    if as_json:
        output([c.model_dump() for c in fused], as_json=True)
        return

    rows = [
        {
            "rank": i,
            "title": c.title,
            "llm": f"{c.external_score:.1f}" if c.external_score is not None else "",
            "similarity": f"{c.similarity:.2f}",
        }
        for i, c in enumerate(fused, start=1)
    ]
    click.echo(format_table(rows, ["rank", "title", "llm", "similarity"], {"title": 40}))


# ─────────────────────────────────────────────────────────────────────────────
# Ignored Suggestions
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("source")
@click.argument("target")
@click.pass_context
def ignore(ctx: click.Context, source: str, target: str):
    """Stop suggesting a link between SOURCE and TARGET (either direction)."""
    _vault_root, session = _open_session(ctx)
    session.cache.ignore(_normalize_note_path(source), _normalize_note_path(target))
    session.save()
    click.echo(f"Ignoring {source} <-> {target}")


@cli.command()
@click.argument("source")
@click.argument("target")
@click.pass_context
def unignore(ctx: click.Context, source: str, target: str):
    """Allow a previously ignored pair to be suggested again."""
    _vault_root, session = _open_session(ctx)
    if session.cache.unignore(_normalize_note_path(source), _normalize_note_path(target)):
        session.save()
        click.echo(f"No longer ignoring {source} <-> {target}")
    else:
        click.echo(f"{source} <-> {target} was not ignored")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ignored(ctx: click.Context, as_json: bool):
    """List ignored pairs, most recent first."""
    from datetime import UTC, datetime

    _vault_root, session = _open_session(ctx)
    pairs = session.cache.list_ignored()

    if as_json:
        output([p.model_dump() for p in pairs], as_json=True)
        return
    if not pairs:
        click.echo("No ignored suggestions")
        return

    rows = [
        {
            "source": p.source,
            "target": p.target,
            "ignored": datetime.fromtimestamp(p.timestamp / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M"),
        }
        for p in pairs
    ]
    click.echo(format_table(rows, ["source", "target", "ignored"], {"source": 40, "target": 40}))


# ─────────────────────────────────────────────────────────────────────────────
# Cache Maintenance
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("path")
@click.pass_context
def invalidate(ctx: click.Context, path: str):
    """Forget everything computed for PATH so the next index redoes it."""
    _vault_root, session = _open_session(ctx)
    removed = session.remove_document(_normalize_note_path(path))
    session.save()
    click.echo(f"Removed {removed} cache entries for {path}")


@cli.command()
@click.option("--ignored", "only_ignored", is_flag=True, help="Only clear ignored pairs")
@click.option("--insertions", "only_insertions", is_flag=True, help="Only clear cached insertion points")
@click.pass_context
def clear(ctx: click.Context, only_ignored: bool, only_insertions: bool):
    """Clear cached state (everything by default)."""
    _vault_root, session = _open_session(ctx)

    if only_ignored or only_insertions:
        if only_ignored:
            click.echo(f"Cleared {session.cache.clear_ignored()} ignored pairs")
        if only_insertions:
            click.echo(f"Cleared {session.cache.clear_insertions()} cached insertion points")
    else:
        session.cache.clear()
        session.embeddings.clear()
        session.keywords.clear()
        click.echo("Cleared all cached state")

    session.save()


def main():
    """Entry point for lw CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
