"""Vault file listing and note reading."""

from __future__ import annotations

import logging
from pathlib import Path

import frontmatter

from .errors import ErrorCode, LinkwiseError
from .models import FileDescriptor

log = logging.getLogger(__name__)


def _is_hidden(rel_path: Path) -> bool:
    return any(part.startswith(".") for part in rel_path.parts)


def list_markdown_files(vault_root: Path) -> list[FileDescriptor]:
    """List every markdown note in the vault.

    Dot-directories (including the cache directory) are skipped.

    Args:
        vault_root: Vault directory.

    Returns:
        Descriptors with vault-relative POSIX paths and mtimes in epoch ms.
    """
    if not vault_root.is_dir():
        return []

    files: list[FileDescriptor] = []
    for md_file in vault_root.rglob("*.md"):
        rel_path = md_file.relative_to(vault_root)
        if _is_hidden(rel_path):
            continue
        try:
            mtime_ns = md_file.stat().st_mtime_ns
        except OSError as e:
            log.debug("Skipping %s: %s", md_file, e)
            continue
        files.append(FileDescriptor(path=rel_path.as_posix(), mtime=mtime_ns // 1_000_000))

    files.sort(key=lambda f: f.path)
    return files


def read_note(vault_root: Path, path: str) -> str:
    """Read a note's body with YAML frontmatter removed.

    Raises:
        LinkwiseError: If the note is missing or unreadable.
    """
    file_path = vault_root / path
    if not file_path.is_file():
        raise LinkwiseError.document_not_found(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LinkwiseError(ErrorCode.FILE_READ_ERROR, f"Could not read {path}: {e}", {"path": path})

    try:
        return frontmatter.loads(raw).content
    except Exception as e:
        # Malformed frontmatter: treat the whole file as body
        log.debug("Frontmatter parse failed for %s: %s", path, e)
        return raw
