"""Structured errors with stable codes for programmatic consumers."""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Machine-readable error codes emitted under --json-errors."""

    VAULT_NOT_FOUND = "VAULT_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    CACHE_DECODE_ERROR = "CACHE_DECODE_ERROR"
    RANKING_PARSE_ERROR = "RANKING_PARSE_ERROR"
    EMBEDDING_UNAVAILABLE = "EMBEDDING_UNAVAILABLE"
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LinkwiseError(Exception):
    """Base error carrying a code, a message and optional details."""

    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": str(self.code), "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def document_not_found(cls, path: str, suggestion: str | None = None) -> LinkwiseError:
        details: dict[str, Any] = {"path": path}
        if suggestion:
            details["suggestion"] = suggestion
        return cls(ErrorCode.DOCUMENT_NOT_FOUND, f"Document not found: {path}", details)

    @classmethod
    def embedding_unavailable(cls, reason: str) -> LinkwiseError:
        return cls(
            ErrorCode.EMBEDDING_UNAVAILABLE,
            f"Embeddings unavailable: {reason}",
            {"suggestion": "Install with: pip install 'linkwise[semantic]'"},
        )


class CacheDecodeError(LinkwiseError):
    """A persisted blob could not be decoded in any supported layout."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.CACHE_DECODE_ERROR, message, details)


class RankingParseError(LinkwiseError):
    """An external ranking response matched none of the accepted shapes."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.RANKING_PARSE_ERROR, message, details)


def format_error_json(code: ErrorCode | str, message: str, details: dict[str, Any] | None = None) -> str:
    """Format an error as JSON for --json-errors output."""
    error: dict[str, Any] = {"code": str(code), "message": message}
    if details:
        error["details"] = details
    return json.dumps({"error": error})
