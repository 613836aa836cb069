"""Versioned envelope for persisted blobs.

Every blob is ``{"header": {version, encoding, created_at}, "data": ...}``
packed with MessagePack ("binary") or UTF-8 JSON ("text"). Blobs written
before the envelope existed hold the bare structure; those still load.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Literal, TypeVar

import msgpack
from pydantic import ValidationError

from ..errors import CacheDecodeError
from ..models import CacheHeader, VersionedPayload

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1

Encoding = Literal["binary", "text"]
T = TypeVar("T")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _pack(obj: Any, encoding: Encoding) -> bytes:
    if encoding == "binary":
        return msgpack.packb(obj, use_bin_type=True)
    if encoding == "text":
        return json.dumps(obj, ensure_ascii=False).encode("utf-8")
    raise ValueError(f"Unknown cache encoding: {encoding!r}")


def _unpack(raw: bytes, encoding: Encoding) -> Any:
    if encoding == "binary":
        return msgpack.unpackb(raw, raw=False, strict_map_key=False)
    return json.loads(raw.decode("utf-8"))


def _codec_order(raw: bytes, encoding: Encoding | None) -> list[Encoding]:
    if encoding is not None:
        return [encoding]
    if raw.lstrip()[:1] in (b"{", b"["):
        return ["text", "binary"]
    return ["binary", "text"]


def _looks_enveloped(obj: Any) -> bool:
    return isinstance(obj, dict) and set(obj) == {"header", "data"}


def _from_positional(obj: Any) -> Any:
    """Map a positional envelope ``[[version, encoding, created_at], data]`` to keyed form."""
    if isinstance(obj, list) and len(obj) == 2 and isinstance(obj[0], list) and len(obj[0]) == 3:
        version, encoding, created_at = obj[0]
        return {
            "header": {"version": version, "encoding": encoding, "created_at": created_at},
            "data": obj[1],
        }
    return obj


def encode_payload(data: Any, encoding: Encoding = "binary") -> bytes:
    """Wrap data in a versioned envelope and serialize it.

    Args:
        data: Plain structure (dicts, lists, str, numbers).
        encoding: "binary" for MessagePack, "text" for JSON.

    Returns:
        Serialized bytes.
    """
    header = CacheHeader(version=SCHEMA_VERSION, encoding=encoding, created_at=_now_ms())
    return _pack({"header": header.model_dump(), "data": data}, encoding)


def decode_payload(
    raw: bytes,
    loader: Callable[[Any], T],
    encoding: Encoding | None = None,
) -> tuple[T, CacheHeader | None]:
    """Decode a blob written by encode_payload, or a legacy bare blob.

    Args:
        raw: Serialized bytes.
        loader: Builds the in-memory value from the plain structure. It must
            raise (ValueError, TypeError, KeyError or ValidationError) when the
            structure does not fit.
        encoding: Codec to use. When None it is sniffed from the bytes and the
            other codec is tried as well.

    Returns:
        Tuple of (value, header). The header is None for legacy blobs.

    Raises:
        CacheDecodeError: If neither the envelope nor the bare layout decodes.
    """
    # Keyed by codec; the first entry is the likeliest layout
    errors: dict[str, str] = {}

    for codec in _codec_order(raw, encoding):
        try:
            obj = _unpack(raw, codec)
        except Exception as e:
            # msgpack and json raise assorted error types on garbage
            errors[codec] = str(e) or type(e).__name__
            continue

        obj = _from_positional(obj)
        if _looks_enveloped(obj):
            try:
                envelope = VersionedPayload.model_validate(obj)
                if envelope.header.version > SCHEMA_VERSION:
                    log.warning(
                        "Cache blob has schema version %d (newer than %d), loading anyway",
                        envelope.header.version,
                        SCHEMA_VERSION,
                    )
                return loader(envelope.data), envelope.header
            except (ValueError, TypeError, KeyError, ValidationError) as e:
                errors[codec] = str(e) or type(e).__name__
                continue

        try:
            value = loader(obj)
        except (ValueError, TypeError, KeyError, ValidationError) as e:
            errors[codec] = str(e) or type(e).__name__
            continue
        log.debug("Loaded cache blob in legacy (non-enveloped) %s layout", codec)
        return value, None

    first_error = next(iter(errors.values()), "no codec attempted")
    raise CacheDecodeError(
        f"Could not decode cache blob: {first_error}",
        {"size": len(raw), "errors": errors},
    )
