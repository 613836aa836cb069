"""Fuse an external model's ranking back into the full candidate list.

Model output is loosely structured. ``parse_rankings`` tries a fixed list of
parsers in order and the first one that yields at least one item wins:

1. natural-language lines such as ``Document 3: 8.5 - covers the same proof``
2. a JSON array of ``{"index", "score", "reason"}`` objects
3. a single such object
4. an object wrapping the array under ``candidates`` or ``indexes``

Indexes are 1-based positions in the candidate list that was sent.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from pydantic import TypeAdapter, ValidationError

from ..errors import RankingParseError
from ..models import Candidate, RankedCandidate, RankingItem

log = logging.getLogger(__name__)

_ITEMS = TypeAdapter(list[RankingItem])

# "Document 3: ...", "doc 3: ...", "Source #3: ..."
LABELED_LINE = re.compile(r"\b(?:document|doc|source)\s*(\d+)\s*:(.*)", re.IGNORECASE)
# "3. ..." at the start of a line
NUMBERED_LINE = re.compile(r"^\s*(\d+)\.\s+(.*)")
SCORE_PATTERN = re.compile(r"^[+-]?\d+(?:\.\d+)?")

DEFAULT_REASON = "Relevant"


# ─────────────────────────────────────────────────────────────────────────────
# Parsers
# ─────────────────────────────────────────────────────────────────────────────


def _split_score_reason(rest: str) -> tuple[str, str]:
    rest = rest.strip()
    for separator in (" - ", "-", ":"):
        if separator in rest:
            score, reason = rest.split(separator, 1)
            return score.strip(), reason.strip()
    return rest, DEFAULT_REASON


def _parse_lines(text: str) -> list[RankingItem]:
    items: list[RankingItem] = []
    for raw_line in text.splitlines():
        # Markdown emphasis and headings around the label
        line = raw_line.replace("*", "").replace("#", "")
        match = LABELED_LINE.search(line) or NUMBERED_LINE.match(line)
        if not match:
            continue

        score_text, reason = _split_score_reason(match.group(2))
        score_match = SCORE_PATTERN.match(score_text)
        if not score_match:
            continue

        items.append(
            RankingItem(
                index=int(match.group(1)),
                score=float(score_match.group(0)),
                reason=reason or DEFAULT_REASON,
            )
        )
    return items


def _json_array_text(text: str) -> str:
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def first_json_object(text: str) -> Any:
    """Decode the first complete JSON object embedded in text.

    Raises:
        ValueError: If text holds no decodable object.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _end = decoder.raw_decode(text, start)
            return obj
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
    raise ValueError("No JSON object found")


def _parse_json_array(text: str) -> list[RankingItem]:
    data = json.loads(_json_array_text(text))
    if not isinstance(data, list):
        raise ValueError("Not a JSON array")
    return _ITEMS.validate_python(data)


def _parse_single_object(text: str) -> list[RankingItem]:
    obj = first_json_object(text)
    return [RankingItem.model_validate(obj)]


def _parse_wrapped_object(text: str) -> list[RankingItem]:
    obj = first_json_object(text)
    if not isinstance(obj, dict):
        raise ValueError("Not a JSON object")
    for field in ("candidates", "indexes"):
        if isinstance(obj.get(field), list):
            return _ITEMS.validate_python(obj[field])
    raise ValueError("No 'candidates' or 'indexes' field")


PARSERS: list[tuple[str, Callable[[str], list[RankingItem]]]] = [
    ("lines", _parse_lines),
    ("json_array", _parse_json_array),
    ("single_object", _parse_single_object),
    ("wrapped_object", _parse_wrapped_object),
]


def parse_rankings(response_text: str) -> list[RankingItem]:
    """Parse an external ranking response.

    Args:
        response_text: Raw model output.

    Returns:
        Ranking items in the order they appeared.

    Raises:
        RankingParseError: If no parser produced any item.
    """
    errors: dict[str, str] = {}
    for name, parser in PARSERS:
        try:
            items = parser(response_text)
        except (ValueError, ValidationError) as e:
            errors[name] = str(e).splitlines()[0] if str(e) else type(e).__name__
            continue
        if items:
            log.debug("Parsed %d ranking items with %s parser", len(items), name)
            return items
        errors[name] = "no items"

    preview = response_text[:200]
    raise RankingParseError(
        "Ranking response matched no supported format",
        {"attempts": errors, "response_preview": preview},
    )


# ─────────────────────────────────────────────────────────────────────────────
# Fusion
# ─────────────────────────────────────────────────────────────────────────────


_CANDIDATE_FIELDS = {"path", "title", "similarity", "context"}


def _ranked(candidate: Candidate, item: RankingItem | None = None) -> RankedCandidate:
    base = candidate.model_dump(include=_CANDIDATE_FIELDS)
    if item is None:
        return RankedCandidate(**base)
    return RankedCandidate(**base, external_score=item.score, external_reason=item.reason)


def similarity_only(candidates: list[Candidate]) -> list[RankedCandidate]:
    """Candidates without external scores, in descending similarity order."""
    ranked = [_ranked(c) for c in candidates]
    ranked.sort(key=lambda c: -c.similarity)
    return ranked


def apply_rankings(candidates: list[Candidate], rankings: list[RankingItem]) -> list[RankedCandidate]:
    """Attach parsed rankings to candidates and reorder.

    Ranked candidates come first by descending external score, then the
    unranked ones by descending similarity. Out-of-range indexes are ignored;
    for repeated indexes the first occurrence wins. Every input candidate
    appears exactly once in the output.
    """
    if len(rankings) != len(candidates):
        log.warning(
            "Ranking has %d items for %d candidates; unranked ones keep similarity order",
            len(rankings),
            len(candidates),
        )

    assigned: dict[int, RankingItem] = {}
    for item in rankings:
        position = item.index - 1
        if not 0 <= position < len(candidates):
            log.debug("Ignoring out-of-range ranking index %d", item.index)
            continue
        if position in assigned:
            log.debug("Ignoring repeated ranking index %d", item.index)
            continue
        assigned[position] = item

    ranked: list[RankedCandidate] = []
    unranked: list[RankedCandidate] = []
    for position, candidate in enumerate(candidates):
        item = assigned.get(position)
        if item is None:
            unranked.append(_ranked(candidate))
        else:
            ranked.append(_ranked(candidate, item))

    ranked.sort(key=lambda c: -(c.external_score or 0.0))
    unranked.sort(key=lambda c: -c.similarity)
    return ranked + unranked


def fuse_rankings(candidates: list[Candidate], response_text: str) -> list[RankedCandidate]:
    """Parse a ranking response and fuse it with candidates.

    Raises:
        RankingParseError: If the response matches no supported format.
    """
    return apply_rankings(candidates, parse_rankings(response_text))


def candidates_payload(candidates: list[Candidate]) -> list[dict[str, Any]]:
    """Candidates in the exchange schema sent to a ranking model."""
    return [
        {
            "path": c.path,
            "title": c.title,
            "similarity": c.similarity,
            "context": c.context,
        }
        for c in candidates
    ]
