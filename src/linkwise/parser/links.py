"""Wiki-link extraction for markdown notes."""

import re

# Captures the content between double brackets: [[Target]], [[dir/Target|alias]]
LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")


def extract_links(content: str) -> list[str]:
    """Extract wiki-link targets from markdown content.

    Args:
        content: Markdown content to scan.

    Returns:
        Unique link targets in order of first appearance, normalized
        (alias and heading removed, no .md extension).
    """
    seen: set[str] = set()
    links: list[str] = []

    for raw in LINK_PATTERN.findall(content):
        normalized = _normalize_link(raw)
        if normalized and normalized not in seen:
            seen.add(normalized)
            links.append(normalized)

    return links


def contains_link_to(content: str, *targets: str) -> bool:
    """Check whether content already links to any of the given targets.

    Targets are compared case-insensitively against the normalized link
    text, so ``[[Fluid Dynamics|flow]]`` counts as a link to "Fluid Dynamics".

    Args:
        content: Markdown content to scan.
        *targets: Titles or extension-less paths identifying one note.

    Returns:
        True if any link in content resolves to one of targets.
    """
    wanted = {_normalize_link(t).lower() for t in targets if t}
    wanted.discard("")
    if not wanted:
        return False
    return any(link.lower() in wanted for link in extract_links(content))


def _normalize_link(link: str) -> str:
    """Normalize a link target.

    - Drops the display alias after ``|`` and any ``#heading`` suffix
    - Strips whitespace and the .md extension
    - Uses forward slashes without leading/trailing slashes
    """
    link = link.split("|", 1)[0].split("#", 1)[0].strip()

    if link.endswith(".md"):
        link = link[:-3]

    link = link.replace("\\", "/")
    return link.strip("/")
