"""Markdown parsing helpers."""

from .links import contains_link_to, extract_links

__all__ = ["contains_link_to", "extract_links"]
