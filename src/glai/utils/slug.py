"""Helpers for producing branch-safe description slugs."""

from __future__ import annotations

import re
from typing import Pattern

_SLUG_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(
    value: str | None,
    *,
    fallback: str = "update",
    max_length: int = 50,
) -> str:
    """Normalize ``value`` into a lowercase ``[a-z0-9-]`` slug."""
    slug = collapse_hyphens(_SLUG_PATTERN.sub("-", (value or "").strip().lower()))
    if not slug:
        slug = collapse_hyphens(_SLUG_PATTERN.sub("-", (fallback or "").lower())) or "update"
    return truncate_slug(slug, max_length=max_length)


def collapse_hyphens(value: str) -> str:
    """Collapse runs of hyphens and trim them from both ends."""
    return _HYPHEN_COLLAPSE.sub("-", value).strip("-")


def truncate_slug(slug: str, *, max_length: int = 50) -> str:
    """Cut ``slug`` to ``max_length``, preferring a word boundary."""
    if len(slug) <= max_length:
        return slug
    head = slug[:max_length]
    boundary = head.rfind("-")
    if boundary > max_length // 2:
        head = head[:boundary]
    return head.strip("-")
