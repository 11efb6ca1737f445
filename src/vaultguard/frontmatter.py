"""Flat frontmatter reader.

Only the leading ``---`` block with ``key: value`` lines is understood;
nesting and lists are out of scope and come through as raw strings.
"""

from __future__ import annotations

import re

_FRONTMATTER_RE = re.compile(r"^---\n(.*?)\n---\n(.*)$", re.DOTALL)

KEY_FIELD = "granola_id"


def _unquote(value: str) -> str:
    """Strip one layer of surrounding quotes."""
    if value[:1] in ("'", '"'):
        value = value[1:]
    if value[-1:] in ("'", '"'):
        value = value[:-1]
    return value


def extract_frontmatter(content: str) -> tuple[dict[str, str], str]:
    """Split content into (frontmatter, body).

    Returns ({}, content) when there is no well-formed leading block.
    """
    match = _FRONTMATTER_RE.match(content.replace("\r\n", "\n"))
    if not match:
        return {}, content

    block, body = match.group(1), match.group(2)
    frontmatter: dict[str, str] = {}
    for line in block.split("\n"):
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        frontmatter[key] = _unquote(value.strip())
    return frontmatter, body


def sync_key(frontmatter: dict[str, str] | None, field: str = KEY_FIELD) -> str | None:
    """Return the sync key from parsed frontmatter, or None if missing/empty."""
    if not frontmatter:
        return None
    value = frontmatter.get(field)
    return value or None


def sync_key_of(content: str, field: str = KEY_FIELD) -> str | None:
    frontmatter, _ = extract_frontmatter(content)
    return sync_key(frontmatter, field)
