"""Extract bounded classification text from fetched HTML pages."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

BODY_TEXT_LIMIT = 5000
PAGE_TEXT_LIMIT = 8000
SNIPPET_LIMIT = 500

_WHITESPACE = re.compile(r"\s+")
_INVISIBLE_TAGS = ["script", "style", "noscript", "template", "svg"]


def extract_page_text(html: str | None) -> str:
    """Return title, meta description and visible body text joined by newlines."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")

    title = _collapse(soup.title.get_text()) if soup.title else ""
    description = _meta_description(soup)

    body = soup.body
    body_text = ""
    if body is not None:
        for tag in body.find_all(_INVISIBLE_TAGS):
            tag.decompose()
        body_text = _collapse(body.get_text(" "))[:BODY_TEXT_LIMIT]

    return f"{title}\n{description}\n{body_text}"[:PAGE_TEXT_LIMIT]


def snippet(text: str, limit: int = SNIPPET_LIMIT) -> str:
    """Return the leading *limit* characters of *text*."""
    return (text or "")[:limit]


def _meta_description(soup: BeautifulSoup) -> str:
    for meta in soup.find_all("meta"):
        name = meta.get("name")
        if not isinstance(name, str) or name.lower() != "description":
            continue
        content = meta.get("content")
        if isinstance(content, str):
            return _collapse(content)
    return ""


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()
