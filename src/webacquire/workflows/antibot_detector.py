"""Heuristics for soft-block pages and interstitial verification screens.

Both transports feed responses through :func:`detect_soft_block`; the
rendering transport additionally uses :func:`is_interstitial_title` while
polling a live page. Patterns are plain substrings (case-insensitive) so
deployments can extend them from configuration.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from .fetcher_config import (
    BLOCK_HEADER_MARKERS,
    BLOCK_MARKUP_TOKENS,
    BLOCK_PHRASE_MAX_TEXT,
    BLOCK_PHRASES,
    INTERSTITIAL_TITLE_PATTERNS,
    SOFT_BLOCK_STATUS_CODES,
)

# Challenge pages are small; larger documents skip the visible-text scan.
_PHRASE_SCAN_MAX_MARKUP = 64_000
_WS = re.compile(r"\s+")


def _visible_text(html: str) -> Tuple[str, str]:
    soup = BeautifulSoup(html, "lxml")
    title = ""
    if soup.title is not None:
        title = _WS.sub(" ", soup.title.get_text()).strip()
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    return title, _WS.sub(" ", body.get_text(" ")).strip()


def _hits(patterns: Iterable[str], haystack: str) -> List[str]:
    lowered = haystack.lower()
    return [p for p in patterns if p and p.lower() in lowered]


def detect_soft_block(
    status: Optional[int],
    html: str,
    headers: Optional[Mapping[str, str]] = None,
    *,
    markup_tokens: Sequence[str] = BLOCK_MARKUP_TOKENS,
    phrases: Sequence[str] = BLOCK_PHRASES,
) -> Dict[str, Any]:
    """Return ``{"blocked": bool, "indicators": {...}}`` for a fetched page."""

    detection: Dict[str, Any] = {"status": status, "blocked": False, "indicators": {}}
    indicators = detection["indicators"]
    html = html or ""

    if status in SOFT_BLOCK_STATUS_CODES:
        indicators["block_status"] = status

    headers_lower = {k.lower(): str(v) for k, v in (headers or {}).items()}
    for name, marker in BLOCK_HEADER_MARKERS.items():
        value = headers_lower.get(name)
        if value and marker in value.lower():
            indicators.setdefault("block_headers", []).append(f"{name}={value[:80]}")

    short_page = False
    if html and len(html) <= _PHRASE_SCAN_MAX_MARKUP:
        title, text = _visible_text(html)
        short_page = len(text) <= BLOCK_PHRASE_MAX_TEXT
        phrase_hits = _hits(phrases, title)
        if short_page:
            phrase_hits.extend(p for p in _hits(phrases, text) if p not in phrase_hits)
        if phrase_hits:
            indicators["phrases"] = phrase_hits

    # Vendor scripts also ship on ordinary pages; count them only next to
    # a block status, a block header or a near-empty body.
    if indicators or short_page:
        token_hits = _hits(markup_tokens, html)
        if token_hits:
            indicators["markup_tokens"] = token_hits

    detection["blocked"] = bool(indicators)
    return detection


def is_interstitial_title(title: Optional[str], patterns: Sequence[str] = INTERSTITIAL_TITLE_PATTERNS) -> bool:
    if not title:
        return False
    return bool(_hits(patterns, title))


__all__ = ["detect_soft_block", "is_interstitial_title"]
