"""Harvest JSON-LD, embedded app state and OpenGraph tags from a parsed page.

Listing portals often ship the useful fields (price, address, photos) only in
these blocks, so the normalizer appends a capped serialization of each to
the page text. Harvesting must run before script/meta stripping.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from .fetcher_config import APP_STATE_GLOBALS, APP_STATE_SCRIPT_IDS, METADATA_SEGMENT_MAX_CHARS

logger = logging.getLogger(__name__)

_COMMENT_WRAP = re.compile(r"^\s*(?:<!--|//\s*<!\[CDATA\[|<!\[CDATA\[)|(?:-->|//\s*\]\]>|\]\]>)\s*$")
_DECODER = json.JSONDecoder()


def _script_text(tag: Any) -> str:
    raw = tag.string if tag.string is not None else tag.get_text()
    return _COMMENT_WRAP.sub("", raw or "").strip()


def _loads(raw: str) -> Optional[Any]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def harvest_json_ld(soup: BeautifulSoup) -> List[Any]:
    blocks: List[Any] = []
    for tag in soup.find_all("script", attrs={"type": re.compile(r"^\s*application/ld\+json\s*$", re.I)}):
        payload = _loads(_script_text(tag))
        if payload is None:
            logger.debug("Skipping unparsable JSON-LD block")
            continue
        blocks.append(payload)
    return blocks


def harvest_app_state(
    soup: BeautifulSoup,
    *,
    script_ids: Sequence[str] = APP_STATE_SCRIPT_IDS,
    globals_: Sequence[str] = APP_STATE_GLOBALS,
) -> Optional[Any]:
    """Return the first embedded application state object found."""

    for script_id in script_ids:
        tag = soup.find("script", id=script_id)
        if tag is not None:
            payload = _loads(_script_text(tag))
            if payload is not None:
                return payload
    if not globals_:
        return None
    assignment = re.compile(
        r"(?:window\.)?(?:%s)\s*=\s*" % "|".join(re.escape(name) for name in globals_)
    )
    for tag in soup.find_all("script"):
        if tag.get("src"):
            continue
        text = tag.string if tag.string is not None else tag.get_text()
        if not text:
            continue
        match = assignment.search(text)
        if match is None:
            continue
        try:
            payload, _ = _DECODER.raw_decode(text, match.end())
        except ValueError:
            # JS literals (functions, undefined) are not JSON; keep looking.
            continue
        return payload
    return None


def harvest_open_graph(soup: BeautifulSoup) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    for meta in soup.find_all("meta"):
        prop = (meta.get("property") or meta.get("name") or "").strip()
        if not prop.lower().startswith("og:"):
            continue
        content = (meta.get("content") or "").strip()
        if content and prop not in tags:
            tags[prop] = content
    return tags


def serialize_segment(label: str, payload: Any, max_chars: int = METADATA_SEGMENT_MAX_CHARS) -> str:
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    if len(body) > max_chars:
        body = body[:max_chars]
    return f"[{label}] {body}"


def harvest_segments(soup: BeautifulSoup, max_chars: int = METADATA_SEGMENT_MAX_CHARS) -> List[str]:
    """Serialized metadata in priority order: JSON-LD, app state, OpenGraph."""

    segments: List[str] = []
    json_ld = harvest_json_ld(soup)
    if json_ld:
        segments.append(serialize_segment("JSON-LD", json_ld[0] if len(json_ld) == 1 else json_ld, max_chars))
    app_state = harvest_app_state(soup)
    if app_state is not None:
        segments.append(serialize_segment("APP-STATE", app_state, max_chars))
    open_graph = harvest_open_graph(soup)
    if open_graph:
        segments.append(serialize_segment("OPENGRAPH", open_graph, max_chars))
    return segments


__all__ = [
    "harvest_json_ld",
    "harvest_app_state",
    "harvest_open_graph",
    "harvest_segments",
    "serialize_segment",
]
