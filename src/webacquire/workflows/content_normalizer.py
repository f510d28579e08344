"""Turn raw markup into a NormalizedDocument (title, text, images, figures).

``normalize`` is a pure function of ``(markup, base_url, config)``: same
input, byte-identical ``to_json()`` output.

Image attributes are resolved one at a time by small helpers, each with a
fixed fallback order:

* URL: ``src`` → ``data-src`` → ``data-lazy-src`` → ``data-original``
* source set: ``srcset`` → ``data-srcset``
* width/height: the HTML attribute, then an inline ``style`` pixel value
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from ..core.keys import (
    K_ALT,
    K_CAPTION,
    K_CHAR_COUNT,
    K_DESCRIPTOR,
    K_FIGURES,
    K_HEIGHT,
    K_IMAGES,
    K_SRC,
    K_SRCSET,
    K_TEXT,
    K_TITLE,
    K_URL,
    K_WIDTH,
    K_WORD_COUNT,
)
from .fetcher_config import METADATA_SEGMENT_MAX_CHARS, MIN_IMAGE_DIMENSION_PX, STRIP_TAGS
from .html_normalize import collapse_whitespace, minimal_text_fix, parse_markup
from .structured_data import harvest_segments

_URL_ATTRS = ("src", "data-src", "data-lazy-src", "data-original")
_SRCSET_ATTRS = ("srcset", "data-srcset")
_SVG_EXT = re.compile(r"\.svg(?:$|[?#])", re.I)
_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:px)?\s*$", re.I)


@dataclass(frozen=True)
class NormalizerConfig:
    min_dimension_px: int = MIN_IMAGE_DIMENSION_PX
    harvest_metadata: bool = True
    metadata_max_chars: int = METADATA_SEGMENT_MAX_CHARS
    strip_tags: Tuple[str, ...] = STRIP_TAGS
    fix_text: bool = True


@dataclass(frozen=True)
class SrcsetEntry:
    url: str
    descriptor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {K_URL: self.url, K_DESCRIPTOR: self.descriptor}


@dataclass(frozen=True)
class ImageDescriptor:
    url: Optional[str]
    src: Optional[str] = None
    alt: Optional[str] = None
    title: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    srcset: Tuple[SrcsetEntry, ...] = ()
    sizes: Optional[str] = None
    loading: Optional[str] = None
    decoding: Optional[str] = None
    referrer_policy: Optional[str] = None
    crossorigin: Optional[str] = None

    def dedupe_key(self) -> Tuple[str, ...]:
        if self.url:
            return (self.url,)
        return tuple(entry.url for entry in self.srcset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_URL: self.url,
            K_SRC: self.src,
            K_ALT: self.alt,
            K_TITLE: self.title,
            K_WIDTH: self.width,
            K_HEIGHT: self.height,
            K_SRCSET: [entry.to_dict() for entry in self.srcset],
            "sizes": self.sizes,
            "loading": self.loading,
            "decoding": self.decoding,
            "referrer_policy": self.referrer_policy,
            "crossorigin": self.crossorigin,
        }


@dataclass(frozen=True)
class FigureDescriptor:
    caption: str
    images: Tuple[ImageDescriptor, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {K_CAPTION: self.caption, K_IMAGES: [image.to_dict() for image in self.images]}


@dataclass(frozen=True)
class NormalizedDocument:
    title: str
    text: str
    char_count: int
    word_count: int
    images: Tuple[ImageDescriptor, ...] = field(default_factory=tuple)
    figures: Tuple[FigureDescriptor, ...] = field(default_factory=tuple)

    def image_urls(self) -> List[str]:
        """Unique fetchable image URLs, top-level images first, then figure images."""

        seen: Dict[str, None] = {}
        pool = list(self.images)
        for figure in self.figures:
            pool.extend(figure.images)
        for image in pool:
            candidate = image.url if image.url and not image.url.startswith("data:") else None
            if candidate is None and image.srcset:
                candidate = image.srcset[-1].url
            if candidate:
                seen.setdefault(candidate, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_TITLE: self.title,
            K_TEXT: self.text,
            K_CHAR_COUNT: self.char_count,
            K_WORD_COUNT: self.word_count,
            K_IMAGES: [image.to_dict() for image in self.images],
            K_FIGURES: [figure.to_dict() for figure in self.figures],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Per-attribute helpers
# ---------------------------------------------------------------------------


def attr_value(el: Tag, name: str) -> Optional[str]:
    value = el.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_svg_url(url: Optional[str]) -> bool:
    if not url:
        return False
    lowered = url.strip().lower()
    if lowered.startswith("data:image/svg+xml"):
        return True
    if "image/svg+xml" in lowered:
        return True
    return bool(_SVG_EXT.search(lowered))


def resolve_url(raw: Optional[str], base_url: str) -> Optional[str]:
    """Absolute http(s) URL for ``raw``; data URIs pass through untouched."""

    if not raw:
        return None
    if raw.lower().startswith("data:"):
        return raw
    try:
        absolute = urljoin(base_url, raw)
    except ValueError:
        return None
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def parse_dimension(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _NUMBER.match(value)
    if not match:
        return None
    number = int(float(match.group(1)))
    return number or None


def css_dimension(style: Optional[str], prop: str) -> Optional[int]:
    if not style:
        return None
    match = re.search(r"(?:^|;)\s*%s\s*:\s*(\d+(?:\.\d+)?)px" % re.escape(prop), style, re.I)
    if not match:
        return None
    return int(float(match.group(1))) or None


def image_dimension(el: Tag, prop: str) -> Optional[int]:
    declared = parse_dimension(attr_value(el, prop))
    if declared is not None:
        return declared
    return css_dimension(attr_value(el, "style"), prop)


def parse_srcset(raw: Optional[str]) -> List[Tuple[str, Optional[str]]]:
    """Split a srcset value into ``(url, descriptor)`` pairs.

    URLs may contain commas (CDN transform params), so a candidate URL runs
    to the next whitespace and only the descriptor ends at a comma.
    """

    entries: List[Tuple[str, Optional[str]]] = []
    if not raw:
        return entries
    pos = 0
    length = len(raw)
    while pos < length:
        while pos < length and (raw[pos].isspace() or raw[pos] == ","):
            pos += 1
        if pos >= length:
            break
        start = pos
        while pos < length and not raw[pos].isspace():
            pos += 1
        url = raw[start:pos]
        descriptor: Optional[str] = None
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            start = pos
            while pos < length and raw[pos] != ",":
                pos += 1
            descriptor = raw[start:pos].strip() or None
        if url:
            entries.append((url, descriptor))
    return entries


def image_source(el: Tag, base_url: str) -> Optional[str]:
    inline: Optional[str] = None
    for name in _URL_ATTRS:
        resolved = resolve_url(attr_value(el, name), base_url)
        if resolved is None:
            continue
        if resolved.startswith("data:") and not is_svg_url(resolved):
            # Kept unless a lazy-load attribute holds a real URL.
            inline = inline or resolved
            continue
        return resolved
    return inline


def image_srcset(el: Tag, base_url: str) -> Tuple[SrcsetEntry, ...]:
    for name in _SRCSET_ATTRS:
        raw = attr_value(el, name)
        if not raw:
            continue
        entries = []
        for url, descriptor in parse_srcset(raw):
            resolved = resolve_url(url, base_url)
            if not resolved or resolved.startswith("data:") or is_svg_url(resolved):
                continue
            entries.append(SrcsetEntry(url=resolved, descriptor=descriptor))
        return tuple(entries)
    return ()


def build_image(el: Tag, base_url: str, min_dimension_px: int = MIN_IMAGE_DIMENSION_PX) -> Optional[ImageDescriptor]:
    """Return an ImageDescriptor, or None when the element is filtered out."""

    width = image_dimension(el, "width")
    height = image_dimension(el, "height")
    if (width is not None and width <= min_dimension_px) or (height is not None and height <= min_dimension_px):
        return None
    url = image_source(el, base_url)
    if url is not None and is_svg_url(url):
        return None
    srcset = image_srcset(el, base_url)
    if not url and not srcset:
        return None
    return ImageDescriptor(
        url=url,
        src=attr_value(el, "src"),
        alt=attr_value(el, "alt"),
        title=attr_value(el, "title"),
        width=width,
        height=height,
        srcset=srcset,
        sizes=attr_value(el, "sizes"),
        loading=attr_value(el, "loading"),
        decoding=attr_value(el, "decoding"),
        referrer_policy=attr_value(el, "referrerpolicy"),
        crossorigin=attr_value(el, "crossorigin"),
    )


def collect_images(elements: Iterable[Tag], base_url: str, min_dimension_px: int) -> Tuple[ImageDescriptor, ...]:
    images: List[ImageDescriptor] = []
    seen = set()
    for el in elements:
        image = build_image(el, base_url, min_dimension_px)
        if image is None:
            continue
        key = image.dedupe_key()
        if key in seen:
            continue
        seen.add(key)
        images.append(image)
    return tuple(images)


def collect_figures(soup: BeautifulSoup, base_url: str, min_dimension_px: int) -> Tuple[FigureDescriptor, ...]:
    figures: List[FigureDescriptor] = []
    for figure in soup.find_all("figure"):
        caption = collapse_whitespace(" ".join(cap.get_text(" ") for cap in figure.find_all("figcaption")))
        images = collect_images(figure.find_all("img"), base_url, min_dimension_px)
        figures.append(FigureDescriptor(caption=caption, images=images))
    return tuple(figures)


def normalize(markup: str, base_url: str, config: Optional[NormalizerConfig] = None) -> NormalizedDocument:
    cfg = config or NormalizerConfig()
    if cfg.fix_text:
        markup = minimal_text_fix(markup or "")
    soup = parse_markup(markup or "")

    # Title first: <head> is among the stripped tags.
    title = collapse_whitespace(soup.title.get_text()) if soup.title is not None else ""
    segments = harvest_segments(soup, cfg.metadata_max_chars) if cfg.harvest_metadata else []

    for tag in soup.find_all(list(cfg.strip_tags)):
        if not tag.decomposed:
            tag.decompose()

    body = soup.body or soup
    text = collapse_whitespace(" ".join([body.get_text(" ")] + segments))
    images = collect_images(soup.find_all("img"), base_url, cfg.min_dimension_px)
    figures = collect_figures(soup, base_url, cfg.min_dimension_px)
    return NormalizedDocument(
        title=title,
        text=text,
        char_count=len(text),
        word_count=len(text.split()),
        images=images,
        figures=figures,
    )


__all__ = [
    "NormalizerConfig",
    "NormalizedDocument",
    "ImageDescriptor",
    "FigureDescriptor",
    "SrcsetEntry",
    "normalize",
    "build_image",
    "parse_srcset",
    "parse_dimension",
    "css_dimension",
    "is_svg_url",
    "resolve_url",
]
