"""Byte-level decoding and text repair shared by the transports and the normalizer.

Nothing here touches the network; every helper is a pure function.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Mapping, Optional, Sequence, Tuple

import ftfy
import zstandard as zstd
from bs4 import BeautifulSoup, FeatureNotFound
from charset_normalizer import from_bytes

__all__ = [
    "collapse_whitespace",
    "decode_bytes_auto",
    "decompress_body",
    "declared_charset",
    "MARKUP_PARSERS",
    "minimal_text_fix",
    "parse_markup",
]

_WS = re.compile(r"\s+")
_CHARSET = re.compile(r"charset=([^\s;]+)", re.I)
_ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Zero-width marks, NUL/VT/FF are dropped; C1 controls become spaces.
_NOISE = dict.fromkeys([0x00, 0x0B, 0x0C, 0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF])
_NOISE.update((cp, " ") for cp in range(0x80, 0xA0))


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse every whitespace run to one space and trim."""

    if not text:
        return ""
    return _WS.sub(" ", text).strip()


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    if not headers:
        return ""
    return headers.get(name) or headers.get(name.title()) or ""


def decompress_body(body: bytes, headers: Optional[Mapping[str, str]] = None) -> bytes:
    """Undo zstd content-encoding when the client library left it in place."""

    if "zstd" not in _header(headers, "content-encoding").lower() or not body.startswith(_ZSTD_MAGIC):
        return body
    try:
        return zstd.ZstdDecompressor().decompressobj().decompress(body)
    except zstd.ZstdError:  # pragma: no cover - corrupted payload
        return b""


def declared_charset(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    match = _CHARSET.search(_header(headers, "content-type"))
    if not match:
        return None
    return match.group(1).strip(" \"'").lower() or None


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode with the Content-Type charset, else let charset-normalizer guess."""

    charset = declared_charset(headers)
    if charset:
        try:
            return body.decode(charset, errors="replace")
        except LookupError:
            pass
    guess = from_bytes(body).best()
    return str(guess) if guess is not None else body.decode("utf-8", errors="replace")


def minimal_text_fix(text: str) -> str:
    """Repair mojibake and drop invisible control noise; whitespace is left alone."""

    if not text:
        return ""
    repaired = ftfy.fix_text(unicodedata.normalize("NFC", text), normalization="NFC")
    return repaired.translate(_NOISE)


# Parser preference: html5lib builds the same tree a browser would.
MARKUP_PARSERS: Tuple[str, ...] = ("html5lib", "lxml", "html.parser")


def parse_markup(html: str, parsers: Sequence[str] = MARKUP_PARSERS) -> BeautifulSoup:
    """Parse with the first available tree builder in ``parsers``."""

    for parser in parsers:
        try:
            return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")
