"""Public acquisition entry points.

``acquire`` returns a NormalizedDocument, ``acquire_raw`` the markup only.
Both raise ``AcquisitionError`` for every terminal failure.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence

from dotenv import load_dotenv

from .content_normalizer import NormalizedDocument, normalize
from .fetcher_config import EXTRACTION_MAX_IMAGES, EXTRACTION_TEXT_MAX_CHARS
from .web_fetch import FetchConfig, FetchResult, Strategy, URLFetcher, load_fetch_config_from_env

load_dotenv(override=False)

_DEFAULT_FETCHER: Optional[URLFetcher] = None
_FETCHER_LOCK = threading.Lock()


def get_default_fetcher() -> URLFetcher:
    """Process-wide fetcher built from the environment on first use."""

    global _DEFAULT_FETCHER
    with _FETCHER_LOCK:
        if _DEFAULT_FETCHER is None:
            _DEFAULT_FETCHER = URLFetcher(load_fetch_config_from_env())
        return _DEFAULT_FETCHER


def configure(config: FetchConfig) -> URLFetcher:
    """Replace the default fetcher; intended for startup-time use only."""

    global _DEFAULT_FETCHER
    with _FETCHER_LOCK:
        _DEFAULT_FETCHER = URLFetcher(config)
        return _DEFAULT_FETCHER


async def acquire_result(
    url: str,
    deadline: Optional[float] = None,
    *,
    strategy: Optional[Strategy] = None,
    fetcher: Optional[URLFetcher] = None,
) -> FetchResult:
    fetcher = fetcher or get_default_fetcher()
    return await fetcher.fetch(url, deadline, strategy=strategy)


async def acquire_raw(
    url: str,
    deadline: Optional[float] = None,
    *,
    strategy: Optional[Strategy] = None,
    fetcher: Optional[URLFetcher] = None,
) -> str:
    result = await acquire_result(url, deadline, strategy=strategy, fetcher=fetcher)
    return result.markup


async def acquire(
    url: str,
    deadline: Optional[float] = None,
    *,
    strategy: Optional[Strategy] = None,
    fetcher: Optional[URLFetcher] = None,
) -> NormalizedDocument:
    fetcher = fetcher or get_default_fetcher()
    result = await fetcher.fetch(url, deadline, strategy=strategy)
    return normalize(result.markup, result.final_url or url, fetcher.config.normalizer)


def acquire_sync(url: str, deadline: Optional[float] = None, **kwargs: Any) -> NormalizedDocument:
    return asyncio.run(acquire(url, deadline, **kwargs))


def acquire_raw_sync(url: str, deadline: Optional[float] = None, **kwargs: Any) -> str:
    return asyncio.run(acquire_raw(url, deadline, **kwargs))


def extraction_payload(
    document: NormalizedDocument,
    url: str,
    *,
    max_chars: int = EXTRACTION_TEXT_MAX_CHARS,
    max_images: int = EXTRACTION_MAX_IMAGES,
) -> Dict[str, Any]:
    """Text and image URLs in the shape the structured extraction service takes."""

    return {
        "url": url,
        "title": document.title,
        "text": document.text[:max_chars],
        "images": document.image_urls()[:max_images],
    }


class ExtractionService(Protocol):
    """External collaborator turning page text into a structured record."""

    async def extract(self, *, url: str, text: str, images: Sequence[str]) -> Dict[str, Any]:
        ...


async def acquire_and_extract(
    url: str,
    service: ExtractionService,
    deadline: Optional[float] = None,
    *,
    fetcher: Optional[URLFetcher] = None,
) -> Dict[str, Any]:
    document = await acquire(url, deadline, fetcher=fetcher)
    payload = extraction_payload(document, url)
    images: List[str] = payload["images"]
    return await service.extract(url=url, text=payload["text"], images=images)


__all__ = [
    "acquire",
    "acquire_raw",
    "acquire_result",
    "acquire_sync",
    "acquire_raw_sync",
    "acquire_and_extract",
    "configure",
    "extraction_payload",
    "ExtractionService",
    "get_default_fetcher",
]
