"""Single-shot HTTP GET with size/redirect caps and response classification."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp

from .antibot_detector import detect_soft_block
from .errors import ErrorKind, TransportError
from .fetcher_config import (
    ACCEPT_ENCODING,
    DEFAULT_ACCEPT,
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_REDIRECTS,
)
from .html_normalize import decode_bytes_auto, decompress_body
from .identity import Identity

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ResponseOutcome(str, Enum):
    SUCCESS = "success"
    SOFT_BLOCK = "soft_block"
    HTTP_ERROR = "http_error"


@dataclass(frozen=True)
class HttpResponse:
    """A completed response; ``outcome`` is decided here, not by callers."""

    status: int
    text: str
    final_url: str
    outcome: ResponseOutcome
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)
    body_bytes: int = 0
    truncated: bool = False
    indicators: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), compare=False)


def classify_response(
    status: int,
    text: str,
    headers: Optional[Mapping[str, str]] = None,
) -> Tuple[ResponseOutcome, Dict[str, Any]]:
    """Return ``(ResponseOutcome, indicators)`` for a status/body pair."""

    detection = detect_soft_block(status, text, headers)
    if detection["blocked"]:
        return ResponseOutcome.SOFT_BLOCK, detection["indicators"]
    if 200 <= status < 400:
        return ResponseOutcome.SUCCESS, {}
    return ResponseOutcome.HTTP_ERROR, {}


class HttpTransport:
    """aiohttp-backed lightweight transport.

    Each call opens and closes its own session so no cookies or connections
    leak between attempts or between concurrent acquisitions.
    """

    def __init__(
        self,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        accept: str = DEFAULT_ACCEPT,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
    ) -> None:
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects
        self.accept = accept
        self.accept_language = accept_language

    def build_headers(self, identity: Identity, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = identity.request_headers()
        headers["Accept"] = self.accept
        headers["Accept-Language"] = self.accept_language
        headers["Accept-Encoding"] = ACCEPT_ENCODING
        if extra:
            headers.update(extra)
        return headers

    async def fetch(
        self,
        url: str,
        identity: Identity,
        timeout: float,
        *,
        extra_headers: Optional[Mapping[str, str]] = None,
        cookies: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        headers = self.build_headers(identity, extra_headers)
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout, cookies=dict(cookies or {})) as session:
                async with session.get(
                    url,
                    headers=headers,
                    allow_redirects=True,
                    max_redirects=self.max_redirects,
                ) as resp:
                    status = resp.status
                    resp_headers = {k.lower(): v for k, v in resp.headers.items()}
                    raw, truncated = await self._read_capped(resp)
                    final_url = str(resp.url)
        except aiohttp.TooManyRedirects as exc:
            raise TransportError(ErrorKind.NETWORK_ERROR, "too_many_redirects", retryable=False) from exc
        except aiohttp.ClientConnectorError as exc:
            raise TransportError(ErrorKind.NETWORK_ERROR, "connection_failed") from exc
        except asyncio.TimeoutError as exc:
            # aiohttp's socket timeouts are ClientErrors too; match them here first.
            raise TransportError(ErrorKind.NETWORK_ERROR, "attempt_timeout") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(ErrorKind.NETWORK_ERROR, "client_error") from exc

        if truncated:
            logger.info("Body of %s truncated at %d bytes", url, self.max_bytes)
        raw = decompress_body(raw, resp_headers)
        text = decode_bytes_auto(raw, resp_headers) if raw else ""
        outcome, indicators = classify_response(status, text, resp_headers)
        return HttpResponse(
            status=status,
            text=text,
            final_url=final_url,
            outcome=outcome,
            headers=MappingProxyType(resp_headers),
            body_bytes=len(raw),
            truncated=truncated,
            indicators=MappingProxyType(dict(indicators)),
        )

    async def _read_capped(self, resp: aiohttp.ClientResponse) -> Tuple[bytes, bool]:
        chunks: List[bytes] = []
        size = 0
        async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
            remaining = self.max_bytes - size
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                return b"".join(chunks), True
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks), False


__all__ = ["HttpTransport", "HttpResponse", "ResponseOutcome", "classify_response"]
