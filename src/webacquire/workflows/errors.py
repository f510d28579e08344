"""Classified failure taxonomy for page acquisition.

Transports classify failures where they happen and raise ``TransportError``;
the orchestrator branches on ``TransportError.kind`` and converts terminal
conditions into ``AcquisitionError``, the only exception that crosses the
public boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from ..core.keys import K_ERROR


class ErrorKind(str, Enum):
    UNSUPPORTED_PROTOCOL = "UNSUPPORTED_PROTOCOL"
    BLOCKED_HOST = "BLOCKED_HOST"
    ANTI_BOT_DETECTED = "ANTI_BOT_DETECTED"
    HTTP_STATUS_ERROR = "HTTP_STATUS_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RENDERING_UNAVAILABLE = "RENDERING_UNAVAILABLE"

    def http_status(self, status_code: Optional[int] = None) -> int:
        """Stable status code a caller-facing surface should report."""

        if self is ErrorKind.HTTP_STATUS_ERROR:
            if status_code in (403, 404, 429):
                return int(status_code)
            return 502
        return _KIND_STATUS[self]

    @property
    def remedy(self) -> str:
        return _KIND_REMEDY[self]


_KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.UNSUPPORTED_PROTOCOL: 400,
    ErrorKind.BLOCKED_HOST: 400,
    ErrorKind.ANTI_BOT_DETECTED: 429,
    ErrorKind.HTTP_STATUS_ERROR: 502,
    ErrorKind.NETWORK_ERROR: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.RENDERING_UNAVAILABLE: 503,
}

_KIND_REMEDY: Dict[ErrorKind, str] = {
    ErrorKind.UNSUPPORTED_PROTOCOL: "Use an http:// or https:// URL.",
    ErrorKind.BLOCKED_HOST: "Target a public host; private, loopback and denylisted hosts are refused.",
    ErrorKind.ANTI_BOT_DETECTED: "The site is blocking automated access. Wait a few minutes or try another listing URL.",
    ErrorKind.HTTP_STATUS_ERROR: "Check that the URL exists and is publicly reachable.",
    ErrorKind.NETWORK_ERROR: "Check the domain name and network connectivity, then retry.",
    ErrorKind.TIMEOUT: "The site took too long to respond. Retry later or raise the deadline.",
    ErrorKind.RENDERING_UNAVAILABLE: "Install Playwright and run `playwright install --with-deps chromium`.",
}


class TransportError(Exception):
    """Failure classified by the transport that observed it."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str = "",
        *,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.retryable = retryable


class AcquisitionError(Exception):
    """Terminal, classified outcome of an acquisition call."""

    def __init__(
        self,
        kind: ErrorKind,
        *,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        label = kind.value
        if status_code is not None:
            label = f"{label}({status_code})"
        if detail:
            label = f"{label}: {detail}"
        super().__init__(label)
        self.kind = kind
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_transport(cls, exc: TransportError) -> "AcquisitionError":
        return cls(exc.kind, status_code=exc.status_code, detail=exc.detail or None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {K_ERROR: self.kind.value}
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.detail:
            payload["detail"] = self.detail
        return payload


__all__ = ["ErrorKind", "TransportError", "AcquisitionError"]
