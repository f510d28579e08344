"""Shared helper functions used by the acquisition workflow."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .fetcher_config import ENV_HOST_PROFILES_PATH


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except Exception:
        pass
    return h


def domain_matches(domain: str, suffixes: Iterable[str]) -> Optional[str]:
    """Return the first entry that equals ``domain`` or is a parent domain of it."""

    normalized = idna_normalize(domain)
    if not normalized:
        return None
    for suffix in suffixes:
        token = idna_normalize((suffix or "").lstrip("."))
        if not token:
            continue
        if normalized == token or normalized.endswith(f".{token}"):
            return suffix
    return None


def _split_env_list(value: str, *, lower: bool = False) -> Tuple[str, ...]:
    tokens: List[str] = []
    for token in value.split(","):
        cleaned = token.strip()
        if not cleaned:
            continue
        tokens.append(cleaned.lower() if lower else cleaned)
    # Preserve order but drop duplicates
    seen: Set[str] = set()
    ordered: List[str] = []
    for token in tokens:
        if token in seen:
            continue
        seen.add(token)
        ordered.append(token)
    return tuple(ordered)


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    return normalized not in {"0", "false", "off", "no"}


def _safe_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return int(cleaned)
    except Exception:
        return default


def _safe_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return float(cleaned)
    except Exception:
        return default


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    return max(minimum, _safe_int(os.getenv(name), default))


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    return max(minimum, _safe_float(os.getenv(name), default))


def env_bool(name: str, default: bool) -> bool:
    return _as_bool(os.getenv(name), default)


def env_list(name: str, *, lower: bool = True) -> Tuple[str, ...]:
    return _split_env_list(os.getenv(name, ""), lower=lower)


def collect_environment_warnings() -> List[Dict[str, Any]]:
    """Return non-fatal configuration problems worth surfacing to operators."""

    warnings: List[Dict[str, Any]] = []
    from . import browser_transport

    if getattr(browser_transport, "async_playwright", None) is None:
        warnings.append(
            {
                "code": "playwright_missing",
                "message": "Playwright is not importable; rendering fallback will report RENDERING_UNAVAILABLE.",
                "remedy": "pip install playwright && playwright install --with-deps chromium",
            }
        )
    profiles_path = os.getenv(ENV_HOST_PROFILES_PATH)
    if profiles_path and not Path(profiles_path).exists():
        warnings.append(
            {
                "code": "host_profiles_missing",
                "message": f"{ENV_HOST_PROFILES_PATH} points at a missing file: {profiles_path}",
                "remedy": f"Create the file or unset {ENV_HOST_PROFILES_PATH}.",
            }
        )
    return warnings


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert domain_matches("www.inmuebles24.com", ("inmuebles24.com",)) == "inmuebles24.com"
    assert domain_matches("notinmuebles24.com", ("inmuebles24.com",)) is None
    assert _split_env_list("a, B,,a", lower=True) == ("a", "b")


sanity_check()

__all__ = [
    "idna_normalize",
    "domain_matches",
    "env_int",
    "env_float",
    "env_bool",
    "env_list",
    "collect_environment_warnings",
    "sanity_check",
]
