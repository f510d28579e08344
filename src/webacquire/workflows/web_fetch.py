from __future__ import annotations

import asyncio
import json
import logging
import os
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from ..core.keys import K_ATTEMPTS, K_FINAL_URL, K_STATUS, K_STRATEGY, K_URL
from .browser_transport import BrowserTransport, RenderConfig, RenderOptions
from .content_normalizer import NormalizerConfig
from .errors import AcquisitionError, ErrorKind, TransportError
from .fetcher_config import (
    BACKOFF_BASE_S,
    BACKOFF_CAP_S,
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_LOCALE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MIN_BODY_BYTES,
    DEFAULT_NAV_TIMEOUT_MS,
    DEFAULT_READY_MIN_CHARS,
    DEFAULT_READY_POLL_MS,
    DEFAULT_READY_TIMEOUT_MS,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_TIMEOUT_MS,
    ENV_ACCEPT_LANGUAGE,
    ENV_DENYLIST_HOSTS,
    ENV_HOST_PROFILES_PATH,
    ENV_INTERSTITIAL_PATTERNS,
    ENV_LOCALE,
    ENV_MAX_ATTEMPTS,
    ENV_MAX_BYTES,
    ENV_MAX_REDIRECTS,
    ENV_MIN_BODY_BYTES,
    ENV_NAV_TIMEOUT_MS,
    ENV_READY_MIN_CHARS,
    ENV_READY_POLL_MS,
    ENV_READY_TIMEOUT_MS,
    ENV_RENDER_DOMAINS,
    ENV_RENDER_ENABLED,
    ENV_RENDER_HEADLESS,
    ENV_REQUEST_TIMEOUT_S,
    ENV_TIMEOUT_MS,
    HOST_PROFILES,
    HUMAN_PAUSE_RANGE_S,
    INTERSTITIAL_TITLE_PATTERNS,
    RENDER_FALLBACK_STATUS_CODES,
    RETRYABLE_STATUS_CODES,
)
from .fetcher_utils import domain_matches, env_bool, env_float, env_int, env_list, idna_normalize
from .host_safety import REASON_DNS_FAILED, HostSafetyFilter
from .http_transport import HttpResponse, HttpTransport, ResponseOutcome
from .identity import Identity, IdentityPool

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class Strategy(str, Enum):
    LIGHTWEIGHT = "lightweight"
    RENDERING = "rendering"


@dataclass(frozen=True, slots=True)
class HostProfile:
    """Per-host quirks, matched by domain suffix."""

    host: str
    strategy: Optional[Strategy] = None
    prefer_mobile: bool = False
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    cookies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    pre_request_pause_s: Optional[Tuple[float, float]] = None
    attempt_timeout_s: Optional[float] = None
    allow_heavy_resources: bool = False
    extra_wait_ms: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HostProfile":
        host = idna_normalize(str(data.get("host") or ""))
        if not host:
            raise ValueError("host profile requires a 'host'")
        strategy = data.get("strategy")
        pause = data.get("pre_request_pause_s")
        timeout = data.get("attempt_timeout_s")
        return cls(
            host=host,
            strategy=Strategy(strategy) if strategy else None,
            prefer_mobile=bool(data.get("prefer_mobile", False)),
            headers=MappingProxyType(dict(data.get("headers") or {})),
            cookies=MappingProxyType(dict(data.get("cookies") or {})),
            pre_request_pause_s=(float(pause[0]), float(pause[1])) if pause else None,
            attempt_timeout_s=float(timeout) if timeout else None,
            allow_heavy_resources=bool(data.get("allow_heavy_resources", False)),
            extra_wait_ms=int(data.get("extra_wait_ms") or 0),
        )


DEFAULT_HOST_PROFILES: Tuple[HostProfile, ...] = tuple(HostProfile.from_mapping(p) for p in HOST_PROFILES)


def load_host_profiles(path: Optional[Path] = None) -> Tuple[HostProfile, ...]:
    """Built-in profiles, preceded by any entries from a JSON file."""

    if path is None or not path.exists():
        return DEFAULT_HOST_PROFILES
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring host profiles at %s: %s", path, exc)
        return DEFAULT_HOST_PROFILES
    entries = raw.get("profiles", []) if isinstance(raw, dict) else raw
    loaded: List[HostProfile] = []
    for entry in entries or []:
        try:
            loaded.append(HostProfile.from_mapping(entry))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping host profile %r: %s", entry, exc)
    return tuple(loaded) + DEFAULT_HOST_PROFILES


@dataclass
class FetchConfig:
    """Configuration for one URLFetcher; shared read-only across calls."""

    timeout: float = DEFAULT_TIMEOUT_MS / 1000
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_initial: float = BACKOFF_BASE_S
    backoff_max: float = BACKOFF_CAP_S
    human_pause: Tuple[float, float] = HUMAN_PAUSE_RANGE_S
    max_bytes: int = DEFAULT_MAX_BYTES
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    min_body_bytes: int = DEFAULT_MIN_BODY_BYTES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    render_domains: Tuple[str, ...] = ()
    denylist_hosts: Tuple[str, ...] = ()
    host_profiles: Tuple[HostProfile, ...] = DEFAULT_HOST_PROFILES
    render: RenderConfig = field(default_factory=RenderConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)


def load_fetch_config_from_env() -> FetchConfig:
    accept_language = os.getenv(ENV_ACCEPT_LANGUAGE, "").strip() or DEFAULT_ACCEPT_LANGUAGE
    extra_patterns = env_list(ENV_INTERSTITIAL_PATTERNS)
    profiles_path = os.getenv(ENV_HOST_PROFILES_PATH, "").strip()
    render = RenderConfig(
        enabled=env_bool(ENV_RENDER_ENABLED, True),
        headless=env_bool(ENV_RENDER_HEADLESS, True),
        nav_timeout_s=env_int(ENV_NAV_TIMEOUT_MS, DEFAULT_NAV_TIMEOUT_MS, minimum=1000) / 1000,
        ready_timeout_s=env_int(ENV_READY_TIMEOUT_MS, DEFAULT_READY_TIMEOUT_MS, minimum=0) / 1000,
        ready_min_chars=env_int(ENV_READY_MIN_CHARS, DEFAULT_READY_MIN_CHARS),
        poll_interval_s=env_int(ENV_READY_POLL_MS, DEFAULT_READY_POLL_MS, minimum=50) / 1000,
        locale=os.getenv(ENV_LOCALE, "").strip() or DEFAULT_LOCALE,
        accept_language=accept_language,
        interstitial_patterns=tuple(dict.fromkeys(INTERSTITIAL_TITLE_PATTERNS + extra_patterns)),
    )
    return FetchConfig(
        timeout=env_int(ENV_TIMEOUT_MS, DEFAULT_TIMEOUT_MS, minimum=100) / 1000,
        max_attempts=env_int(ENV_MAX_ATTEMPTS, DEFAULT_MAX_ATTEMPTS, minimum=1),
        max_bytes=env_int(ENV_MAX_BYTES, DEFAULT_MAX_BYTES, minimum=1024),
        max_redirects=env_int(ENV_MAX_REDIRECTS, DEFAULT_MAX_REDIRECTS),
        min_body_bytes=env_int(ENV_MIN_BODY_BYTES, DEFAULT_MIN_BODY_BYTES),
        request_timeout=env_float(ENV_REQUEST_TIMEOUT_S, DEFAULT_REQUEST_TIMEOUT_S, minimum=0.001),
        accept_language=accept_language,
        render_domains=env_list(ENV_RENDER_DOMAINS),
        denylist_hosts=env_list(ENV_DENYLIST_HOSTS),
        host_profiles=load_host_profiles(Path(profiles_path) if profiles_path else None),
        render=render,
    )


@dataclass(frozen=True)
class FetchRequest:
    url: str
    deadline: float
    strategy: Optional[Strategy] = None


@dataclass
class FetchAttempt:
    """One transport try; kept only for logging and the result summary."""

    strategy: Strategy
    identity: str
    elapsed: float
    outcome: str
    status: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class FetchResult:
    url: str
    final_url: str
    status: int
    markup: str
    strategy: Strategy
    attempts: List[FetchAttempt] = field(default_factory=list)
    fetched_at: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            K_URL: self.url,
            K_FINAL_URL: self.final_url,
            K_STATUS: self.status,
            K_STRATEGY: self.strategy.value,
            "markup_length": len(self.markup),
            "fetched_at": self.fetched_at,
            K_ATTEMPTS: [
                {**asdict(a), "strategy": a.strategy.value, "elapsed": round(a.elapsed, 3)}
                for a in self.attempts
            ],
        }
        if self.metadata:
            payload.update(self.metadata)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class _LightweightPhase:
    result: Optional[FetchResult] = None
    error: Optional[AcquisitionError] = None
    escalate: bool = False
    thin: Optional[FetchResult] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class URLFetcher:
    """Fetch orchestrator: lightweight first, one rendered fallback, one deadline.

    ``fetch`` never leaks library exceptions; every terminal condition is an
    ``AcquisitionError`` carrying an ``ErrorKind``.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        host_filter: Optional[HostSafetyFilter] = None,
        identity_pool: Optional[IdentityPool] = None,
        http_transport: Optional[HttpTransport] = None,
        browser_transport: Optional[BrowserTransport] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or FetchConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._clock = clock
        self.host_filter = host_filter or HostSafetyFilter(denylist=self.config.denylist_hosts)
        self.identity_pool = identity_pool or IdentityPool(rng=self._rng)
        self.http = http_transport or HttpTransport(
            max_bytes=self.config.max_bytes,
            max_redirects=self.config.max_redirects,
            accept_language=self.config.accept_language,
        )
        self.browser = browser_transport or BrowserTransport(
            self.config.render,
            identity_pool=self.identity_pool,
            sleep=sleep,
            rng=self._rng,
        )

    def build_request(
        self,
        url: str,
        deadline: Optional[float] = None,
        strategy: Optional[Strategy] = None,
    ) -> FetchRequest:
        parsed = urlparse((url or "").strip())
        if parsed.scheme.lower() not in ("http", "https"):
            raise AcquisitionError(ErrorKind.UNSUPPORTED_PROTOCOL, detail=parsed.scheme or "missing_scheme")
        if not parsed.hostname:
            raise AcquisitionError(ErrorKind.BLOCKED_HOST, detail="invalid_host")
        budget = self.config.request_timeout if deadline is None else float(deadline)
        return FetchRequest(url=url.strip(), deadline=budget, strategy=Strategy(strategy) if strategy else None)

    async def fetch(
        self,
        url: str,
        deadline: Optional[float] = None,
        *,
        strategy: Optional[Strategy] = None,
    ) -> FetchResult:
        request = self.build_request(url, deadline, strategy)
        try:
            return await asyncio.wait_for(self._run(request), timeout=request.deadline)
        except asyncio.TimeoutError:
            logger.warning("Deadline of %.3fs exceeded for %s", request.deadline, request.url)
            raise AcquisitionError(ErrorKind.TIMEOUT, detail="deadline_exceeded") from None

    def profile_for(self, host: str) -> HostProfile:
        for profile in self.config.host_profiles:
            if domain_matches(host, (profile.host,)):
                return profile
        return HostProfile(host=host)

    def requires_rendering(self, host: str, profile: HostProfile) -> bool:
        if profile.strategy is Strategy.RENDERING:
            return True
        return domain_matches(host, self.config.render_domains) is not None

    async def _run(self, request: FetchRequest) -> FetchResult:
        host = urlparse(request.url).hostname or ""
        check = await self.host_filter.check(host)
        if check.blocked:
            if check.reason == REASON_DNS_FAILED:
                raise AcquisitionError(ErrorKind.NETWORK_ERROR, detail=check.reason)
            raise AcquisitionError(ErrorKind.BLOCKED_HOST, detail=check.reason)

        profile = self.profile_for(host)
        render_required = self.requires_rendering(host, profile)
        strategy = request.strategy
        if strategy is None:
            strategy = Strategy.RENDERING if render_required else Strategy.LIGHTWEIGHT
        attempts: List[FetchAttempt] = []

        prior: Optional[_LightweightPhase] = None
        if strategy is Strategy.LIGHTWEIGHT:
            prior = await self._lightweight_phase(request, profile, attempts)
            if prior.result is not None:
                return prior.result
            if not prior.escalate or request.strategy is Strategy.LIGHTWEIGHT:
                return self._settle_without_rendering(prior)
            logger.info(
                "Escalating %s to rendering after %d lightweight attempt(s)",
                request.url,
                len(attempts),
            )
        return await self._rendering_phase(request, profile, render_required, attempts, prior)

    def _settle_without_rendering(self, prior: _LightweightPhase) -> FetchResult:
        if prior.thin is not None:
            return prior.thin
        if prior.error is not None:
            raise prior.error
        raise AcquisitionError(ErrorKind.NETWORK_ERROR, detail="no_attempts")

    def _retry_delay(self, failures: int) -> float:
        cfg = self.config
        pause = self._rng.uniform(*cfg.human_pause)
        if failures <= 0:
            return pause
        backoff = min(cfg.backoff_max, cfg.backoff_initial * (2 ** (failures - 1)))
        return pause + backoff * self._rng.uniform(0.5, 1.0)

    def _attempt_identity(self, attempt: int, profile: HostProfile) -> Identity:
        if attempt == 1:
            return self.identity_pool.next(mobile=profile.prefer_mobile)
        if attempt == 2:
            return self.identity_pool.mobile()
        return self.identity_pool.next()

    def _result_from_response(
        self,
        request: FetchRequest,
        response: HttpResponse,
        attempts: List[FetchAttempt],
    ) -> FetchResult:
        metadata: Dict[str, Any] = {}
        if response.truncated:
            metadata["truncated"] = True
        return FetchResult(
            url=request.url,
            final_url=response.final_url or request.url,
            status=response.status,
            markup=response.text,
            strategy=Strategy.LIGHTWEIGHT,
            attempts=attempts,
            fetched_at=_now_iso(),
            metadata=metadata,
        )

    async def _lightweight_phase(
        self,
        request: FetchRequest,
        profile: HostProfile,
        attempts: List[FetchAttempt],
    ) -> _LightweightPhase:
        cfg = self.config
        timeout = profile.attempt_timeout_s or cfg.timeout
        failures = 0
        last_error: Optional[AcquisitionError] = None
        for attempt in range(1, cfg.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self._retry_delay(failures))
            if profile.pre_request_pause_s:
                await self._sleep(self._rng.uniform(*profile.pre_request_pause_s))
            identity = self._attempt_identity(attempt, profile)
            started = self._clock()
            try:
                response = await self.http.fetch(
                    request.url,
                    identity,
                    timeout,
                    extra_headers=profile.headers,
                    cookies=profile.cookies,
                )
            except TransportError as exc:
                attempts.append(
                    FetchAttempt(Strategy.LIGHTWEIGHT, identity.name, self._clock() - started, "error", detail=exc.detail)
                )
                logger.info("Lightweight attempt %d for %s failed: %s", attempt, request.url, exc.detail)
                failures += 1
                last_error = AcquisitionError.from_transport(exc)
                if not exc.retryable:
                    break
                continue

            attempts.append(
                FetchAttempt(
                    Strategy.LIGHTWEIGHT,
                    identity.name,
                    self._clock() - started,
                    response.outcome.value,
                    status=response.status,
                )
            )
            if response.outcome is ResponseOutcome.SOFT_BLOCK:
                logger.info("Soft block on %s (status %s): %s", request.url, response.status, dict(response.indicators))
                return _LightweightPhase(
                    error=AcquisitionError(ErrorKind.ANTI_BOT_DETECTED, status_code=response.status),
                    escalate=True,
                )
            if response.outcome is ResponseOutcome.SUCCESS:
                result = self._result_from_response(request, response, attempts)
                if response.body_bytes < cfg.min_body_bytes:
                    logger.info("Body of %s is %d bytes; treating as unrendered shell", request.url, response.body_bytes)
                    return _LightweightPhase(thin=result, escalate=True)
                return _LightweightPhase(result=result)

            failures += 1
            last_error = AcquisitionError(ErrorKind.HTTP_STATUS_ERROR, status_code=response.status)
            if response.status not in RETRYABLE_STATUS_CODES:
                return _LightweightPhase(
                    error=last_error,
                    escalate=response.status in RENDER_FALLBACK_STATUS_CODES,
                )
        if last_error is None:
            last_error = AcquisitionError(ErrorKind.NETWORK_ERROR, detail="no_attempts")
        return _LightweightPhase(error=last_error, escalate=True)

    async def _rendering_phase(
        self,
        request: FetchRequest,
        profile: HostProfile,
        render_required: bool,
        attempts: List[FetchAttempt],
        prior: Optional[_LightweightPhase],
    ) -> FetchResult:
        if not self.browser.available and prior is not None:
            logger.info("Rendering unavailable; settling %s on lightweight outcome", request.url)
            return self._settle_without_rendering(prior)

        options = RenderOptions(
            allow_heavy_resources=profile.allow_heavy_resources or render_required,
            extra_wait_ms=profile.extra_wait_ms,
            extra_headers=dict(profile.headers),
            cookies=dict(profile.cookies),
        )
        identity = self.identity_pool.next(mobile=profile.prefer_mobile)
        started = self._clock()
        try:
            rendered = await self.browser.render(request.url, options, identity=identity)
        except TransportError as exc:
            attempts.append(
                FetchAttempt(Strategy.RENDERING, identity.name, self._clock() - started, "error", detail=exc.detail)
            )
            if prior is not None and (prior.thin is not None or exc.kind is ErrorKind.RENDERING_UNAVAILABLE):
                return self._settle_without_rendering(prior)
            raise AcquisitionError.from_transport(exc) from None

        attempts.append(
            FetchAttempt(
                Strategy.RENDERING,
                identity.name,
                self._clock() - started,
                rendered.outcome.value,
                status=rendered.status,
            )
        )
        if rendered.outcome is ResponseOutcome.SOFT_BLOCK:
            logger.warning("Still blocked after rendering %s: %s", request.url, rendered.indicators)
            raise AcquisitionError(ErrorKind.ANTI_BOT_DETECTED, status_code=rendered.status)
        if rendered.outcome is ResponseOutcome.HTTP_ERROR:
            raise AcquisitionError(ErrorKind.HTTP_STATUS_ERROR, status_code=rendered.status)

        readiness = rendered.readiness
        return FetchResult(
            url=request.url,
            final_url=rendered.final_url,
            status=rendered.status,
            markup=rendered.markup,
            strategy=Strategy.RENDERING,
            attempts=attempts,
            fetched_at=_now_iso(),
            metadata={
                "ready": readiness.ready,
                "reloads": readiness.reloads,
                "readiness_samples": readiness.samples,
                "interstitial_seen": readiness.interstitial_seen,
            },
        )


__all__ = [
    "FetchAttempt",
    "FetchConfig",
    "FetchRequest",
    "FetchResult",
    "HostProfile",
    "Strategy",
    "URLFetcher",
    "load_fetch_config_from_env",
    "load_host_profiles",
]
