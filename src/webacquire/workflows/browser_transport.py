"""Playwright rendering transport with human simulation and readiness polling.

One ``render`` call owns one browser: launch, navigate, interact, poll
until the page stops looking like an interstitial, capture markup, and
close everything on every exit path (including cancellation by the
caller's deadline).
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from .antibot_detector import detect_soft_block, is_interstitial_title
from .errors import ErrorKind, TransportError
from .fetcher_config import (
    BROWSER_IGNORED_DEFAULT_ARGS,
    BROWSER_LAUNCH_ARGS,
    CONSENT_BUTTON_TEXT,
    CONSENT_SELECTORS,
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_LOCALE,
    DEFAULT_NAV_TIMEOUT_MS,
    DEFAULT_READY_MIN_CHARS,
    DEFAULT_READY_POLL_MS,
    DEFAULT_READY_TIMEOUT_MS,
    HEAVY_RESOURCE_TYPES,
    INTERSTITIAL_TITLE_PATTERNS,
    MOBILE_VIEWPORT,
    SOFT_BLOCK_STATUS_CODES,
    VIEWPORT_HEIGHT_RANGE,
    VIEWPORT_WIDTH_RANGE,
)
from .http_transport import ResponseOutcome
from .identity import Identity, IdentityPool

logger = logging.getLogger(__name__)

try:  # Playwright is optional; rendering reports RENDERING_UNAVAILABLE without it
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError  # type: ignore
    from playwright.async_api import async_playwright  # type: ignore
except Exception:  # pragma: no cover - handled at runtime
    async_playwright = None  # type: ignore
    PlaywrightTimeoutError = None  # type: ignore

Sleep = Callable[[float], Awaitable[Any]]

READINESS_SCRIPT = (
    "() => ({"
    "title: document.title || '',"
    "length: ((document.body && document.body.innerText) || '').trim().length"
    "})"
)
WEBDRIVER_MASK_SCRIPT = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

_CONTEXT_LOST_MARKERS = (
    "execution context was destroyed",
    "cannot find context with specified id",
    "page is navigating",
)
_CLOSED_MARKERS = ("has been closed", "target closed", "browser closed", "crashed")
# Challenge walls often answer 403/503 first and then swap in the real page.
_CHALLENGE_STATUSES = frozenset({403, 429, 503})


@dataclass(frozen=True)
class RenderConfig:
    enabled: bool = True
    headless: bool = True
    nav_timeout_s: float = DEFAULT_NAV_TIMEOUT_MS / 1000
    ready_timeout_s: float = DEFAULT_READY_TIMEOUT_MS / 1000
    ready_min_chars: int = DEFAULT_READY_MIN_CHARS
    poll_interval_s: float = DEFAULT_READY_POLL_MS / 1000
    reload_after_polls: int = 2
    max_reloads: int = 1
    evaluate_retries: int = 3
    network_idle_s: float = 10.0
    locale: str = DEFAULT_LOCALE
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    interstitial_patterns: Tuple[str, ...] = INTERSTITIAL_TITLE_PATTERNS
    simulate_human: bool = True
    scroll_window_s: float = 3.0


@dataclass(frozen=True)
class RenderOptions:
    allow_heavy_resources: bool = False
    extra_wait_ms: int = 0
    extra_headers: Mapping[str, str] = field(default_factory=dict, compare=False)
    cookies: Mapping[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ContentReadinessState:
    """Title and visible text length observed at one polling instant."""

    title: str
    body_length: int

    def is_interstitial(self, patterns: Tuple[str, ...]) -> bool:
        return is_interstitial_title(self.title, patterns)

    def is_ready(self, patterns: Tuple[str, ...], min_chars: int) -> bool:
        return not self.is_interstitial(patterns) and self.body_length > min_chars


@dataclass(frozen=True)
class ReadinessOutcome:
    ready: bool
    state: ContentReadinessState
    samples: int
    reloads: int
    interstitial_seen: bool = False
    reload_status: Optional[int] = None


@dataclass(frozen=True)
class RenderResult:
    markup: str
    status: int
    final_url: str
    outcome: ResponseOutcome
    readiness: ReadinessOutcome
    indicators: Dict[str, Any] = field(default_factory=dict, compare=False)


def _is_context_lost(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CONTEXT_LOST_MARKERS)


async def retry_on_context_loss(
    call: Callable[[], Awaitable[Any]],
    *,
    retries: int = 3,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """Re-run an in-page call invalidated by a concurrent navigation."""

    attempt = 0
    while True:
        try:
            return await call()
        except Exception as exc:
            if attempt >= retries or not _is_context_lost(exc):
                raise
            attempt += 1
            logger.debug("Page context lost (%d/%d); retrying", attempt, retries)
            await sleep(0.25 * attempt)


def classify_browser_error(exc: BaseException) -> TransportError:
    """Map a Playwright failure to the shared taxonomy."""

    message = str(exc).lower()
    if PlaywrightTimeoutError is not None and isinstance(exc, PlaywrightTimeoutError):
        return TransportError(ErrorKind.NETWORK_ERROR, "navigation_timeout", retryable=False)
    if "net::err_" in message or "ns_error_" in message:
        return TransportError(ErrorKind.NETWORK_ERROR, "navigation_failed", retryable=False)
    if any(marker in message for marker in _CLOSED_MARKERS):
        return TransportError(ErrorKind.RENDERING_UNAVAILABLE, "browser_closed", retryable=False)
    return TransportError(ErrorKind.RENDERING_UNAVAILABLE, "browser_error", retryable=False)


class ReadinessPoller:
    """Samples a live page until it looks like real content.

    Ready means the title matches no interstitial pattern and the visible
    text is longer than ``ready_min_chars``. An interstitial that persists
    for ``reload_after_polls`` consecutive samples triggers a reload, at most
    ``max_reloads`` times. The poller gives up once ``ready_timeout_s``
    elapses and reports the last state it saw.
    """

    def __init__(
        self,
        config: RenderConfig,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._clock = clock

    async def sample(self, page: Any) -> ContentReadinessState:
        data = await retry_on_context_loss(
            lambda: page.evaluate(READINESS_SCRIPT),
            retries=self.config.evaluate_retries,
            sleep=self._sleep,
        )
        data = data or {}
        return ContentReadinessState(
            title=str(data.get("title") or ""),
            body_length=int(data.get("length") or 0),
        )

    async def wait(self, page: Any) -> ReadinessOutcome:
        cfg = self.config
        patterns = cfg.interstitial_patterns
        deadline = self._clock() + cfg.ready_timeout_s
        samples = 0
        reloads = 0
        streak = 0
        seen = False
        reload_status: Optional[int] = None
        while True:
            state = await self.sample(page)
            samples += 1
            if state.is_ready(patterns, cfg.ready_min_chars):
                return ReadinessOutcome(True, state, samples, reloads, seen, reload_status)
            interstitial = state.is_interstitial(patterns)
            seen = seen or interstitial
            streak = streak + 1 if interstitial else 0
            if self._clock() >= deadline:
                logger.info("Readiness deadline elapsed after %d samples (title=%r)", samples, state.title[:80])
                return ReadinessOutcome(False, state, samples, reloads, seen, reload_status)
            if interstitial and streak >= cfg.reload_after_polls and reloads < cfg.max_reloads:
                reloads += 1
                streak = 0
                reload_status = await self._reload(page, reload_status)
            await self._sleep(cfg.poll_interval_s)

    async def _reload(self, page: Any, previous: Optional[int]) -> Optional[int]:
        logger.info("Interstitial persisted; reloading page once")
        try:
            response = await page.reload(
                wait_until="domcontentloaded",
                timeout=int(self.config.nav_timeout_s * 1000),
            )
        except Exception as exc:
            # The challenge script may navigate on its own while we reload.
            logger.debug("Reload interrupted: %s", exc.__class__.__name__)
            return previous
        if response is None:
            return previous
        return response.status


class HumanSimulator:
    """Bounded, best-effort interaction: consent, pointer, scroll."""

    def __init__(
        self,
        *,
        rng: random.Random,
        sleep: Sleep = asyncio.sleep,
        scroll_window_s: float = 3.0,
    ) -> None:
        self._rng = rng
        self._sleep = sleep
        self._scroll_window_s = scroll_window_s

    async def run(self, page: Any, viewport: Mapping[str, int]) -> Dict[str, Any]:
        report: Dict[str, Any] = {"consent_dismissed": await self.dismiss_consent(page)}
        report["pointer_moves"] = await self.move_pointer(page, viewport)
        report["scroll_steps"] = await self.scroll(page)
        return report

    async def dismiss_consent(self, page: Any) -> bool:
        for selector in CONSENT_SELECTORS:
            try:
                locator = page.locator(selector).first
                if await locator.is_visible():
                    await locator.click(timeout=1500)
                    logger.debug("Dismissed consent banner via %s", selector)
                    return True
            except Exception:
                continue
        try:
            button = page.get_by_role("button", name=re.compile(CONSENT_BUTTON_TEXT, re.I)).first
            if await button.is_visible():
                await button.click(timeout=1500)
                return True
        except Exception as exc:
            logger.debug("Consent text match failed: %s", exc.__class__.__name__)
        return False

    async def move_pointer(self, page: Any, viewport: Mapping[str, int]) -> int:
        width = int(viewport.get("width", 1280))
        height = int(viewport.get("height", 720))
        moves = self._rng.randint(2, 4)
        done = 0
        try:
            for _ in range(moves):
                x = self._rng.randint(int(width * 0.1), int(width * 0.9))
                y = self._rng.randint(int(height * 0.1), int(height * 0.9))
                await page.mouse.move(x, y, steps=self._rng.randint(5, 15))
                done += 1
                await self._sleep(self._rng.uniform(0.1, 0.4))
        except Exception as exc:
            logger.debug("Pointer simulation stopped: %s", exc.__class__.__name__)
        return done

    async def scroll(self, page: Any) -> int:
        steps = self._rng.randint(3, 6)
        pause = self._scroll_window_s / steps
        done = 0
        try:
            for _ in range(steps):
                await page.mouse.wheel(0, self._rng.randint(250, 700))
                done += 1
                await self._sleep(pause * self._rng.uniform(0.7, 1.3))
        except Exception as exc:
            logger.debug("Scroll simulation stopped: %s", exc.__class__.__name__)
        return done


async def _close_quietly(resource: Any, label: str) -> None:
    try:
        await resource.close()
    except Exception as exc:
        logger.debug("Closing %s failed: %s", label, exc.__class__.__name__)


class BrowserTransport:
    """Chromium via Playwright; one isolated browser per ``render`` call."""

    def __init__(
        self,
        config: Optional[RenderConfig] = None,
        *,
        identity_pool: Optional[IdentityPool] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or RenderConfig()
        self._rng = rng or random.Random()
        self._pool = identity_pool or IdentityPool(rng=self._rng)
        self._factory = playwright_factory if playwright_factory is not None else async_playwright
        self._sleep = sleep
        self._poller = ReadinessPoller(self.config, sleep=sleep, clock=clock)
        self._human = HumanSimulator(rng=self._rng, sleep=sleep, scroll_window_s=self.config.scroll_window_s)

    @property
    def available(self) -> bool:
        return self.config.enabled and self._factory is not None

    async def render(
        self,
        url: str,
        options: Optional[RenderOptions] = None,
        *,
        identity: Optional[Identity] = None,
    ) -> RenderResult:
        if not self.config.enabled:
            raise TransportError(ErrorKind.RENDERING_UNAVAILABLE, "rendering_disabled", retryable=False)
        if self._factory is None:
            raise TransportError(ErrorKind.RENDERING_UNAVAILABLE, "playwright_missing", retryable=False)
        options = options or RenderOptions()
        identity = identity or self._pool.desktop()
        try:
            return await self._render(url, options, identity)
        except TransportError:
            raise
        except Exception as exc:
            error = classify_browser_error(exc)
            logger.warning("Rendering %s failed: %s", url, error.detail)
            raise error from exc

    async def _render(self, url: str, options: RenderOptions, identity: Identity) -> RenderResult:
        async with self._factory() as p:
            try:
                browser = await p.chromium.launch(
                    headless=self.config.headless,
                    args=list(BROWSER_LAUNCH_ARGS),
                    ignore_default_args=list(BROWSER_IGNORED_DEFAULT_ARGS),
                )
            except Exception as exc:
                raise TransportError(ErrorKind.RENDERING_UNAVAILABLE, "launch_failed", retryable=False) from exc
            try:
                viewport = self._viewport(identity)
                context = await browser.new_context(**self._context_options(identity, viewport, options))
                try:
                    return await self._drive(context, url, options, viewport)
                finally:
                    await _close_quietly(context, "context")
            finally:
                await _close_quietly(browser, "browser")
                logger.debug("Browser session for %s released", url)

    def _viewport(self, identity: Identity) -> Dict[str, int]:
        if identity.mobile:
            return dict(MOBILE_VIEWPORT)
        return {
            "width": self._rng.randint(*VIEWPORT_WIDTH_RANGE),
            "height": self._rng.randint(*VIEWPORT_HEIGHT_RANGE),
        }

    def _context_options(
        self,
        identity: Identity,
        viewport: Dict[str, int],
        options: RenderOptions,
    ) -> Dict[str, Any]:
        headers = {"Accept-Language": self.config.accept_language}
        headers.update(options.extra_headers)
        context_options: Dict[str, Any] = {
            "user_agent": identity.user_agent,
            "viewport": viewport,
            "locale": self.config.locale,
            "java_script_enabled": True,
            "extra_http_headers": headers,
        }
        if identity.mobile:
            context_options["is_mobile"] = True
            context_options["has_touch"] = True
        return context_options

    async def _drive(
        self,
        context: Any,
        url: str,
        options: RenderOptions,
        viewport: Dict[str, int],
    ) -> RenderResult:
        await context.add_init_script(WEBDRIVER_MASK_SCRIPT)
        if options.cookies:
            await context.add_cookies(
                [{"name": k, "value": v, "url": url} for k, v in options.cookies.items()]
            )
        if not options.allow_heavy_resources:
            await context.route("**/*", _block_heavy_resources)

        page = await context.new_page()
        response = await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=int(self.config.nav_timeout_s * 1000),
        )
        status = response.status if response is not None else 200
        try:
            await page.wait_for_load_state("networkidle", timeout=int(self.config.network_idle_s * 1000))
        except Exception:
            logger.debug("Network never went idle for %s", url)
        if options.extra_wait_ms > 0:
            await self._sleep(options.extra_wait_ms / 1000)
        if self.config.simulate_human:
            await self._human.run(page, viewport)

        readiness = await self._poller.wait(page)
        if readiness.reload_status is not None:
            status = readiness.reload_status
        markup = await retry_on_context_loss(
            page.content,
            retries=self.config.evaluate_retries,
            sleep=self._sleep,
        )
        outcome, indicators = self._classify(status, markup, readiness)
        return RenderResult(
            markup=markup,
            status=status,
            final_url=page.url or url,
            outcome=outcome,
            readiness=readiness,
            indicators=indicators,
        )

    def _classify(
        self,
        status: int,
        markup: str,
        readiness: ReadinessOutcome,
    ) -> Tuple[ResponseOutcome, Dict[str, Any]]:
        indicators: Dict[str, Any] = {}
        if not readiness.ready and readiness.state.is_interstitial(self.config.interstitial_patterns):
            indicators["interstitial_title"] = readiness.state.title[:120]
        detection = detect_soft_block(None, markup)
        if readiness.ready:
            # Real content rendered; vendor scripts left in the DOM do not count.
            detection["indicators"].pop("markup_tokens", None)
        indicators.update(detection["indicators"])
        if indicators:
            return ResponseOutcome.SOFT_BLOCK, indicators
        if 200 <= status < 400 or (readiness.ready and status in _CHALLENGE_STATUSES):
            return ResponseOutcome.SUCCESS, indicators
        if status in SOFT_BLOCK_STATUS_CODES:
            indicators["block_status"] = status
            return ResponseOutcome.SOFT_BLOCK, indicators
        return ResponseOutcome.HTTP_ERROR, indicators


async def _block_heavy_resources(route: Any) -> None:
    if route.request.resource_type in HEAVY_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


__all__ = [
    "BrowserTransport",
    "ContentReadinessState",
    "HumanSimulator",
    "ReadinessOutcome",
    "ReadinessPoller",
    "RenderConfig",
    "RenderOptions",
    "RenderResult",
    "classify_browser_error",
    "retry_on_context_loss",
    "async_playwright",
]
