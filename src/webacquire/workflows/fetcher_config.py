"""Acquisition defaults (identities, headers, signatures, host quirks).

Centralizes static defaults so the transports carry no embedded magic
strings. Everything here is immutable and read concurrently by every
acquisition call; callers override through ``FetchConfig`` or the
``WEBACQUIRE_*`` environment variables instead of mutating these tables.
"""

from __future__ import annotations

from types import MappingProxyType

# Environment variable names
ENV_PREFIX = "WEBACQUIRE_"
ENV_TIMEOUT_MS = "WEBACQUIRE_TIMEOUT_MS"
ENV_MAX_BYTES = "WEBACQUIRE_MAX_BYTES"
ENV_MAX_REDIRECTS = "WEBACQUIRE_MAX_REDIRECTS"
ENV_MAX_ATTEMPTS = "WEBACQUIRE_MAX_ATTEMPTS"
ENV_REQUEST_TIMEOUT_S = "WEBACQUIRE_REQUEST_TIMEOUT_S"
ENV_MIN_BODY_BYTES = "WEBACQUIRE_MIN_BODY_BYTES"
ENV_ACCEPT_LANGUAGE = "WEBACQUIRE_ACCEPT_LANGUAGE"
ENV_LOCALE = "WEBACQUIRE_LOCALE"
ENV_RENDER_ENABLED = "WEBACQUIRE_RENDER_ENABLED"
ENV_RENDER_HEADLESS = "WEBACQUIRE_RENDER_HEADLESS"
ENV_NAV_TIMEOUT_MS = "WEBACQUIRE_NAV_TIMEOUT_MS"
ENV_READY_TIMEOUT_MS = "WEBACQUIRE_READY_TIMEOUT_MS"
ENV_READY_MIN_CHARS = "WEBACQUIRE_READY_MIN_CHARS"
ENV_READY_POLL_MS = "WEBACQUIRE_READY_POLL_MS"
ENV_INTERSTITIAL_PATTERNS = "WEBACQUIRE_INTERSTITIAL_PATTERNS"
ENV_DENYLIST_HOSTS = "WEBACQUIRE_DENYLIST_HOSTS"
ENV_RENDER_DOMAINS = "WEBACQUIRE_RENDER_DOMAINS"
ENV_HOST_PROFILES_PATH = "WEBACQUIRE_HOST_PROFILES_PATH"

# Transport limits
DEFAULT_TIMEOUT_MS = 15000
DEFAULT_MAX_BYTES = 2_000_000
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_REQUEST_TIMEOUT_S = 180.0
DEFAULT_MIN_BODY_BYTES = 2048
BACKOFF_BASE_S = 0.8
BACKOFF_CAP_S = 5.0
HUMAN_PAUSE_RANGE_S = (0.8, 2.5)

# Statuses that are worth another lightweight attempt
RETRYABLE_STATUS_CODES = frozenset({408, 425, 500, 502, 503, 504})
# Definitive failures that still justify one rendered attempt
RENDER_FALLBACK_STATUS_CODES = frozenset({401, 403, 404, 429})
SOFT_BLOCK_STATUS_CODES = frozenset({403, 429})

# Rendering
DEFAULT_NAV_TIMEOUT_MS = 45000
DEFAULT_READY_TIMEOUT_MS = 20000
DEFAULT_READY_MIN_CHARS = 500
DEFAULT_READY_POLL_MS = 750
DEFAULT_LOCALE = "es-ES"
DEFAULT_ACCEPT_LANGUAGE = "es-ES,es;q=0.9,en;q=0.8"
DEFAULT_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,image/apng,*/*;q=0.8"
)
ACCEPT_ENCODING = "gzip, deflate, zstd"
VIEWPORT_WIDTH_RANGE = (1280, 1920)
VIEWPORT_HEIGHT_RANGE = (720, 1080)
MOBILE_VIEWPORT = MappingProxyType({"width": 412, "height": 915})
HEAVY_RESOURCE_TYPES = frozenset({"image", "media", "font", "stylesheet"})
BROWSER_LAUNCH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
)
BROWSER_IGNORED_DEFAULT_ARGS = ("--enable-automation",)

# Identity table: (name, user agent, header profile index)
DESKTOP_USER_AGENTS = (
    ("chrome-windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36", 0),
    ("safari-macos", "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15", 1),
    ("firefox-windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0", 1),
    ("chrome-linux", "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36", 0),
    ("edge-windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0", 0),
    ("chrome-chromeos", "Mozilla/5.0 (X11; CrOS x86_64 14541.0.0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36", 0),
    ("firefox-ubuntu", "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0", 1),
)
MOBILE_USER_AGENTS = (
    ("chrome-android", "Mozilla/5.0 (Linux; Android 10; SM-G973F) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36", 0),
    ("safari-iphone", "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1", 1),
    ("safari-ipad", "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1", 1),
)

HEADER_PROFILES = (
    MappingProxyType({
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Cache-Control": "max-age=0",
    }),
    MappingProxyType({
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "DNT": "1",
        "Pragma": "no-cache",
        "Cache-Control": "no-cache",
    }),
)

# Host safety
DENYLIST_HOSTS = frozenset({
    "localhost",
    "localhost.localdomain",
    "metadata.google.internal",
    "metadata",
})
DENYLIST_SUFFIXES = (".localhost", ".local", ".internal", ".localdomain")

# Soft-block signatures. Markup tokens are vendor fingerprints of challenge
# pages, counted only when a block status or a short body corroborates them;
# phrases are checked against the title and the visible text of short pages.
BLOCK_MARKUP_TOKENS = (
    "distil_r_block",
    "cf-error-details",
    "/cdn-cgi/challenge-platform/",
    "_incapsula_resource",
    "px-captcha",
    "captcha-delivery.com",
    "cf-turnstile",
)
BLOCK_PHRASES = (
    "access denied",
    "captcha",
    "are you a robot",
    "you have been blocked",
    "you are unable to access",
    "request unsuccessful",
    "pardon our interruption",
    "attention required",
    "acceso denegado",
)
BLOCK_HEADER_MARKERS = MappingProxyType({
    "cf-mitigated": "challenge",
})
BLOCK_PHRASE_MAX_TEXT = 3000

INTERSTITIAL_TITLE_PATTERNS = (
    "just a moment",
    "please wait",
    "checking your browser",
    "verifying",
    "verify you are human",
    "attention required",
    "one more step",
    "ddos protection",
    "un momento",
    "espere",
    "verificando",
)

# Consent banners: ids first, then button text
CONSENT_SELECTORS = (
    "#onetrust-accept-btn-handler",
    "#didomi-notice-agree-button",
    "#CybotCookiebotDialogBodyLevelButtonLLSelectAll",
    "button#accept-cookies",
    "button[id*='accept' i]",
    "button[aria-label*='accept' i]",
)
CONSENT_BUTTON_TEXT = r"^\s*(accept|accept all|agree|i agree|ok|got it|aceptar|aceptar todo|acepto|entendido)\s*$"

# Normalizer
MIN_IMAGE_DIMENSION_PX = 150
STRIP_TAGS = (
    "script",
    "style",
    "noscript",
    "template",
    "svg",
    "canvas",
    "iframe",
    "object",
    "embed",
    "video",
    "audio",
    "meta",
    "link",
    "head",
    "nav",
)
METADATA_SEGMENT_MAX_CHARS = 8000
APP_STATE_SCRIPT_IDS = ("__NEXT_DATA__", "__NUXT_DATA__")
APP_STATE_GLOBALS = (
    "__INITIAL_STATE__",
    "__PRELOADED_STATE__",
    "__APOLLO_STATE__",
    "__NUXT__",
)
EXTRACTION_TEXT_MAX_CHARS = 120_000
EXTRACTION_MAX_IMAGES = 20

# Host quirks keyed by domain suffix
HOST_PROFILES = (
    {
        "host": "inmuebles24.com",
        "strategy": "lightweight",
        "prefer_mobile": True,
        "headers": {
            "Referer": "https://www.google.com/",
            "Sec-Fetch-Site": "cross-site",
        },
        "cookies": {"cookieConsent": "true"},
        "pre_request_pause_s": (1.0, 3.0),
        "attempt_timeout_s": 30.0,
        "allow_heavy_resources": True,
    },
    {
        "host": "lamudi.com.mx",
        "strategy": "rendering",
        "allow_heavy_resources": True,
        "extra_wait_ms": 1500,
    },
    {
        "host": "vivanuncios.com.mx",
        "strategy": "rendering",
        "allow_heavy_resources": True,
        "extra_wait_ms": 1500,
    },
    {
        "host": "idealista.com",
        "strategy": "rendering",
        "allow_heavy_resources": True,
        "extra_wait_ms": 2000,
    },
    {
        "host": "zillow.com",
        "strategy": "rendering",
        "allow_heavy_resources": True,
    },
)
