import asyncio
import json
import random
import time
from pathlib import Path
from typing import Any, List, Optional

import pytest

from webacquire.workflows.browser_transport import ContentReadinessState, ReadinessOutcome, RenderResult
from webacquire.workflows.errors import AcquisitionError, ErrorKind, TransportError
from webacquire.workflows.host_safety import HostSafetyFilter
from webacquire.workflows.http_transport import HttpResponse, ResponseOutcome
from webacquire.workflows.web_fetch import FetchConfig, Strategy, URLFetcher, _LightweightPhase, load_host_profiles

PUBLIC_IP = "93.184.216.34"
BIG_PAGE = "<html><body>" + "<p>listing details</p>" * 200 + "</body></html>"


def _response(status: int, text: str = BIG_PAGE, outcome: Optional[ResponseOutcome] = None, url: str = "https://example.com/") -> HttpResponse:
    if outcome is None:
        outcome = ResponseOutcome.SUCCESS if status < 400 else ResponseOutcome.HTTP_ERROR
    return HttpResponse(
        status=status,
        text=text,
        final_url=url,
        outcome=outcome,
        body_bytes=len(text.encode("utf-8")),
    )


def _rendered(status: int = 200, outcome: ResponseOutcome = ResponseOutcome.SUCCESS, markup: str = BIG_PAGE) -> RenderResult:
    state = ContentReadinessState(title="Casa", body_length=900)
    return RenderResult(
        markup=markup,
        status=status,
        final_url="https://example.com/rendered",
        outcome=outcome,
        readiness=ReadinessOutcome(True, state, samples=1, reloads=0),
    )


class FakeHttp:
    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: List[dict] = []

    async def fetch(self, url, identity, timeout, *, extra_headers=None, cookies=None):
        self.calls.append(
            {"url": url, "identity": identity, "timeout": timeout, "headers": dict(extra_headers or {}), "cookies": dict(cookies or {})}
        )
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeBrowser:
    def __init__(self, result: Any = None, *, available: bool = True) -> None:
        self.result = result if result is not None else _rendered()
        self.available = available
        self.calls: List[dict] = []

    async def render(self, url, options=None, *, identity=None):
        self.calls.append({"url": url, "options": options, "identity": identity})
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


async def _public_resolver(host):
    return [PUBLIC_IP]


async def _no_sleep(seconds):
    return None


def _fetcher(http, browser, config=None, resolver=_public_resolver, sleep=_no_sleep) -> URLFetcher:
    config = config or FetchConfig(max_attempts=3)
    return URLFetcher(
        config,
        host_filter=HostSafetyFilter(denylist=config.denylist_hosts, resolver=resolver),
        http_transport=http,
        browser_transport=browser,
        sleep=sleep,
        rng=random.Random(7),
    )


def test_unsupported_scheme_is_rejected_before_any_io():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("ftp://example.com/file"))

    assert excinfo.value.kind is ErrorKind.UNSUPPORTED_PROTOCOL
    assert http.calls == [] and browser.calls == []


def test_private_literal_host_is_blocked_without_transport_calls():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("http://10.0.0.5/"))

    assert excinfo.value.kind is ErrorKind.BLOCKED_HOST
    assert excinfo.value.detail == "private_address"
    assert http.calls == [] and browser.calls == []


def test_name_resolving_to_loopback_is_blocked():
    async def resolver(host):
        return [PUBLIC_IP, "127.0.0.1"]

    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser, resolver=resolver)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://rebind.example.com/"))

    assert excinfo.value.kind is ErrorKind.BLOCKED_HOST
    assert http.calls == []


def test_dns_failure_is_a_network_error():
    async def resolver(host):
        raise OSError("Name or service not known")

    fetcher = _fetcher(FakeHttp(_response(200)), FakeBrowser(), resolver=resolver)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://nowhere.example.com/"))

    assert excinfo.value.kind is ErrorKind.NETWORK_ERROR


def test_lightweight_success_returns_without_rendering():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser)

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert result.strategy is Strategy.LIGHTWEIGHT
    assert result.status == 200
    assert result.markup == BIG_PAGE
    assert len(http.calls) == 1
    assert browser.calls == []
    assert http.calls[0]["identity"].mobile is False


def test_soft_block_escalates_to_rendering():
    http = FakeHttp(_response(403, "<title>Access Denied</title>", ResponseOutcome.SOFT_BLOCK))
    browser = FakeBrowser()
    fetcher = _fetcher(http, browser)

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert result.strategy is Strategy.RENDERING
    assert result.status == 200
    assert result.final_url == "https://example.com/rendered"
    assert len(http.calls) == 1
    assert len(browser.calls) == 1
    assert [a.strategy for a in result.attempts] == [Strategy.LIGHTWEIGHT, Strategy.RENDERING]
    assert result.metadata["ready"] is True


def test_second_attempt_uses_mobile_identity_after_backoff():
    sleeps: List[float] = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    http = FakeHttp(_response(503), _response(200))
    fetcher = _fetcher(http, FakeBrowser(), sleep=record_sleep)

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert result.status == 200
    assert len(http.calls) == 2
    assert http.calls[0]["identity"].mobile is False
    assert http.calls[1]["identity"].mobile is True
    assert len(sleeps) == 1
    assert 0.8 + 0.4 <= sleeps[0] <= 2.5 + 0.8


def test_retryable_failures_exhaust_attempts_then_escalate():
    http = FakeHttp(TransportError(ErrorKind.NETWORK_ERROR, "connection_failed"))
    browser = FakeBrowser()
    fetcher = _fetcher(http, browser, config=FetchConfig(max_attempts=3))

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert len(http.calls) == 3
    assert result.strategy is Strategy.RENDERING


def test_non_retryable_transport_error_stops_the_lightweight_phase():
    http = FakeHttp(TransportError(ErrorKind.NETWORK_ERROR, "too_many_redirects", retryable=False))
    browser = FakeBrowser(TransportError(ErrorKind.NETWORK_ERROR, "navigation_failed", retryable=False))
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/"))

    assert len(http.calls) == 1
    assert excinfo.value.kind is ErrorKind.NETWORK_ERROR
    assert excinfo.value.detail == "navigation_failed"


def test_thin_body_escalates_to_rendering():
    http = FakeHttp(_response(200, "<html><body><div id=app></div></body></html>"))
    browser = FakeBrowser()
    fetcher = _fetcher(http, browser)

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert result.strategy is Strategy.RENDERING
    assert len(browser.calls) == 1


def test_thin_body_is_returned_when_rendering_is_unavailable():
    shell = "<html><body><div id=app></div></body></html>"
    http = FakeHttp(_response(200, shell))
    browser = FakeBrowser(available=False)
    fetcher = _fetcher(http, browser)

    result = asyncio.run(fetcher.fetch("https://example.com/"))

    assert result.strategy is Strategy.LIGHTWEIGHT
    assert result.markup == shell
    assert browser.calls == []


def test_render_required_host_skips_lightweight():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser, config=FetchConfig(render_domains=("example.com",)))

    result = asyncio.run(fetcher.fetch("https://listings.example.com/casa/1"))

    assert result.strategy is Strategy.RENDERING
    assert http.calls == []
    assert browser.calls[0]["options"].allow_heavy_resources is True


def test_rendering_host_profile_goes_straight_to_browser():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser)

    asyncio.run(fetcher.fetch("https://www.lamudi.com.mx/detalle/123"))

    assert http.calls == []
    assert browser.calls[0]["options"].extra_wait_ms == 1500


def test_host_profile_headers_cookies_and_identity_are_applied():
    sleeps: List[float] = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser, sleep=record_sleep)

    asyncio.run(fetcher.fetch("https://www.inmuebles24.com/propiedades/1.html"))

    call = http.calls[0]
    assert call["identity"].mobile is True
    assert call["headers"]["Referer"] == "https://www.google.com/"
    assert call["cookies"] == {"cookieConsent": "true"}
    assert call["timeout"] == 30.0
    assert len(sleeps) == 1 and 1.0 <= sleeps[0] <= 3.0


def test_not_found_through_rendering_reports_status():
    http = FakeHttp(_response(404))
    browser = FakeBrowser(_rendered(404, ResponseOutcome.HTTP_ERROR))
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/gone"))

    assert excinfo.value.kind is ErrorKind.HTTP_STATUS_ERROR
    assert excinfo.value.status_code == 404
    assert len(http.calls) == 1


def test_definitive_status_without_fallback_is_not_retried():
    http, browser = FakeHttp(_response(410)), FakeBrowser()
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/old"))

    assert excinfo.value.kind is ErrorKind.HTTP_STATUS_ERROR
    assert excinfo.value.status_code == 410
    assert len(http.calls) == 1
    assert browser.calls == []


def test_still_blocked_after_rendering():
    http = FakeHttp(_response(403, "<title>Access Denied</title>", ResponseOutcome.SOFT_BLOCK))
    browser = FakeBrowser(_rendered(403, ResponseOutcome.SOFT_BLOCK))
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/"))

    assert excinfo.value.kind is ErrorKind.ANTI_BOT_DETECTED


def test_rendering_unavailable_surfaces_lightweight_error():
    http = FakeHttp(TransportError(ErrorKind.NETWORK_ERROR, "connection_failed"))
    browser = FakeBrowser(TransportError(ErrorKind.RENDERING_UNAVAILABLE, "playwright_missing", retryable=False))
    fetcher = _fetcher(http, browser, config=FetchConfig(max_attempts=2))

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/"))

    assert excinfo.value.kind is ErrorKind.NETWORK_ERROR
    assert excinfo.value.detail == "connection_failed"


def test_forced_rendering_without_browser_reports_unavailable():
    http = FakeHttp(_response(200))
    browser = FakeBrowser(TransportError(ErrorKind.RENDERING_UNAVAILABLE, "playwright_missing", retryable=False))
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/", strategy=Strategy.RENDERING))

    assert excinfo.value.kind is ErrorKind.RENDERING_UNAVAILABLE
    assert http.calls == []


def test_forced_lightweight_never_escalates():
    http = FakeHttp(_response(403, "<title>Access Denied</title>", ResponseOutcome.SOFT_BLOCK))
    browser = FakeBrowser()
    fetcher = _fetcher(http, browser)

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/", strategy=Strategy.LIGHTWEIGHT))

    assert excinfo.value.kind is ErrorKind.ANTI_BOT_DETECTED
    assert browser.calls == []


def test_settling_with_no_attempts_is_a_network_error():
    http, browser = FakeHttp(_response(200)), FakeBrowser()
    fetcher = _fetcher(http, browser, FetchConfig(max_attempts=0))

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/", strategy=Strategy.LIGHTWEIGHT))
    assert excinfo.value.kind is ErrorKind.NETWORK_ERROR
    assert excinfo.value.detail == "no_attempts"
    assert http.calls == []

    with pytest.raises(AcquisitionError) as excinfo:
        fetcher._settle_without_rendering(_LightweightPhase())
    assert excinfo.value.detail == "no_attempts"


def test_deadline_cancels_inflight_work_and_releases_it_once():
    released = []

    class HangingHttp:
        async def fetch(self, url, identity, timeout, *, extra_headers=None, cookies=None):
            try:
                await asyncio.sleep(10)
            finally:
                released.append(url)

    fetcher = _fetcher(HangingHttp(), FakeBrowser())

    started = time.monotonic()
    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(fetcher.fetch("https://example.com/", 0.05))
    elapsed = time.monotonic() - started

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert elapsed < 0.2
    assert released == ["https://example.com/"]


def test_result_serializes_attempt_summary():
    http = FakeHttp(_response(503), _response(200))
    fetcher = _fetcher(http, FakeBrowser())

    result = asyncio.run(fetcher.fetch("https://example.com/"))
    payload = json.loads(result.to_json())

    assert payload["strategy"] == "lightweight"
    assert [a["status"] for a in payload["attempts"]] == [503, 200]
    assert payload["markup_length"] == len(BIG_PAGE)


def test_load_host_profiles_prepends_file_entries(tmp_path: Path) -> None:
    path = tmp_path / "profiles.json"
    path.write_text(
        json.dumps({"profiles": [{"host": "Example.COM", "strategy": "rendering", "extra_wait_ms": 500}, {"strategy": "lightweight"}]}),
        encoding="utf-8",
    )

    profiles = load_host_profiles(path)

    assert profiles[0].host == "example.com"
    assert profiles[0].strategy is Strategy.RENDERING
    assert any(p.host == "inmuebles24.com" for p in profiles[1:])


def test_load_host_profiles_ignores_broken_file(tmp_path: Path) -> None:
    path = tmp_path / "profiles.json"
    path.write_text("{not json", encoding="utf-8")

    profiles = load_host_profiles(path)

    assert profiles and profiles[0].host == "inmuebles24.com"
