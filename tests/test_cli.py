import json
import random

from typer.testing import CliRunner

from webacquire import cli
from webacquire.workflows import browser_transport
from webacquire.workflows.host_safety import HostSafetyFilter
from webacquire.workflows.http_transport import HttpResponse, ResponseOutcome
from webacquire.workflows.web_fetch import FetchConfig, URLFetcher

runner = CliRunner()

PAGE = (
    "<html><head><title>Depto en Roma Norte</title></head><body>"
    + "<p>Departamento luminoso con balcón.</p>" * 100
    + '<img src="https://cdn.example.com/d/1.jpg" width="1024" height="768"></body></html>'
)


class StaticHttp:
    async def fetch(self, url, identity, timeout, *, extra_headers=None, cookies=None):
        return HttpResponse(status=200, text=PAGE, final_url=url, outcome=ResponseOutcome.SUCCESS, body_bytes=len(PAGE))


class NoBrowser:
    available = False

    async def render(self, url, options=None, *, identity=None):
        raise AssertionError("rendering not expected")


async def _public(host):
    return ["93.184.216.34"]


def _use_fake_fetcher(monkeypatch):
    fake = URLFetcher(
        FetchConfig(),
        host_filter=HostSafetyFilter(resolver=_public),
        http_transport=StaticHttp(),
        browser_transport=NoBrowser(),
        rng=random.Random(2),
    )
    monkeypatch.setattr(cli, "get_default_fetcher", lambda: fake)


def test_help_without_command():
    result = runner.invoke(cli.app, [])

    assert result.exit_code == 0
    assert "webacquire get <url>" in result.stdout


def test_get_prints_fetch_summary_and_document(monkeypatch):
    _use_fake_fetcher(monkeypatch)

    result = runner.invoke(cli.app, ["get", "https://depas.example.com/1"])

    assert result.exit_code == 0
    body = json.loads(result.stdout)
    assert body["ok"] is True
    assert body["fetch"]["strategy"] == "lightweight"
    assert body["document"]["title"] == "Depto en Roma Norte"
    assert body["document"]["images"][0]["url"] == "https://cdn.example.com/d/1.jpg"


def test_get_raw_prints_markup(monkeypatch):
    _use_fake_fetcher(monkeypatch)

    result = runner.invoke(cli.app, ["get", "https://depas.example.com/1", "--raw"])

    assert result.exit_code == 0
    assert result.stdout == PAGE


def test_get_payload(monkeypatch):
    _use_fake_fetcher(monkeypatch)

    result = runner.invoke(cli.app, ["get", "https://depas.example.com/1", "--payload"])

    payload = json.loads(result.stdout)
    assert payload["url"] == "https://depas.example.com/1"
    assert payload["images"] == ["https://cdn.example.com/d/1.jpg"]


def test_get_reports_classified_errors(monkeypatch):
    _use_fake_fetcher(monkeypatch)

    result = runner.invoke(cli.app, ["get", "ftp://depas.example.com/1"])

    assert result.exit_code == 2
    error = json.loads(result.stdout.splitlines()[0])
    assert error == {"ok": False, "error": "UNSUPPORTED_PROTOCOL", "detail": "ftp", "http_status": 400}


def test_doctor_command(monkeypatch):
    monkeypatch.setattr(browser_transport, "async_playwright", None)
    monkeypatch.setenv("WEBACQUIRE_RENDER_ENABLED", "false")
    monkeypatch.delenv("WEBACQUIRE_HOST_PROFILES_PATH", raising=False)

    result = runner.invoke(cli.app, ["doctor"])

    assert result.exit_code == 0
    assert "webacquire doctor" in result.stdout
    assert "Rendering fallback disabled by configuration" in result.stdout
