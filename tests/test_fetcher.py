import asyncio
import random

from webacquire.workflows import fetcher as fetcher_module
from webacquire.workflows.content_normalizer import normalize
from webacquire.workflows.fetcher import (
    acquire,
    acquire_and_extract,
    acquire_raw,
    acquire_sync,
    configure,
    extraction_payload,
    get_default_fetcher,
)
from webacquire.workflows.host_safety import HostSafetyFilter
from webacquire.workflows.http_transport import HttpResponse, ResponseOutcome
from webacquire.workflows.web_fetch import FetchConfig, URLFetcher

LISTING = (
    "<html><head><title>Casa en Coyoacán</title>"
    '<script type="application/ld+json">{"@type": "House", "numberOfRooms": 3}</script></head>'
    "<body><h1>Casa en Coyoacán</h1>" + "<p>Amplia casa con jardín y terraza.</p>" * 80 +
    '<img src="/fotos/1.jpg" width="800" height="600" alt="Fachada">'
    '<img src="/icono.png" width="32" height="32">'
    "</body></html>"
)


class StaticHttp:
    def __init__(self, markup: str, final_url: str) -> None:
        self.markup = markup
        self.final_url = final_url
        self.calls = 0

    async def fetch(self, url, identity, timeout, *, extra_headers=None, cookies=None):
        self.calls += 1
        return HttpResponse(
            status=200,
            text=self.markup,
            final_url=self.final_url,
            outcome=ResponseOutcome.SUCCESS,
            body_bytes=len(self.markup.encode("utf-8")),
        )


class NoBrowser:
    available = False

    async def render(self, url, options=None, *, identity=None):
        raise AssertionError("rendering not expected")


async def _public(host):
    return ["93.184.216.34"]


def _fetcher(markup: str = LISTING, final_url: str = "https://casas.example.com/propiedad/42") -> URLFetcher:
    return URLFetcher(
        FetchConfig(),
        host_filter=HostSafetyFilter(resolver=_public),
        http_transport=StaticHttp(markup, final_url),
        browser_transport=NoBrowser(),
        rng=random.Random(1),
    )


def test_acquire_normalizes_against_final_url():
    document = asyncio.run(acquire("https://casas.example.com/p/42", fetcher=_fetcher()))

    assert document.title == "Casa en Coyoacán"
    assert document.text.startswith("Casa en Coyoacán Amplia casa")
    assert "[JSON-LD]" in document.text
    assert [image.url for image in document.images] == ["https://casas.example.com/fotos/1.jpg"]
    assert document.images[0].alt == "Fachada"


def test_acquire_raw_returns_markup():
    markup = asyncio.run(acquire_raw("https://casas.example.com/p/42", fetcher=_fetcher()))

    assert markup == LISTING


def test_acquire_sync_wraps_the_async_call():
    document = acquire_sync("https://casas.example.com/p/42", fetcher=_fetcher())

    assert document.word_count > 100


def test_extraction_payload_caps_text_and_images():
    images = "".join(f'<img src="/f/{i}.jpg" width="400" height="300">' for i in range(30))
    document = normalize(f"<title>T</title><p>{'x' * 50}</p>{images}", "https://casas.example.com/")

    payload = extraction_payload(document, "https://casas.example.com/", max_chars=10)

    assert payload["url"] == "https://casas.example.com/"
    assert payload["title"] == "T"
    assert payload["text"] == "x" * 10
    assert len(payload["images"]) == 20
    assert payload["images"][0] == "https://casas.example.com/f/0.jpg"


def test_acquire_and_extract_hands_payload_to_service():
    received = {}

    class RecordingService:
        async def extract(self, *, url, text, images):
            received.update(url=url, text=text, images=list(images))
            return {"title": "Casa", "bedrooms": 3}

    record = asyncio.run(
        acquire_and_extract("https://casas.example.com/p/42", RecordingService(), fetcher=_fetcher())
    )

    assert record == {"title": "Casa", "bedrooms": 3}
    assert received["url"] == "https://casas.example.com/p/42"
    assert received["images"] == ["https://casas.example.com/fotos/1.jpg"]
    assert "Amplia casa" in received["text"]


def test_default_fetcher_is_shared_and_configurable(monkeypatch):
    monkeypatch.setattr(fetcher_module, "_DEFAULT_FETCHER", None)

    first = get_default_fetcher()
    assert get_default_fetcher() is first

    replaced = configure(FetchConfig(max_attempts=2))
    assert get_default_fetcher() is replaced
    assert replaced.config.max_attempts == 2
