from __future__ import annotations

import json

import allure
import httpx
import pytest

from agent_hub.errors import TransportError
from agent_hub.gateway import OllamaGateway
from agent_hub.http import HttpFetcher
from agent_hub.notify import TelegramNotificationSink
from agent_hub.search import DuckDuckGoSearchProvider
from agent_hub.search.duckduckgo import parse_results

pytestmark = [
    allure.epic("Backends"),
    allure.feature("HTTP Clients"),
]

RESULTS_PAGE = """
<div class="result">
  <a rel="nofollow" class="result__a"
     href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fdocs.python.org%2F3%2F&amp;rut=abc">
     Python <b>Docs</b></a>
  <a class="result__snippet" href="#">The official &amp; complete documentation.</a>
</div>
<div class="result">
  <a rel="nofollow" class="result__a" href="https://duckduckgo.com/y.js?ad=1">Sponsored</a>
  <a class="result__snippet" href="#">Ad snippet</a>
</div>
<div class="result">
  <a rel="nofollow" class="result__a" href="https://peps.python.org/">PEP Index</a>
  <a class="result__snippet" href="#">Python Enhancement Proposals</a>
</div>
"""


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_ollama_gateway_posts_non_streaming_request() -> None:
    seen: list[dict[str, object]] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/generate"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "Hello!", "done": True})

    gateway = OllamaGateway(base_url="http://ollama.local:11434/", client=_client(_handler))

    assert gateway.generate("Say hi", "llama3.2") == "Hello!"
    assert seen == [{"model": "llama3.2", "prompt": "Say hi", "stream": False}]


def test_ollama_gateway_reports_http_status() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "model 'nope' not found"})

    gateway = OllamaGateway(client=_client(_handler))

    with pytest.raises(TransportError) as exc_info:
        gateway.generate("hi", "nope")

    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "http_status"
    assert "model 'nope' not found" in exc_info.value.message


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(200, text="not json"), "non-JSON"),
        (httpx.Response(200, json={"done": True}), "missing the 'response' field"),
    ],
)
def test_ollama_gateway_rejects_malformed_payload(response: httpx.Response, message: str) -> None:
    gateway = OllamaGateway(client=_client(lambda request: response))

    with pytest.raises(TransportError, match=message) as exc_info:
        gateway.generate("hi", "llama3.2")

    assert exc_info.value.code == "invalid_response"


def test_ollama_gateway_maps_timeouts() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    gateway = OllamaGateway(client=_client(_handler))

    with pytest.raises(TransportError) as exc_info:
        gateway.generate("hi", "llama3.2")

    assert exc_info.value.code == "timeout"
    assert exc_info.value.status_code is None


def test_duckduckgo_parser_unwraps_redirects_and_skips_internal_links() -> None:
    results = parse_results(RESULTS_PAGE)

    assert [(result.title, result.url) for result in results] == [
        ("Python Docs", "https://docs.python.org/3/"),
        ("PEP Index", "https://peps.python.org/"),
    ]
    assert results[0].snippet == "The official & complete documentation."
    assert results[1].snippet == "Python Enhancement Proposals"
    assert len(parse_results(RESULTS_PAGE, max_results=1)) == 1


def test_duckduckgo_parser_accepts_any_attribute_order() -> None:
    page = (
        '<a href="https://example.org/a" class="result__a">Example A</a>'
        '<a class="result__snippet" href="x">Snippet A</a>'
        "<div class='result results_links'>"
        "<a data-testid='result-title-a' href='https://example.org/b' class='result__a'>"
        "Example <b>B</b></a>"
        "<div class='result__snippet'>Snippet B</div>"
        "</div>"
    )

    results = parse_results(page)

    assert [(result.title, result.snippet, result.url) for result in results] == [
        ("Example A", "Snippet A", "https://example.org/a"),
        ("Example B", "Snippet B", "https://example.org/b"),
    ]


def test_duckduckgo_search_sends_query_and_swallows_failures() -> None:
    queries: list[str] = []

    def _ok(request: httpx.Request) -> httpx.Response:
        queries.append(request.url.params["q"])
        return httpx.Response(200, text=RESULTS_PAGE)

    provider = DuckDuckGoSearchProvider(client=_client(_ok))
    assert len(provider.search("python docs", max_results=5)) == 2
    assert queries == ["python docs"]

    def _down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert DuckDuckGoSearchProvider(client=_client(_down)).search("anything") == []
    failing = DuckDuckGoSearchProvider(client=_client(lambda request: httpx.Response(503)))
    assert failing.search("anything") == []


def test_telegram_sink_posts_to_bot_endpoint() -> None:
    requests: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    sink = TelegramNotificationSink(
        bot_token="123:abc",
        api_base="https://telegram.test/",
        client=_client(_handler),
    )

    assert sink.notify("@channel", "*hello*") is True
    assert requests[0].url.host == "telegram.test"
    assert requests[0].url.path == "/bot123:abc/sendMessage"
    assert json.loads(requests[0].content) == {
        "chat_id": "@channel",
        "text": "*hello*",
        "disable_web_page_preview": False,
        "parse_mode": "Markdown",
    }


def test_telegram_sink_returns_false_on_failures() -> None:
    rejected = TelegramNotificationSink(
        bot_token="123:abc",
        client=_client(lambda request: httpx.Response(400, json={"ok": False})),
    )

    def _down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    unreachable = TelegramNotificationSink(bot_token="123:abc", client=_client(_down))

    assert rejected.notify("42", "hi") is False
    assert unreachable.notify("42", "hi") is False


def test_telegram_sink_requires_token() -> None:
    with pytest.raises(ValueError, match="token must not be empty"):
        TelegramNotificationSink(bot_token="")


def test_fetcher_reports_status_and_transport_errors() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok":
            headers = {"content-type": "application/rss+xml"}
            return httpx.Response(200, text="<rss/>", headers=headers)
        if request.url.path == "/slow":
            raise httpx.ConnectTimeout("slow", request=request)
        return httpx.Response(503, text="busy")

    with HttpFetcher(transport=httpx.MockTransport(_handler)) as fetcher:
        ok = fetcher.fetch("https://feeds.example.com/ok")
        busy = fetcher.fetch("https://feeds.example.com/busy")
        slow = fetcher.fetch("https://feeds.example.com/slow")

    assert ok.is_success and ok.content == "<rss/>"
    assert ok.content_type == "application/rss+xml"
    assert (busy.is_success, busy.status_code, busy.error) == (False, 503, "HTTP 503")
    assert (slow.is_success, slow.status_code, slow.error) == (False, 0, "timeout")
