"""Builds the outbound clients (model, search, notifications) from settings.

Shared by the job and feed controllers so both sides talk to the same
backends with the same timeouts.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass

from agent_hub.config import Settings
from agent_hub.gateway import EchoGateway, ModelGateway, OllamaGateway
from agent_hub.http.fetcher import HttpFetcher
from agent_hub.notify import LogNotificationSink, NotificationSink, TelegramNotificationSink
from agent_hub.search import DuckDuckGoSearchProvider, SearchProvider, StaticSearchProvider


@dataclass(slots=True)
class RuntimeClients:
    gateway: ModelGateway
    search: SearchProvider
    notifier: NotificationSink


def build_gateway(settings: Settings) -> ModelGateway:
    if settings.model.backend == "echo":
        return EchoGateway()
    return OllamaGateway(
        base_url=settings.model.ollama_url,
        timeout_seconds=settings.model.timeout_seconds,
    )


def build_search(settings: Settings) -> SearchProvider:
    if settings.search.backend == "none":
        return StaticSearchProvider()
    return DuckDuckGoSearchProvider(
        search_url=settings.search.search_url,
        timeout_seconds=settings.search.timeout_seconds,
    )


def build_notifier(settings: Settings) -> NotificationSink:
    if settings.notify.backend == "telegram" and settings.notify.telegram_bot_token:
        return TelegramNotificationSink(
            bot_token=settings.notify.telegram_bot_token,
            api_base=settings.notify.telegram_api_base,
            timeout_seconds=settings.notify.timeout_seconds,
        )
    return LogNotificationSink()


def build_fetcher(settings: Settings) -> HttpFetcher:
    return HttpFetcher(timeout_seconds=settings.feeds.request_timeout_seconds)


@contextmanager
def runtime_clients(settings: Settings) -> Iterator[RuntimeClients]:
    """Yield configured clients and close the ones holding HTTP connections."""

    with ExitStack() as stack:
        clients = RuntimeClients(
            gateway=build_gateway(settings),
            search=build_search(settings),
            notifier=build_notifier(settings),
        )
        for client in (clients.gateway, clients.search, clients.notifier):
            close = getattr(client, "close", None)
            if callable(close):
                stack.callback(close)
        yield clients
