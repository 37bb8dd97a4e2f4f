"""Telegram Bot API notification sink."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 10.0


class TelegramNotificationSink:
    """Sends Markdown messages through ``sendMessage``."""

    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        parse_mode: str | None = "Markdown",
        client: httpx.Client | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token must not be empty.")
        self._endpoint = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self._parse_mode = parse_mode
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def notify(self, destination: str, message: str) -> bool:
        payload: dict[str, object] = {
            "chat_id": destination,
            "text": message,
            "disable_web_page_preview": False,
        }
        if self._parse_mode:
            payload["parse_mode"] = self._parse_mode
        try:
            response = self._client.post(self._endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Telegram rejected message to %s: HTTP %s %s",
                destination,
                exc.response.status_code,
                exc.response.text[:200],
            )
            return False
        except httpx.HTTPError as exc:
            # The bot token is part of the URL, keep it out of the log.
            logger.error("Telegram delivery to %s failed: %s", destination, type(exc).__name__)
            return False
        return True

    def close(self) -> None:
        self._client.close()
