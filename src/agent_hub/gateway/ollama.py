"""Ollama HTTP gateway."""

from __future__ import annotations

import logging

import httpx

from agent_hub.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_TIMEOUT_SECONDS = 15.0


class OllamaGateway:
    """Non-streaming ``/api/generate`` client for a local Ollama server."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0)),
        )

    def generate(self, prompt: str, model_id: str) -> str:
        url = f"{self.base_url}/api/generate"
        try:
            response = self._client.post(
                url,
                json={"model": model_id, "prompt": prompt, "stream": False},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Ollama request timed out: %s", url)
            raise TransportError(
                message=f"Model backend timed out: {url}",
                code="timeout",
            ) from exc
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            raise TransportError(
                message=f"Model backend returned HTTP {status_code}: {_error_detail(exc.response)}",
                code="http_status",
                status_code=status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Ollama transport error for %s: %s", url, exc)
            raise TransportError(
                message=f"Model backend unreachable at {self.base_url}: {exc}",
                code="connection",
            ) from exc
        except ValueError as exc:
            raise TransportError(
                message="Model backend returned a non-JSON response.",
                code="invalid_response",
            ) from exc

        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TransportError(
                message="Model backend response is missing the 'response' field.",
                code="invalid_response",
            )
        return text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OllamaGateway:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return response.text[:200]
