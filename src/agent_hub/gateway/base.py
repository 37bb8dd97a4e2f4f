"""Model gateway interface for job execution."""

from __future__ import annotations

from typing import Protocol

RETRYABLE_HTTP_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ModelGateway(Protocol):
    """Protocol implemented by text-generation backends.

    Unreachable or timed-out backends raise ``TransportError`` instead of
    leaking client-library exceptions past this boundary.
    """

    def generate(self, prompt: str, model_id: str) -> str:
        """Generate a completion for ``prompt`` with ``model_id``."""
