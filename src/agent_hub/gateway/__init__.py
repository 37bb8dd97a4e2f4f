"""Model gateway implementations."""

from agent_hub.gateway.base import RETRYABLE_HTTP_STATUS_CODES, ModelGateway
from agent_hub.gateway.echo import EchoGateway
from agent_hub.gateway.ollama import OllamaGateway

__all__ = [
    "RETRYABLE_HTTP_STATUS_CODES",
    "EchoGateway",
    "ModelGateway",
    "OllamaGateway",
]
