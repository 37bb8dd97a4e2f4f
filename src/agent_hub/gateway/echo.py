"""Deterministic local gateway for demos and tests."""

from __future__ import annotations


class EchoGateway:
    """Returns the prompt tagged with the model id; never touches the network."""

    def __init__(self, *, prefix: str = "echo") -> None:
        self.prefix = prefix
        self.calls: list[tuple[str, str]] = []

    def generate(self, prompt: str, model_id: str) -> str:
        self.calls.append((prompt, model_id))
        return f"[{self.prefix}:{model_id}] {prompt}"
