"""Model substitution policy applied before every backend call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fnmatch import fnmatchcase

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "llama3.2"
DEFAULT_DISALLOWED_PATTERNS = (
    "claude*",
    "anthropic/*",
    "gpt-*",
    "openai/*",
    "o1*",
    "o3*",
    "gemini*",
)


@dataclass(slots=True, frozen=True)
class ModelDecision:
    requested_model: str
    effective_model: str

    @property
    def substituted(self) -> bool:
        return bool(self.requested_model) and self.requested_model != self.effective_model

    def as_metadata(self) -> dict[str, object]:
        return {
            "requested_model": self.requested_model,
            "effective_model": self.effective_model,
            "model_substituted": self.substituted,
        }


@dataclass(slots=True, frozen=True)
class ModelPolicy:
    """Rewrites paid or disallowed model ids to the local default.

    Patterns are shell-style globs matched case-insensitively.
    """

    default_model: str = DEFAULT_LOCAL_MODEL
    disallowed_patterns: tuple[str, ...] = DEFAULT_DISALLOWED_PATTERNS

    def resolve(self, requested_model: str | None) -> ModelDecision:
        requested = (requested_model or "").strip()
        if not requested:
            return ModelDecision(requested_model="", effective_model=self.default_model)
        lowered = requested.lower()
        for pattern in self.disallowed_patterns:
            if fnmatchcase(lowered, pattern.lower()):
                logger.info(
                    "Model %s is disallowed by pattern %s; using %s",
                    requested,
                    pattern,
                    self.default_model,
                )
                return ModelDecision(requested_model=requested, effective_model=self.default_model)
        return ModelDecision(requested_model=requested, effective_model=requested)
