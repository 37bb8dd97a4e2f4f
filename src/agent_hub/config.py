"""Runtime configuration for the job runner and feed monitor."""

from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from agent_hub.feeds.models import (
    DEFAULT_POST_DELAY_SECONDS,
    DEFAULT_RETENTION,
    CursorMode,
    FeedKind,
    FeedTarget,
)
from agent_hub.jobs.policy import DEFAULT_DISALLOWED_PATTERNS, DEFAULT_LOCAL_MODEL
from agent_hub.storage.common import DEFAULT_BUSY_TIMEOUT_MS

MODEL_BACKENDS = ("ollama", "echo")
SEARCH_BACKENDS = ("duckduckgo", "none")
NOTIFY_BACKENDS = ("log", "telegram")


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass(slots=True)
class JobSettings:
    """Runner and enqueue-boundary settings."""

    worker_id: str = field(default_factory=_default_worker_id)
    poll_interval_seconds: float = 2.0
    max_attempts: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    stale_after_seconds: int = 600
    workspace_root: Path = Path("workspace")
    allowed_caller_id: str | None = None


@dataclass(slots=True)
class ModelSettings:
    """Text-generation backend and model policy."""

    backend: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    default_model: str = DEFAULT_LOCAL_MODEL
    disallowed_patterns: tuple[str, ...] = DEFAULT_DISALLOWED_PATTERNS
    timeout_seconds: float = 15.0


@dataclass(slots=True)
class SearchSettings:
    backend: str = "duckduckgo"
    search_url: str = "https://html.duckduckgo.com/html/"
    max_results: int = 5
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class NotifySettings:
    """Outbound notification channel."""

    backend: str = "log"
    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"
    default_destination: str | None = None
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class FeedSettings:
    """Feed polling settings; channel targets live in a JSON file."""

    targets_file: Path | None = None
    interval_seconds: float = 300.0
    max_workers: int = 4
    request_timeout_seconds: float = 15.0
    post_delay_seconds: float = DEFAULT_POST_DELAY_SECONDS
    retention: int = DEFAULT_RETENTION

    def load_targets(self) -> tuple[FeedTarget, ...]:
        if self.targets_file is None:
            return ()
        return load_feed_targets(
            self.targets_file,
            default_post_delay_seconds=self.post_delay_seconds,
            default_retention=self.retention,
        )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_hub.db")
    sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    jobs: JobSettings = field(default_factory=JobSettings)
    model: ModelSettings = field(default_factory=ModelSettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    notify: NotifySettings = field(default_factory=NotifySettings)
    feeds: FeedSettings = field(default_factory=FeedSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        targets_file = os.getenv("AGENT_HUB_FEED_TARGETS_FILE", "").strip()
        disallowed = _csv(os.getenv("AGENT_HUB_DISALLOWED_MODELS"))
        return cls(
            db_path=db_path or Path(os.getenv("AGENT_HUB_DB_PATH", ".agent_hub.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("AGENT_HUB_SQLITE_BUSY_TIMEOUT_MS", str(DEFAULT_BUSY_TIMEOUT_MS)),
            ),
            jobs=JobSettings(
                worker_id=os.getenv("AGENT_HUB_WORKER_ID") or _default_worker_id(),
                poll_interval_seconds=float(os.getenv("AGENT_HUB_POLL_INTERVAL_SECONDS", "2.0")),
                max_attempts=int(os.getenv("AGENT_HUB_MAX_ATTEMPTS", "3")),
                retry_base_seconds=float(os.getenv("AGENT_HUB_RETRY_BASE_SECONDS", "1.0")),
                retry_max_seconds=float(os.getenv("AGENT_HUB_RETRY_MAX_SECONDS", "30.0")),
                stale_after_seconds=int(os.getenv("AGENT_HUB_STALE_AFTER_SECONDS", "600")),
                workspace_root=Path(os.getenv("AGENT_HUB_WORKSPACE_ROOT", "workspace")),
                allowed_caller_id=_optional(os.getenv("AGENT_HUB_ALLOWED_CALLER_ID")),
            ),
            model=ModelSettings(
                backend=os.getenv("AGENT_HUB_MODEL_BACKEND", "ollama").strip().lower(),
                ollama_url=os.getenv(
                    "AGENT_HUB_OLLAMA_URL",
                    os.getenv("OLLAMA_HOST", "http://localhost:11434"),
                ),
                default_model=os.getenv("AGENT_HUB_DEFAULT_MODEL", DEFAULT_LOCAL_MODEL),
                disallowed_patterns=disallowed or DEFAULT_DISALLOWED_PATTERNS,
                timeout_seconds=float(os.getenv("AGENT_HUB_MODEL_TIMEOUT_SECONDS", "15.0")),
            ),
            search=SearchSettings(
                backend=os.getenv("AGENT_HUB_SEARCH_BACKEND", "duckduckgo").strip().lower(),
                search_url=os.getenv(
                    "AGENT_HUB_SEARCH_URL",
                    "https://html.duckduckgo.com/html/",
                ),
                max_results=int(os.getenv("AGENT_HUB_SEARCH_MAX_RESULTS", "5")),
                timeout_seconds=float(os.getenv("AGENT_HUB_SEARCH_TIMEOUT_SECONDS", "10.0")),
            ),
            notify=NotifySettings(
                backend=os.getenv("AGENT_HUB_NOTIFY_BACKEND", "log").strip().lower(),
                telegram_bot_token=_optional(
                    os.getenv("AGENT_HUB_TELEGRAM_BOT_TOKEN", os.getenv("TELEGRAM_BOT_TOKEN")),
                ),
                telegram_api_base=os.getenv(
                    "AGENT_HUB_TELEGRAM_API_BASE",
                    "https://api.telegram.org",
                ),
                default_destination=_optional(
                    os.getenv("AGENT_HUB_DEFAULT_DESTINATION", os.getenv("TELEGRAM_CHAT_ID")),
                ),
                timeout_seconds=float(os.getenv("AGENT_HUB_NOTIFY_TIMEOUT_SECONDS", "10.0")),
            ),
            feeds=FeedSettings(
                targets_file=Path(targets_file) if targets_file else None,
                interval_seconds=float(os.getenv("AGENT_HUB_FEED_INTERVAL_SECONDS", "300")),
                max_workers=int(os.getenv("AGENT_HUB_FEED_MAX_WORKERS", "4")),
                request_timeout_seconds=float(
                    os.getenv("AGENT_HUB_FEED_TIMEOUT_SECONDS", "15.0"),
                ),
                post_delay_seconds=float(
                    os.getenv(
                        "AGENT_HUB_FEED_POST_DELAY_SECONDS",
                        str(DEFAULT_POST_DELAY_SECONDS),
                    ),
                ),
                retention=int(os.getenv("AGENT_HUB_FEED_RETENTION", str(DEFAULT_RETENTION))),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if the runner cannot start."""

        if self.model.backend not in MODEL_BACKENDS:
            raise ValueError(
                f"AGENT_HUB_MODEL_BACKEND must be one of {', '.join(MODEL_BACKENDS)}; "
                f"got {self.model.backend!r}.",
            )
        if self.model.backend == "ollama":
            _validate_http_url(self.model.ollama_url, name="AGENT_HUB_OLLAMA_URL")
        if not self.model.default_model.strip():
            raise ValueError("AGENT_HUB_DEFAULT_MODEL must not be empty.")
        if self.search.backend not in SEARCH_BACKENDS:
            raise ValueError(
                f"AGENT_HUB_SEARCH_BACKEND must be one of {', '.join(SEARCH_BACKENDS)}; "
                f"got {self.search.backend!r}.",
            )
        if self.search.max_results <= 0:
            raise ValueError("AGENT_HUB_SEARCH_MAX_RESULTS must be > 0.")
        if self.jobs.max_attempts <= 0:
            raise ValueError("AGENT_HUB_MAX_ATTEMPTS must be > 0.")
        if self.jobs.retry_base_seconds < 0 or self.jobs.retry_max_seconds < 0:
            raise ValueError("Retry delays must be >= 0.")
        if self.jobs.poll_interval_seconds < 0:
            raise ValueError("AGENT_HUB_POLL_INTERVAL_SECONDS must be >= 0.")
        for name, value in (
            ("AGENT_HUB_MODEL_TIMEOUT_SECONDS", self.model.timeout_seconds),
            ("AGENT_HUB_SEARCH_TIMEOUT_SECONDS", self.search.timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        self._validate_notify()

    def validate_for_feeds(self) -> None:
        """Raise configuration error if the feed monitor cannot start."""

        if self.feeds.interval_seconds <= 0:
            raise ValueError("AGENT_HUB_FEED_INTERVAL_SECONDS must be > 0.")
        if self.feeds.max_workers <= 0:
            raise ValueError("AGENT_HUB_FEED_MAX_WORKERS must be > 0.")
        if self.feeds.request_timeout_seconds <= 0:
            raise ValueError("AGENT_HUB_FEED_TIMEOUT_SECONDS must be > 0.")
        if self.feeds.post_delay_seconds < 0:
            raise ValueError("AGENT_HUB_FEED_POST_DELAY_SECONDS must be >= 0.")
        if self.feeds.retention <= 0:
            raise ValueError("AGENT_HUB_FEED_RETENTION must be > 0.")
        if self.feeds.targets_file is not None and not self.feeds.targets_file.is_file():
            raise ValueError(f"Feed targets file not found: {self.feeds.targets_file}")
        self.feeds.load_targets()
        self._validate_notify()

    def _validate_notify(self) -> None:
        if self.notify.backend not in NOTIFY_BACKENDS:
            raise ValueError(
                f"AGENT_HUB_NOTIFY_BACKEND must be one of {', '.join(NOTIFY_BACKENDS)}; "
                f"got {self.notify.backend!r}.",
            )
        if self.notify.backend == "telegram" and not self.notify.telegram_bot_token:
            raise ValueError(
                "AGENT_HUB_TELEGRAM_BOT_TOKEN is required when AGENT_HUB_NOTIFY_BACKEND=telegram.",
            )
        if self.notify.timeout_seconds <= 0:
            raise ValueError("AGENT_HUB_NOTIFY_TIMEOUT_SECONDS must be > 0.")


def load_feed_targets(
    path: Path,
    *,
    default_post_delay_seconds: float = DEFAULT_POST_DELAY_SECONDS,
    default_retention: int = DEFAULT_RETENTION,
) -> tuple[FeedTarget, ...]:
    """Read channel feed targets from a JSON list (or ``{"targets": [...]}``)."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except OSError as error:
        raise ValueError(f"Cannot read feed targets file {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise ValueError(f"Feed targets file {path} is not valid JSON: {error}") from error

    raw_targets = payload.get("targets") if isinstance(payload, dict) else payload
    if not isinstance(raw_targets, list):
        raise ValueError(f"Feed targets file {path} must contain a list of targets.")

    targets: list[FeedTarget] = []
    seen_urls: set[str] = set()
    for index, raw in enumerate(raw_targets, start=1):
        if not isinstance(raw, dict):
            raise ValueError(f"Feed target #{index} must be an object.")
        target = _parse_target(
            raw,
            index=index,
            default_post_delay_seconds=default_post_delay_seconds,
            default_retention=default_retention,
        )
        if target.url in seen_urls:
            raise ValueError(f"Duplicate feed target URL: {target.url!r}")
        seen_urls.add(target.url)
        targets.append(target)
    return tuple(targets)


def _parse_target(
    raw: dict[str, Any],
    *,
    index: int,
    default_post_delay_seconds: float,
    default_retention: int,
) -> FeedTarget:
    url = str(raw.get("url") or "").strip()
    _validate_http_url(url, name=f"Feed target #{index} url")
    name = str(raw.get("name") or "").strip() or urlparse(url).netloc

    try:
        kind = FeedKind(str(raw.get("kind") or FeedKind.RSS.value).strip().lower())
        mode = CursorMode(str(raw.get("mode") or CursorMode.SEEN_SET.value).strip().lower())
    except ValueError as error:
        raise ValueError(f"Feed target {name!r}: {error}") from error

    keywords = raw.get("keywords") or []
    if not isinstance(keywords, list) or not all(isinstance(item, str) for item in keywords):
        raise ValueError(f"Feed target {name!r}: keywords must be a list of strings.")

    retention = int(raw.get("retention") or default_retention)
    if retention <= 0:
        raise ValueError(f"Feed target {name!r}: retention must be > 0.")
    max_items = raw.get("max_items")
    if max_items is not None and int(max_items) <= 0:
        raise ValueError(f"Feed target {name!r}: max_items must be > 0.")
    base_url = _optional(raw.get("base_url"))
    if base_url is not None:
        _validate_http_url(base_url, name=f"Feed target {name!r} base_url")

    return FeedTarget(
        name=name,
        url=url,
        kind=kind,
        destination=_optional(raw.get("destination")),
        keywords=tuple(keyword.strip() for keyword in keywords if keyword.strip()),
        mode=mode,
        retention=retention,
        link_pattern=_optional(raw.get("link_pattern")),
        base_url=base_url,
        max_items=int(max_items) if max_items is not None else None,
        post_delay_seconds=float(raw.get("post_delay_seconds", default_post_delay_seconds)),
    )


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _optional(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
