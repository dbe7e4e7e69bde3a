"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

DEFAULT_BOILERPLATE = (
    "📷TlkInst",
    "🎞Канал со стримами",
    "✅ Підпишись на СХІД",
)


@dataclass(frozen=True)
class FetcherConfig:
    """Settings for retrieving a feed's public page."""

    base_url: str = "https://t.me/s/"
    timeout_seconds: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class SchedulerConfig:
    """Polling loop settings."""

    tick_seconds: float = 1.0


@dataclass(frozen=True)
class IngestionConfig:
    """Text cleaning settings for the ingestion pipeline."""

    boilerplate: tuple[str, ...] = DEFAULT_BOILERPLATE


@dataclass(frozen=True)
class NotificationConfig:
    """Notification formatting settings consumed by notifier adapters."""

    mode: str = "markdown_v2"
    timezone: str = "Europe/Kyiv"
