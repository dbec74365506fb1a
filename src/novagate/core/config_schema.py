"""Pydantic models for config validation.

``Config.validated()`` turns the merged ``config_data`` dict into a typed
``GatewaySettings`` instance.  Durations are configured in milliseconds
(matching the flat key-value settings the gateway has always used) and
exposed in seconds through properties.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator

from novagate.core.utils.identity import DEFAULT_GROUP_SUFFIX, DEFAULT_USER_SUFFIX, normalize_number


def _split_csv(v: Any) -> Any:
    if isinstance(v, str):
        return [part.strip() for part in v.split(",") if part.strip()]
    return v


class BotSettings(BaseModel):
    """Display settings for the bot."""

    name: str = "Nova"


class SessionSettings(BaseModel):
    """Session handle and credential settings."""

    id: str = Field(min_length=1)
    variant: Literal["primary", "legacy"] = "primary"
    credentials_dir: Path = Path("~/.novagate-data/sessions")
    connect_timeout_ms: PositiveInt = 30_000
    logout_on_shutdown: bool = False
    factory: str = "console"

    @field_validator("id", mode="before")
    @classmethod
    def _strip_id(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("credentials_dir", mode="before")
    @classmethod
    def _expand_user(cls, v: Any) -> Any:
        if isinstance(v, str | Path):
            return Path(v).expanduser()
        return v

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def credentials_key(self) -> str:
        """Directory name for this session's credentials (legacy sessions are kept apart)."""
        return f"{self.id}_legacy" if self.variant == "legacy" else self.id


class CommandSettings(BaseModel):
    """Command routing settings."""

    prefix: str = r"^[.,!]"
    cooldown_ms: NonNegativeInt = 2_000
    handler_timeout_ms: PositiveInt = 30_000
    plugin_dirs: list[Path] = []
    disabled: list[str] = []

    @field_validator("prefix")
    @classmethod
    def _compiles(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("command prefix cannot be empty")
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid prefix pattern {v!r}: {e}") from e
        return v

    @field_validator("plugin_dirs", "disabled", mode="before")
    @classmethod
    def _csv_lists(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("plugin_dirs")
    @classmethod
    def _expand_dirs(cls, v: list[Path]) -> list[Path]:
        return [p.expanduser() for p in v]

    @property
    def prefix_pattern(self) -> re.Pattern[str]:
        """Compiled prefix; matched at the start of the text, case-insensitive."""
        return re.compile(self.prefix, re.IGNORECASE)

    @property
    def cooldown(self) -> float:
        return self.cooldown_ms / 1000

    @property
    def handler_timeout(self) -> float:
        return self.handler_timeout_ms / 1000


class AccessSettings(BaseModel):
    """Elevated identities (owner / sudo class)."""

    elevated: list[str] = []

    @field_validator("elevated", mode="before")
    @classmethod
    def _csv(cls, v: Any) -> Any:
        v = _split_csv(v)
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    @property
    def elevated_keys(self) -> frozenset[str]:
        """Normalized comparison keys for the elevated set."""
        return frozenset(normalize_number(e) for e in self.elevated if normalize_number(e))


class RestartSettings(BaseModel):
    """Restart budget (terminal ceiling) and primary-tier escalation settings."""

    ceiling: PositiveInt = 5
    window_ms: PositiveInt = 30_000
    primary_ceiling: PositiveInt = 5
    primary_window_ms: PositiveInt = 30_000
    fallback_delay_ms: NonNegativeInt = 5_000
    connect_retry_delay_ms: NonNegativeInt = 5_000

    @property
    def window(self) -> float:
        return self.window_ms / 1000

    @property
    def primary_window(self) -> float:
        return self.primary_window_ms / 1000

    @property
    def fallback_delay(self) -> float:
        return self.fallback_delay_ms / 1000

    @property
    def connect_retry_delay(self) -> float:
        return self.connect_retry_delay_ms / 1000


class CacheSettings(BaseModel):
    """Group metadata cache settings."""

    ttl_ms: NonNegativeInt = 300_000
    refresh_timeout_ms: PositiveInt = 10_000

    @property
    def ttl(self) -> float:
        return self.ttl_ms / 1000

    @property
    def refresh_timeout(self) -> float:
        return self.refresh_timeout_ms / 1000


class NotificationSettings(BaseModel):
    """Which status and membership notices the gateway sends."""

    broadcast_ready: bool = True
    welcome: bool = False
    goodbye: bool = False
    admin_changes: bool = False


class AntiLinkSettings(BaseModel):
    """Link moderation in groups.

    A link is flagged when it points at a URL shortener or a bare IP
    address, or looks malformed.  With ``block_unlisted`` every link whose
    domain is not in ``allowed_domains`` is flagged as well.
    """

    enabled: bool = False
    action: Literal["delete", "kick", "warn"] = "delete"
    allowed_domains: list[str] = []
    block_unlisted: bool = False
    exempt_elevated: bool = True
    warn_text: str = "⚠️ Anti-Link Detected! Warning issued."

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def _csv(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("allowed_domains")
    @classmethod
    def _normalize_domains(cls, v: list[str]) -> list[str]:
        domains = []
        for domain in v:
            domain = domain.strip().lower().rstrip(".")
            domain = domain.removeprefix("www.")
            if domain:
                domains.append(domain)
        return domains


class ShutdownSettings(BaseModel):
    grace_ms: NonNegativeInt = 5_000

    @property
    def grace(self) -> float:
        return self.grace_ms / 1000


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: str | None = None


class IdentitySettings(BaseModel):
    """Address suffixes used to build identities from bare numbers."""

    user_suffix: str = DEFAULT_USER_SUFFIX
    group_suffix: str = DEFAULT_GROUP_SUFFIX


class GatewaySettings(BaseModel):
    """Root configuration model.

    Uses ``extra="allow"`` so deployments can bolt on custom sections
    (read by their own plugins) without touching this schema.
    """

    model_config = ConfigDict(extra="allow")

    bot: BotSettings = BotSettings()
    session: SessionSettings
    commands: CommandSettings = CommandSettings()
    access: AccessSettings = AccessSettings()
    restart: RestartSettings = RestartSettings()
    cache: CacheSettings = CacheSettings()
    notifications: NotificationSettings = NotificationSettings()
    antilink: AntiLinkSettings = AntiLinkSettings()
    shutdown: ShutdownSettings = ShutdownSettings()
    logging: LoggingSettings = LoggingSettings()
    identity: IdentitySettings = IdentitySettings()
