"""Engine configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from outreach_engine.core.exceptions import ConfigurationError

REPLY_CHECK_INTERVALS: tuple[int, ...] = (1, 2, 5, 10, 15, 30, 60)

# Fixed per-attempt response window. Independent of the business-day cadence.
RESPONSE_WINDOW_HOURS = 24

COMMUNICATION_NOTE_MIN_LENGTH = 10


class OutreachSettings(BaseModel):
    """Outreach cadence and lifecycle thresholds.

    Immutable value injected into every engine call. Accepts both the
    snake_case names and the camelCase keys of the settings table.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    # Business-day follow-up cadence
    follow_up_1_days: int = Field(
        default=3, ge=1, le=30, validation_alias=AliasChoices("follow_up_1_days", "followUp1Days")
    )
    follow_up_2_days: int = Field(
        default=5, ge=1, le=30, validation_alias=AliasChoices("follow_up_2_days", "followUp2Days")
    )
    auto_close_days: int = Field(
        default=7, ge=1, le=60, validation_alias=AliasChoices("auto_close_days", "autoCloseDays")
    )

    # Initial outreach + follow-ups
    outreach_attempt_count: int = Field(
        default=3,
        ge=2,
        le=10,
        validation_alias=AliasChoices("outreach_attempt_count", "outreachAttemptCount"),
    )

    reply_check_interval_minutes: int = Field(
        default=5,
        validation_alias=AliasChoices("reply_check_interval_minutes", "replyCheckIntervalMinutes"),
    )

    # Minimum days between confirmation and first appointment
    scheduling_lead_days: int = Field(
        default=3,
        ge=0,
        le=14,
        validation_alias=AliasChoices("scheduling_lead_days", "schedulingLeadDays"),
    )

    reopen_reason_min_length: int = Field(default=10, ge=1, le=500)

    # Calendar
    timezone: str = "UTC"
    holiday_country: str | None = None

    # External I/O bounds (seconds)
    mailbox_timeout_seconds: float = Field(default=30.0, gt=0)
    storage_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("reply_check_interval_minutes")
    @classmethod
    def _check_interval(cls, value: int) -> int:
        if value not in REPLY_CHECK_INTERVALS:
            raise ValueError(
                f"reply_check_interval_minutes must be one of {list(REPLY_CHECK_INTERVALS)}"
            )
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    @classmethod
    def load(cls, values: Mapping[str, Any] | None = None) -> "OutreachSettings":
        """Build settings, failing fast on out-of-range values.

        Raises:
            ConfigurationError: If any value is outside its documented range
        """
        try:
            return cls.model_validate(dict(values or {}))
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid outreach settings",
                details={"errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]},
                cause=e,
            ) from e

    @property
    def reply_check_interval_seconds(self) -> int:
        return self.reply_check_interval_minutes * 60


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/outreach.db"
    echo: bool = False
    pool_size: int = Field(default=5, ge=1, le=50)
    max_overflow: int = Field(default=10, ge=0, le=100)


class IMAPSettings(BaseModel):
    """Inbound mailbox (reply detection)."""

    host: str = ""
    port: int = 993
    username: str = ""
    password: str = ""
    use_ssl: bool = True
    folder: str = "INBOX"


class SMTPSettings(BaseModel):
    """Outbound mailbox (outreach sending)."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    use_ssl: bool = False


class MailboxSettings(BaseModel):
    """Mailbox collaborator configuration."""

    provider: str = "memory"  # memory, imap
    from_email: str = ""
    from_name: str = ""
    imap: IMAPSettings = Field(default_factory=IMAPSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (OUTREACH_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTREACH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = ""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Reply poller starts with the API
    poller_enabled: bool = True

    # Subsystems
    outreach: OutreachSettings = Field(default_factory=OutreachSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    mailbox: MailboxSettings = Field(default_factory=MailboxSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.

    Raises:
        ConfigurationError: If any configured value is out of range
    """
    import os
    from dynaconf import Dynaconf

    config_dir = Path(os.getenv("OUTREACH_CONFIG_DIR", "configs"))
    env = os.getenv("OUTREACH_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="OUTREACH",
        settings_files=settings_files,
        load_dotenv=True,
        # Environment files override single keys inside nested sections
        merge_enabled=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = _lower_keys(dynaconf[key])

    config_dict["environment"] = env

    try:
        return Settings(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(
            "Invalid application settings",
            details={"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]},
            cause=e,
        ) from e


def _lower_keys(value: Any) -> Any:
    """Dynaconf boxes keep YAML casing; settings fields are lowercase."""
    if isinstance(value, Mapping):
        return {
            (k if _is_camel_alias(k) else str(k).lower()): _lower_keys(v)
            for k, v in value.items()
        }
    return value


def _is_camel_alias(key: Any) -> bool:
    return isinstance(key, str) and key[:1].islower() and any(c.isupper() for c in key)
