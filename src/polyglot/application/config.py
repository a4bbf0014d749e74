from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from polyglot.domain.constants import (
    DEBOUNCE_SECONDS,
    ERROR_THROTTLE_SECONDS,
    MAX_RETRY_COUNT,
    REMOTE_POLL_INTERVAL,
    REQUEST_TIMEOUT,
    TOMBSTONE_TTL_DAYS,
)


def config_files() -> list[Path]:
    return [
        Path.home() / ".config/polyglot/config.toml",
        Path.home() / ".polyglot.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for polyglot.
    Supports loading from:
    1. Config file (~/.config/polyglot/config.toml)
    2. Environment variables (POLYGLOT_*)
    3. Manual overrides (CLI)
    Later sources win.
    """

    model_config = SettingsConfigDict(
        env_prefix="POLYGLOT_",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/polyglot")

    # Remote sync (both required, otherwise local-only mode)
    remote_url: str | None = None
    user_id: str | None = None

    # Sync tuning
    debounce_seconds: float = Field(default=DEBOUNCE_SECONDS, ge=0)
    tombstone_ttl_days: int = Field(default=TOMBSTONE_TTL_DAYS, ge=0)
    max_retries: int = Field(default=MAX_RETRY_COUNT, ge=0)
    error_throttle_seconds: float = Field(default=ERROR_THROTTLE_SECONDS, ge=0)
    remote_poll_interval: float = Field(default=REMOTE_POLL_INTERVAL, gt=0)
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)

    # Forecast / due-date calendar zone (IANA name); system local zone when unset
    timezone: str | None = None

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins
        toml_file = next((f for f in config_files() if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("data_dir", mode="before")
    @classmethod
    def resolve_data_dir(cls, v: Any) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("remote_url", "user_id", mode="before")
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def cloud_enabled(self) -> bool:
        return bool(self.remote_url and self.user_id)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/polyglot/config.toml (if exists)
    3. Environment variables (POLYGLOT_*)
    4. cli_overrides (passed from Typer; None values are ignored)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
