"""
Application configuration management for gpgmail.

This module provides configuration loading from environment variables
and configuration files, with type-safe settings classes.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import InvalidConfigError, MissingConfigError


class GnuPGSettings(BaseSettings):
    """GnuPG engine and keyring configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="GPGMAIL_GNUPG_",
        extra="ignore",
    )

    home: Optional[str] = Field(
        None, description="GnuPG home directory (defaults to ~/.gnupg)"
    )
    binary: str = Field(default="gpg", description="Path to the gpg binary")
    use_agent: bool = Field(default=True, description="Use the GnuPG agent")
    keyring: Optional[str] = Field(None, description="Path to custom keyring")


class KeyServerSettings(BaseSettings):
    """Public key server configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="GPGMAIL_KEYSERVER_",
        extra="ignore",
    )

    url: Optional[str] = Field(
        None,
        description="Key server URL; read from the GnuPG config when unset",
    )
    timeout: int = Field(default=30, ge=1, description="Request timeout in seconds")
    max_key_size: int = Field(
        default=1024 * 1024, ge=1, description="Largest accepted key response in bytes"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate key server URL scheme."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://", "hkp://", "hkps://")):
            raise ValueError("URL must start with http://, https://, hkp:// or hkps://")
        return v.rstrip("/")


class SMTPSettings(BaseSettings):
    """SMTP submission configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="GPGMAIL_SMTP_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="SMTP server host")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    username: Optional[str] = Field(None, description="SMTP username")
    password: Optional[str] = Field(None, description="SMTP password")
    start_tls: bool = Field(default=True, description="Upgrade with STARTTLS")
    timeout: int = Field(default=30, description="Connection timeout in seconds")


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="GPGMAIL_LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper


class Settings(BaseSettings):
    """Main settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GPGMAIL_",
        extra="ignore",
    )

    app_name: str = Field(default="gpgmail", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")

    gnupg: GnuPGSettings = Field(default_factory=GnuPGSettings)
    keyserver: KeyServerSettings = Field(default_factory=KeyServerSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a TOML configuration file.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            MissingConfigError: If the file does not exist.
            InvalidConfigError: If the file cannot be parsed.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError(str(path))

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            )

        try:
            return cls._from_dict(config_data)
        except ValidationError as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Invalid settings: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False)},
            )

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Create settings from a dictionary.

        Args:
            data: Configuration dictionary.

        Returns:
            Settings instance.
        """
        settings_kwargs: dict[str, Any] = {}

        if "app" in data:
            settings_kwargs.update(data["app"])

        if "gnupg" in data:
            settings_kwargs["gnupg"] = GnuPGSettings(**data["gnupg"])

        if "keyserver" in data:
            settings_kwargs["keyserver"] = KeyServerSettings(**data["keyserver"])

        if "smtp" in data:
            settings_kwargs["smtp"] = SMTPSettings(**data["smtp"])

        if "logging" in data:
            settings_kwargs["logging"] = LoggingSettings(**data["logging"])

        return cls(**settings_kwargs)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings.

    Settings come from environment variables, or from the TOML file named
    by ``GPGMAIL_CONFIG_FILE`` when it exists.

    Returns:
        Settings instance.
    """
    config_file = os.getenv("GPGMAIL_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        return Settings.from_toml(config_file)
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
