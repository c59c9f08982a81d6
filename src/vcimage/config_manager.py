"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores the vCloud endpoint, organization and cache/poll tuning.

Security:
- Config file permissions: 0600 (owner read/write only)
- Session tokens are read from the environment, never written to disk
"""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomlkit

logger = logging.getLogger(__name__)

ENV_PREFIX = "VCIMAGE_"
AUTH_TOKEN_ENV = "VCIMAGE_AUTH_TOKEN"


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class VCloudConfig:
    """vcimage configuration data."""

    endpoint: str | None = None  # e.g. https://vcloud.example.com
    org_id: str | None = None  # organization id, used as the region
    account: str | None = None  # org name; defaults to org_id
    api_version: str = "5.1"
    verify_ssl: bool = True
    compat: bool = False  # "/type/id" identifiers instead of bare ids
    catalog_ttl_minutes: int = 30
    image_list_ttl_minutes: int = 6
    capture_timeout_minutes: int = 10
    capture_poll_seconds: int = 15
    task_poll_seconds: int = 5
    task_timeout_minutes: int = 60
    request_timeout_seconds: int = 60

    @property
    def account_number(self) -> str | None:
        """Account the session acts for (org name, falling back to org id)."""
        return self.account or self.org_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VCloudConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def apply_environment(self) -> "VCloudConfig":
        """Override values from VCIMAGE_* environment variables.

        Environment variables (all optional):
            VCIMAGE_ENDPOINT, VCIMAGE_ORG_ID, VCIMAGE_ACCOUNT, VCIMAGE_API_VERSION
            VCIMAGE_VERIFY_SSL, VCIMAGE_COMPAT (true/false)
            VCIMAGE_CATALOG_TTL_MINUTES, VCIMAGE_IMAGE_LIST_TTL_MINUTES, ...

        Returns:
            self, for chaining
        """
        for f in fields(self):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(self, f.name)
            try:
                if isinstance(current, bool):
                    value: Any = raw.strip().lower() in ("1", "true", "yes")
                elif isinstance(current, int):
                    value = int(raw)
                else:
                    value = raw
            except ValueError as e:
                raise ConfigError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw}") from e
            setattr(self, f.name, value)
        return self

    def validate(self) -> None:
        """Ensure the settings needed to reach vCloud are present.

        Raises:
            ConfigError: If endpoint or org_id is missing
        """
        missing = [name for name in ("endpoint", "org_id") if not getattr(self, name)]
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}. "
                f"Set them in {ConfigManager.DEFAULT_CONFIG_FILE} or via "
                f"{', '.join(ENV_PREFIX + m.upper() for m in missing)}."
            )


class ConfigManager:
    """Manage vcimage configuration file.

    Configuration is stored at ~/.vcimage/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".vcimage"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If a custom path does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except Exception as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> VCloudConfig:
        """Load configuration from file, then apply environment overrides.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            VCloudConfig object

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return VCloudConfig().apply_environment()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomllib.load(f)

            logger.debug(f"Loaded config from: {config_path}")
            return VCloudConfig.from_dict(data).apply_environment()

        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: VCloudConfig, custom_path: str | None = None) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Raises:
            ConfigError: If saving fails
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = Path(custom_path).expanduser().resolve()
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            # Keep comments and layout of an existing file
            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")

        except Exception as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def get_auth_token(cls) -> str | None:
        """Get the vCloud session token from the environment."""
        return os.getenv(AUTH_TOKEN_ENV) or None


__all__ = ["AUTH_TOKEN_ENV", "ConfigError", "ConfigManager", "VCloudConfig"]
