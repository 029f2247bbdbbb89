"""Configuration helpers for Face Recall."""
from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


DEFAULT_MATCHER_TIMEOUT = 10.0
DEFAULT_CLI_USER = "local@localhost"


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the API and CLI."""

    environment: str = "local"
    matcher_url: Optional[str] = None
    matcher_api_key: Optional[str] = None
    matcher_timeout: float = DEFAULT_MATCHER_TIMEOUT
    default_location: Optional[str] = None
    contacts_dir: Optional[Path] = None
    cli_user: str = DEFAULT_CLI_USER

    @property
    def matcher_configured(self) -> bool:
        return bool(self.matcher_url)


def _optional(var: str) -> Optional[str]:
    value = os.getenv(var, "").strip()
    return value or None


def load_settings(*, dotenv: bool = True) -> Settings:
    """Load settings from environment variables.

    Args:
        dotenv: Read a ``.env`` file from the working directory first.

    Returns:
        Settings with every value resolved.

    Raises:
        ConfigError: if ``FR_MATCHER_TIMEOUT`` is not a positive number.
    """

    if dotenv:
        load_dotenv()

    raw_timeout = os.getenv("FR_MATCHER_TIMEOUT", "").strip()
    timeout = DEFAULT_MATCHER_TIMEOUT
    if raw_timeout:
        try:
            timeout = float(raw_timeout)
        except ValueError as exc:
            raise ConfigError(
                f"FR_MATCHER_TIMEOUT must be a number of seconds, got {raw_timeout!r}."
            ) from exc
        if timeout <= 0:
            raise ConfigError("FR_MATCHER_TIMEOUT must be greater than zero.")

    contacts_dir = _optional("FR_CONTACTS_DIR")

    return Settings(
        environment=os.getenv("FR_ENV", "local"),
        matcher_url=_optional("FR_MATCHER_URL"),
        matcher_api_key=_optional("FR_MATCHER_API_KEY"),
        matcher_timeout=timeout,
        default_location=_optional("FR_DEFAULT_LOCATION"),
        contacts_dir=Path(contacts_dir) if contacts_dir else None,
        cli_user=_optional("FR_CLI_USER") or DEFAULT_CLI_USER,
    )
