"""Application configuration management using Pydantic Settings.

This module provides a centralized configuration class that loads settings
from environment variables (.env file), plus the loader for the site-specific
selectors YAML file that describes the messaging site's markup.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SELECTORS_PATH = Path(__file__).with_name("selectors.yaml")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    List-valued settings (``TARGET_NAMES``) are read as JSON arrays, e.g.
    ``TARGET_NAMES='["Anna Smirnova", "Anna"]'``.
    """

    # Monitoring targets
    target_names: list[str] = Field(
        default_factory=lambda: ["Анна Смирнова", "Анна"],
        min_length=1,
        description="Correspondent names to watch, full name first, then short name",
    )
    default_sender_name: str | None = Field(
        default=None,
        description="Sender used when a message matches no target name "
        "(defaults to the last target name)",
    )

    # Polling
    poll_interval_ms: int = Field(
        default=3000, gt=0, description="Message poll interval in milliseconds"
    )

    # Login
    manual_login_timeout_seconds: float = Field(
        default=300, gt=0, description="How long to wait for a manual login"
    )
    manual_login_check_seconds: float = Field(
        default=5, gt=0, description="Authentication check interval during manual login"
    )
    manual_login_progress_seconds: float = Field(
        default=30, gt=0, description="Progress log interval during manual login"
    )
    login_grace_seconds: float = Field(
        default=120,
        ge=0,
        description="Extra manual-login window when automated login cannot finish",
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=False, description="Run browser in headless mode"
    )
    browser_locale: str = Field(default="ru-RU", description="Browser locale")
    browser_timezone: str = Field(
        default="Europe/Moscow", description="Browser timezone identifier"
    )
    viewport_width: int = Field(default=1920, gt=0, description="Viewport width")
    viewport_height: int = Field(default=1080, gt=0, description="Viewport height")
    navigation_timeout_ms: int = Field(
        default=30000, gt=0, description="Default timeout for page operations"
    )
    debug_dir: str | None = Field(
        default=None,
        description="Directory for screenshots taken when login fails (disabled if unset)",
    )

    # MCP Server Configuration
    mcp_host: str = Field(default="0.0.0.0", description="MCP server host to bind to")
    mcp_port: int = Field(default=3000, description="MCP server port")

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="json", description="Log output format (json or console)"
    )

    # Selector Configuration
    selectors_path: str = Field(
        default=str(DEFAULT_SELECTORS_PATH),
        description="Path to the site selectors YAML configuration file",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def sender_fallback(self) -> str:
        """Sender name attributed to messages that mention no target name."""
        return self.default_sender_name or self.target_names[-1]


def load_selectors(config_path: str | None = None) -> dict[str, Any]:
    """Load the site selectors from selectors.yaml.

    Args:
        config_path: Path to selectors YAML file. If None, uses settings default.

    Returns:
        Mapping of section name (``site``, ``auth``, ``navigation``,
        ``extraction``) to its raw configuration.

    Raises:
        FileNotFoundError: If the selectors file does not exist.
        ValueError: If a required section is missing.
    """
    path = Path(config_path) if config_path else Path(settings.selectors_path)
    if not path.exists():
        raise FileNotFoundError(f"Selectors config not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    missing = [s for s in ("site", "auth", "navigation", "extraction") if s not in data]
    if missing:
        raise ValueError(f"Selectors config {path} is missing sections: {missing}")

    return data


# Singleton instance - import this to access settings throughout the application
settings = Settings()
