"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# --- Paths ---

APP_NAME = "supplier-sync"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/supplier-sync)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    return base / APP_NAME


def get_default_documents_dir() -> Path:
    """Get the default root directory for retrieved documents."""
    base = Path("~/Documents").expanduser()
    if not base.exists():
        base = Path.home()

    return base / "supplier-sync"


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file(path: Path = CONFIG_FILE) -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    if not path.exists():
        return {}

    try:
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        return json.loads(text)
    except (OSError, json.JSONDecodeError):
        return {}


class ConfigFileSettingsSource(PydanticBaseSettingsSource):
    """Settings read from the JSON config file, ranked below environment variables."""

    def __init__(self, settings_cls: type[BaseSettings], path: Optional[Path] = None):
        super().__init__(settings_cls)
        self.data = load_config_file(path or CONFIG_FILE)

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self.data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {name: value for name, value in self.data.items() if name in self.settings_cls.model_fields}


class BrowserSettings(BaseSettings):
    """Browser configuration."""

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_BROWSER_")

    headless: bool = Field(default=True)
    chrome_args: list[str] = Field(
        default_factory=lambda: ["--disable-search-engine-choice-screen"],
        description="Extra Chrome command line flags",
    )
    safety_timeout: float = Field(default=600.0, description="Hard limit in seconds for one recipe run")


class EngineSettings(BaseSettings):
    """Step dispatcher configuration."""

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_ENGINE_")

    browser_step_timeout: float = Field(default=60.0, description="Per-step timeout for browser recipes")
    client_step_timeout: float = Field(default=120.0, description="Per-step timeout for OAuth2 recipes")
    download_click_limit: int = Field(default=2, description="Maximum downloads triggered by one downloadAll step")
    download_click_delay: float = Field(default=1.5, description="Delay in seconds between download clicks")
    poll_interval: float = Field(default=0.1, description="Polling interval for element waits")


class OAuth2Settings(BaseSettings):
    """OAuth2 flow configuration."""

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_OAUTH2_")

    abort_after_refresh: bool = Field(
        default=False,
        description="Abort the recipe after a successful refresh-token exchange (legacy behavior)",
    )
    http_timeout: float = Field(default=30.0, description="Timeout for token and document requests")


class PathsSettings(BaseSettings):
    """Filesystem locations."""

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_PATHS_")

    documents_dir: Optional[str] = Field(default=None, description="Root directory for supplier documents")
    config_dir: Optional[str] = Field(default=None, description="Directory for token cache and archive index")
    recipes_file: Optional[str] = Field(default=None, description="Default recipe database file")


LogFormat = Literal["console", "json"]


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_LOGGING_")

    level: str = Field(default="INFO")
    format: LogFormat = Field(default="console")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Init Arguments > Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="SUPPLIER_SYNC_", env_nested_delimiter="__", extra="ignore")

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    oauth2: OAuth2Settings = Field(default_factory=OAuth2Settings)
    paths: PathsSettings = Field(default_factory=PathsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, ConfigFileSettingsSource(settings_cls), file_secret_settings)

    def get_documents_dir(self) -> Path:
        """Get the documents root directory, creating if needed."""
        if self.paths.documents_dir:
            path = Path(self.paths.documents_dir).expanduser()
        else:
            path = get_default_documents_dir()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_config_dir(self) -> Path:
        """Get the directory holding the token cache and archive index, creating if needed."""
        if self.paths.config_dir:
            path = Path(self.paths.config_dir).expanduser()
        else:
            path = get_config_dir()
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = AppSettings()
