"""Configuration loader for Sentinel using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (SENTINEL_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("SENTINEL_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "SENTINEL_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BrowserSettings(BaseSettings):
    """Playwright browser settings used by the CLI ``run`` command."""

    model_config = SettingsConfigDict(env_prefix="SENTINEL_BROWSER__")

    headless: bool = True
    timeout_ms: int = 30_000
    user_agent: str = ""


class PlaybookSettings(BaseSettings):
    """Playbook storage locations and engine limits."""

    model_config = SettingsConfigDict(env_prefix="SENTINEL_PLAYBOOK__")

    definitions_dir: str = "config/playbooks/definitions"
    templates_dir: str = "config/playbooks/templates"
    history_dir: str = "data/playbooks/history"
    screenshot_dir: str = "data/screenshots"

    navigation_timeout_ms: int = Field(default=30_000, ge=0)
    element_timeout_ms: int = Field(default=10_000, ge=0)
    max_action_depth: int = Field(default=8, ge=1)
    max_run_duration_sec: float = Field(
        default=0.0,
        ge=0,
        description="Wall-clock budget for a whole run. 0 disables the deadline.",
    )


class APISettings(BaseSettings):
    """API server configuration."""

    model_config = SettingsConfigDict(env_prefix="SENTINEL_API__")

    host: str = "0.0.0.0"
    port: int = 8200
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root Sentinel settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "text"  # text | json

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    playbook: PlaybookSettings = Field(default_factory=PlaybookSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative storage paths against project_root."""
        root = self.project_root
        pb = self.playbook
        for attr in ("definitions_dir", "templates_dir", "history_dir", "screenshot_dir"):
            value = getattr(pb, attr)
            if not Path(value).is_absolute():
                setattr(pb, attr, str(root / value))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
