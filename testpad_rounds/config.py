"""Configuration for the Testpad client, retry policy and round creation.

Loads from YAML config file with environment variable overrides.
Pattern: CONFIG__{SECTION}__{KEY} overrides nested YAML keys.
Example: CONFIG__RETRY__MAX_RETRIES=5
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# --- Testpad API ---


class TestpadConfig(BaseModel):
    __test__ = False

    base_url: str = "https://api.testpad.com/api/v1"
    app_url: str = "https://app.testpad.com"  # used for deep links in reminders
    timeout: Optional[float] = None  # None: rely on transport-level timeouts
    credential_path: Optional[str] = "~/.config/testpad-rounds/credentials.json"


# --- Rate limiting ---


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0, description="Seconds, doubled per attempt")


class ThrottleConfig(BaseModel):
    """Politeness delays (seconds) between calls of a duplication run."""

    after_folder: float = Field(default=0.5, ge=0)
    after_read: float = Field(default=0.2, ge=0)
    after_create: float = Field(default=0.3, ge=0)


# --- Rounds ---


class RoundsConfig(BaseModel):
    team_members: list[str] = []
    scripts_per_project: int = Field(
        default=10, ge=0, description="Scripts fetched per project for dashboard totals"
    )


# --- Service Config ---


class ServiceConfig(BaseModel):
    testpad: TestpadConfig = TestpadConfig()
    retry: RetryConfig = RetryConfig()
    throttle: ThrottleConfig = ThrottleConfig()
    rounds: RoundsConfig = RoundsConfig()


def _apply_env_overrides(config_dict: dict, prefix: str = "CONFIG") -> dict:
    """Apply environment variable overrides to config dict.

    Pattern: CONFIG__SECTION__KEY=value maps to config[section][key] = value
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}__"):
            continue
        parts = key[len(prefix) + 2 :].lower().split("__")
        target = config_dict
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        # Type coercion for common cases
        if parts[-1] == "team_members":
            value = [v.strip() for v in value.split(",") if v.strip()]
        elif value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        target[parts[-1]] = value
    return config_dict


def load_config(
    config_path: Optional[str] = None,
) -> ServiceConfig:
    """Load configuration from YAML file with env overrides.

    Priority: env vars > YAML file > defaults
    """
    config_dict = {}

    # 1. Load YAML if exists
    if config_path is None:
        config_path = os.getenv("CONFIG_PATH", "config/testpad-rounds.yml")
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}

    # 2. Apply env overrides
    config_dict = _apply_env_overrides(config_dict)

    # 3. Base URL from dedicated env var (common pattern)
    if "testpad" not in config_dict:
        config_dict["testpad"] = {}
    if not config_dict["testpad"].get("base_url") and os.getenv("TESTPAD_BASE_URL"):
        config_dict["testpad"]["base_url"] = os.environ["TESTPAD_BASE_URL"]

    return ServiceConfig(**config_dict)


# Singleton for the service
_config: Optional[ServiceConfig] = None


def get_config() -> ServiceConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> ServiceConfig:
    global _config
    _config = load_config(config_path)
    return _config
