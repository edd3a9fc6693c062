"""Settings loading: defaults < YAML file < legacy env names < CARD_STORE_* env."""

import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import platformdirs
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

CONFIG_ENV = "CARD_STORE_CONFIG"

# env var -> settings field
ENV_OVERRIDES = {
    "CARD_STORE_DIR": "root_dir",
    "CARD_STORE_BASE_URL": "base_url",
    "CARD_STORE_HOST": "host",
    "CARD_STORE_PORT": "port",
    "CARD_STORE_RELOAD_COMMAND": "reload_command",
}

# Names used by existing deployments; the CARD_STORE_* form wins when both are set
LEGACY_ENV = {
    "VCARDS_DIR": "root_dir",
    "BASE_URL": "base_url",
    "PORT": "port",
}


def _default_root() -> Path:
    return Path(platformdirs.user_data_dir("card-store", "card-store")) / "vcards"


class StoreSettings(BaseModel):
    """Process-wide settings, fixed at start."""

    root_dir: Path = Field(default_factory=_default_root)
    base_url: str = "http://localhost:4646"
    host: str = "0.0.0.0"
    port: int = Field(4646, ge=1, le=65535)
    max_body_bytes: int = Field(50 * 1024 * 1024, gt=0)
    lock_timeout: float = Field(30.0, gt=0)
    reload_command: Optional[List[str]] = None

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("reload_command", mode="before")
    @classmethod
    def _split_command(cls, v: Any) -> Any:
        if isinstance(v, str):
            return shlex.split(v) or None
        return v

    def url_for(self, client_id: str) -> str:
        """Public URL a bundle is served under."""
        return f"{self.base_url}/{client_id}"


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration not found at {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def load_settings(config_path: Optional[Path] = None) -> StoreSettings:
    """Build settings from an optional YAML file and the environment.

    Args:
        config_path: YAML file; falls back to ``$CARD_STORE_CONFIG`` if unset

    Raises:
        ConfigError: If the file is missing/unreadable or a value is invalid
    """
    data: Dict[str, Any] = {}

    if config_path is None and os.environ.get(CONFIG_ENV):
        config_path = Path(os.environ[CONFIG_ENV])
    if config_path is not None:
        data.update(_read_yaml(Path(config_path)))

    for env_name, field_name in [*LEGACY_ENV.items(), *ENV_OVERRIDES.items()]:
        value = os.environ.get(env_name)
        if value:
            data[field_name] = value

    try:
        return StoreSettings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
