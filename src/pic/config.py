from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Literal

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import tomlkit


DEFAULT_CONFIG_PATH = Path("~/.config/python-image-converter/config.toml").expanduser()
ENV_PREFIX = "PIC_"

# Keys the options controller persists on every change
PERSISTED_KEYS = ("format", "quality", "output_dir")


class PicSettings(BaseSettings):
    """Global settings for python-image-converter.

    Priority (lowest -> highest):
    - Class defaults below
    - TOML file at `config_path` (default: ~/.config/python-image-converter/config.toml)
    - Environment variables with prefix PIC_
    - CLI overrides passed to `load(overrides=...)`
    """

    # Logging
    log_level: str = Field(default="INFO", description="Console log level")
    log_json: Optional[str] = Field(default=None, description="Path for structured JSON log file")

    # Conversion options
    format: Literal["webp", "avif"] = Field(default="webp", description="Target image format")
    quality: int = Field(default=80, ge=1, le=100, description="Encoder quality 1..100")
    output_dir: str = Field(default="", description="Output directory; empty means not chosen yet")

    # Engine / orchestration
    workers: Optional[int] = Field(default=None, description="Parallel encode workers; None=auto (CPU cores)")
    settle_delay: float = Field(default=0.4, ge=0, description="Seconds to hold the converting status after a batch")
    confirm_threshold: int = Field(
        default=500, ge=0, description="Ask for confirmation above this many candidates; 0 disables"
    )

    # Config source/path (not persisted as part of effective config when writing)
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @staticmethod
    def default_config_path() -> Path:
        return DEFAULT_CONFIG_PATH

    @classmethod
    def _toml_file_source(cls, config_path: Path) -> Dict[str, Any]:
        """Read settings from a TOML file if it exists; return dict values.

        Unknown keys are ignored by pydantic via extra="ignore".
        """
        if not config_path or not config_path.exists():
            return {}
        with config_path.open("rb") as f:
            data = tomllib.load(f)
        if not isinstance(data, dict):
            return {}
        return data

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "PicSettings":
        """Load settings from defaults + TOML + env + CLI overrides.

        - config_path: path to TOML config; defaults to ~/.config/python-image-converter/config.toml
        - overrides: dict of CLI values (None values are ignored)
        """
        cp = config_path or DEFAULT_CONFIG_PATH
        file_values = cls._toml_file_source(cp)
        # Init kwargs outrank env in pydantic-settings, so merge by hand:
        # only fields actually read from the environment are "set" here.
        env_values = cls().model_dump(exclude_unset=True)
        if overrides:
            non_none = {k: v for k, v in overrides.items() if v is not None}
        else:
            non_none = {}
        merged = {**file_values, **env_values, **non_none}
        merged.pop("config_path", None)
        settings = cls(**merged)
        settings.config_path = cp
        return settings

    def to_toml(self) -> str:
        """Serialize effective settings (excluding ephemeral fields) to TOML string."""
        data = self.model_dump(exclude={"config_path"}, exclude_none=True)
        return tomlkit.dumps(data)

    def write(self, path: Optional[Path] = None) -> Path:
        """Write effective config to TOML at `path` (or default path). Creates parent dirs.

        Returns the path written.
        """
        target = path or self.config_path or DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        return target


class SettingsStore:
    """Key/value persistence backed by the TOML config file.

    The document is parsed once on construction. `set` edits it in place with
    tomlkit, so comments and keys this store does not own survive, and writes
    the file back immediately.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or DEFAULT_CONFIG_PATH
        if self.path.exists():
            self._doc = tomlkit.parse(self.path.read_text(encoding="utf-8"))
        else:
            self._doc = tomlkit.document()

    def get(self, key: str, default: Any = None) -> Any:
        value = self._doc.get(key, default)
        # tomlkit items wrap python values
        return value.unwrap() if hasattr(value, "unwrap") else value

    def set(self, key: str, value: Any) -> None:
        self._doc[key] = value
        self.save()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(tomlkit.dumps(self._doc), encoding="utf-8")
        logger.debug("settings saved to {}", self.path)


def cli_overrides_from_args(args: Any) -> Dict[str, Any]:
    """Extract known settings keys from argparse Namespace into an overrides dict.

    Unknown keys are ignored; None values are preserved for filtering by `load()`.
    """
    keys = {
        "log_level",
        "log_json",
        "format",
        "quality",
        "output_dir",
        "workers",
        "settle_delay",
        "confirm_threshold",
    }
    result: Dict[str, Any] = {}
    for k in keys:
        if hasattr(args, k):
            result[k] = getattr(args, k)
    return result
