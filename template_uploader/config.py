"""Runtime configuration: YAML file plus environment overrides.

Resolution order (later wins):

1. Dataclass defaults
2. YAML file (explicit path, else ``./template-uploader.yaml`` if present)
3. ``TEMPLATE_UPLOADER_*`` environment variables

Example ``template-uploader.yaml``::

    base_url: https://templates.example.com
    request_timeout: 20
    font_dir: ~/Library/Fonts
    export_format: png
"""

import os
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_FILE = "template-uploader.yaml"

_ENV_PREFIX = "TEMPLATE_UPLOADER_"
_ENV_OVERRIDES = {
    "BASE_URL": "base_url",
    "TIMEOUT": "request_timeout",
    "TMP_ROOT": "tmp_root",
    "FONT_DIR": "font_dir",
}
_EXPORT_FORMATS = {"png", "jpg", "jpeg"}


def _default_tmp_root() -> Path:
    return Path(tempfile.gettempdir()) / "template-uploader"


@dataclass
class UploaderConfig:
    """Settings shared by the CLI and the upload pipeline."""
    base_url: str = "http://localhost:3000"
    request_timeout: float = 30.0        # Seconds, applied to every request
    tmp_root: Path = field(default_factory=_default_tmp_root)
    font_dir: Path | None = None         # Skip the font directory prompt when set
    export_format: str = "png"
    export_scale: float = 1.0
    write_metadata_json: bool = True     # Persist <tmp_root>/<session>.json on success
    disambiguate_keys: bool = False      # Suffix colliding keys instead of overwriting

    def __post_init__(self):
        self.tmp_root = Path(self.tmp_root).expanduser()
        if self.font_dir is not None:
            self.font_dir = Path(self.font_dir).expanduser()
        try:
            self.request_timeout = float(self.request_timeout)
            self.export_scale = float(self.export_scale)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.export_scale <= 0:
            raise ConfigError("export_scale must be positive")
        self.export_format = str(self.export_format).lower()
        if self.export_format not in _EXPORT_FORMATS:
            raise ConfigError(f"Unsupported export_format: {self.export_format!r}")
        if not self.base_url:
            raise ConfigError("base_url must not be empty")

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "base_url": self.base_url,
            "request_timeout": self.request_timeout,
            "tmp_root": str(self.tmp_root),
            "export_format": self.export_format,
            "export_scale": self.export_scale,
            "write_metadata_json": self.write_metadata_json,
            "disambiguate_keys": self.disambiguate_keys,
        }
        if self.font_dir is not None:
            d["font_dir"] = str(self.font_dir)
        return d

    @classmethod
    def from_dict(cls, d: Mapping) -> "UploaderConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**dict(d))


def _env_overrides(environ: Mapping[str, str]) -> dict:
    overrides = {}
    for suffix, key in _ENV_OVERRIDES.items():
        value = environ.get(_ENV_PREFIX + suffix)
        if value:
            overrides[key] = value
    return overrides


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> UploaderConfig:
    """Load configuration from YAML and the environment.

    An explicit ``path`` must exist; the default file is optional.
    """
    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = Path(DEFAULT_CONFIG_FILE)

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        data.update(loaded)

    data.update(_env_overrides(environ))
    return UploaderConfig.from_dict(data)


def save_config(config: UploaderConfig, path: str | Path) -> None:
    """Serialize a config to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
