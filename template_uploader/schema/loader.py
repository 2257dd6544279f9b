"""Metadata loader: JSON/YAML serialization of extracted layer metadata.

Provides round-trip save/load so an extraction pass can be inspected, kept
alongside the uploaded template, or diffed between runs.  The format is
chosen by file suffix: ``.yaml``/``.yml`` for YAML, anything else JSON.
"""

import json
from pathlib import Path
from typing import Mapping

import yaml

from .models import LayerMetadata, metadata_from_dict, metadata_to_dict

_YAML_SUFFIXES = {".yaml", ".yml"}


def save_metadata(metadata: Mapping[str, LayerMetadata], path: str | Path) -> Path:
    """Serialize a metadata mapping to a JSON or YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = metadata_to_dict(metadata)
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() in _YAML_SUFFIXES:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False,
                      allow_unicode=True, width=120)
        else:
            json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def load_metadata(path: str | Path) -> dict[str, LayerMetadata]:
    """Deserialize a metadata mapping from a JSON or YAML file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f)
    return metadata_from_dict(data)
