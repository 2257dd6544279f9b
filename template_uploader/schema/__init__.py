"""Schema package: typed models for layer trees and extracted metadata.

- models.py: Core dataclasses (LayerNode, LayerMetadata, Frame, FontInfo, etc.)
- loader.py: JSON/YAML serialization of metadata mappings
"""

from .loader import load_metadata, save_metadata
from .models import (
    Category,
    FontInfo,
    Frame,
    LayerKind,
    LayerMetadata,
    LayerNode,
    LayerStyle,
    LayerType,
    MetadataStyle,
    metadata_from_dict,
    metadata_to_dict,
)

__all__ = [
    # Models
    "Category",
    "FontInfo",
    "Frame",
    "LayerKind",
    "LayerMetadata",
    "LayerNode",
    "LayerStyle",
    "LayerType",
    "MetadataStyle",
    "metadata_from_dict",
    "metadata_to_dict",
    # Loader
    "load_metadata",
    "save_metadata",
]
