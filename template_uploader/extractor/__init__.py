"""Metadata extraction engine: flattens layer trees into upload records.

Walks Page → Group → Leaf, produces normalized LayerMetadata per Text/Image
leaf, and resolves the font files the extracted text layers reference.
"""

from .font_resolver import FontResolver, resolve_fonts
from .layer_walker import LayerWalker, LeafVisit, classify
from .metadata_extractor import (
    ExtractionResult,
    MetadataExtractor,
    extract_page,
    normalize_key,
)

__all__ = [
    "ExtractionResult",
    "FontResolver",
    "LayerWalker",
    "LeafVisit",
    "MetadataExtractor",
    "classify",
    "extract_page",
    "normalize_key",
    "resolve_fonts",
]
