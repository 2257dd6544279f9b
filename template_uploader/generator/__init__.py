"""Asset generator: renders layers to image files for upload."""

from .asset_exporter import AssetExporter, AssetSlot, ExportOptions

__all__ = [
    "AssetExporter",
    "AssetSlot",
    "ExportOptions",
]
