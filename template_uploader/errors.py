"""Error taxonomy for template extraction and upload.

Every failure the core can report derives from TemplateUploaderError so the
CLI can catch one type.  Voluntary cancellation is NOT an error and has no
class here; it is the ``Abort`` result variant in
``template_uploader.pipeline.orchestrator``.

Hierarchy::

    TemplateUploaderError
    ├── ConfigError
    ├── DocumentLoadError
    ├── GraphError
    ├── ValidationError
    │   ├── InvalidFontDirectoryError
    │   ├── MissingFontsError
    │   └── MissingAssetError
    ├── RemoteError
    ├── TransportError
    ├── ExportError
    └── FontLookupError
"""

from __future__ import annotations

from pathlib import Path


class TemplateUploaderError(Exception):
    """Base class for all template uploader failures."""


class ConfigError(TemplateUploaderError):
    """Configuration file or environment override is invalid."""


class DocumentLoadError(TemplateUploaderError):
    """The host document could not be read into a layer tree."""


class GraphError(TemplateUploaderError, ValueError):
    """The task graph is malformed (duplicate name, unknown dependency, cycle)."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(TemplateUploaderError):
    """Input failed validation (fonts, directories, exported assets)."""


class InvalidFontDirectoryError(ValidationError):
    def __init__(self, directory: str | Path, reason: str = "not a readable directory"):
        self.directory = Path(directory)
        self.reason = reason
        super().__init__(f"Invalid font directory {self.directory}: {reason}")


class MissingFontsError(ValidationError):
    """Some fonts referenced by text layers were not found on disk."""

    def __init__(self, missing: set[str] | frozenset[str]):
        self.missing = frozenset(missing)
        names = ", ".join(sorted(self.missing)) or "(none collected)"
        super().__init__(f"Missing font files for: {names}")


class MissingAssetError(ValidationError):
    def __init__(self, path: str | Path | None, slot: str):
        self.path = Path(path) if path is not None else None
        self.slot = slot
        where = f" at {self.path}" if self.path else ""
        super().__init__(f"No exported {slot} asset{where}")


# ---------------------------------------------------------------------------
# Remote service
# ---------------------------------------------------------------------------

class RemoteError(TemplateUploaderError):
    """The template service answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


class TransportError(TemplateUploaderError):
    """Connection-level failure or an undecodable response body."""


# ---------------------------------------------------------------------------
# Rendering and font metadata
# ---------------------------------------------------------------------------

class ExportError(TemplateUploaderError):
    """A layer could not be rendered to an image file."""


class FontLookupError(TemplateUploaderError):
    def __init__(self, layer_id: str, matches: int = 0):
        self.layer_id = layer_id
        self.matches = matches
        if matches:
            detail = f"expected exactly one font match, found {matches}"
        else:
            detail = "no font information found"
        super().__init__(f"Font lookup failed for layer {layer_id!r}: {detail}")
