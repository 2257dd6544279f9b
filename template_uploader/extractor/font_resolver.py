"""Font resolver: maps the fonts a template uses to files in a directory.

A file matches a font when its name without extension equals the font name
("Helvetica-Bold.ttf" → "Helvetica-Bold").  Files are scanned in sorted
order, so when two files share a stem the first one wins.
"""

import logging
from pathlib import Path
from typing import Iterable

from template_uploader.errors import InvalidFontDirectoryError, MissingFontsError

logger = logging.getLogger(__name__)


class FontResolver:
    """Validates that every expected font has a file in a directory."""

    def resolve(self, expected_names: Iterable[str], directory: str | Path) -> list[Path]:
        """Return one path per expected font.

        Raises InvalidFontDirectoryError before scanning if the directory
        cannot be listed, and MissingFontsError naming every unresolved font
        otherwise.
        """
        directory = Path(directory).expanduser()
        files = self._list_files(directory)

        remaining = set(expected_names)
        font_paths: list[Path] = []
        for path in files:
            candidate = path.stem
            if candidate in remaining:
                font_paths.append(path)
                remaining.discard(candidate)
                logger.debug("Resolved font %r -> %s", candidate, path)

        if remaining or not font_paths:
            raise MissingFontsError(remaining)
        return font_paths

    def _list_files(self, directory: Path) -> list[Path]:
        if not directory.exists():
            raise InvalidFontDirectoryError(directory, "does not exist")
        if not directory.is_dir():
            raise InvalidFontDirectoryError(directory, "not a directory")
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            raise InvalidFontDirectoryError(directory, str(exc)) from exc
        return [p for p in entries if p.is_file()]


def resolve_fonts(expected_names: Iterable[str], directory: str | Path) -> list[Path]:
    """Convenience function: resolve fonts with a default FontResolver."""
    return FontResolver().resolve(expected_names, directory)
