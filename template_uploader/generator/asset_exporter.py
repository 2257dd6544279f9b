"""Asset exporter: renders layers to image files under a session directory.

Output layout::

    <tmp_root>/<session_id>/images/<slot>/<node-id>.<ext>

Image leaves are decoded and resized to their frame; Pages and Groups are
composed onto a white canvas the size of their frame, with child images
pasted and text drawn at their positions.

Usage::

    exporter = AssetExporter(Path("/tmp/template-uploader"))
    path = exporter.export(page, AssetSlot.TEMPLATE, session_id)
"""

import logging
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path

from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from template_uploader.errors import ExportError
from template_uploader.schema.models import LayerKind, LayerNode

logger = logging.getLogger(__name__)


class AssetSlot(Enum):
    """Remote asset slot an exported file is destined for."""
    TEMPLATE = "template"
    BACKGROUND = "background"


_FORMATS = {
    "png": ("PNG", "png"),
    "jpg": ("JPEG", "jpg"),
    "jpeg": ("JPEG", "jpg"),
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class ExportOptions:
    """Rendering options for a single export."""
    format: str = "png"
    scale: float = 1.0
    save_for_web: bool = True        # Optimize PNG output


def _safe_filename(node_id: str) -> str:
    return _UNSAFE_CHARS.sub("_", node_id).strip("_") or "layer"


def _parse_color(value: str | None, default=(0, 0, 0, 255)) -> tuple:
    if not value:
        return default
    try:
        return ImageColor.getcolor(value, "RGBA")
    except ValueError:
        logger.debug("Unparseable color %r, using default", value)
        return default


def _apply_opacity(img: Image.Image, opacity: float) -> Image.Image:
    if opacity >= 1.0:
        return img
    alpha = img.getchannel("A").point(lambda a: int(a * max(opacity, 0.0)))
    img.putalpha(alpha)
    return img


class AssetExporter:
    """Renders LayerNodes to files in a session-scoped temp directory."""

    def __init__(self, tmp_root: str | Path, options: ExportOptions | None = None):
        self.tmp_root = Path(tmp_root)
        self.options = options or ExportOptions()

    # -- Paths ---------------------------------------------------------------

    def session_dir(self, session_id: str) -> Path:
        return self.tmp_root / session_id

    def slot_dir(self, session_id: str, slot: AssetSlot) -> Path:
        return self.session_dir(session_id) / "images" / slot.value

    def output_path(self, node: LayerNode, slot: AssetSlot, session_id: str,
                    options: ExportOptions | None = None) -> Path:
        options = options or self.options
        _, ext = self._format(options)
        return self.slot_dir(session_id, slot) / f"{_safe_filename(node.id)}.{ext}"

    # -- Export --------------------------------------------------------------

    def export(self, node: LayerNode, slot: AssetSlot, session_id: str,
               options: ExportOptions | None = None) -> Path:
        """Render ``node`` and write it to its slot; return the file path."""
        options = options or self.options
        pil_format, _ = self._format(options)
        if node.frame.is_empty():
            raise ExportError(f"Cannot render {node.name!r}: zero-size frame")
        if options.scale <= 0:
            raise ExportError(f"Invalid export scale: {options.scale}")

        img = self._render(node, options.scale)
        path = self.output_path(node, slot, session_id, options)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if pil_format == "JPEG":
                background = Image.new("RGB", img.size, (255, 255, 255))
                background.paste(img, mask=img.getchannel("A"))
                background.save(path, "JPEG", quality=90)
            else:
                img.save(path, "PNG", optimize=options.save_for_web)
        except OSError as exc:
            raise ExportError(f"Cannot write {path}: {exc}") from exc

        logger.debug("Exported %s %r to %s", slot.value, node.name, path)
        return path

    def cleanup_session(self, session_id: str) -> bool:
        """Delete all files of a session. Returns False if there were none."""
        session_dir = self.session_dir(session_id)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        return True

    # -- Rendering -----------------------------------------------------------

    def _format(self, options: ExportOptions) -> tuple[str, str]:
        try:
            return _FORMATS[options.format.lower()]
        except KeyError:
            raise ExportError(f"Unsupported export format: {options.format!r}") from None

    def _render(self, node: LayerNode, scale: float) -> Image.Image:
        size = self._scaled_size(node.frame.width, node.frame.height, scale)
        if node.kind is LayerKind.IMAGE:
            return self._render_image(node, size)

        canvas = Image.new("RGBA", size, (255, 255, 255, 255))
        if node.kind is LayerKind.TEXT:
            self._draw_text(canvas, node, 0, 0, scale)
        else:
            self._compose(canvas, node, 0.0, 0.0, scale)
        return canvas

    def _scaled_size(self, width: float, height: float, scale: float) -> tuple[int, int]:
        return max(1, round(width * scale)), max(1, round(height * scale))

    def _render_image(self, node: LayerNode, size: tuple[int, int]) -> Image.Image:
        if not node.image:
            raise ExportError(f"Image layer {node.name!r} has no raster data")
        try:
            img = Image.open(BytesIO(node.image))
            img.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ExportError(f"Cannot decode image layer {node.name!r}: {exc}") from exc
        img = img.convert("RGBA").resize(size)
        return _apply_opacity(img, node.style.opacity)

    def _compose(self, canvas: Image.Image, node: LayerNode,
                 origin_x: float, origin_y: float, scale: float) -> None:
        """Draw the children of a container node; origin is the node's offset."""
        for child in node.children:
            x = origin_x + child.frame.x
            y = origin_y + child.frame.y
            if child.kind is LayerKind.IMAGE:
                if child.frame.is_empty() or not child.image:
                    logger.debug("Skipping unrenderable image %r in composition", child.name)
                    continue
                size = self._scaled_size(child.frame.width, child.frame.height, scale)
                try:
                    img = self._render_image(child, size)
                except ExportError as exc:
                    logger.warning("Leaving %r out of the composition: %s", child.name, exc)
                    continue
                canvas.paste(img, (round(x * scale), round(y * scale)), img)
            elif child.kind is LayerKind.TEXT:
                self._draw_text(canvas, child, x, y, scale)
            else:
                self._compose(canvas, child, x, y, scale)

    def _draw_text(self, canvas: Image.Image, node: LayerNode,
                   x: float, y: float, scale: float) -> None:
        if not node.text:
            return
        color_value = node.style.fills[0] if node.style.fills else node.style.text_color
        r, g, b, a = _parse_color(color_value)
        fill = (r, g, b, int(a * node.style.opacity))
        draw = ImageDraw.Draw(canvas)
        draw.multiline_text((round(x * scale), round(y * scale)), node.text,
                            fill=fill, font=ImageFont.load_default())
