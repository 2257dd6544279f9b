"""Document loader - reads host documents into a read-only LayerNode tree.

Two adapters produce a LayerDocument:

- PPTX decks, inspected with python-pptx: each slide becomes a Page, each
  top-level group shape a Group, and the group's text boxes and pictures
  become Text and Image leaves.
- JSON/YAML layer trees, for hosts that export their own hierarchy.

Alongside the tree, each adapter builds the font index behind
``LayerDocument.lookup_font``; font attributes are not part of the
LayerNode model because hosts expose them through separate channels.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from lxml import etree
from pptx import Presentation
from pptx.enum.dml import MSO_COLOR_TYPE
from pptx.enum.shapes import MSO_SHAPE_TYPE
from pptx.enum.text import PP_ALIGN
from pptx.oxml.ns import qn

from template_uploader.errors import DocumentLoadError, FontLookupError
from template_uploader.schema.models import (
    FontInfo,
    Frame,
    LayerKind,
    LayerNode,
    LayerStyle,
)

logger = logging.getLogger(__name__)

EMU_PER_PX = 9525            # 96 dpi
DEFAULT_FONT_SIZE_PT = 18.0  # PowerPoint body text default

_ALIGN_NAMES = {
    PP_ALIGN.LEFT: "left",
    PP_ALIGN.CENTER: "center",
    PP_ALIGN.RIGHT: "right",
    PP_ALIGN.JUSTIFY: "justify",
}

_DRAWINGML_NS = {"a": "http://schemas.openxmlformats.org/drawingml/2006/main"}


def _emu_to_px(emu: int | None) -> float:
    if emu is None:
        return 0.0
    return round(emu / EMU_PER_PX, 2)


def _safe_get(fn):
    """Call fn, return None on error."""
    try:
        return fn()
    except Exception:
        return None


# ---------------------------------------------------------------------------
# LayerDocument
# ---------------------------------------------------------------------------

@dataclass
class LayerDocument:
    """A loaded document: the layer tree plus its font index."""
    root: LayerNode
    fonts: dict[str, list[FontInfo]] = field(default_factory=dict)
    source: Path | None = None

    @property
    def pages(self) -> list[LayerNode]:
        return [c for c in self.root.children if c.kind is LayerKind.PAGE]

    def page(self, index: int = 0) -> LayerNode:
        pages = self.pages
        if not 0 <= index < len(pages):
            raise DocumentLoadError(
                f"Page index {index} out of range ({len(pages)} page(s))"
            )
        return pages[index]

    def lookup_font(self, layer_id: str) -> FontInfo:
        """Return the single font entry recorded for a text layer."""
        matches = self.fonts.get(layer_id, [])
        if len(matches) != 1:
            raise FontLookupError(layer_id, matches=len(matches))
        return matches[0]


# ---------------------------------------------------------------------------
# PPTX adapter
# ---------------------------------------------------------------------------

class PptxDocumentLoader:
    """Reads a PPTX file into a Document → Page → Group → Leaf tree."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        try:
            self.prs = Presentation(str(self.path))
        except Exception as exc:
            raise DocumentLoadError(f"Cannot open PPTX {self.path}: {exc}") from exc
        self._fonts: dict[str, list[FontInfo]] = {}
        self._theme_font = self._extract_theme_minor_font()

    def load(self) -> LayerDocument:
        width = _emu_to_px(self.prs.slide_width)
        height = _emu_to_px(self.prs.slide_height)
        pages = [
            self._extract_page(i, slide, width, height)
            for i, slide in enumerate(self.prs.slides)
        ]
        root = LayerNode(
            id=self.path.stem,
            name=self.path.stem,
            kind=LayerKind.DOCUMENT,
            frame=Frame(0, 0, width, height),
            children=pages,
        )
        return LayerDocument(root=root, fonts=self._fonts, source=self.path)

    def _extract_theme_minor_font(self) -> str | None:
        """Body (minor) latin typeface from the first master's theme."""
        for master in self.prs.slide_masters:
            for rel in master.part.rels.values():
                if "theme" not in rel.reltype:
                    continue
                root = etree.fromstring(rel.target_part.blob)
                minor = root.find(".//a:fontScheme/a:minorFont/a:latin", _DRAWINGML_NS)
                if minor is not None and minor.get("typeface"):
                    return minor.get("typeface")
        return None

    def _extract_page(self, index: int, slide, width: float, height: float) -> LayerNode:
        title = _safe_get(lambda: slide.shapes.title.text)
        page_id = str(slide.slide_id)
        groups = []
        for shape in slide.shapes:
            if _safe_get(lambda: shape.shape_type) == MSO_SHAPE_TYPE.GROUP:
                groups.append(self._extract_group(page_id, shape))
            else:
                logger.warning("Slide %d: skipping ungrouped shape %r", index + 1, shape.name)
        return LayerNode(
            id=page_id,
            name=title or f"Slide {index + 1}",
            kind=LayerKind.PAGE,
            frame=Frame(0, 0, width, height),
            children=groups,
        )

    def _extract_group(self, page_id: str, group) -> LayerNode:
        origin_x, origin_y, scale_x, scale_y = self._child_space(group)
        children = []
        for shape in group.shapes:
            frame = Frame(
                x=round((_emu_to_px(shape.left) - origin_x) * scale_x, 2),
                y=round((_emu_to_px(shape.top) - origin_y) * scale_y, 2),
                width=round(_emu_to_px(shape.width) * scale_x, 2),
                height=round(_emu_to_px(shape.height) * scale_y, 2),
            )
            leaf = self._extract_leaf(page_id, shape, frame)
            if leaf is not None:
                children.append(leaf)

        return LayerNode(
            id=f"{page_id}:{group.shape_id}",
            name=group.name,
            kind=LayerKind.GROUP,
            frame=Frame(
                x=_emu_to_px(group.left),
                y=_emu_to_px(group.top),
                width=_emu_to_px(group.width),
                height=_emu_to_px(group.height),
            ),
            children=children,
        )

    def _child_space(self, group) -> tuple[float, float, float, float]:
        """Return (child-space origin x, y, scale x, y) in pixels for a group.

        Group children are positioned in the group's child coordinate space
        (``a:chOff``/``a:chExt``), which maps onto the group's own extent.
        """
        left, top = _emu_to_px(group.left), _emu_to_px(group.top)
        xfrm = group._element.grpSpPr.find(qn("a:xfrm"))
        if xfrm is None:
            return left, top, 1.0, 1.0
        ext = xfrm.find(qn("a:ext"))
        ch_off = xfrm.find(qn("a:chOff"))
        ch_ext = xfrm.find(qn("a:chExt"))
        if ch_off is None or ch_ext is None:
            return left, top, 1.0, 1.0

        def _ratio(attr: str) -> float:
            child = int(ch_ext.get(attr, 0))
            own = int(ext.get(attr, 0)) if ext is not None else child
            return own / child if child else 1.0

        return (
            _emu_to_px(int(ch_off.get("x", 0))),
            _emu_to_px(int(ch_off.get("y", 0))),
            _ratio("cx"),
            _ratio("cy"),
        )

    def _extract_leaf(self, page_id: str, shape, frame: Frame) -> LayerNode | None:
        node_id = f"{page_id}:{shape.shape_id}"
        shape_type = _safe_get(lambda: shape.shape_type)

        if shape_type == MSO_SHAPE_TYPE.PICTURE:
            return LayerNode(
                id=node_id,
                name=shape.name,
                kind=LayerKind.IMAGE,
                frame=frame,
                style=LayerStyle(opacity=_extract_opacity(shape)),
                image=_safe_get(lambda: shape.image.blob),
            )

        if shape_type == MSO_SHAPE_TYPE.GROUP:
            logger.warning("Skipping nested group %r (only one group level is supported)",
                           shape.name)
            return None

        if shape.has_text_frame and shape.text_frame.text.strip():
            self._index_font(node_id, shape)
            return LayerNode(
                id=node_id,
                name=shape.name,
                kind=LayerKind.TEXT,
                frame=frame,
                text=shape.text_frame.text,
                alignment=_extract_alignment(shape),
                style=LayerStyle(
                    opacity=_extract_opacity(shape),
                    fills=_extract_text_fills(shape),
                    text_color=_font_rgb(shape.text_frame.paragraphs[0].font),
                ),
            )

        logger.debug("Skipping non-content shape %r (%s)", shape.name, shape_type)
        return None

    def _index_font(self, node_id: str, shape) -> None:
        """Record the font of the first run (then paragraph, then theme)."""
        para = shape.text_frame.paragraphs[0]
        run = next((r for p in shape.text_frame.paragraphs for r in p.runs), None)

        name = None
        size = None
        if run is not None:
            name = run.font.name
            size = _safe_get(lambda: run.font.size.pt)
        name = name or para.font.name or self._theme_font
        size = size or _safe_get(lambda: para.font.size.pt) or DEFAULT_FONT_SIZE_PT

        if name:
            self._fonts[node_id] = [FontInfo(font_name=name, font_size=float(size))]


def _font_rgb(font) -> str | None:
    """'#RRGGBB' for an explicit RGB font color, else None."""
    color = _safe_get(lambda: font.color)
    if color is None or color.type != MSO_COLOR_TYPE.RGB:
        return None
    return f"#{color.rgb}"


def _extract_text_fills(shape) -> list[str]:
    fills = []
    for para in shape.text_frame.paragraphs:
        for run in para.runs:
            rgb = _font_rgb(run.font)
            if rgb:
                fills.append(rgb)
    return fills


def _extract_alignment(shape) -> str:
    alignment = shape.text_frame.paragraphs[0].alignment
    return _ALIGN_NAMES.get(alignment, "left")


# Checked in order; the first match wins
_OPACITY_PATHS = (
    ("./p:blipFill/a:blip/a:alphaModFix", "amt"),
    ("./p:spPr/a:solidFill/*/a:alpha", "val"),
    ("./p:txBody/a:p/a:r/a:rPr/a:solidFill/*/a:alpha", "val"),
)


def _extract_opacity(shape) -> float:
    """Opacity from the picture blip or, for text, the shape or run fill.

    Effect colors (shadows, glows) carry their own alpha and are ignored.
    """
    for path, attr in _OPACITY_PATHS:
        found = shape._element.xpath(path)
        if found:
            return int(found[0].get(attr, 100000)) / 100000
    return 1.0


# ---------------------------------------------------------------------------
# Layer tree adapter (JSON / YAML)
# ---------------------------------------------------------------------------

def _prepare_tree(d: dict, base_dir: Path, fonts: dict[str, list[FontInfo]]) -> dict:
    """Resolve image paths to bytes and pull font blocks into the index."""
    d = dict(d)
    if d.get("font"):
        fonts.setdefault(str(d["id"]), []).append(FontInfo.from_dict(d.pop("font")))
    image = d.get("image")
    if isinstance(image, str):
        image_path = base_dir / image
        try:
            d["image"] = image_path.read_bytes()
        except OSError as exc:
            raise DocumentLoadError(f"Cannot read image {image_path}: {exc}") from exc
    d["children"] = [_prepare_tree(c, base_dir, fonts) for c in d.get("children", [])]
    return d


def load_layer_tree(path: str | Path) -> LayerDocument:
    """Load a JSON/YAML layer tree whose root is a Document node."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data: Any = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise DocumentLoadError(f"Cannot read layer tree {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise DocumentLoadError(f"Layer tree {path} must contain a mapping")

    fonts: dict[str, list[FontInfo]] = {}
    try:
        root = LayerNode.from_dict(_prepare_tree(data, path.parent, fonts))
    except (KeyError, ValueError, AttributeError) as exc:
        raise DocumentLoadError(f"Malformed layer tree {path}: {exc}") from exc
    if root.kind is not LayerKind.DOCUMENT:
        raise DocumentLoadError(f"Layer tree root must be a document, got {root.kind.value}")
    return LayerDocument(root=root, fonts=fonts, source=path)


def load_document(path: str | Path) -> LayerDocument:
    """Load a host document, choosing the adapter by file suffix."""
    path = Path(path)
    if not path.exists():
        raise DocumentLoadError(f"Document not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".pptx":
        return PptxDocumentLoader(path).load()
    if suffix in (".json", ".yaml", ".yml"):
        return load_layer_tree(path)
    raise DocumentLoadError(f"Unsupported document type: {suffix or path.name}")
