"""Layer and metadata models - the contract between loader, extractor, and uploader.

Defines the read-only layer tree supplied by the host document (Document →
Page → Group → Text/Image), the flattened per-layer metadata records that
are uploaded to the template service, and the small wire types the service
returns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class LayerKind(Enum):
    """Node kinds in the host document hierarchy."""
    DOCUMENT = "document"
    PAGE = "page"
    GROUP = "group"
    TEXT = "text"        # Leaf: literal text content
    IMAGE = "image"      # Leaf: raster image


class LayerType(Enum):
    """Kind of an extracted metadata record."""
    TEXT = "text"
    IMAGE = "image"


# ---------------------------------------------------------------------------
# Geometry and styling primitives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Frame:
    """Position and size in pixels, relative to the parent node."""
    x: float
    y: float
    width: float
    height: float

    def translate(self, dx: float, dy: float) -> "Frame":
        """Shift the origin; width and height pass through unchanged."""
        return Frame(x=self.x + dx, y=self.y + dy,
                     width=self.width, height=self.height)

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y,
                "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, d: Mapping) -> "Frame":
        return cls(x=d.get("x", 0), y=d.get("y", 0),
                   width=d.get("width", 0), height=d.get("height", 0))


@dataclass
class LayerStyle:
    """Style attributes as the host document exposes them."""
    opacity: float = 1.0
    fills: list[str] = field(default_factory=list)   # Fill colors, "#RRGGBB"
    text_color: str | None = None                    # Direct text color attribute

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"opacity": self.opacity}
        if self.fills:
            d["fills"] = list(self.fills)
        if self.text_color:
            d["text_color"] = self.text_color
        return d

    @classmethod
    def from_dict(cls, d: Mapping) -> "LayerStyle":
        return cls(
            opacity=d.get("opacity", 1.0),
            fills=list(d.get("fills", [])),
            text_color=d.get("text_color"),
        )


@dataclass(frozen=True)
class FontInfo:
    """Font face and size of a text layer."""
    font_name: str
    font_size: float

    def to_dict(self) -> dict:
        return {"fontName": self.font_name, "fontSize": self.font_size}

    @classmethod
    def from_dict(cls, d: Mapping) -> "FontInfo":
        return cls(font_name=d["fontName"], font_size=d["fontSize"])


# ---------------------------------------------------------------------------
# LayerNode: the host document tree
# ---------------------------------------------------------------------------

@dataclass
class LayerNode:
    """A node in the host document hierarchy.

    Children are owned by their parent and kept in document order.  Only
    Group nodes carry Text/Image children, and only leaves carry text,
    alignment, or raster data.  The extraction core reads these nodes and
    never mutates them.
    """
    id: str
    name: str
    kind: LayerKind
    frame: Frame
    children: list["LayerNode"] = field(default_factory=list)

    # Leaf attributes
    text: str | None = None
    alignment: str | None = None
    style: LayerStyle = field(default_factory=LayerStyle)
    image: bytes | None = None           # Encoded raster (PNG/JPEG) for Image leaves

    @property
    def is_leaf(self) -> bool:
        return self.kind in (LayerKind.TEXT, LayerKind.IMAGE)

    def iter_nodes(self) -> Iterator["LayerNode"]:
        """Depth-first, pre-order traversal including this node."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def find(self, node_id: str) -> "LayerNode | None":
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None

    @classmethod
    def from_dict(cls, d: Mapping) -> "LayerNode":
        return cls(
            id=str(d["id"]),
            name=d.get("name", ""),
            kind=LayerKind(d["kind"].lower()),
            frame=Frame.from_dict(d.get("frame", {})),
            children=[cls.from_dict(c) for c in d.get("children", [])],
            text=d.get("text"),
            alignment=d.get("alignment"),
            style=LayerStyle.from_dict(d.get("style", {})),
            image=d.get("image") if isinstance(d.get("image"), bytes) else None,
        )


# ---------------------------------------------------------------------------
# LayerMetadata: one extracted record per Text/Image leaf
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetadataStyle:
    """Normalized style of an extracted layer."""
    opacity: float = 1.0
    color: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"opacity": self.opacity}
        if self.color is not None:
            d["color"] = self.color
        return d

    @classmethod
    def from_dict(cls, d: Mapping) -> "MetadataStyle":
        return cls(opacity=d.get("opacity", 1.0), color=d.get("color"))


@dataclass(frozen=True)
class LayerMetadata:
    """The flattened record uploaded for a single Text or Image leaf.

    ``frame`` is expressed in page coordinates (owning Group origin plus the
    leaf's local origin).  Text-only fields stay None for images.
    """
    key: str                             # Normalized layer name, e.g. "hero_title"
    type: LayerType
    frame: Frame
    style: MetadataStyle
    parent: str                          # Name of the owning Group

    # Text-specific
    text: str | None = None
    alignment: str | None = None
    font: FontInfo | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "type": self.type.value,
            "frame": self.frame.to_dict(),
            "style": self.style.to_dict(),
            "parent": self.parent,
        }
        if self.type is LayerType.TEXT:
            d["text"] = self.text
            d["alignment"] = self.alignment
            if self.font:
                d["font"] = self.font.to_dict()
        return d

    @classmethod
    def from_dict(cls, key: str, d: Mapping) -> "LayerMetadata":
        return cls(
            key=key,
            type=LayerType(d["type"]),
            frame=Frame.from_dict(d["frame"]),
            style=MetadataStyle.from_dict(d.get("style", {})),
            parent=d.get("parent", ""),
            text=d.get("text"),
            alignment=d.get("alignment"),
            font=FontInfo.from_dict(d["font"]) if d.get("font") else None,
        )


def metadata_to_dict(metadata: Mapping[str, LayerMetadata]) -> dict:
    """Serialize a full metadata mapping to its JSON wire form."""
    return {key: record.to_dict() for key, record in metadata.items()}


def metadata_from_dict(d: Mapping) -> dict[str, LayerMetadata]:
    return {key: LayerMetadata.from_dict(key, value) for key, value in d.items()}


# ---------------------------------------------------------------------------
# Remote service types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Category:
    """A template category offered by the service."""
    id: str
    display_name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "displayName": self.display_name}

    @classmethod
    def from_dict(cls, d: Mapping) -> "Category":
        return cls(id=str(d["id"]), display_name=d.get("displayName", str(d["id"])))
