"""Shared fixtures: small layer trees, raster bytes, and fake collaborators."""

from io import BytesIO

import pytest
from PIL import Image

from template_uploader.analyzer.document_loader import LayerDocument
from template_uploader.config import UploaderConfig
from template_uploader.schema.models import (
    FontInfo,
    Frame,
    LayerKind,
    LayerNode,
    LayerStyle,
)


def _png(width=8, height=8, color=(200, 30, 30, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Factory for small encoded PNG images."""
    return _png


@pytest.fixture
def make_node():
    """Factory for LayerNodes: make_node(id, kind, frame=(x, y, w, h), ...)."""
    def _make(node_id, kind, frame=(0, 0, 10, 10), name=None, children=None, **kwargs):
        return LayerNode(
            id=node_id,
            name=name if name is not None else node_id.title(),
            kind=LayerKind(kind),
            frame=Frame(*frame),
            children=list(children or []),
            **kwargs,
        )
    return _make


@pytest.fixture
def hero_page():
    """Page with one Group "Hero" at (50, 50) holding Text "Title" and Image "Bg"."""
    title = LayerNode(
        id="title", name="Title", kind=LayerKind.TEXT,
        frame=Frame(10, 5, 100, 20),
        text="Summer Sale", alignment="center",
        style=LayerStyle(fills=["#000000"]),
    )
    bg = LayerNode(
        id="bg", name="Bg", kind=LayerKind.IMAGE,
        frame=Frame(0, 0, 200, 100),
        image=_png(40, 20),
    )
    hero = LayerNode(
        id="hero", name="Hero", kind=LayerKind.GROUP,
        frame=Frame(50, 50, 200, 100),
        children=[title, bg],
    )
    return LayerNode(
        id="page-1", name="Page 1", kind=LayerKind.PAGE,
        frame=Frame(0, 0, 400, 300),
        children=[hero],
    )


@pytest.fixture
def hero_fonts():
    return {"title": [FontInfo(font_name="Helvetica-Bold", font_size=24.0)]}


@pytest.fixture
def hero_document(hero_page, hero_fonts):
    root = LayerNode(
        id="doc", name="Design", kind=LayerKind.DOCUMENT,
        frame=Frame(0, 0, 400, 300), children=[hero_page],
    )
    return LayerDocument(root=root, fonts=hero_fonts)


@pytest.fixture
def font_dir(tmp_path):
    """Directory holding Helvetica-Bold.ttf plus an unrelated font."""
    d = tmp_path / "fonts"
    d.mkdir()
    (d / "Helvetica-Bold.ttf").write_bytes(b"ttf-bytes")
    (d / "Other.otf").write_bytes(b"otf-bytes")
    return d


@pytest.fixture
def config(tmp_path):
    return UploaderConfig(base_url="http://templates.test", tmp_root=tmp_path / "tmp")


class FakePrompter:
    """Answers prompts from queues; an exhausted queue means cancel."""

    def __init__(self, selections=(), strings=()):
        self.selections = list(selections)
        self.strings = list(strings)
        self.calls = []

    def select_one(self, prompt, options):
        self.calls.append(("select_one", prompt, list(options)))
        return self.selections.pop(0) if self.selections else None

    def get_string(self, prompt, default=""):
        self.calls.append(("get_string", prompt, default))
        return self.strings.pop(0) if self.strings else None


@pytest.fixture
def prompter_factory():
    return FakePrompter
