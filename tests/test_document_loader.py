"""Tests for the host document adapters (PPTX and layer-tree files).

PPTX decks are built in-test with python-pptx so the tests do not depend
on binary fixtures.
"""

import json
from io import BytesIO

import pytest
import yaml
from lxml import etree
from pptx import Presentation
from pptx.dml.color import RGBColor
from pptx.enum.text import PP_ALIGN
from pptx.oxml.ns import qn
from pptx.util import Emu, Pt

from template_uploader.analyzer.document_loader import (
    EMU_PER_PX,
    _extract_opacity,
    LayerDocument,
    PptxDocumentLoader,
    load_document,
    load_layer_tree,
)
from template_uploader.errors import DocumentLoadError, FontLookupError
from template_uploader.schema.models import FontInfo, Frame, LayerKind


def px(value):
    return Emu(int(value * EMU_PER_PX))


@pytest.fixture
def hero_pptx(tmp_path, png_bytes):
    """One slide with group "Hero" (Title text + Bg picture) and a stray textbox."""
    prs = Presentation()
    slide = prs.slides.add_slide(prs.slide_layouts[6])

    group = slide.shapes.add_group_shape()
    group.name = "Hero"

    bg = group.shapes.add_picture(BytesIO(png_bytes(40, 20)), px(50), px(50), px(200), px(100))
    bg.name = "Bg"

    title = group.shapes.add_textbox(px(60), px(55), px(100), px(20))
    title.name = "Title"
    para = title.text_frame.paragraphs[0]
    para.alignment = PP_ALIGN.CENTER
    run = para.add_run()
    run.text = "Summer Sale"
    run.font.name = "Helvetica-Bold"
    run.font.size = Pt(24)
    run.font.color.rgb = RGBColor(0x11, 0x22, 0x33)

    stray = slide.shapes.add_textbox(px(0), px(0), px(50), px(10))
    stray.text_frame.text = "Outside any group"

    path = tmp_path / "hero.pptx"
    prs.save(str(path))
    return path


# ---------------------------------------------------------------------------
# PPTX adapter
# ---------------------------------------------------------------------------

class TestPptxDocumentLoader:
    def test_tree_shape(self, hero_pptx):
        doc = PptxDocumentLoader(hero_pptx).load()
        assert doc.root.kind is LayerKind.DOCUMENT
        assert len(doc.pages) == 1
        page = doc.page(0)
        assert page.kind is LayerKind.PAGE
        assert page.name == "Slide 1"
        assert [g.name for g in page.children] == ["Hero"]

    def test_stray_shape_skipped(self, hero_pptx, caplog):
        with caplog.at_level("WARNING"):
            doc = PptxDocumentLoader(hero_pptx).load()
        assert len(doc.page(0).children) == 1
        assert "ungrouped" in caplog.text

    def test_group_frame_and_local_leaf_frames(self, hero_pptx):
        group = PptxDocumentLoader(hero_pptx).load().page(0).children[0]
        assert group.frame == Frame(50, 50, 200, 100)
        leaves = {leaf.name: leaf for leaf in group.children}
        assert leaves["Bg"].frame == Frame(0, 0, 200, 100)
        assert leaves["Title"].frame == Frame(10, 5, 100, 20)

    def test_text_leaf(self, hero_pptx):
        group = PptxDocumentLoader(hero_pptx).load().page(0).children[0]
        title = next(c for c in group.children if c.name == "Title")
        assert title.kind is LayerKind.TEXT
        assert title.text == "Summer Sale"
        assert title.alignment == "center"
        assert title.style.fills == ["#112233"]

    def test_picture_leaf_keeps_raster(self, hero_pptx):
        group = PptxDocumentLoader(hero_pptx).load().page(0).children[0]
        bg = next(c for c in group.children if c.name == "Bg")
        assert bg.kind is LayerKind.IMAGE
        assert bg.image.startswith(b"\x89PNG")
        assert bg.style.opacity == 1.0

    def test_font_index(self, hero_pptx):
        doc = PptxDocumentLoader(hero_pptx).load()
        title = next(n for n in doc.root.iter_nodes() if n.name == "Title")
        assert doc.lookup_font(title.id) == FontInfo("Helvetica-Bold", 24.0)

    def test_unreadable_file(self, tmp_path):
        bad = tmp_path / "broken.pptx"
        bad.write_bytes(b"not a zip")
        with pytest.raises(DocumentLoadError):
            PptxDocumentLoader(bad)


# ---------------------------------------------------------------------------
# Opacity
# ---------------------------------------------------------------------------

def add_shadow(shape):
    """Give ``shape`` a translucent outer shadow."""
    effects = etree.SubElement(shape._element.spPr, qn("a:effectLst"))
    shadow = etree.SubElement(effects, qn("a:outerShdw"), blurRad="40000")
    color = etree.SubElement(shadow, qn("a:srgbClr"), val="000000")
    etree.SubElement(color, qn("a:alpha"), val="60000")


class TestOpacity:
    @pytest.fixture
    def slide(self):
        prs = Presentation()
        return prs.slides.add_slide(prs.slide_layouts[6])

    def test_picture_uses_blip_alpha_not_shadow(self, slide, png_bytes):
        pic = slide.shapes.add_picture(BytesIO(png_bytes()), 0, 0, px(20), px(20))
        add_shadow(pic)
        blip = pic._element.find(qn("p:blipFill")).find(qn("a:blip"))
        etree.SubElement(blip, qn("a:alphaModFix"), amt="40000")
        assert _extract_opacity(pic) == pytest.approx(0.4)

    def test_shadow_alone_leaves_text_opaque(self, slide):
        box = slide.shapes.add_textbox(0, 0, px(50), px(10))
        box.text_frame.text = "Shadowed"
        add_shadow(box)
        assert _extract_opacity(box) == 1.0

    def test_run_fill_alpha(self, slide):
        box = slide.shapes.add_textbox(0, 0, px(50), px(10))
        run = box.text_frame.paragraphs[0].add_run()
        run.text = "Faded"
        run.font.color.rgb = RGBColor(0x11, 0x22, 0x33)
        color = run._r.find(qn("a:rPr")).find(qn("a:solidFill")).find(qn("a:srgbClr"))
        etree.SubElement(color, qn("a:alpha"), val="25000")
        assert _extract_opacity(box) == pytest.approx(0.25)


# ---------------------------------------------------------------------------
# LayerDocument
# ---------------------------------------------------------------------------

class TestLayerDocument:
    def test_page_out_of_range(self, hero_document):
        with pytest.raises(DocumentLoadError, match="out of range"):
            hero_document.page(3)

    def test_lookup_font_requires_exactly_one_match(self, hero_document):
        assert hero_document.lookup_font("title").font_name == "Helvetica-Bold"
        with pytest.raises(FontLookupError) as exc_info:
            hero_document.lookup_font("bg")
        assert exc_info.value.matches == 0

        hero_document.fonts["title"].append(FontInfo("Arial", 12))
        with pytest.raises(FontLookupError) as exc_info:
            hero_document.lookup_font("title")
        assert exc_info.value.matches == 2


# ---------------------------------------------------------------------------
# Layer tree adapter
# ---------------------------------------------------------------------------

@pytest.fixture
def tree_data():
    return {
        "id": "doc", "name": "Design", "kind": "Document",
        "children": [{
            "id": "p1", "name": "Cover", "kind": "Page",
            "frame": {"x": 0, "y": 0, "width": 400, "height": 300},
            "children": [{
                "id": "g1", "name": "Hero", "kind": "Group",
                "frame": {"x": 50, "y": 50, "width": 200, "height": 100},
                "children": [
                    {"id": "t1", "name": "Title", "kind": "Text", "text": "Hi",
                     "frame": {"x": 10, "y": 5, "width": 100, "height": 20},
                     "font": {"fontName": "Arial", "fontSize": 12}},
                    {"id": "i1", "name": "Bg", "kind": "Image", "image": "bg.png",
                     "frame": {"x": 0, "y": 0, "width": 200, "height": 100}},
                ],
            }],
        }],
    }


class TestLoadLayerTree:
    def test_json(self, tmp_path, tree_data, png_bytes):
        (tmp_path / "bg.png").write_bytes(png_bytes())
        path = tmp_path / "tree.json"
        path.write_text(json.dumps(tree_data))

        doc = load_layer_tree(path)
        assert isinstance(doc, LayerDocument)
        assert doc.page(0).name == "Cover"
        assert doc.root.find("i1").image == png_bytes()
        assert doc.lookup_font("t1") == FontInfo("Arial", 12)

    def test_yaml(self, tmp_path, tree_data, png_bytes):
        (tmp_path / "bg.png").write_bytes(png_bytes())
        path = tmp_path / "tree.yaml"
        path.write_text(yaml.safe_dump(tree_data))
        assert load_layer_tree(path).root.find("t1").text == "Hi"

    def test_missing_image_file(self, tmp_path, tree_data):
        path = tmp_path / "tree.json"
        path.write_text(json.dumps(tree_data))
        with pytest.raises(DocumentLoadError, match="bg.png"):
            load_layer_tree(path)

    def test_root_must_be_document(self, tmp_path, tree_data):
        path = tmp_path / "tree.json"
        path.write_text(json.dumps(tree_data["children"][0] | {"children": []}))
        with pytest.raises(DocumentLoadError, match="document"):
            load_layer_tree(path)

    def test_unknown_kind(self, tmp_path):
        path = tmp_path / "tree.json"
        path.write_text(json.dumps({"id": "d", "kind": "Sticker"}))
        with pytest.raises(DocumentLoadError, match="Malformed"):
            load_layer_tree(path)


class TestLoadDocument:
    def test_dispatches_on_suffix(self, hero_pptx):
        assert load_document(hero_pptx).source == hero_pptx

    def test_missing(self, tmp_path):
        with pytest.raises(DocumentLoadError, match="not found"):
            load_document(tmp_path / "nope.pptx")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "design.sketch"
        path.write_bytes(b"")
        with pytest.raises(DocumentLoadError, match="Unsupported"):
            load_document(path)
