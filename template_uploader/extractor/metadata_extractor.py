"""Metadata Extraction Engine: flattens a Page into per-layer metadata records.

Walks Page → Group → Leaf and produces one LayerMetadata per Text or Image
leaf, keyed by a normalized form of the layer name.  Rendered assets are
exported as a side effect: every Image leaf to the ``background`` slot and
the Page once to the ``template`` slot.

Extraction rules:
    - Frames:   page-absolute for both kinds; the owning Group's origin is
                added to the leaf's local origin, size passes through
    - Color:    first fill color, else the direct text color, else omitted
    - Font:     resolved through the injected ``lookup_font(layer_id)``
    - Keys:     transliterated, snake_cased layer name ("Hero Title" →
                "hero_title"); collisions overwrite in traversal order
                unless ``disambiguate_keys`` is set
    - Exports:  failures are logged and collected, never fatal here
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

from unidecode import unidecode

from template_uploader.errors import ExportError
from template_uploader.extractor.layer_walker import LayerWalker, LeafVisit
from template_uploader.generator.asset_exporter import (
    AssetExporter,
    AssetSlot,
    ExportOptions,
)
from template_uploader.schema.models import (
    FontInfo,
    LayerMetadata,
    LayerNode,
    LayerType,
    MetadataStyle,
)

logger = logging.getLogger(__name__)

FontLookup = Callable[[str], FontInfo]

# Acronym runs, capitalized/lowercase words, and digit runs
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def normalize_key(name: str, fallback: str = "layer") -> str:
    """Convert a layer display name to a snake_case metadata key."""
    words = _WORD_RE.findall(unidecode(name or ""))
    key = "_".join(w.lower() for w in words)
    if key:
        return key
    return "_".join(w.lower() for w in _WORD_RE.findall(unidecode(fallback))) or "layer"


def _unique_name(base: str, used: set[str]) -> str:
    """Return a unique name by appending an index suffix if needed."""
    if base not in used:
        return base
    idx = 1
    while f"{base}_{idx}" in used:
        idx += 1
    return f"{base}_{idx}"


@dataclass
class GroupExtraction:
    """Records and exports produced by a single Group."""
    group: LayerNode
    records: list[LayerMetadata] = field(default_factory=list)
    background_paths: list[Path] = field(default_factory=list)
    export_errors: list[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """Everything one extraction pass produces."""
    metadata: dict[str, LayerMetadata]
    fonts: frozenset[str]
    template_path: Path | None = None
    background_paths: list[Path] = field(default_factory=list)
    export_errors: list[str] = field(default_factory=list)
    image_leaf_count: int = 0


class MetadataExtractor:
    """Extracts LayerMetadata records from a Page node.

    ``exporter`` is optional; without one no assets are rendered and the
    result carries no asset paths.
    """

    def __init__(
        self,
        lookup_font: FontLookup,
        *,
        exporter: AssetExporter | None = None,
        session_id: str | None = None,
        export_options: ExportOptions | None = None,
        disambiguate_keys: bool = False,
        walker: LayerWalker | None = None,
    ):
        if exporter is not None and not session_id:
            raise ValueError("session_id is required when exporting assets")
        self.lookup_font = lookup_font
        self.exporter = exporter
        self.session_id = session_id
        self.export_options = export_options or ExportOptions()
        self.disambiguate_keys = disambiguate_keys
        self.walker = walker or LayerWalker()

    # -- Public API ---------------------------------------------------------

    def extract(self, page: LayerNode) -> ExtractionResult:
        """Run a full extraction pass over ``page`` sequentially."""
        groups = [self.extract_group(g) for g in self.walker.groups(page)]
        return self._finish(page, groups, self._export_template(page))

    async def extract_async(self, page: LayerNode) -> ExtractionResult:
        """Extract every Group concurrently, then merge in document order.

        Each Group runs in a worker thread (font lookup and exports block);
        the merge happens only after all of them have joined.  If any Group
        raises, the first error in document order is re-raised once every
        worker has finished.
        """
        group_nodes = list(self.walker.groups(page))
        groups = await asyncio.gather(
            *(asyncio.to_thread(self.extract_group, g) for g in group_nodes),
            return_exceptions=True,
        )
        for outcome in groups:
            if isinstance(outcome, BaseException):
                raise outcome
        template_path = await asyncio.to_thread(self._export_template, page)
        return self._finish(page, list(groups), template_path)

    def extract_group(self, group: LayerNode) -> GroupExtraction:
        result = GroupExtraction(group=group)
        for visit in self.walker.leaves(group):
            result.records.append(self.extract_leaf(visit))
            if visit.type is LayerType.IMAGE:
                self._export_background(visit.leaf, result)
        return result

    def extract_leaf(self, visit: LeafVisit) -> LayerMetadata:
        """Build the metadata record for one classified leaf."""
        if visit.type is LayerType.TEXT:
            return self._extract_text(visit.leaf, visit.group)
        if visit.type is LayerType.IMAGE:
            return self._extract_image(visit.leaf, visit.group)
        raise ValueError(f"Unhandled layer type: {visit.type!r}")

    # -- Per-type extraction -------------------------------------------------

    def _key_for(self, leaf: LayerNode) -> str:
        return normalize_key(leaf.name, fallback=f"layer_{leaf.id}")

    def _extract_text(self, leaf: LayerNode, group: LayerNode) -> LayerMetadata:
        style = leaf.style
        color = style.fills[0] if style.fills else style.text_color
        return LayerMetadata(
            key=self._key_for(leaf),
            type=LayerType.TEXT,
            frame=leaf.frame.translate(group.frame.x, group.frame.y),
            style=MetadataStyle(opacity=style.opacity, color=color),
            parent=group.name,
            text=leaf.text or "",
            alignment=leaf.alignment or "left",
            font=self.lookup_font(leaf.id),
        )

    def _extract_image(self, leaf: LayerNode, group: LayerNode) -> LayerMetadata:
        return LayerMetadata(
            key=self._key_for(leaf),
            type=LayerType.IMAGE,
            frame=leaf.frame.translate(group.frame.x, group.frame.y),
            style=MetadataStyle(opacity=leaf.style.opacity),
            parent=group.name,
        )

    # -- Exports -------------------------------------------------------------

    def _export_background(self, leaf: LayerNode, result: GroupExtraction) -> None:
        if self.exporter is None:
            return
        try:
            path = self.exporter.export(leaf, AssetSlot.BACKGROUND, self.session_id,
                                        self.export_options)
        except ExportError as exc:
            logger.warning("Background export failed for %r: %s", leaf.name, exc)
            result.export_errors.append(f"{leaf.name}: {exc}")
            return
        result.background_paths.append(path)

    def _export_template(self, page: LayerNode) -> Path | None:
        if self.exporter is None:
            return None
        try:
            return self.exporter.export(page, AssetSlot.TEMPLATE, self.session_id,
                                        self.export_options)
        except ExportError as exc:
            logger.warning("Template export failed for page %r: %s", page.name, exc)
            return None

    # -- Merge ---------------------------------------------------------------

    def _finish(
        self,
        page: LayerNode,
        groups: list[GroupExtraction],
        template_path: Path | None,
    ) -> ExtractionResult:
        metadata: dict[str, LayerMetadata] = {}
        background_paths: list[Path] = []
        export_errors: list[str] = []

        for group in groups:
            for record in group.records:
                key = record.key
                if key in metadata:
                    if self.disambiguate_keys:
                        key = _unique_name(key, set(metadata))
                        record = replace(record, key=key)
                    else:
                        logger.warning(
                            "Metadata key %r from group %r overwrites the entry from group %r",
                            key, record.parent, metadata[key].parent,
                        )
                metadata[key] = record
            background_paths.extend(group.background_paths)
            export_errors.extend(group.export_errors)

        if self.exporter is not None and template_path is None:
            export_errors.append(f"{page.name}: template export failed")

        fonts = frozenset(
            m.font.font_name for m in metadata.values()
            if m.type is LayerType.TEXT and m.font
        )
        logger.info("Extracted %d layer(s), %d font(s) from page %r",
                    len(metadata), len(fonts), page.name)
        return ExtractionResult(
            metadata=metadata,
            fonts=fonts,
            template_path=template_path,
            background_paths=background_paths,
            export_errors=export_errors,
            image_leaf_count=sum(
                1 for g in groups for r in g.records if r.type is LayerType.IMAGE
            ),
        )


def extract_page(page: LayerNode, lookup_font: FontLookup, **kwargs) -> ExtractionResult:
    """Convenience function: extract metadata from a page without exporting."""
    extractor = MetadataExtractor(lookup_font, **kwargs)
    return extractor.extract(page)
