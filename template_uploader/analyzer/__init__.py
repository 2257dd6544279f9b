"""Host document adapters: load PPTX decks and layer-tree files.

Produces a Document, Page, Group and Leaf tree plus the per-layer font
index used by the metadata extractor.
"""

from .document_loader import (
    LayerDocument,
    PptxDocumentLoader,
    load_document,
    load_layer_tree,
)

__all__ = ["LayerDocument", "PptxDocumentLoader", "load_document", "load_layer_tree"]
