"""Layer walker: Page → Group → Leaf traversal with leaf classification."""

import logging
from dataclasses import dataclass
from typing import Iterator

from template_uploader.schema.models import LayerKind, LayerNode, LayerType

logger = logging.getLogger(__name__)

_LEAF_TYPES = {
    LayerKind.TEXT: LayerType.TEXT,
    LayerKind.IMAGE: LayerType.IMAGE,
}


@dataclass(frozen=True)
class LeafVisit:
    """A classified leaf together with the Group that owns it."""
    group: LayerNode
    leaf: LayerNode
    type: LayerType


def classify(node: LayerNode) -> LayerType | None:
    """Map a leaf node to its metadata type, or None for non-leaf kinds."""
    return _LEAF_TYPES.get(node.kind)


class LayerWalker:
    """Walks the fixed hierarchy below a Page.

    Page children must be Groups and Group children must be Text or Image
    leaves.  Anything else is logged and skipped.
    """

    def groups(self, page: LayerNode) -> Iterator[LayerNode]:
        """Yield the page's Groups in document order."""
        if page.kind is not LayerKind.PAGE:
            raise ValueError(f"Expected a page node, got {page.kind.value} {page.name!r}")
        for child in page.children:
            if child.kind is LayerKind.GROUP:
                yield child
            else:
                logger.warning("Page %r: skipping %s %r outside any group",
                               page.name, child.kind.value, child.name)

    def leaves(self, group: LayerNode) -> Iterator[LeafVisit]:
        """Yield the classified leaves of one Group in document order."""
        for child in group.children:
            layer_type = classify(child)
            if layer_type is None:
                logger.warning("Group %r: skipping unsupported %s %r",
                               group.name, child.kind.value, child.name)
                continue
            yield LeafVisit(group=group, leaf=child, type=layer_type)

    def walk(self, page: LayerNode) -> Iterator[LeafVisit]:
        """Yield every classified leaf below ``page``."""
        for group in self.groups(page):
            logger.debug("Walking group %r (%d children)", group.name, len(group.children))
            yield from self.leaves(group)
