"""
MIME part trees as reported by the server, and the two operations the body
pipeline needs on them: flatten the tree, then pick the part to display.

A node is one of three kinds:
- LeafPart: a single body part, fetchable when it has a part_id
- ContainerPart: a multipart node holding child parts
- UnparseablePart: anything that did not look like either of the above
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafPart:
    part_id: Optional[str]
    type: str
    subtype: str
    params: Dict[str, str] = field(default_factory=dict)
    encoding: Optional[str] = None

    @property
    def content_type(self) -> str:
        return f'{self.type}/{self.subtype}'

    @property
    def charset(self) -> Optional[str]:
        return self.params.get('charset')


@dataclass(frozen=True)
class ContainerPart:
    part_id: Optional[str]
    subtype: str
    children: Any = field(default_factory=list)
    type: str = 'multipart'


@dataclass(frozen=True)
class UnparseablePart:
    raw: Any = None
    part_id: Optional[str] = None
    type: str = ''
    subtype: str = ''


PartDescriptor = Union[LeafPart, ContainerPart, UnparseablePart]
_DESCRIPTOR_TYPES = (LeafPart, ContainerPart, UnparseablePart)


def flatten(root) -> List[PartDescriptor]:
    """Depth-first pre-order list of every node under `root`.

    Never raises. A subtree that cannot be walked contributes nothing, and
    unparseable nodes are kept but not expanded. A bare list is accepted as
    a sequence of sibling roots.
    """
    flat: List[PartDescriptor] = []
    if root is None:
        return flat
    _walk_into(root, flat, set())
    return flat


def _walk_into(node, out: List[PartDescriptor], path: set) -> None:
    contribution: List[PartDescriptor] = []
    try:
        _walk(node, contribution, path)
    except Exception as e:
        logger.warning('Skipping unreadable part subtree: %s', e)
        return
    out.extend(contribution)


def _walk(node, out: List[PartDescriptor], path: set) -> None:
    if isinstance(node, (list, tuple)):
        for child in node:
            _walk_into(child, out, path)
        return
    if not isinstance(node, _DESCRIPTOR_TYPES):
        out.append(UnparseablePart(raw=node))
        return
    out.append(node)
    if not isinstance(node, ContainerPart) or id(node) in path:
        return
    children = node.children
    if children is None:
        return
    if isinstance(children, _DESCRIPTOR_TYPES):
        children = [children]
    path.add(id(node))
    try:
        _walk_into(children, out, path)
    finally:
        path.discard(id(node))


def select_best_part(flat: List[PartDescriptor]) -> Optional[PartDescriptor]:
    """First text/html part in traversal order, else first text/plain, else None."""
    for subtype in ('html', 'plain'):
        for part in flat:
            if isinstance(part, LeafPart) and part.type == 'text' and part.subtype == subtype:
                return part
    return None
