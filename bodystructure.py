"""
Convert imapclient's BODYSTRUCTURE (`imapclient.response_types.BodyData`)
into a part tree. Part ids follow IMAP section numbering: children of the
top multipart are "1", "2", ..., nested ones "2.1", "2.2", and a message
that is not multipart has a single part "1".
"""
from typing import Dict, Optional

from part_tree import ContainerPart, LeafPart, PartDescriptor, UnparseablePart


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


def _params(value) -> Dict[str, str]:
    # ("charset", "utf-8", "format", "flowed") or NIL
    if not isinstance(value, (list, tuple)):
        return {}
    out = {}
    for i in range(0, len(value) - 1, 2):
        k, v = _text(value[i]), _text(value[i + 1])
        if k:
            out[k.lower()] = v or ''
    return out


def _child_id(parent_id: Optional[str], n: int) -> str:
    return str(n) if parent_id is None else f'{parent_id}.{n}'


def parse_bodystructure(body, part_id: Optional[str] = None) -> PartDescriptor:
    if not isinstance(body, tuple) or not body:
        return UnparseablePart(raw=body, part_id=part_id)

    # BodyData nests multipart children in a list at index 0, subtype follows
    if isinstance(body[0], list):
        subtype = _text(body[1]) if len(body) > 1 else None
        return ContainerPart(
            part_id=part_id,
            subtype=(subtype or 'mixed').lower(),
            children=[parse_bodystructure(c, _child_id(part_id, n)) for n, c in enumerate(body[0], 1)],
        )

    if len(body) < 2:
        return UnparseablePart(raw=body, part_id=part_id)
    type_, subtype = _text(body[0]), _text(body[1])
    if not type_ or not subtype:
        return UnparseablePart(raw=body, part_id=part_id)
    encoding = _text(body[5]) if len(body) > 5 else None
    return LeafPart(
        part_id=part_id or '1',
        type=type_.lower(),
        subtype=subtype.lower(),
        params=_params(body[2]) if len(body) > 2 else {},
        encoding=encoding.lower() if encoding else None,
    )
