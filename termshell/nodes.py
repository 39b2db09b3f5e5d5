#!/usr/bin/env python3
"""
Filesystem node types.

Nodes are plain mutable records. All structural invariants (unique names,
exclusive ownership, timestamp maintenance) are enforced by FileSystem, not
here; this module only knows how to describe and (de)serialize one node.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Union, Any


DIRECTORY_BLOCK_SIZE = 4096
FILE_DEFAULT_PERMISSIONS = '-rw-r--r--'
DIR_DEFAULT_PERMISSIONS = 'drwxr-xr-x'


class NodeKind(Enum):
    """Variant tag of a filesystem node."""
    FILE = 'file'
    DIRECTORY = 'directory'

    @property
    def type_char(self) -> str:
        return 'd' if self is NodeKind.DIRECTORY else '-'


def normalize_permissions(permissions: str, kind: NodeKind) -> str:
    """Return a 10-character mode string whose first char matches ``kind``.

    Accepts the 9-character ``rwxr-xr-x`` form and replaces a mismatching
    type character.
    """
    if len(permissions) == 9:
        permissions = kind.type_char + permissions
    if len(permissions) != 10 or any(c not in 'rwx-' for c in permissions[1:]):
        raise ValueError(f"invalid permission string: {permissions!r}")
    return kind.type_char + permissions[1:]


def mode_bits(permissions: str) -> int:
    """Convert ``-rwxr-xr-x`` to its octal permission bits (0o755)."""
    bits = 0
    for char in permissions[-9:]:
        bits = (bits << 1) | (0 if char == '-' else 1)
    return bits


def format_mode(kind: NodeKind, bits: int) -> str:
    """Format permission bits as a 10-character rwx string."""
    result = kind.type_char
    for shift in (6, 3, 0):
        triple = (bits >> shift) & 0o7
        result += 'r' if triple & 0o4 else '-'
        result += 'w' if triple & 0o2 else '-'
        result += 'x' if triple & 0o1 else '-'
    return result


def _to_timestamp(value: Any) -> float:
    if value is None:
        return time.time()
    if isinstance(value, (int, float)):
        # Millisecond epochs come from the browser build
        return value / 1000.0 if value > 1e11 else float(value)
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return datetime.fromisoformat(text).timestamp()


def _to_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass
class FsNode:
    """Fields shared by every node."""
    name: str
    permissions: str = FILE_DEFAULT_PERMISSIONS
    created_at: float = field(default_factory=time.time)
    modified_at: float = 0.0

    kind = NodeKind.FILE

    def __post_init__(self):
        self.permissions = normalize_permissions(self.permissions, self.kind)
        if not self.modified_at:
            self.modified_at = self.created_at

    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE

    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    @property
    def size(self) -> int:
        raise NotImplementedError

    def touch(self, now: Optional[float] = None) -> None:
        self.modified_at = time.time() if now is None else now

    def can_read(self) -> bool:
        return self.permissions[1] == 'r'

    def can_write(self) -> bool:
        return self.permissions[2] == 'w'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.kind.value,
            'permissions': self.permissions,
            'size': self.size,
            'createdAt': _to_iso(self.created_at),
            'modifiedAt': _to_iso(self.modified_at),
        }


@dataclass
class FileNode(FsNode):
    """Regular file holding a text payload."""
    content: str = ''

    kind = NodeKind.FILE

    @property
    def size(self) -> int:
        return len(self.content.encode('utf-8'))

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d['content'] = self.content
        return d


@dataclass
class DirectoryNode(FsNode):
    """Directory exclusively owning its children, keyed by name."""
    permissions: str = DIR_DEFAULT_PERMISSIONS
    children: Dict[str, 'Node'] = field(default_factory=dict)

    kind = NodeKind.DIRECTORY

    @property
    def size(self) -> int:
        return DIRECTORY_BLOCK_SIZE

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d['children'] = {name: child.to_dict() for name, child in sorted(self.children.items())}
        return d


Node = Union[FileNode, DirectoryNode]


def node_from_dict(data: Dict[str, Any], name: Optional[str] = None) -> Node:
    """
    Build a node (and, for directories, its whole subtree) from a dict.

    Accepts the shape produced by ``to_dict`` as well as persisted browser
    snapshots (9-character permissions, millisecond or ISO timestamps).
    Raises ValueError when a child's key disagrees with its ``name``.
    """
    node_name = data.get('name', name if name is not None else '')
    if name is not None and node_name != name:
        raise ValueError(f"child key {name!r} does not match node name {node_name!r}")

    created = _to_timestamp(data.get('createdAt'))
    modified = _to_timestamp(data.get('modifiedAt', data.get('createdAt')))
    kind = data.get('type', 'file')

    if kind == 'directory':
        node = DirectoryNode(
            name=node_name,
            permissions=data.get('permissions', DIR_DEFAULT_PERMISSIONS),
            created_at=created,
            modified_at=modified,
        )
        for child_name, child_data in (data.get('children') or {}).items():
            node.children[child_name] = node_from_dict(child_data, child_name)
        return node
    if kind == 'file':
        return FileNode(
            name=node_name,
            permissions=data.get('permissions', FILE_DEFAULT_PERMISSIONS),
            created_at=created,
            modified_at=modified,
            content=data.get('content') or '',
        )
    raise ValueError(f"unknown node type: {kind!r}")


def clone(node: Node, name: Optional[str] = None) -> Node:
    """Deep copy a node, optionally under a new name. Timestamps are kept."""
    if isinstance(node, DirectoryNode):
        copy = DirectoryNode(
            name=node.name if name is None else name,
            permissions=node.permissions,
            created_at=node.created_at,
            modified_at=node.modified_at,
        )
        for child_name, child in node.children.items():
            copy.children[child_name] = clone(child)
        return copy
    return FileNode(
        name=node.name if name is None else name,
        permissions=node.permissions,
        created_at=node.created_at,
        modified_at=node.modified_at,
        content=node.content,
    )
