#!/usr/bin/env python3
"""
termshell virtual filesystem.

A single mutable tree of FileNode/DirectoryNode records rooted at ``/``.
FileSystem is the only code allowed to change the tree's structure, so the
invariants live here:

- the root always exists, is a directory, and is never removed or renamed
- each directory exclusively owns its children; copies are deep copies
- names are unique within a directory regardless of node kind
- every mutation refreshes ``modified_at`` on the node and, for structural
  changes, on its parent
- a non-empty directory is only removed with ``recursive=True``

Every public operation takes an absolute path and returns an FsResult.
Expected failures never raise; a relative path is a programming error and
raises ValueError.
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import FsErrorKind, FsResult
from .nodes import (
    DirectoryNode, FileNode, Node, NodeKind,
    clone, node_from_dict, normalize_permissions,
)
from . import paths


logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]


def content_size(node: Node) -> int:
    """UTF-8 bytes of file content in ``node`` and everything beneath it."""
    if isinstance(node, DirectoryNode):
        return sum(content_size(child) for child in node.children.values())
    return node.size


class WriteMode(Enum):
    """How write() treats existing content."""
    TRUNCATE = 'truncate'
    APPEND = 'append'


@dataclass(frozen=True)
class Limits:
    """Resource limits. ``None`` disables a limit."""
    max_file_size: Optional[int] = 5 * 1024 * 1024
    max_entries_per_directory: Optional[int] = 1000
    max_name_length: Optional[int] = 255
    max_total_size: Optional[int] = 50 * 1024 * 1024


UNLIMITED = Limits(None, None, None, None)


@dataclass
class NodeStat:
    """Metadata summary of one node, as returned by stat() and list()."""
    path: str
    name: str
    kind: NodeKind
    permissions: str
    size: int
    created_at: float
    modified_at: float
    child_count: int = 0

    @property
    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY


class FileSystem:
    """
    In-memory hierarchical filesystem.

    The tree can be seeded from a snapshot dict (the shape produced by
    ``to_dict``). ``reset()`` re-installs that initial snapshot.
    """

    def __init__(self, snapshot: Optional[Dict[str, Any]] = None, limits: Optional[Limits] = None):
        self._initial_snapshot = snapshot
        self.limits = limits or Limits()
        self.root = self._build_root(snapshot)

    @staticmethod
    def _build_root(snapshot: Optional[Dict[str, Any]]) -> DirectoryNode:
        if snapshot is None:
            return DirectoryNode(name='')
        root = node_from_dict(snapshot)
        if not isinstance(root, DirectoryNode):
            raise ValueError("snapshot root must be a directory")
        root.name = ''
        return root

    # Internal helpers

    @staticmethod
    def _check_absolute(path: str) -> None:
        if not isinstance(path, str) or not path.startswith('/'):
            raise ValueError(f"FileSystem requires an absolute path, got {path!r}")

    def _resolve(self, path: str) -> FsResult[paths.ResolvedPath]:
        self._check_absolute(path)
        return paths.resolve(self.root, path)

    @staticmethod
    def _now() -> float:
        return time.time()

    def _check_new_entry(self, parent: DirectoryNode, name: str, path: str,
                         adds_entry: bool = True) -> Optional[FsResult]:
        """Failure result if adding ``name`` to ``parent`` would break a limit."""
        limits = self.limits
        if limits.max_name_length is not None and len(name) > limits.max_name_length:
            return FsResult.failure(FsErrorKind.NAME_TOO_LONG, path)
        if (limits.max_entries_per_directory is not None
                and adds_entry
                and name not in parent.children
                and len(parent.children) >= limits.max_entries_per_directory):
            return FsResult.failure(FsErrorKind.NO_SPACE, path)
        if not parent.can_write():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, path)
        return None

    def _check_size(self, content: str, path: str, replaced: int = 0) -> Optional[FsResult]:
        """Failure result if ``content`` is too large for one file or for the tree.

        ``replaced`` is the size of the content being replaced, if any.
        """
        size = len(content.encode('utf-8'))
        limit = self.limits.max_file_size
        if limit is not None and size > limit:
            return FsResult.failure(FsErrorKind.NO_SPACE, path)
        return self._check_total(size - replaced, path)

    def _check_total(self, added: int, path: str) -> Optional[FsResult]:
        limit = self.limits.max_total_size
        if limit is not None and added > 0 and self.total_size() + added > limit:
            return FsResult.failure(FsErrorKind.NO_SPACE, path)
        return None

    def _stat_node(self, path: str, node: Node) -> NodeStat:
        return NodeStat(
            path=path,
            name=node.name if path != '/' else '/',
            kind=node.kind,
            permissions=node.permissions,
            size=node.size,
            created_at=node.created_at,
            modified_at=node.modified_at,
            child_count=len(node.children) if isinstance(node, DirectoryNode) else 0,
        )

    # Queries

    def get(self, path: str) -> Optional[Node]:
        """Return the node at ``path`` or None. The node must not be mutated by callers."""
        result = self._resolve(path)
        return result.value.node if result.ok else None

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def is_dir(self, path: str) -> bool:
        node = self.get(path)
        return node is not None and node.is_dir()

    def is_file(self, path: str) -> bool:
        node = self.get(path)
        return node is not None and node.is_file()

    def stat(self, path: str) -> FsResult[NodeStat]:
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        resolved = result.value
        if resolved.node is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, resolved.path)
        return FsResult.success(self._stat_node(resolved.path, resolved.node))

    def read(self, path: str) -> FsResult[str]:
        """Return a file's content."""
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        node = result.value.node
        if node is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, result.value.path)
        if node.is_dir():
            return FsResult.failure(FsErrorKind.IS_A_DIRECTORY, result.value.path)
        if not node.can_read():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, result.value.path)
        return FsResult.success(node.content)

    def list(self, path: str, include_hidden: bool = False) -> FsResult[List[NodeStat]]:
        """Summaries of a directory's children, sorted by name."""
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        resolved = result.value
        node = resolved.node
        if node is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, resolved.path)
        if not isinstance(node, DirectoryNode):
            return FsResult.failure(FsErrorKind.NOT_A_DIRECTORY, resolved.path)
        if not node.can_read():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, resolved.path)

        entries = []
        for name in sorted(node.children):
            if name.startswith('.') and not include_hidden:
                continue
            entries.append(self._stat_node(paths.join_path(resolved.path, name), node.children[name]))
        return FsResult.success(entries)

    def walk(self, path: str) -> Iterator[Tuple[str, Node]]:
        """Yield (path, node) for ``path`` and everything beneath it, pre-order, by name."""
        node = self.get(path)
        if node is None:
            return
        start = paths.normalize(path)
        stack = [(start, node)]
        while stack:
            current_path, current = stack.pop()
            yield current_path, current
            if isinstance(current, DirectoryNode):
                for name in sorted(current.children, reverse=True):
                    stack.append((paths.join_path(current_path, name), current.children[name]))

    def total_size(self) -> int:
        """UTF-8 bytes of all file content in the tree."""
        return content_size(self.root)

    # Creation and writing

    def create_file(self, path: str, content: str = '', exist_ok: bool = False) -> FsResult[FileNode]:
        """
        Create an empty (or pre-filled) file.

        With ``exist_ok`` an existing file is left alone apart from its
        ``modified_at``, which is refreshed (``touch`` semantics).
        """
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        resolved = result.value
        if resolved.parent is None:
            return FsResult.failure(FsErrorKind.ALREADY_EXISTS, '/')

        if resolved.node is not None:
            if not exist_ok:
                return FsResult.failure(FsErrorKind.ALREADY_EXISTS, resolved.path)
            resolved.node.touch(self._now())
            return FsResult.success(resolved.node)

        failed = (self._check_new_entry(resolved.parent, resolved.name, resolved.path)
                  or self._check_size(content, resolved.path))
        if failed is not None:
            return failed

        now = self._now()
        node = FileNode(name=resolved.name, content=content, created_at=now, modified_at=now)
        resolved.parent.children[resolved.name] = node
        resolved.parent.touch(now)
        return FsResult.success(node)

    def create_directory(self, path: str, parents: bool = False) -> FsResult[DirectoryNode]:
        """
        Create a directory.

        With ``parents`` every missing ancestor is created too, and an
        existing directory is not an error. The missing chain is built
        detached and attached in one step, so a failure leaves the tree
        untouched.
        """
        self._check_absolute(path)
        normalized = paths.normalize(path)
        segments = paths.split_path(normalized)
        if not segments:
            if parents:
                return FsResult.success(self.root)
            return FsResult.failure(FsErrorKind.ALREADY_EXISTS, '/')

        current = self.root
        walked = ''
        for index, segment in enumerate(segments):
            child = current.children.get(segment)
            if child is None:
                break
            walked = walked + '/' + segment
            if not child.is_dir():
                last = index == len(segments) - 1
                kind = FsErrorKind.ALREADY_EXISTS if last else FsErrorKind.NOT_A_DIRECTORY
                return FsResult.failure(kind, walked)
            current = child
        else:
            if parents:
                return FsResult.success(current)
            return FsResult.failure(FsErrorKind.ALREADY_EXISTS, normalized)

        missing = segments[len(paths.split_path(walked)):]
        if len(missing) > 1 and not parents:
            return FsResult.failure(FsErrorKind.NOT_FOUND, paths.join_path(walked or '/', missing[0]))
        failed = self._check_new_entry(current, missing[0], normalized)
        if failed is not None:
            return failed
        max_name = self.limits.max_name_length
        if max_name is not None and any(len(segment) > max_name for segment in missing):
            return FsResult.failure(FsErrorKind.NAME_TOO_LONG, normalized)

        now = self._now()
        top = DirectoryNode(name=missing[0], created_at=now, modified_at=now)
        deepest = top
        for segment in missing[1:]:
            child = DirectoryNode(name=segment, created_at=now, modified_at=now)
            deepest.children[segment] = child
            deepest = child

        current.children[top.name] = top
        current.touch(now)
        logger.debug("created directories under %s: %s", walked or '/', '/'.join(missing))
        return FsResult.success(deepest)

    def write(self, path: str, content: str, mode: WriteMode = WriteMode.TRUNCATE) -> FsResult[FileNode]:
        """Replace or extend a file's content, creating the file if it is absent."""
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        resolved = result.value
        node = resolved.node

        if node is None:
            failed = (self._check_new_entry(resolved.parent, resolved.name, resolved.path)
                      or self._check_size(content, resolved.path))
            if failed is not None:
                return failed
            now = self._now()
            node = FileNode(name=resolved.name, content=content, created_at=now, modified_at=now)
            resolved.parent.children[resolved.name] = node
            resolved.parent.touch(now)
            return FsResult.success(node)

        if node.is_dir():
            return FsResult.failure(FsErrorKind.IS_A_DIRECTORY, resolved.path)
        if not node.can_write():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, resolved.path)

        new_content = node.content + content if mode is WriteMode.APPEND else content
        failed = self._check_size(new_content, resolved.path, node.size)
        if failed is not None:
            return failed
        node.content = new_content
        node.touch(self._now())
        return FsResult.success(node)

    def set_permissions(self, path: str, permissions: str) -> FsResult[Node]:
        """Set a node's mode string. Accepts 9- or 10-character forms."""
        result = self._resolve(path)
        if not result.ok:
            return FsResult.failure(result.error, result.path)
        node = result.value.node
        if node is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, result.value.path)
        try:
            node.permissions = normalize_permissions(permissions, node.kind)
        except ValueError:
            return FsResult.failure(FsErrorKind.INVALID_ARGUMENT, result.value.path)
        node.touch(self._now())
        return FsResult.success(node)

    # Removal, copy and move

    def remove(self, path: str, recursive: bool = False, force: bool = False) -> FsResult[None]:
        """
        Remove a file or directory.

        ``force`` only suppresses NOT_FOUND for a missing target; it never
        allows removing a non-empty directory without ``recursive``.
        """
        result = self._resolve(path)
        if not result.ok:
            if force and result.error is FsErrorKind.NOT_FOUND:
                return FsResult.success()
            return FsResult.failure(result.error, result.path)
        resolved = result.value
        if resolved.parent is None:
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, '/')
        node = resolved.node
        if node is None:
            if force:
                return FsResult.success()
            return FsResult.failure(FsErrorKind.NOT_FOUND, resolved.path)
        if isinstance(node, DirectoryNode) and node.children and not recursive:
            return FsResult.failure(FsErrorKind.NOT_EMPTY, resolved.path)
        if not resolved.parent.can_write():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, resolved.path)

        del resolved.parent.children[resolved.name]
        resolved.parent.touch(self._now())
        return FsResult.success()

    def _prepare_transfer(self, src: str, dst: str, overwrite: bool,
                          confirm: Optional[ConfirmCallback], moving: bool = False):
        """Shared validation for copy and move.

        Returns either a failed FsResult or the tuple
        (source ResolvedPath, destination ResolvedPath).
        """
        src_result = self._resolve(src)
        if not src_result.ok:
            return FsResult.failure(src_result.error, src_result.path)
        source = src_result.value
        if source.node is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, source.path)

        dst_result = self._resolve(dst)
        if not dst_result.ok:
            return FsResult.failure(dst_result.error, dst_result.path)
        target = dst_result.value
        if target.parent is None:
            return FsResult.failure(FsErrorKind.ALREADY_EXISTS, '/')

        if source.node.is_dir() and paths.is_ancestor(source.path, target.path):
            return FsResult.failure(FsErrorKind.INVALID_ARGUMENT, target.path)

        if target.node is not None:
            if target.node is source.node:
                return FsResult.failure(FsErrorKind.INVALID_ARGUMENT, target.path)
            if not (overwrite or (confirm is not None and confirm(target.path))):
                return FsResult.failure(FsErrorKind.ALREADY_EXISTS, target.path)
            if target.node.is_dir() and not source.node.is_dir():
                return FsResult.failure(FsErrorKind.IS_A_DIRECTORY, target.path)
            if source.node.is_dir() and not target.node.is_dir():
                return FsResult.failure(FsErrorKind.NOT_A_DIRECTORY, target.path)
            if source.node.is_dir() and target.node.children:
                return FsResult.failure(FsErrorKind.NOT_EMPTY, target.path)
        renaming = moving and source.parent is target.parent
        failed = self._check_new_entry(target.parent, target.name, target.path, adds_entry=not renaming)
        if failed is not None:
            return failed
        return source, target

    def copy(self, src: str, dst: str, recursive: bool = False, overwrite: bool = False,
             confirm: Optional[ConfirmCallback] = None) -> FsResult[str]:
        """
        Deep-copy ``src`` to exactly ``dst``.

        An existing ``dst`` is replaced only when ``overwrite`` is set or the
        ``confirm`` callback (the interactive variant) returns True.
        Returns the destination path.
        """
        prepared = self._prepare_transfer(src, dst, overwrite, confirm)
        if isinstance(prepared, FsResult):
            return prepared
        source, target = prepared
        if source.node.is_dir() and not recursive:
            return FsResult.failure(FsErrorKind.IS_A_DIRECTORY, source.path)
        if not source.node.can_read():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, source.path)
        replaced = content_size(target.node) if target.node is not None else 0
        failed = self._check_total(content_size(source.node) - replaced, target.path)
        if failed is not None:
            return failed

        now = self._now()
        copied = clone(source.node, name=target.name)
        copied.created_at = now
        copied.modified_at = now
        target.parent.children[target.name] = copied
        target.parent.touch(now)
        return FsResult.success(target.path)

    def move(self, src: str, dst: str, overwrite: bool = False,
             confirm: Optional[ConfirmCallback] = None) -> FsResult[str]:
        """
        Move ``src`` to exactly ``dst``.

        Within one directory this is a rename of the existing node; across
        directories the subtree is copied and the origin removed. Timestamps
        of the moved nodes are preserved. Returns the destination path.
        """
        self._check_absolute(src)
        if paths.normalize(src) == '/':
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, '/')
        prepared = self._prepare_transfer(src, dst, overwrite, confirm, moving=True)
        if isinstance(prepared, FsResult):
            return prepared
        source, target = prepared
        if not source.parent.can_write():
            return FsResult.failure(FsErrorKind.PERMISSION_DENIED, source.path)

        now = self._now()
        if source.parent is target.parent:
            node = source.parent.children.pop(source.name)
            node.name = target.name
            source.parent.children[target.name] = node
            source.parent.touch(now)
        else:
            target.parent.children[target.name] = clone(source.node, name=target.name)
            del source.parent.children[source.name]
            source.parent.touch(now)
            target.parent.touch(now)
        return FsResult.success(target.path)

    # Snapshots

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the whole tree as a JSON-compatible dict."""
        return self.root.to_dict()

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileSystem':
        return cls(snapshot=data)

    @classmethod
    def from_json(cls, json_str: str) -> 'FileSystem':
        return cls.from_dict(json.loads(json_str))

    def load(self, snapshot: Dict[str, Any]) -> None:
        """Replace the current tree with ``snapshot``; ``reset()`` still restores the initial one."""
        self.root = self._build_root(snapshot)
        logger.debug("loaded snapshot with %d top-level entries", len(self.root.children))

    def reset(self, snapshot: Optional[Dict[str, Any]] = None) -> None:
        """Discard the current tree and install ``snapshot`` (default: the initial one)."""
        if snapshot is not None:
            self._initial_snapshot = snapshot
        self.root = self._build_root(self._initial_snapshot)
        logger.info("filesystem reset")
