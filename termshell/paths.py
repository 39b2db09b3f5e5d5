#!/usr/bin/env python3
"""
Path resolution for the virtual filesystem.

Pure functions: nothing here mutates the tree. ``normalize`` is purely
lexical; ``resolve`` walks the tree segment by segment and reports where the
walk failed.
"""

import fnmatch
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import FsErrorKind, FsResult
from .nodes import DirectoryNode, Node


GLOB_CHARS = frozenset('*?[')


@dataclass
class ResolvedPath:
    """
    Outcome of a successful walk.

    ``node`` is None when every directory up to the final segment exists but
    the final segment itself does not; ``parent`` is then the directory the
    leaf would be created in. For the root, ``parent`` is None.
    """
    path: str
    node: Optional[Node]
    parent: Optional[DirectoryNode]
    name: str

    @property
    def exists(self) -> bool:
        return self.node is not None


def expand_tilde(path: str, home: str) -> str:
    if path == '~':
        return home
    if path.startswith('~/'):
        return home.rstrip('/') + path[1:]
    return path


def split_path(path: str) -> List[str]:
    """Split an absolute normalized path into its segments."""
    return [part for part in path.split('/') if part]


def join_path(parent: str, name: str) -> str:
    if parent == '/':
        return '/' + name
    return parent + '/' + name


def dirname(path: str) -> str:
    parts = split_path(path)
    return '/' + '/'.join(parts[:-1]) if len(parts) > 1 else '/'


def basename(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else '/'


def normalize(path: str, cwd: str = '/', home: str = '/') -> str:
    """Resolve ``.``, ``..``, ``~`` and duplicate slashes without touching the tree."""
    path = expand_tilde(path, home)
    if not path.startswith('/'):
        path = join_path(cwd, path) if path else cwd

    normalized = []
    for part in path.split('/'):
        if part == '' or part == '.':
            continue
        elif part == '..':
            if normalized:
                normalized.pop()
        else:
            normalized.append(part)

    return '/' + '/'.join(normalized)


def is_ancestor(ancestor: str, path: str) -> bool:
    """True if ``path`` equals ``ancestor`` or lies beneath it."""
    if ancestor == '/':
        return True
    return path == ancestor or path.startswith(ancestor + '/')


def resolve(root: DirectoryNode, path: str, cwd: str = '/', home: str = '/') -> FsResult[ResolvedPath]:
    """
    Walk ``path`` from the root.

    ``..`` is applied lexically before walking, so ``/a/file/..`` is ``/a``.
    Failures carry the normalized prefix that could not be traversed.
    """
    normalized = normalize(path, cwd, home)
    segments = split_path(normalized)
    if not segments:
        return FsResult.success(ResolvedPath('/', root, None, ''))

    current: Node = root
    walked = ''
    for segment in segments[:-1]:
        child = current.children.get(segment)
        walked = walked + '/' + segment
        if child is None:
            return FsResult.failure(FsErrorKind.NOT_FOUND, walked)
        if not child.is_dir():
            return FsResult.failure(FsErrorKind.NOT_A_DIRECTORY, walked)
        current = child

    leaf = segments[-1]
    return FsResult.success(ResolvedPath(normalized, current.children.get(leaf), current, leaf))


def lookup(root: DirectoryNode, path: str) -> Optional[Node]:
    """Return the node at an absolute path, or None for any failure."""
    result = resolve(root, path)
    return result.value.node if result.ok else None


def has_glob(word: str) -> bool:
    return any(c in GLOB_CHARS for c in word)


def glob(root: DirectoryNode, pattern: str, cwd: str = '/', home: str = '/') -> List[str]:
    """
    Expand a glob pattern against the tree.

    Each segment containing ``*``, ``?`` or ``[`` is matched with fnmatch
    against directory entries; names starting with a dot only match segment
    patterns that start with a dot. Results keep the pattern's spelling
    (relative patterns yield relative paths) and are sorted. An empty list
    means no match.
    """
    pattern = expand_tilde(pattern, home)
    absolute = pattern.startswith('/')
    parts = [p for p in pattern.split('/') if p]

    # (display prefix, absolute directory path)
    candidates: List[Tuple[str, str]] = [('/' if absolute else '', '/' if absolute else cwd)]
    for index, part in enumerate(parts):
        last = index == len(parts) - 1
        next_candidates = []
        for display, actual in candidates:
            node = lookup(root, actual)
            if not isinstance(node, DirectoryNode):
                continue
            if has_glob(part):
                names = [
                    name for name in sorted(node.children)
                    if fnmatch.fnmatchcase(name, part)
                    and (part.startswith('.') or not name.startswith('.'))
                ]
            elif part in ('.', '..') or part in node.children:
                names = [part]
            else:
                names = []
            for name in names:
                child_actual = normalize(name, actual)
                if not last and not isinstance(lookup(root, child_actual), DirectoryNode):
                    continue
                child_display = display + name if display in ('', '/') else display + '/' + name
                next_candidates.append((child_display, child_actual))
        candidates = next_candidates
        if not candidates:
            return []

    return sorted(display for display, _ in candidates)
