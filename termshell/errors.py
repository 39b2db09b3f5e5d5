#!/usr/bin/env python3
"""
Error taxonomy for termshell.

Filesystem operations report expected failures as values (FsResult) rather
than raising. Everything above the filesystem layer uses the ShellError
hierarchy, which the execution engine converts into stderr text and an exit
status at the stage boundary.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar('T')


class FsErrorKind(Enum):
    """Expected failure kinds of filesystem operations."""
    NOT_FOUND = 'No such file or directory'
    ALREADY_EXISTS = 'File exists'
    NOT_A_DIRECTORY = 'Not a directory'
    IS_A_DIRECTORY = 'Is a directory'
    PERMISSION_DENIED = 'Permission denied'
    NOT_EMPTY = 'Directory not empty'
    INVALID_ARGUMENT = 'Invalid argument'
    NAME_TOO_LONG = 'File name too long'
    NO_SPACE = 'No space left on device'

    @property
    def message(self) -> str:
        return self.value


@dataclass
class FsResult(Generic[T]):
    """
    Discriminated result of a filesystem operation.

    Exactly one of ``value`` (on success) or ``error`` (on failure) is
    meaningful. ``path`` names the path the failure applies to, which is not
    always the path the caller passed in (e.g. an intermediate directory).
    """
    value: Optional[T] = None
    error: Optional[FsErrorKind] = None
    path: str = ''

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> 'FsResult[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: FsErrorKind, path: str = '') -> 'FsResult[T]':
        return cls(error=error, path=path)

    def unwrap(self, display_path: Optional[str] = None) -> T:
        """Return the value, or raise ResolutionError for a failure.

        ``display_path`` is the user-facing spelling of the path to put in
        the error message (the argument as typed, not the normalized form).
        """
        if self.error is not None:
            raise ResolutionError(self.error, display_path or self.path)
        return self.value


class ShellError(Exception):
    """Base class for all user-facing shell errors."""

    exit_code = 1


class ParseError(ShellError):
    """Malformed command line. Aborts the whole line before execution."""

    exit_code = 2


class ResolutionError(ShellError):
    """A filesystem failure surfaced through a built-in."""

    def __init__(self, kind: FsErrorKind, path: str = '', action: str = ''):
        self.kind = kind
        self.path = path
        self.action = action
        super().__init__(self._format())

    def _format(self) -> str:
        if self.action and self.path:
            return f"{self.action} '{self.path}': {self.kind.message}"
        if self.path:
            return f"{self.path}: {self.kind.message}"
        return self.kind.message


class CommandNotFound(ShellError):
    """Registry lookup miss."""

    exit_code = 127

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name}: command not found")


class CommandError(ShellError):
    """A built-in's own precondition failure (missing operand, bad value)."""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class OptionError(CommandError):
    """Invalid or incomplete command-line option."""

    def __init__(self, message: str):
        super().__init__(message, exit_code=2)
