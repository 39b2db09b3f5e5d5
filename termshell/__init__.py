"""
termshell - an in-memory Unix-like shell.

This package provides a virtual hierarchical filesystem, a shell command
tokenizer and parser, an execution engine with pipes, redirection and
control operators, and a set of built-in commands, tied together by a
terminal session with a single line-submission entry point.
"""

__version__ = "0.1.0"

from .errors import (
    FsErrorKind,
    FsResult,
    ShellError,
    ParseError,
    ResolutionError,
    CommandNotFound,
    CommandError,
    OptionError,
)

from .nodes import (
    NodeKind,
    FileNode,
    DirectoryNode,
)

from .filesystem import (
    FileSystem,
    Limits,
    NodeStat,
    WriteMode,
)

from .paths import (
    ResolvedPath,
    normalize,
    resolve,
)

from .tokenizer import (
    Token,
    TokenType,
    Tokenizer,
    tokenize,
)

from .command_parser import (
    Command,
    CommandParser,
    CommandSequence,
    Pipeline,
    Redirect,
    RedirectType,
)

from .state import ShellState

from .registry import (
    BuiltinCommand,
    CommandRegistry,
    CommandResult,
)

from .builtins import registry

from .executor import (
    ExecutionEngine,
    ExecutionResult,
)

from .terminal import (
    LineResult,
    TerminalConfig,
    TerminalSession,
)

__all__ = [
    # Errors
    "FsErrorKind",
    "FsResult",
    "ShellError",
    "ParseError",
    "ResolutionError",
    "CommandNotFound",
    "CommandError",
    "OptionError",

    # Filesystem
    "NodeKind",
    "FileNode",
    "DirectoryNode",
    "FileSystem",
    "Limits",
    "NodeStat",
    "WriteMode",
    "ResolvedPath",
    "normalize",
    "resolve",

    # Parsing
    "Token",
    "TokenType",
    "Tokenizer",
    "tokenize",
    "Command",
    "CommandParser",
    "CommandSequence",
    "Pipeline",
    "Redirect",
    "RedirectType",

    # Execution
    "ShellState",
    "BuiltinCommand",
    "CommandRegistry",
    "CommandResult",
    "registry",
    "ExecutionEngine",
    "ExecutionResult",

    # Terminal
    "LineResult",
    "TerminalConfig",
    "TerminalSession",

    "__version__",
]
