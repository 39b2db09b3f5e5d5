#!/usr/bin/env python3
"""
Command registry: maps command names to built-in handlers.

A handler has the signature ``handler(argv, stdin, fs, state)`` and returns
a CommandResult. ``argv[0]`` is the name the command was invoked as.
Handlers are registered with the ``register`` decorator; their docstrings
(``Usage:``, ``Options:``, ``Examples:`` sections) drive ``--help`` and the
``help`` built-in.
"""

import inspect
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from .errors import CommandNotFound


@dataclass
class CommandResult:
    """Outcome of one command invocation."""
    stdout: str = ''
    stderr: str = ''
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def error(cls, message: str, exit_code: int = 1) -> 'CommandResult':
        if message and not message.endswith('\n'):
            message += '\n'
        return cls(stderr=message, exit_code=exit_code)


Handler = Callable[..., CommandResult]


def lines_output(lines: List[str]) -> str:
    """Join output lines, each terminated by a newline."""
    return ''.join(line + '\n' for line in lines)


def extract_docstring_sections(docstring: Optional[str]) -> dict:
    """Extract structured sections from a handler docstring."""
    sections = {
        'description': '',
        'usage': '',
        'options': [],
        'examples': [],
    }
    if not docstring:
        return sections

    lines = inspect.cleandoc(docstring).split('\n')
    sections['description'] = lines[0].strip()

    current_section = None
    for line in lines[1:]:
        stripped = line.strip()
        if stripped.startswith('Usage:'):
            current_section = 'usage'
        elif stripped.startswith('Options:'):
            current_section = 'options'
        elif stripped.startswith('Examples:'):
            current_section = 'examples'
        elif stripped and current_section == 'usage':
            sections['usage'] = stripped
        elif stripped and current_section:
            sections[current_section].append(stripped)

    return sections


@dataclass
class BuiltinCommand:
    """A registered command."""
    name: str
    handler: Handler
    category: str = 'Other'
    aliases: List[str] = field(default_factory=list)
    help_flag: bool = True

    @property
    def doc(self) -> dict:
        return extract_docstring_sections(self.handler.__doc__)

    @property
    def description(self) -> str:
        return self.doc['description']

    def format_help(self) -> str:
        """Render the help text for ``name --help``."""
        sections = self.doc
        lines = [f"{self.name} - {sections['description']}", '']
        if sections['usage']:
            lines.append('Usage:')
            lines.append(f"  {sections['usage']}")
            lines.append('')
        if sections['options']:
            lines.append('Options:')
            lines.extend(f"  {option}" for option in sections['options'])
            lines.append('')
        if sections['examples']:
            lines.append('Examples:')
            lines.extend(f"  {example}" for example in sections['examples'])
            lines.append('')
        return lines_output(lines[:-1] if lines[-1] == '' else lines)

    def __call__(self, argv, stdin, fs, state) -> CommandResult:
        return self.handler(argv, stdin, fs, state)


class CommandRegistry:
    """
    Name -> BuiltinCommand table.

    Collaborators (autocomplete, help) read it through ``names()`` and
    ``get()``; only setup code registers commands.
    """

    def __init__(self):
        self._commands: Dict[str, BuiltinCommand] = {}

    def register(self, name: str, *aliases: str, category: str = 'Other',
                 help_flag: bool = True) -> Callable[[Handler], Handler]:
        """Decorator registering ``handler`` under ``name`` and any ``aliases``."""
        def decorator(handler: Handler) -> Handler:
            command = BuiltinCommand(name, handler, category, list(aliases), help_flag)
            self.add(command)
            return handler
        return decorator

    def add(self, command: BuiltinCommand) -> None:
        for name in [command.name] + command.aliases:
            if name in self._commands:
                raise ValueError(f"command already registered: {name}")
            self._commands[name] = command

    def get(self, name: str) -> Optional[BuiltinCommand]:
        return self._commands.get(name)

    def lookup(self, name: str) -> BuiltinCommand:
        """Like ``get`` but raises CommandNotFound for an unknown name."""
        command = self._commands.get(name)
        if command is None:
            raise CommandNotFound(name)
        return command

    def names(self) -> List[str]:
        """All invocable names, sorted."""
        return sorted(self._commands)

    def commands(self) -> List[BuiltinCommand]:
        """Distinct commands (aliases collapsed), sorted by name."""
        unique = {command.name: command for command in self._commands.values()}
        return [unique[name] for name in sorted(unique)]

    def copy(self) -> 'CommandRegistry':
        clone = CommandRegistry()
        clone._commands = dict(self._commands)
        return clone

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._commands)
