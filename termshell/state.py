#!/usr/bin/env python3
"""
Per-session shell state: working directory, environment, aliases and the
exit status of the last pipeline.

Built-ins receive the ShellState explicitly and change it only through the
methods here, which keep ``PWD`` in sync with ``cwd`` and validate names.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


VAR_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
INVALID_ALIAS_CHARS = re.compile(r'[<>|&;(){}\[\]$`"\'\\/\s\-]')
MAX_ALIAS_NAME = 100
MAX_VAR_NAME = 100
MAX_VAR_VALUE = 1000
MAX_VARIABLES = 100
RESERVED_VARIABLES = frozenset({'HOME', 'USER', 'SHELL', 'PWD'})


def default_environment(user: str, home: str, cwd: str) -> Dict[str, str]:
    return {
        'HOME': home,
        'USER': user,
        'SHELL': '/bin/bash',
        'TERM': 'xterm-256color',
        'PATH': '/usr/local/bin:/usr/bin:/bin',
        'LANG': 'en_US.UTF-8',
        'EDITOR': 'vi',
        'PWD': cwd,
    }


def validate_alias_name(name: str) -> None:
    """Raise ValueError if ``name`` cannot be used as an alias."""
    if not name:
        raise ValueError("alias name cannot be empty")
    if len(name) > MAX_ALIAS_NAME:
        raise ValueError(f"`{name[:20]}...': alias name too long")
    if name[0].isdigit() or INVALID_ALIAS_CHARS.search(name):
        raise ValueError(f"`{name}': invalid alias name")


@dataclass
class ShellState:
    """
    Mutable session state.

    ``confirm`` is consulted by interactive flags (``rm -i``, ``cp -i``);
    without one, interactive prompts are answered "no".
    """
    cwd: str = '/'
    env: Dict[str, str] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    last_exit_status: int = 0
    confirm: Optional[Callable[[str], bool]] = None
    exit_requested: bool = False

    @classmethod
    def create(cls, user: str = 'user', home: str = '/home/user', cwd: Optional[str] = None) -> 'ShellState':
        cwd = cwd or home
        return cls(cwd=cwd, env=default_environment(user, home, cwd))

    @property
    def home(self) -> str:
        return self.env.get('HOME') or '/'

    @property
    def user(self) -> str:
        return self.env.get('USER') or 'user'

    def change_directory(self, path: str) -> None:
        """Set cwd (already resolved to an existing directory) and sync PWD/OLDPWD."""
        if path != self.cwd:
            self.env['OLDPWD'] = self.cwd
        self.cwd = path
        self.env['PWD'] = path

    # Environment

    def get_var(self, name: str, default: str = '') -> str:
        if name == '?':
            return str(self.last_exit_status)
        return self.env.get(name, default)

    def set_var(self, name: str, value: str) -> None:
        """Set a variable, enforcing the name, value and count limits."""
        if len(name) > MAX_VAR_NAME:
            raise ValueError(f"`{name[:20]}...': variable name too long (max {MAX_VAR_NAME} characters)")
        if not VAR_NAME.match(name):
            raise ValueError(f"`{name}': not a valid identifier")
        if len(value) > MAX_VAR_VALUE:
            raise ValueError(f"{name}: value too long (max {MAX_VAR_VALUE} characters)")
        if name not in self.env and len(self.env) >= MAX_VARIABLES:
            raise ValueError(f"{name}: too many variables (max {MAX_VARIABLES})")
        self.env[name] = value

    def unset_var(self, name: str) -> bool:
        """Remove a variable. Returns False if it was not set."""
        if not VAR_NAME.match(name):
            raise ValueError(f"`{name}': not a valid identifier")
        if name in RESERVED_VARIABLES:
            raise ValueError(f"{name}: cannot unset: readonly variable")
        return self.env.pop(name, None) is not None

    # Aliases

    def set_alias(self, name: str, command: str) -> None:
        validate_alias_name(name)
        if not command.strip():
            raise ValueError(f"`{name}': alias command cannot be empty")
        self.aliases[name] = command

    def get_alias(self, name: str) -> Optional[str]:
        return self.aliases.get(name)

    def remove_alias(self, name: str) -> bool:
        return self.aliases.pop(name, None) is not None

    def clear_aliases(self) -> None:
        self.aliases.clear()

    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cwd': self.cwd,
            'env': dict(self.env),
            'aliases': dict(self.aliases),
            'lastExitStatus': self.last_exit_status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShellState':
        env = dict(data.get('env') or {})
        cwd = data.get('cwd') or env.get('PWD') or '/'
        env['PWD'] = cwd
        return cls(
            cwd=cwd,
            env=env,
            aliases=dict(data.get('aliases') or {}),
            last_exit_status=int(data.get('lastExitStatus', 0)),
        )
