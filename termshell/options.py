#!/usr/bin/env python3
"""
Per-command flag tables and the option parser shared by the built-ins.

Each built-in declares a small table mapping flag names (short and long) to a
Flag spec. Short flags usually alias a long canonical name, so ``-l`` and
``--long`` both end up under ``options.flags['long']``.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .errors import OptionError


FlagValue = Union[bool, str]


@dataclass(frozen=True)
class Flag:
    """Spec of one flag: whether it takes a value, and what it is an alias of."""
    takes_value: bool = False
    alias_of: Optional[str] = None


FlagTable = Dict[str, Flag]


def flag_table(mapping: Mapping[str, str], values: Iterable[str] = ()) -> FlagTable:
    """
    Build a flag table from a ``{short: long}`` mapping.

    Every long name becomes a canonical flag; names listed in ``values``
    take an argument.

    >>> table = flag_table({'n': 'lines'}, values={'lines'})
    >>> table['n']
    Flag(takes_value=True, alias_of='lines')
    """
    values = set(values)
    table: FlagTable = {}
    for short, long in mapping.items():
        takes_value = long in values
        if long not in table:
            table[long] = Flag(takes_value=takes_value)
        if short != long:
            table[short] = Flag(takes_value=takes_value, alias_of=long)
    return table


@dataclass
class Options:
    """Parsed command line: canonical flags plus remaining operands."""
    flags: Dict[str, FlagValue] = field(default_factory=dict)
    operands: List[str] = field(default_factory=list)

    def __contains__(self, name: str) -> bool:
        return name in self.flags

    def get(self, name: str, default: Optional[FlagValue] = None) -> Optional[FlagValue]:
        return self.flags.get(name, default)


def _canonical(table: FlagTable, name: str) -> str:
    spec = table[name]
    return spec.alias_of or name


def parse_options(argv: List[str], table: FlagTable, numeric: Optional[str] = None,
                  stop_at_operand: bool = False, lenient: bool = False) -> Options:
    """
    Parse ``argv`` (without the command name) against ``table``.

    Args:
        numeric: canonical flag that ``-NUM`` is shorthand for (``head -5``).
        stop_at_operand: treat everything after the first operand as operands.
        lenient: keep unknown flags as operands instead of failing (``echo``).

    Raises:
        OptionError: for unknown flags or a missing flag argument.
    """
    options = Options()
    i = 0
    while i < len(argv):
        arg = argv[i]
        i += 1

        if arg == '--':
            options.operands.extend(argv[i:])
            break

        if arg == '-' or not arg.startswith('-'):
            options.operands.append(arg)
            if stop_at_operand:
                options.operands.extend(argv[i:])
                break
            continue

        if arg.startswith('--'):
            name, has_value, value = arg[2:].partition('=')
            if name not in table:
                if lenient:
                    options.operands.append(arg)
                    continue
                raise OptionError(f"unrecognized option '--{name}'")
            spec = table[name]
            canonical = _canonical(table, name)
            if spec.takes_value:
                if not has_value:
                    if i >= len(argv):
                        raise OptionError(f"option '--{name}' requires an argument")
                    value = argv[i]
                    i += 1
                options.flags[canonical] = value
            else:
                options.flags[canonical] = True
            continue

        body = arg[1:]
        if numeric and body.isdigit():
            options.flags[numeric] = body
            continue

        if lenient and any(c not in table for c in body):
            options.operands.append(arg)
            continue

        j = 0
        while j < len(body):
            char = body[j]
            j += 1
            if char not in table:
                raise OptionError(f"invalid option -- '{char}'")
            spec = table[char]
            canonical = _canonical(table, char)
            if spec.takes_value:
                value = body[j:]
                if not value:
                    if i >= len(argv):
                        raise OptionError(f"option requires an argument -- '{char}'")
                    value = argv[i]
                    i += 1
                options.flags[canonical] = value
                break
            options.flags[canonical] = True

    return options


def parse_int(value: FlagValue, what: str) -> int:
    """Convert a flag value to int, raising OptionError on garbage."""
    try:
        return int(str(value))
    except ValueError:
        raise OptionError(f"invalid number of {what}: '{value}'")
