#!/usr/bin/env python3
"""
Command parser for termshell.

Translates command lines into a CommandSequence: pipelines joined by
``;``, ``&&`` and ``||``, each pipeline a list of commands joined by ``|``,
each command a name, arguments and redirections.

Parsing happens in three steps:
- alias substitution on the leading word of every command
- grammar: grouping tokens into sequences, pipelines and commands
- word expansion: ``$NAME``, ``${NAME}``, ``$?`` and a leading ``~``

Commands keep their raw words so the engine can expand them again right
before running, against the state left by earlier pipelines.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple, Union

from .errors import ParseError
from .paths import has_glob
from .state import ShellState
from .tokenizer import (
    CONTROL_TYPES, REDIRECT_TYPES, Quoting, Token, TokenType, Tokenizer, Word, WordPart,
)


logger = logging.getLogger(__name__)

VAR_REFERENCE = re.compile(
    r'\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*|[?$]|[0-9]+)\}'
    r'|(?P<name>[A-Za-z_][A-Za-z0-9_]*|[?$0-9]))'
)
ASSIGNMENT = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)=')


class RedirectType(Enum):
    """Types of IO redirection."""
    WRITE = '>'      # Overwrite file
    APPEND = '>>'    # Append to file
    READ = '<'       # Read from file
    HERE_DOC = '<<'  # Here document
    HERE_STR = '<<<' # Here string

    @property
    def is_input(self) -> bool:
        return self in (RedirectType.READ, RedirectType.HERE_DOC, RedirectType.HERE_STR)


_REDIRECT_FOR_TOKEN = {
    TokenType.REDIRECT_OUT: RedirectType.WRITE,
    TokenType.REDIRECT_APPEND: RedirectType.APPEND,
    TokenType.REDIRECT_IN: RedirectType.READ,
    TokenType.HEREDOC: RedirectType.HERE_DOC,
    TokenType.HERESTRING: RedirectType.HERE_STR,
}


@dataclass
class Redirect:
    """
    An IO redirection.

    For heredocs ``target`` is the delimiter and ``body`` the captured text.
    """
    type: RedirectType
    target: str
    word: Optional[Word] = None
    body: Optional[str] = None
    expand_body: bool = True

    def __str__(self) -> str:
        return f"{self.type.value} {self.target}"


@dataclass
class Command:
    """
    A single command with its arguments and redirections.

    ``name`` and ``args`` are the words as expanded at parse time. ``words``
    and ``assignments`` keep the unexpanded form for the engine.
    """
    name: str
    args: List[str]
    redirects: List[Redirect] = field(default_factory=list)
    words: List[Word] = field(default_factory=list)
    assignments: List[Tuple[str, Word]] = field(default_factory=list)

    @property
    def argv(self) -> List[str]:
        return [self.name] + self.args if self.name else list(self.args)

    def __str__(self) -> str:
        parts = [f"{name}={value.text}" for name, value in self.assignments]
        parts.extend(self.argv)
        parts.extend(str(redirect) for redirect in self.redirects)
        return ' '.join(parts)


@dataclass
class Pipeline:
    """
    Commands connected by pipes.

    Commands are executed left to right, each one's output feeding the next.
    """
    commands: List[Command]

    def __str__(self) -> str:
        return ' | '.join(str(cmd) for cmd in self.commands)


@dataclass
class CommandSequence:
    """
    Pipelines connected by control operators.

    Each entry pairs a pipeline with the operator that FOLLOWS it
    (``;``, ``&&``, ``||``), or None for the last one.
    """
    pipelines: List[Tuple[Pipeline, Optional[str]]]

    def __str__(self) -> str:
        parts = []
        for pipeline, op in self.pipelines:
            parts.append(str(pipeline))
            if op:
                parts.append(op)
        return ' '.join(parts)

    def __len__(self) -> int:
        return len(self.pipelines)


@dataclass
class Field:
    """One argv entry produced by expanding a word."""
    text: str
    globbable: bool = False


# Expansion

def expand_variables(text: str, state: Optional[ShellState]) -> str:
    """Substitute ``$NAME``, ``${NAME}`` and ``$?`` in ``text``. Unset names expand to ''."""
    def lookup(match):
        name = match.group('braced') or match.group('name')
        if state is None:
            return '0' if name == '?' else ''
        if name == '?':
            return str(state.last_exit_status)
        if name == '$':
            return '1'
        if name == '0':
            return 'termshell'
        if name.isdigit():
            return ''
        return state.env.get(name, '')

    if '$' not in text:
        return text
    return VAR_REFERENCE.sub(lookup, text)


def _expand_tilde(word: Word, state: Optional[ShellState]) -> Word:
    first = word.parts[0]
    if state is None or first.quoting is not Quoting.NONE or not first.text.startswith('~'):
        return word
    if first.text == '~' or first.text.startswith('~/'):
        # Only the home prefix is literal; the rest still expands and globs
        rest = first.text[1:]
        parts = (WordPart(state.home, Quoting.ESCAPED),)
        if rest:
            parts += (WordPart(rest, Quoting.NONE),)
        return Word(parts + word.parts[1:])
    return word


def expand_word(word: Word, state: Optional[ShellState], split: bool = True) -> List[Field]:
    """
    Expand one word into zero or more fields.

    Unquoted expansion results are split on whitespace (when ``split``);
    quoted text never is. A word made only of unquoted text that expands to
    nothing produces no field at all.
    """
    word = _expand_tilde(word, state)
    fields: List[Field] = []
    current: List[str] = []
    started = False
    globbable = False

    def finish():
        nonlocal current, started, globbable
        if started:
            fields.append(Field(''.join(current), globbable))
        current = []
        started = False
        globbable = False

    for part in word.parts:
        if part.quoting in (Quoting.SINGLE, Quoting.ESCAPED):
            current.append(part.text)
            started = True
        elif part.quoting is Quoting.DOUBLE:
            current.append(expand_variables(part.text, state))
            started = True
        else:
            expanded = expand_variables(part.text, state)
            if not split:
                current.append(expanded)
                started = started or bool(expanded)
                globbable = globbable or has_glob(expanded)
                continue
            if not expanded:
                continue
            if expanded[0].isspace():
                finish()
            chunks = expanded.split()
            for index, chunk in enumerate(chunks):
                if index:
                    finish()
                current.append(chunk)
                started = True
                globbable = globbable or has_glob(chunk)
            if expanded[-1].isspace():
                finish()

    finish()
    return fields


def expand_words(words: List[Word], state: Optional[ShellState]) -> List[Field]:
    fields: List[Field] = []
    for word in words:
        fields.extend(expand_word(word, state))
    return fields


def expand_target(word: Word, state: Optional[ShellState]) -> str:
    """Expand a redirection target or assignment value without splitting."""
    return ''.join(f.text for f in expand_word(word, state, split=False))


def split_assignment(word: Word) -> Optional[Tuple[str, Word]]:
    """Return (name, value word) if ``word`` is an unquoted ``NAME=value``."""
    first = word.parts[0]
    if first.quoting is not Quoting.NONE:
        return None
    match = ASSIGNMENT.match(first.text)
    if not match:
        return None
    rest = first.text[match.end():]
    parts = ((WordPart(rest, Quoting.NONE),) if rest else ()) + word.parts[1:]
    if not parts:
        parts = (WordPart('', Quoting.SINGLE),)
    return match.group(1), Word(parts)


def _describe(token: Optional[Token]) -> str:
    if token is None or token.type is TokenType.NEWLINE:
        return 'newline'
    return token.value


class CommandParser:
    """
    Parser for shell command syntax.

    This parser handles:
    - Commands with arguments (flags are left to each command)
    - Pipes (|)
    - Redirections (>, >>, <, <<, <<<)
    - Command sequences (;, &&, ||) and multi-line input
    - Alias substitution with cycle protection
    - Variable and tilde expansion
    """

    def __init__(self, tokenizer: Optional[Tokenizer] = None):
        self.tokenizer = tokenizer or Tokenizer()

    def parse(self, source: Union[str, List[Token]], state: Optional[ShellState] = None) -> CommandSequence:
        """
        Parse a complete command line into a CommandSequence.

        ``state`` supplies aliases and variables; without it no aliases are
        substituted and variables expand to ''.

        Raises:
            ParseError: on any syntax error. Nothing is executed.
        """
        tokens = self.tokenizer.tokenize(source) if isinstance(source, str) else list(source)
        if state is not None and state.aliases:
            tokens = self._substitute_aliases(tokens, state, frozenset())

        sequence = CommandSequence(pipelines=[])
        for command_tokens, operator in self._split_sequence(tokens):
            pipeline = self._parse_pipeline(command_tokens, state)
            sequence.pipelines.append((pipeline, operator))

        logger.debug("parsed %r -> %s", source if isinstance(source, str) else '<tokens>', sequence)
        return sequence

    def parse_simple(self, line: str, state: Optional[ShellState] = None) -> Optional[Command]:
        """Parse a line and return its first command (None for an empty line)."""
        sequence = self.parse(line, state)
        if not sequence.pipelines:
            return None
        return sequence.pipelines[0][0].commands[0]

    # Alias substitution

    def _substitute_aliases(self, tokens: List[Token], state: ShellState,
                            active: FrozenSet[str]) -> List[Token]:
        """
        Replace the leading word of each command with its alias text.

        ``active`` holds aliases already being expanded on this path; such a
        name is left as a plain word, which stops ``a -> b -> a`` loops and
        lets ``alias ls='ls -la'`` refer to the real command.
        """
        result: List[Token] = []
        at_command_start = True
        for token in tokens:
            if token.type is not TokenType.WORD:
                result.append(token)
                at_command_start = token.type in CONTROL_TYPES or token.type is TokenType.PIPE
                continue
            if not at_command_start:
                result.append(token)
                continue
            if split_assignment(token.word) is not None:
                result.append(token)
                continue

            at_command_start = False
            name = token.value
            replacement = state.aliases.get(name)
            if replacement is None or token.word.quoted or name in active:
                result.append(token)
                continue

            expansion = self.tokenizer.tokenize(replacement)
            expansion = self._substitute_aliases(expansion, state, active | {name})
            result.extend(expansion)
            if expansion and expansion[-1].type in CONTROL_TYPES | {TokenType.PIPE}:
                at_command_start = True
        return result

    # Grammar

    def _split_sequence(self, tokens: List[Token]) -> List[Tuple[List[Token], Optional[str]]]:
        """Group tokens into pipelines, each paired with its following operator."""
        groups: List[Tuple[List[Token], Optional[str]]] = []
        current: List[Token] = []
        previous: Optional[Token] = None

        for token in tokens:
            if token.type is TokenType.NEWLINE:
                if previous is not None and previous.type in (TokenType.AND, TokenType.OR, TokenType.PIPE):
                    # Operator at end of line continues onto the next
                    continue
                if current:
                    groups.append((current, ';'))
                    current = []
                previous = token
                continue

            if token.type in CONTROL_TYPES:
                if not current:
                    raise ParseError(f"syntax error near unexpected token `{token.value}'")
                groups.append((current, token.value))
                current = []
            else:
                current.append(token)
            previous = token

        if current:
            if current[-1].type is TokenType.PIPE:
                raise ParseError("syntax error: unexpected end of input after `|'")
            groups.append((current, None))
        elif groups:
            last_tokens, last_op = groups[-1]
            if last_op in ('&&', '||'):
                raise ParseError(f"syntax error: unexpected end of input after `{last_op}'")
            groups[-1] = (last_tokens, None)
        return groups

    def _parse_pipeline(self, tokens: List[Token], state: Optional[ShellState]) -> Pipeline:
        stages: List[List[Token]] = [[]]
        for token in tokens:
            if token.type is TokenType.PIPE:
                if not stages[-1]:
                    raise ParseError("syntax error near unexpected token `|'")
                stages.append([])
            else:
                stages[-1].append(token)
        if not stages[-1]:
            raise ParseError("syntax error: unexpected end of input after `|'")

        commands = []
        for index, stage in enumerate(stages):
            command = self._parse_command(stage, state)
            if index > 0 and any(r.type.is_input for r in command.redirects):
                raise ParseError(
                    f"{command.name or 'redirection'}: input redirection is only allowed "
                    f"on the first command of a pipeline"
                )
            commands.append(command)
        return Pipeline(commands=commands)

    def _parse_command(self, tokens: List[Token], state: Optional[ShellState]) -> Command:
        words: List[Word] = []
        assignments: List[Tuple[str, Word]] = []
        redirects: List[Redirect] = []

        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.type in REDIRECT_TYPES:
                target = tokens[i + 1] if i + 1 < len(tokens) else None
                if target is None or target.type is not TokenType.WORD:
                    raise ParseError(f"syntax error near unexpected token `{_describe(target)}'")
                redirect_type = _REDIRECT_FOR_TOKEN[token.type]
                if redirect_type is RedirectType.HERE_DOC:
                    redirects.append(Redirect(
                        redirect_type, target.value, target.word,
                        body=token.body or '', expand_body=token.expand_body,
                    ))
                else:
                    redirects.append(Redirect(redirect_type, expand_target(target.word, state), target.word))
                i += 2
                continue

            if not words:
                assignment = split_assignment(token.word)
                if assignment is not None:
                    assignments.append(assignment)
                    i += 1
                    continue
            words.append(token.word)
            i += 1

        fields = [f.text for f in expand_words(words, state)]
        name = fields[0] if fields else ''
        return Command(
            name=name,
            args=fields[1:],
            redirects=redirects,
            words=words,
            assignments=assignments,
        )
