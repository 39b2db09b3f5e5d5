#!/usr/bin/env python3
"""
Tokenizer for termshell command lines.

Turns raw input into a flat list of tokens. Words keep their quoting
structure as a sequence of WordParts so that later stages know which
characters were quoted: single-quoted text is never expanded, double-quoted
text is expanded but not word-split, escaped characters are literal.

Heredoc bodies are captured here too: when a line containing ``<< DELIM``
ends, the following lines up to one equal to ``DELIM`` become the body of
that heredoc token.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import ParseError


class TokenType(Enum):
    """Token kinds produced by the tokenizer."""
    WORD = 'word'
    PIPE = '|'
    AND = '&&'
    OR = '||'
    SEMI = ';'
    NEWLINE = '\n'
    REDIRECT_OUT = '>'
    REDIRECT_APPEND = '>>'
    REDIRECT_IN = '<'
    HEREDOC = '<<'
    HERESTRING = '<<<'


CONTROL_TYPES = frozenset({TokenType.AND, TokenType.OR, TokenType.SEMI, TokenType.NEWLINE})
REDIRECT_TYPES = frozenset({
    TokenType.REDIRECT_OUT, TokenType.REDIRECT_APPEND, TokenType.REDIRECT_IN,
    TokenType.HEREDOC, TokenType.HERESTRING,
})

# Longest operators first
OPERATORS: Tuple[Tuple[str, TokenType], ...] = (
    ('<<<', TokenType.HERESTRING),
    ('>>', TokenType.REDIRECT_APPEND),
    ('<<', TokenType.HEREDOC),
    ('&&', TokenType.AND),
    ('||', TokenType.OR),
    ('>', TokenType.REDIRECT_OUT),
    ('<', TokenType.REDIRECT_IN),
    ('|', TokenType.PIPE),
    (';', TokenType.SEMI),
)

OPERATOR_START = frozenset('<>&|;')
DOUBLE_QUOTE_ESCAPABLE = frozenset('$"\\`')


class Quoting(Enum):
    """How a piece of a word was written."""
    NONE = 'none'
    SINGLE = 'single'
    DOUBLE = 'double'
    ESCAPED = 'escaped'


@dataclass(frozen=True)
class WordPart:
    text: str
    quoting: Quoting = Quoting.NONE


@dataclass(frozen=True)
class Word:
    """A shell word: adjacent parts with no whitespace between them."""
    parts: Tuple[WordPart, ...]

    @property
    def text(self) -> str:
        """The word with quotes removed and nothing expanded."""
        return ''.join(part.text for part in self.parts)

    @property
    def quoted(self) -> bool:
        return any(part.quoting is not Quoting.NONE for part in self.parts)

    @classmethod
    def literal(cls, text: str) -> 'Word':
        return cls((WordPart(text),))

    def __str__(self) -> str:
        return self.text


@dataclass
class Token:
    """
    A token of the input.

    ``word`` is set for WORD tokens. ``body`` holds the captured text of a
    HEREDOC token; ``expand_body`` is False when the delimiter was quoted.
    """
    type: TokenType
    value: str
    word: Optional[Word] = None
    body: Optional[str] = None
    expand_body: bool = True

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r})"


class _WordBuilder:
    """Accumulates the parts of the word currently being read."""

    def __init__(self):
        self.parts: List[WordPart] = []
        self.started = False

    def add(self, text: str, quoting: Quoting) -> None:
        self.started = True
        if not text:
            return
        if self.parts and self.parts[-1].quoting is quoting:
            self.parts[-1] = WordPart(self.parts[-1].text + text, quoting)
        else:
            self.parts.append(WordPart(text, quoting))

    def take(self) -> Optional[Word]:
        if not self.started:
            return None
        if not self.parts:
            # Empty quotes still make a (empty) word
            self.parts.append(WordPart('', Quoting.SINGLE))
        word = Word(tuple(self.parts))
        self.parts = []
        self.started = False
        return word


class Tokenizer:
    """
    Splits command text into tokens.

    Handles:
    - whitespace separation outside quotes
    - single quotes, double quotes, backslash escapes
    - operators: ``| || && ; > >> < << <<<`` and newlines
    - ``#`` comments at the start of a word
    - heredoc bodies on the lines following the command
    """

    def tokenize(self, text: str) -> List[Token]:
        tokens: List[Token] = []
        builder = _WordBuilder()
        pending_heredocs: List[Token] = []
        i = 0
        length = len(text)

        def flush():
            word = builder.take()
            if word is not None:
                tokens.append(Token(TokenType.WORD, word.text, word=word))

        while i < length:
            char = text[i]

            if char == '\n':
                flush()
                tokens.append(Token(TokenType.NEWLINE, '\n'))
                i += 1
                if pending_heredocs:
                    i = self._read_heredoc_bodies(text, i, tokens, pending_heredocs)
                    pending_heredocs = []
                continue

            if char in ' \t\r':
                flush()
                i += 1
                continue

            if char == '#' and not builder.started:
                while i < length and text[i] != '\n':
                    i += 1
                continue

            if char in OPERATOR_START:
                flush()
                for op, token_type in OPERATORS:
                    if text.startswith(op, i):
                        token = Token(token_type, op)
                        tokens.append(token)
                        if token_type is TokenType.HEREDOC:
                            pending_heredocs.append(token)
                        i += len(op)
                        break
                else:
                    # Only a lone '&' gets here
                    raise ParseError("syntax error near unexpected token `&': background jobs are not supported")
                continue

            if char == "'":
                end = text.find("'", i + 1)
                if end == -1:
                    raise ParseError("unexpected EOF while looking for matching `''")
                builder.add(text[i + 1:end], Quoting.SINGLE)
                i = end + 1
                continue

            if char == '"':
                i = self._read_double_quoted(text, i + 1, builder)
                continue

            if char == '\\':
                if i + 1 < length:
                    if text[i + 1] == '\n':
                        # Line continuation
                        i += 2
                        continue
                    builder.add(text[i + 1], Quoting.ESCAPED)
                    i += 2
                else:
                    builder.add('\\', Quoting.ESCAPED)
                    i += 1
                continue

            builder.add(char, Quoting.NONE)
            i += 1

        flush()
        if pending_heredocs:
            # Heredoc on the last line with nothing following: empty bodies
            self._assign_heredoc_delimiters(tokens, pending_heredocs)
            for token in pending_heredocs:
                token.body = ''
        return tokens

    @staticmethod
    def _read_double_quoted(text: str, i: int, builder: _WordBuilder) -> int:
        """Read up to the closing quote; return the index after it."""
        chunk = []
        builder.add('', Quoting.DOUBLE)
        while i < len(text):
            char = text[i]
            if char == '"':
                builder.add(''.join(chunk), Quoting.DOUBLE)
                return i + 1
            if char == '\\' and i + 1 < len(text) and text[i + 1] in DOUBLE_QUOTE_ESCAPABLE:
                builder.add(''.join(chunk), Quoting.DOUBLE)
                chunk = []
                builder.add(text[i + 1], Quoting.ESCAPED)
                i += 2
                continue
            chunk.append(char)
            i += 1
        raise ParseError('unexpected EOF while looking for matching `"\'')

    @staticmethod
    def _assign_heredoc_delimiters(tokens: List[Token], pending: List[Token]) -> None:
        for heredoc in pending:
            index = next(k for k, tok in enumerate(tokens) if tok is heredoc)
            if index + 1 >= len(tokens) or tokens[index + 1].type is not TokenType.WORD:
                raise ParseError("syntax error near unexpected token `newline'")
            delimiter = tokens[index + 1].word
            heredoc.expand_body = not delimiter.quoted

    def _read_heredoc_bodies(self, text: str, i: int, tokens: List[Token],
                             pending: List[Token]) -> int:
        """Consume body lines for each pending heredoc, in order."""
        self._assign_heredoc_delimiters(tokens, pending)
        for heredoc in pending:
            index = next(k for k, tok in enumerate(tokens) if tok is heredoc)
            delimiter = tokens[index + 1].value
            lines = []
            while i < len(text):
                end = text.find('\n', i)
                line = text[i:] if end == -1 else text[i:end]
                i = len(text) if end == -1 else end + 1
                if line == delimiter:
                    break
                lines.append(line)
            heredoc.body = ''.join(line + '\n' for line in lines)
        return i


def tokenize(text: str) -> List[Token]:
    """Tokenize ``text`` with a default Tokenizer."""
    return Tokenizer().tokenize(text)
