"""
Lexer / Tokenizer for the microcode compiler.

Turns the character cursor of a SourceReader into a lazy sequence of
Tokens. Handles identifiers, keywords, integer literals (decimal, hex,
binary), single and multi-character symbols, and strips whitespace plus
// line and /* block */ comments.

The token sequence is a generator: tokens are produced on demand and the
parser only buffers the lookahead it needs (see TokenStream).
"""

from __future__ import annotations
import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, Iterator, List, Optional

from .errors import CompilationCancelled, LexError
from .source import SourceReader

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Token kinds
# ──────────────────────────────────────────────

class TokenKind(enum.Enum):
    IDENTIFIER = "IDENTIFIER"
    NUMBER = "NUMBER"
    SYMBOL = "SYMBOL"
    KEYWORD = "KEYWORD"
    EOF = "EOF"


# ──────────────────────────────────────────────
# Token data class
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    kind: TokenKind
    lexeme: str
    line: int
    col: int

    @property
    def value(self) -> int:
        """Integer value of a NUMBER token."""
        if self.kind is not TokenKind.NUMBER:
            raise TypeError(f"{self.kind.name} token has no numeric value")
        return parse_number(self.lexeme)

    @property
    def position(self):
        return (self.line, self.col)

    def is_symbol(self, *lexemes: str) -> bool:
        return self.kind is TokenKind.SYMBOL and self.lexeme in lexemes

    def is_keyword(self, *lexemes: str) -> bool:
        return self.kind is TokenKind.KEYWORD and self.lexeme in lexemes

    def describe(self) -> str:
        """Short human description used in parse errors."""
        if self.kind is TokenKind.EOF:
            return "end of input"
        return f"{self.kind.name.lower()} {self.lexeme!r}"

    def __repr__(self):
        return f"Token({self.kind.name}, {self.lexeme!r}, L{self.line}:{self.col})"


# ──────────────────────────────────────────────
# Keywords and symbols
# ──────────────────────────────────────────────

KEYWORDS = frozenset({
    "width", "field", "const", "enum", "op", "org",
    "phase", "opsize", "header", "opcode",
})

# Longest match first
MULTI_CHAR_SYMBOLS = ("<<", ">>")

SINGLE_CHAR_SYMBOLS = frozenset(":=,|;{}[]()+-")

_DIGITS: Dict[str, str] = {
    "x": "0123456789abcdefABCDEF_",
    "b": "01_",
}


def parse_number(text: str) -> int:
    """Convert a numeric lexeme (decimal, 0x hex, 0b binary) to int."""
    text = text.replace("_", "")
    if text[:2] in ("0x", "0X"):
        return int(text[2:], 16)
    if text[:2] in ("0b", "0B"):
        return int(text[2:], 2)
    return int(text, 10)


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


# ──────────────────────────────────────────────
# Tokenizer
# ──────────────────────────────────────────────

class Tokenizer:
    """Produces Tokens from a SourceReader, one at a time."""

    def __init__(self, reader: SourceReader, cancel=None):
        self.reader = reader
        self.cancel = cancel
        self.count = 0

    def tokens(self) -> Iterator[Token]:
        """Lazy token generator; ends right after the EOF token."""
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise CompilationCancelled("tokenizing")
            tok = self._next_token()
            self.count += 1
            yield tok
            if tok.kind is TokenKind.EOF:
                logger.debug("Tokenized %s: %d tokens", self.reader.name, self.count)
                return

    __iter__ = tokens

    # ── Scanning helpers ───────────────────

    def _skip_trivia(self):
        """Skip whitespace and comments."""
        r = self.reader
        while True:
            ch = r.peek()
            if ch in " \t\r\n\f\v":
                r.advance()
            elif ch == "/" and r.peek(1) == "/":
                while not r.at_end and r.peek() not in ("\n", "\r"):
                    r.advance()
            elif ch == "/" and r.peek(1) == "*":
                start_line, start_col = r.line, r.col
                r.advance()  # /
                r.advance()  # *
                while not r.startswith("*/"):
                    if r.at_end:
                        raise LexError("Unterminated block comment", start_line, start_col)
                    r.advance()
                r.advance()  # *
                r.advance()  # /
            else:
                return

    def _read_number(self) -> Token:
        r = self.reader
        line, col = r.line, r.col
        chars: List[str] = [r.advance()]

        # Hex / binary prefix
        if chars[0] == "0" and r.peek() in ("x", "X", "b", "B"):
            prefix = r.advance()
            chars.append(prefix)
            allowed = _DIGITS[prefix.lower()]
            digits = 0
            while r.peek() in allowed:
                ch = r.advance()
                chars.append(ch)
                if ch != "_":
                    digits += 1
            if digits == 0:
                raise LexError(f"Malformed number literal {''.join(chars)!r}",
                               line, col, "".join(chars))
        else:
            while r.peek().isdigit() and r.peek().isascii():
                chars.append(r.advance())

        # A number glued to letters (e.g. 12ab) is not a valid literal
        if _is_ident_char(r.peek()):
            bad = r.peek()
            raise LexError(f"Unexpected character {bad!r} in number literal",
                           r.line, r.col, bad)
        return Token(TokenKind.NUMBER, "".join(chars), line, col)

    def _read_identifier_or_keyword(self) -> Token:
        r = self.reader
        line, col = r.line, r.col
        chars: List[str] = []
        while _is_ident_char(r.peek()):
            chars.append(r.advance())
        text = "".join(chars)
        kind = TokenKind.KEYWORD if text in KEYWORDS else TokenKind.IDENTIFIER
        return Token(kind, text, line, col)

    def _next_token(self) -> Token:
        self._skip_trivia()
        r = self.reader
        if r.at_end:
            return Token(TokenKind.EOF, "", r.line, r.col)

        ch = r.peek()

        if ch.isdigit() and ch.isascii():
            return self._read_number()

        if _is_ident_start(ch):
            return self._read_identifier_or_keyword()

        line, col = r.line, r.col
        for sym in MULTI_CHAR_SYMBOLS:
            if r.startswith(sym):
                for _ in sym:
                    r.advance()
                return Token(TokenKind.SYMBOL, sym, line, col)

        if ch in SINGLE_CHAR_SYMBOLS:
            r.advance()
            return Token(TokenKind.SYMBOL, ch, line, col)

        raise LexError(f"Unexpected character: {ch!r}", line, col, ch)


def tokenize(reader: SourceReader, cancel=None) -> Iterator[Token]:
    """Convenience wrapper: lazy token generator for a reader."""
    return Tokenizer(reader, cancel=cancel).tokens()


def tokenize_string(text: str) -> List[Token]:
    """Tokenize a whole string eagerly (debug and test helper)."""
    with SourceReader.from_string(text) as reader:
        return list(tokenize(reader))


# ──────────────────────────────────────────────
# Token stream with bounded lookahead
# ──────────────────────────────────────────────

class TokenStream:
    """Pull-based view over a token iterable with a small lookahead buffer."""

    def __init__(self, tokens: Iterable[Token]):
        self._it = iter(tokens)
        self._buf: Deque[Token] = deque()
        self._last: Optional[Token] = None
        self._done = False

    def _pull(self) -> bool:
        if self._done:
            return False
        try:
            tok = next(self._it)
        except StopIteration:
            self._done = True
            return False
        self._buf.append(tok)
        return True

    def peek(self, offset: int = 0) -> Token:
        """Look ahead without consuming; EOF is repeated past the end."""
        while len(self._buf) <= offset:
            if not self._pull():
                tail = self._buf[-1] if self._buf else self._last
                if tail is not None and tail.kind is TokenKind.EOF:
                    return tail
                line, col = tail.position if tail is not None else (1, 1)
                raise LexError("Token sequence ended without end of input", line, col)
        return self._buf[offset]

    def advance(self) -> Token:
        """Consume one token. Consuming past EOF is an error."""
        if self._last is not None and self._last.kind is TokenKind.EOF:
            raise LexError("Read past end of input", self._last.line, self._last.col)
        tok = self.peek()
        self._buf.popleft()
        self._last = tok
        return tok

    @property
    def previous(self) -> Optional[Token]:
        return self._last
