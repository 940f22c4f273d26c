"""
Error taxonomy for the microcode compiler.

Every stage raises a subclass of MicrocodeError. All of them are fatal to
the compilation that raised them: there is no recovery and no partial output.
Errors carry the source position (line/col, 1-based) where one exists so the
CLI can print a single precise diagnostic line.
"""

from __future__ import annotations
from typing import Optional

__all__ = [
    'MicrocodeError', 'SourceNotFoundError', 'SourceReadError', 'LexError',
    'ParseError', 'DuplicateSymbolError', 'UndefinedSymbolError',
    'FieldOverlapError', 'FieldWidthError', 'SinkWriteError',
    'CompilationCancelled',
]


class MicrocodeError(Exception):
    """Base class for all compiler errors."""

    label = "Compiler error"

    def __init__(self, message: str, line: Optional[int] = None,
                 col: Optional[int] = None):
        self.message = message
        self.line = line
        self.col = col
        if line is not None:
            loc = f"L{line}:{col}" if col is not None else f"L{line}"
            super().__init__(f"{self.label} at {loc}: {message}")
        else:
            super().__init__(f"{self.label}: {message}")

    @property
    def name(self) -> str:
        return type(self).__name__

    def diagnostic(self, file: str = "<input>") -> str:
        """Single-line diagnostic: ``file:line:col: ErrorName: message``."""
        loc = file
        if self.line is not None:
            loc += f":{self.line}"
            if self.col is not None:
                loc += f":{self.col}"
        return f"{loc}: {self.name}: {self.message}"


# ──────────────────────────────────────────────
# Source reading
# ──────────────────────────────────────────────

class SourceNotFoundError(MicrocodeError):
    label = "Source error"

    def __init__(self, source_name: str, reason: str = ""):
        self.source_name = source_name
        msg = f"cannot open {source_name!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class SourceReadError(MicrocodeError):
    label = "Source error"

    def __init__(self, source_name: str, reason: str, line: Optional[int] = None,
                 col: Optional[int] = None):
        self.source_name = source_name
        super().__init__(f"error reading {source_name!r}: {reason}", line, col)


# ──────────────────────────────────────────────
# Front end
# ──────────────────────────────────────────────

class LexError(MicrocodeError):
    label = "Lexer error"

    def __init__(self, message: str, line: int, col: int, char: str = ""):
        self.char = char
        super().__init__(message, line, col)


class ParseError(MicrocodeError):
    """Syntax error: the token found does not fit the grammar."""

    label = "Parse error"

    def __init__(self, expected: str, found: str, line: Optional[int] = None,
                 col: Optional[int] = None, message: str = ""):
        self.expected = expected
        self.found = found
        if not message:
            message = f"expected {expected}, found {found}"
        super().__init__(message, line, col)


class DuplicateSymbolError(MicrocodeError):
    label = "Symbol error"

    def __init__(self, name: str, line: Optional[int] = None,
                 col: Optional[int] = None, previous: str = ""):
        self.symbol = name
        msg = f"{name!r} is already defined"
        if previous:
            msg += f" ({previous})"
        super().__init__(msg, line, col)


class UndefinedSymbolError(MicrocodeError):
    label = "Symbol error"

    def __init__(self, name: str, line: Optional[int] = None,
                 col: Optional[int] = None, message: str = ""):
        self.symbol = name
        super().__init__(message or f"undefined symbol {name!r}", line, col)


# ──────────────────────────────────────────────
# Field validation
# ──────────────────────────────────────────────

class FieldOverlapError(MicrocodeError):
    label = "Field error"


class FieldWidthError(MicrocodeError):
    label = "Field error"


# ──────────────────────────────────────────────
# Output / control
# ──────────────────────────────────────────────

class SinkWriteError(MicrocodeError):
    label = "Output error"


class CompilationCancelled(MicrocodeError):
    label = "Cancelled"

    def __init__(self, stage: str = ""):
        self.stage = stage
        super().__init__(f"compilation cancelled during {stage}" if stage
                         else "compilation cancelled")
