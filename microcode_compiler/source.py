"""
Source reader for the microcode compiler.

Wraps a file path or an in-memory text buffer and exposes it as a
forward-only character cursor with line/column tracking. Text is pulled
from the underlying handle in CHUNK_SIZE pieces, so a large source is never
held in memory at once.

Usage:
    with SourceReader("boot.mc") as reader:
        while not reader.at_end:
            ch = reader.advance()
"""

from __future__ import annotations
import io
import logging
import os
from typing import Optional, Union

from .errors import SourceNotFoundError, SourceReadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096

# Returned by peek() past the end of input
EOF_CHAR = "\0"


class SourceReader:
    """Forward-only character cursor over a path or a text buffer."""

    def __init__(self, source: Union[str, os.PathLike, io.TextIOBase],
                 name: Optional[str] = None):
        if hasattr(source, "read"):
            self._path = None
            self._handle = source
            self._owns_handle = False
            self.name = name or getattr(source, "name", None) or "<buffer>"
        else:
            self._path = os.fspath(source)
            self._handle = None
            self._owns_handle = True
            self.name = name or self._path
        self._buf = ""
        self._pos = 0
        self._eof = False
        self._closed = False
        self.line = 1
        self.col = 1

    @classmethod
    def from_string(cls, text: str, name: str = "<string>") -> SourceReader:
        return cls(io.StringIO(text), name=name)

    # ── Handle management ──────────────────

    def open(self) -> SourceReader:
        if self._handle is not None or self._closed:
            return self
        try:
            # newline="" keeps '\r' so line counting stays ours
            self._handle = open(self._path, "r", encoding="utf-8", newline="")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise SourceNotFoundError(self.name, e.strerror or "") from e
        except PermissionError as e:
            raise SourceNotFoundError(self.name, "permission denied") from e
        except OSError as e:
            raise SourceNotFoundError(self.name, str(e)) from e
        logger.debug("Opened source %s", self.name)
        return self

    def close(self):
        if self._handle is not None and self._owns_handle:
            self._handle.close()
            logger.debug("Closed source %s", self.name)
        self._handle = None
        self._closed = True

    def __enter__(self) -> SourceReader:
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ── Buffering ──────────────────────────

    def _fill(self, needed: int) -> bool:
        """Make sure at least `needed` unread chars are buffered, if input allows."""
        while len(self._buf) - self._pos < needed and not self._eof:
            if self._handle is None:
                if self._closed:
                    self._eof = True
                    break
                self.open()
            try:
                chunk = self._handle.read(CHUNK_SIZE)
            except (OSError, UnicodeDecodeError) as e:
                raise SourceReadError(self.name, str(e), self.line, self.col) from e
            if not chunk:
                self._eof = True
                break
            # Drop consumed text before appending
            self._buf = self._buf[self._pos:] + chunk
            self._pos = 0
        return len(self._buf) - self._pos >= needed

    # ── Cursor ─────────────────────────────

    @property
    def at_end(self) -> bool:
        return not self._fill(1)

    def peek(self, offset: int = 0) -> str:
        if not self._fill(offset + 1):
            return EOF_CHAR
        return self._buf[self._pos + offset]

    def advance(self) -> str:
        """Consume and return one character, updating line/col."""
        if not self._fill(1):
            return EOF_CHAR
        ch = self._buf[self._pos]
        self._pos += 1
        if ch == "\n":
            self.line += 1
            self.col = 1
        elif ch == "\r":
            # '\r\n' counts once, on the '\n'
            if self.peek() != "\n":
                self.line += 1
                self.col = 1
            else:
                self.col += 1
        else:
            self.col += 1
        return ch

    def startswith(self, text: str) -> bool:
        if not self._fill(len(text)):
            return False
        return self._buf.startswith(text, self._pos)
