"""
Encoder/Printer: serializes a validated Program into control words.

Output formats (FORMAT_VERSION 1), one control word per micro-instruction
in program order:

    hex      upper-case hex, zero-padded to ceil(width/4) digits, '\\n' after each word
    bin      width binary digits, '\\n' after each word
    raw      big-endian, ceil(width/8) bytes per word, no separators
    listing  '; microcode listing v1, width W, N words' then
             'ADDR  WORD  LABEL: FIELD=value ...' per instruction

An empty Program gives empty hex/bin/raw output. The whole image is built in
memory first and written with a single call, so nothing reaches the sink
unless encoding succeeded.

read_words() and decode_word() invert hex/bin/raw for tests and for the
viewer that loads the compiled image.
"""

from __future__ import annotations
import io
import logging
import os
from typing import Dict, Iterable, Iterator, List, Union

from .errors import CompilationCancelled, SinkWriteError
from .program import MicroInstruction, Program

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
FORMATS = ("hex", "bin", "raw", "listing")

# Output file extension -> format, for the CLI
FORMAT_EXTENSIONS = {
    ".hex": "hex",
    ".bin": "bin",
    ".raw": "raw",
    ".lst": "listing",
}


def hex_digits(width: int) -> int:
    return (width + 3) // 4


def byte_count(width: int) -> int:
    return (width + 7) // 8


class Encoder:
    """Packs the instructions of one Program."""

    def __init__(self, program: Program, cancel=None):
        self.program = program
        self.cancel = cancel

    def _instructions(self) -> Iterator[MicroInstruction]:
        for inst in self.program:
            if self.cancel is not None and self.cancel.is_set():
                raise CompilationCancelled("encoding")
            yield inst

    def words(self) -> Iterator[int]:
        for inst in self._instructions():
            yield inst.word

    def to_hex(self) -> str:
        digits = hex_digits(self.program.width)
        return "".join(f"{w:0{digits}X}\n" for w in self.words())

    def to_bin(self) -> str:
        width = self.program.width
        return "".join(f"{w:0{width}b}\n" for w in self.words())

    def to_raw(self) -> bytes:
        size = byte_count(self.program.width)
        return b"".join(w.to_bytes(size, "big") for w in self.words())

    def to_listing(self) -> str:
        prog = self.program
        digits = hex_digits(prog.width)
        lines = [f"; microcode listing v{FORMAT_VERSION}, width {prog.width}, "
                 f"{len(prog)} words"]
        for inst in self._instructions():
            labels = "".join(f"{name}: " for name in inst.labels)
            fields = " ".join(f"{f.name}={f.value}" for f in inst.fields)
            lines.append(f"{inst.address:04X}  {inst.word:0{digits}X}  {labels}{fields}")
        return "\n".join(lines) + "\n"

    def encode(self, fmt: str = "hex") -> Union[str, bytes]:
        if fmt == "hex":
            return self.to_hex()
        if fmt == "bin":
            return self.to_bin()
        if fmt == "raw":
            return self.to_raw()
        if fmt == "listing":
            return self.to_listing()
        raise ValueError(f"unknown output format {fmt!r} (expected one of "
                         f"{', '.join(FORMATS)})")


# ──────────────────────────────────────────────
# Sinks
# ──────────────────────────────────────────────

def format_program(program: Program, fmt: str = "hex", cancel=None) -> Union[str, bytes]:
    """Encode a Program as text (hex, bin, listing) or bytes (raw)."""
    return Encoder(program, cancel).encode(fmt)


def _is_binary(sink) -> bool:
    if isinstance(sink, (io.RawIOBase, io.BufferedIOBase)):
        return True
    return "b" in getattr(sink, "mode", "")


def _sink_name(sink) -> str:
    if isinstance(sink, (str, os.PathLike)):
        return os.fspath(sink)
    return str(getattr(sink, "name", type(sink).__name__))


def write_program(program: Program, sink, fmt: str = "hex", cancel=None) -> int:
    """Encode and write a Program to a path or stream in one write.

    Returns the number of characters (text formats) or bytes (raw) written.
    raw output to a text stream goes to its ``buffer``; a text stream without
    one cannot take raw output and raises TypeError.
    """
    data = format_program(program, fmt, cancel)
    try:
        if isinstance(sink, (str, os.PathLike)):
            if isinstance(data, bytes):
                with open(sink, "wb") as f:
                    f.write(data)
            else:
                with open(sink, "w", encoding="ascii", newline="") as f:
                    f.write(data)
        elif isinstance(data, bytes):
            if _is_binary(sink):
                sink.write(data)
            elif hasattr(sink, "buffer"):
                sink.flush()
                sink.buffer.write(data)
                sink.buffer.flush()
            else:
                raise TypeError(f"raw output needs a binary sink, got {_sink_name(sink)}")
        elif _is_binary(sink):
            sink.write(data.encode("ascii"))
        else:
            sink.write(data)
    except OSError as e:
        raise SinkWriteError(f"cannot write to {_sink_name(sink)}: "
                             f"{e.strerror or e}") from e

    logger.debug("Wrote %d %s word(s), %d %s, to %s", len(program), fmt, len(data),
                 "bytes" if isinstance(data, bytes) else "chars", _sink_name(sink))
    return len(data)


# ──────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────

def read_words(data: Union[str, bytes], width: int, fmt: str = "hex") -> List[int]:
    """Parse hex, bin or raw output back into control words."""
    if fmt == "raw":
        if isinstance(data, str):
            raise TypeError("raw data must be bytes")
        size = byte_count(width)
        if len(data) % size:
            raise ValueError(f"raw data length {len(data)} is not a multiple of "
                             f"{size} bytes")
        return [int.from_bytes(data[i:i + size], "big") for i in range(0, len(data), size)]

    if fmt not in ("hex", "bin"):
        raise ValueError(f"cannot decode {fmt!r} output")
    if isinstance(data, bytes):
        data = data.decode("ascii")
    base, digits = (16, hex_digits(width)) if fmt == "hex" else (2, width)
    words = []
    for n, line in enumerate(data.splitlines(), 1):
        if len(line) != digits:
            raise ValueError(f"line {n}: expected {digits} digits, got {line!r}")
        word = int(line, base)
        if word >> width:
            raise ValueError(f"line {n}: {line!r} is wider than {width} bits")
        words.append(word)
    return words


def decode_word(word: int, fields: Iterable) -> Dict[str, int]:
    """Split a word into {field name: value}; fields need name, hi and lo."""
    return {f.name: (word >> f.lo) & ((1 << (f.hi - f.lo + 1)) - 1) for f in fields}
