"""
Microcode Compiler
==================
Compiles a human-readable microcode source into fixed-width control words
for a microcode-driven processor simulator.

The control-word layout is pluggable: a target description (built-in
profile, JSON file, or dict) names the width, fields, constants and
micro-ops, and the source can extend it with its own declarations.

Architecture:
    ┌──────────┐    ┌───────────┐    ┌──────────┐    ┌──────────┐    ┌───────────┐    ┌─────────┐
    │  Source  │───>│ Tokenizer │───>│  Parser  │───>│ Resolver │───>│ Validator │───>│ Encoder │
    │ (reader) │    │ (tokens)  │    │ (pass 1) │    │ (pass 2) │    │ (pass 3)  │    │ (words) │
    └──────────┘    └───────────┘    └──────────┘    └──────────┘    └───────────┘    └─────────┘

    - source.py:    Buffered character cursor with line/col tracking
    - lexer.py:     Lazy generator of typed tokens
    - parser.py:    Recursive descent into a provisional Module; labels bound here
    - resolver.py:  Constants, label references and micro-op expansion
    - validator.py: Field widths, overlaps and defaults -> immutable Program
    - encoder.py:   hex / bin / raw / listing output, and the matching decoder
    - pipeline.py:  Compiler state machine driving the stages above
"""

from __future__ import annotations
from typing import Optional, Union

__version__ = "0.1.0"

from .errors import *
from .lexer import Token, TokenKind, Tokenizer, tokenize
from .source import SourceReader
from .parser import Parser
from .program import MicroInstruction, Program, ResolvedField
from .target import FieldSpec, OpTemplate, TargetDescription, TARGET_PROFILES, load_target
from .encoder import FORMAT_VERSION, Encoder, decode_word, format_program, read_words, write_program
from .pipeline import Compiler, Stage


def compile_source(source: str, *, target=None, output: Optional[str] = None,
                   cancel=None, name: str = "<string>") -> Union[Program, str, bytes]:
    """Compile microcode source text.

    Full pipeline: SourceReader -> Tokenizer -> Parser -> Resolver ->
    Validator -> Encoder.

    Args:
        source: Microcode source text.
        target: Base target description ('none', 'basic32', a JSON path, a
            dict, or a TargetDescription). Default: empty target.
        output: None to get the Program, or 'hex', 'bin', 'raw', 'listing'
            to get the encoded image.
        cancel: Optional object with is_set() checked between tokens and
            instructions.
        name: Source name used in diagnostics.

    Returns:
        Program, encoded text (str), or raw bytes depending on output.
    """
    compiler = Compiler(target=target, cancel=cancel)
    reader = SourceReader.from_string(source, name=name)
    if output is None:
        return compiler.compile(reader)
    return compiler.encode(reader, fmt=output)


def compile_file(path, *, target=None, output: Optional[str] = None,
                 cancel=None) -> Union[Program, str, bytes]:
    """Like compile_source(), reading the source from a file."""
    compiler = Compiler(target=target, cancel=cancel)
    if output is None:
        return compiler.compile(path)
    return compiler.encode(path, fmt=output)
