"""
Compilation pipeline and its state machine.

    IDLE -> READING -> TOKENIZING -> PARSING -> RESOLVING -> VALIDATING
         -> ENCODING -> DONE

Any fatal error moves the Compiler straight to FAILED and is re-raised.
There is no retry or resume: reset() and compile again. Each Compiler owns
its reader, tokenizer, parser and symbol table, so separate instances can
run in separate threads.
"""

from __future__ import annotations
import enum
import logging
from typing import Callable, List, Optional, Union

from .encoder import FORMATS, format_program, write_program
from .errors import CompilationCancelled
from .lexer import Tokenizer
from .parser import Parser
from .program import Program
from .resolver import Resolver
from .source import SourceReader
from .symbols import SymbolTable
from .target import TargetDescription, load_target
from .validator import Validator

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    IDLE = "idle"
    READING = "reading"
    TOKENIZING = "tokenizing"
    PARSING = "parsing"
    RESOLVING = "resolving"
    VALIDATING = "validating"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


class Compiler:
    """One compilation at a time, from source to Program or encoded output.

    Args:
        target: Base target description: None, a TARGET_PROFILES name, a JSON
            path, a dict, or a TargetDescription.
        cancel: Optional object with ``is_set()`` (e.g. threading.Event),
            polled at stage boundaries, per token and per instruction.
    """

    def __init__(self, target=None, cancel=None):
        self.target: TargetDescription = load_target(target)
        self.cancel = cancel
        self.reset()

    def reset(self):
        self.state = Stage.IDLE
        self.error: Optional[Exception] = None
        self.history: List[Stage] = [Stage.IDLE]
        self.program: Optional[Program] = None
        self.symbols: Optional[SymbolTable] = None

    def _enter(self, stage: Stage):
        if self.cancel is not None and self.cancel.is_set():
            raise CompilationCancelled(stage.value)
        self.state = stage
        self.history.append(stage)
        logger.debug("Stage: %s", stage.value)

    # ── Entry points ──────────────────────

    def compile(self, source, name: Optional[str] = None) -> Program:
        """Compile a path, text stream or SourceReader into a Program."""
        return self._run(source, name, None)

    def compile_to(self, source, sink, fmt: str = "hex",
                   name: Optional[str] = None) -> Program:
        """Compile and write the encoded Program to `sink` in one write."""
        _check_format(fmt)
        return self._run(source, name,
                         lambda program: write_program(program, sink, fmt, self.cancel))

    def encode(self, source, fmt: str = "hex",
               name: Optional[str] = None) -> Union[str, bytes]:
        """Compile and return the encoded text (or bytes for raw)."""
        _check_format(fmt)
        encoded = []
        self._run(source, name,
                  lambda program: encoded.append(format_program(program, fmt, self.cancel)))
        return encoded[0]

    # ── Driver ────────────────────────────

    def _run(self, source, name: Optional[str],
             emit: Optional[Callable[[Program], object]]) -> Program:
        if self.state is not Stage.IDLE:
            raise RuntimeError(f"compiler is {self.state.value}; "
                               f"call reset() before compiling again")
        try:
            self._enter(Stage.READING)
            reader = source if isinstance(source, SourceReader) else SourceReader(source, name)
            with reader:
                self._enter(Stage.TOKENIZING)
                tokens = Tokenizer(reader, cancel=self.cancel).tokens()
                self._enter(Stage.PARSING)
                parser = Parser(tokens, self.target, cancel=self.cancel)
                module = parser.parse_module()
            self.symbols = parser.symbols

            self._enter(Stage.RESOLVING)
            resolution = Resolver(module, parser.target, parser.symbols,
                                  cancel=self.cancel).resolve()
            self._enter(Stage.VALIDATING)
            program = Validator(resolution, parser.target, parser.symbols,
                                cancel=self.cancel).validate()
            if emit is not None:
                self._enter(Stage.ENCODING)
                emit(program)
        except Exception as e:
            self.state = Stage.FAILED
            self.error = e
            self.history.append(Stage.FAILED)
            logger.debug("Compilation of %s failed: %s", name or source, e)
            raise

        self.state = Stage.DONE
        self.history.append(Stage.DONE)
        self.program = program
        logger.info("Compiled %s: %d word(s), %d-bit control word",
                    reader.name, len(program), program.width)
        return program


def _check_format(fmt: str):
    if fmt not in FORMATS:
        raise ValueError(f"unknown output format {fmt!r} (expected one of "
                         f"{', '.join(FORMATS)})")
