#!/usr/bin/env python3
"""
mcc: microcode compiler CLI

Usage:
    python mcc.py <source.mc> [-o output.hex] [--target basic32|none|layout.json]
                              [--format hex|bin|raw|listing] [-v]

Output format is auto-detected from the output file extension:
    .hex  → one upper-case hex control word per line (default)
    .bin  → one binary control word per line
    .raw  → big-endian bytes, no separators
    .lst  → listing with addresses, words, labels and field values

Examples:
    python mcc.py boot.mc --target basic32              # hex to stdout
    python mcc.py boot.mc -o boot.lst --target basic32
    python mcc.py alu.mc --target layouts/alu16.json -o alu.raw
    python mcc.py boot.mc --tokens                      # token dump
"""

import argparse
import logging
import os
import sys
import traceback

# Allow running from project root or as module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from microcode_compiler import __version__
from microcode_compiler.encoder import FORMAT_EXTENSIONS, FORMATS
from microcode_compiler.errors import MicrocodeError
from microcode_compiler.lexer import tokenize
from microcode_compiler.pipeline import Compiler
from microcode_compiler.source import SourceReader
from microcode_compiler.symbols import SymbolKind, SymbolTable
from microcode_compiler.target import TARGET_PROFILES

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"

logger = logging.getLogger("microcode_compiler.cli")


def setup_logging(verbosity: int = 0, log_file: str = None) -> logging.Logger:
    """Configure the package logger: rich console on stderr, optional log file."""
    if verbosity >= 2:
        console_level = logging.DEBUG
    elif verbosity == 1:
        console_level = logging.INFO
    else:
        console_level = logging.WARNING

    root = logging.getLogger("microcode_compiler")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if log_file else console_level)
    root.propagate = False

    ch = RichHandler(
        console=Console(stderr=True),
        level=console_level,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
    )
    ch.setLevel(console_level)
    root.addHandler(ch)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(fh)
    return root


def output_format(fmt: str, output: str) -> str:
    """--format wins, then the -o extension, then hex."""
    if fmt:
        return fmt
    if output:
        return FORMAT_EXTENSIONS.get(os.path.splitext(output)[1].lower(), "hex")
    return "hex"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcc",
        description="Microcode compiler: source to fixed-width control words",
        epilog="Targets: " + ", ".join(TARGET_PROFILES.keys()) + ", or a JSON file",
    )
    parser.add_argument("files", nargs="*", metavar="file",
                        help="Microcode source file (exactly one)")
    parser.add_argument("-o", "--output", help="Output file (default: stdout)")
    parser.add_argument("--target", default="none",
                        help="Target profile name or JSON description (default: none)")
    parser.add_argument("--format", choices=list(FORMATS), default=None,
                        help="Output format (auto-detected from -o extension if not set)")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--symbols", action="store_true",
                        help="Print the resolved symbol table instead of the output")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="More logging on stderr (-v info, -vv debug)")
    parser.add_argument("--log-file", help="Also write a debug log to this file")
    parser.add_argument("--version", action="version", version=f"mcc {__version__}")
    return parser


def _symbol_value(entry) -> str:
    if entry.kind is SymbolKind.LABEL:
        return f"0x{entry.value:04X}"
    if entry.kind is SymbolKind.FIELD:
        hi, lo = entry.value
        return f"[{hi}:{lo}]" if hi != lo else f"[{hi}]"
    if entry.kind is SymbolKind.ENUM:
        return "{" + ", ".join(entry.value) + "}"
    if entry.kind is SymbolKind.OP:
        return "(" + ", ".join(entry.value.params) + ")"
    return str(entry.value)


def print_symbols(symbols: SymbolTable):
    table = Table(title="Symbols")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Value")
    table.add_column("Defined")
    for entry in symbols:
        where = f"L{entry.line}:{entry.col}" if entry.line is not None else "target"
        table.add_row(entry.name, entry.kind.value, _symbol_value(entry), where)
    Console().print(table)


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)

    if not args.files:
        print("file name required")
        return 0
    if len(args.files) > 1:
        print("only one file name can be provided")
        return 0
    path = args.files[0]

    try:
        setup_logging(args.verbose, args.log_file)
    except OSError as e:
        print(f"{args.log_file}: cannot open log file: {e.strerror or e}", file=sys.stderr)
        return 1

    fmt = output_format(args.format, args.output)

    try:
        if args.tokens:
            with SourceReader(path) as reader:
                for tok in tokenize(reader):
                    print(tok)
            return 0

        compiler = Compiler(target=args.target)
        logger.info("Input:  %s", path)
        logger.info("Target: %s", args.target)

        if args.symbols:
            compiler.compile(path)
            print_symbols(compiler.symbols)
            return 0

        sink = args.output if args.output else sys.stdout
        program = compiler.compile_to(path, sink, fmt)
        if args.output:
            logger.info("Output: %s (%s, %d words)", args.output, fmt, len(program))

    except MicrocodeError as e:
        print(e.diagnostic(path), file=sys.stderr)
        return 1
    except Exception as e:
        print(f"internal compiler error: {e}", file=sys.stderr)
        if args.verbose >= 2:
            traceback.print_exc()
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
