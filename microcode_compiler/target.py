"""
Target descriptions: the control-word layout a microcode source compiles to.

A target names the control-word width, the bit fields inside it, constant
aliases and micro-op templates. Source files extend the target with their
own `field`, `const`, `enum` and `op` declarations, so the same compiler
serves any microcode dialect.

Built-in profiles live in TARGET_PROFILES; anything else can be loaded from
a JSON file with the same shape:

    {
      "width": 32,
      "fields": {"ALU": [31, 28], "ADDR": {"bits": [15, 0], "default": 0}},
      "constants": {"ONE": 1},
      "enums": {"REG": ["A", "B", "C", "D"]},
      "ops": {"JMP": {"params": ["t"], "fields": {"SEQ": 1, "ADDR": "t"}}},
      "phase": 2,
      "opsize": 4
    }

Field bit ranges are [hi, lo], inclusive, bit 0 least significant. String
values in op bodies and defaults are parsed as expressions. `phase` and
`opsize` size the opcode table (see parser.py).
"""

from __future__ import annotations
import copy
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .ast_nodes import Expression, FieldAssignment, Number
from .errors import DuplicateSymbolError, FieldWidthError, ParseError, SourceNotFoundError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Layout pieces
# ──────────────────────────────────────────────

@dataclass
class FieldSpec:
    """A named bit range [hi:lo] of the control word."""
    name: str
    hi: int
    lo: int
    default: Union[int, Expression] = 0
    line: Optional[int] = None
    col: Optional[int] = None

    @property
    def width(self) -> int:
        return self.hi - self.lo + 1

    @property
    def mask(self) -> int:
        return ((1 << self.width) - 1) << self.lo

    def overlaps(self, hi: int, lo: int) -> bool:
        return lo <= self.hi and self.lo <= hi


@dataclass
class OpTemplate:
    """Micro-op: a parameterised set of field assignments."""
    name: str
    params: List[str] = field(default_factory=list)
    body: List[FieldAssignment] = field(default_factory=list)
    line: Optional[int] = None
    col: Optional[int] = None

    @property
    def arity(self) -> int:
        return len(self.params)


# ──────────────────────────────────────────────
# Target description
# ──────────────────────────────────────────────

@dataclass
class TargetDescription:
    width: Optional[int] = None
    fields: Dict[str, FieldSpec] = field(default_factory=dict)
    constants: Dict[str, Expression] = field(default_factory=dict)
    enums: Dict[str, List[str]] = field(default_factory=dict)
    ops: Dict[str, OpTemplate] = field(default_factory=dict)
    description: str = ""
    phase: Optional[int] = None       # log2 of the control words per opcode slot
    opsize: Optional[int] = None      # opcode number width in bits

    def copy(self) -> TargetDescription:
        return copy.deepcopy(self)

    def effective_width(self) -> Optional[int]:
        """Declared width, or one past the highest field bit when undeclared."""
        if self.width is not None:
            return self.width
        if not self.fields:
            return None
        return max(f.hi for f in self.fields.values()) + 1

    def check_fields(self):
        """Every declared field must be a well-formed range inside the word."""
        width = self.effective_width()
        if width is not None and width <= 0:
            raise FieldWidthError(f"control word width must be positive, got {width}")
        for spec in self.fields.values():
            if spec.lo < 0 or spec.hi < spec.lo:
                raise FieldWidthError(
                    f"field {spec.name!r} has invalid bit range [{spec.hi}:{spec.lo}]",
                    spec.line, spec.col)
            if spec.hi >= width:
                raise FieldWidthError(
                    f"field {spec.name!r} [{spec.hi}:{spec.lo}] lies outside the "
                    f"{width}-bit control word", spec.line, spec.col)

    # ── Loading ────────────────────────────

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TargetDescription:
        # Parser imports this module, so pull the expression parser in late
        from .parser import parse_expression

        def expr_of(value, where: str) -> Expression:
            if isinstance(value, bool) or not isinstance(value, (int, str)):
                raise ParseError("an integer or expression string", repr(value),
                                 message=f"{where}: expected an integer or "
                                         f"expression string, got {value!r}")
            if isinstance(value, int):
                return Number(value=value)
            return parse_expression(value)

        # One namespace across fields, constants, enums and ops
        claimed: Dict[str, str] = {}

        def claim(name: str, kind: str):
            if name in claimed:
                raise DuplicateSymbolError(
                    name, previous=f"{claimed[name]} from the target description")
            claimed[name] = kind

        target = cls(width=data.get("width"), description=data.get("description", ""),
                     phase=_size_of(data, "phase"), opsize=_size_of(data, "opsize"))

        for name, bits in data.get("fields", {}).items():
            default: Any = 0
            if isinstance(bits, dict):
                default = bits.get("default", 0)
                bits = bits.get("bits")
            if not isinstance(bits, (list, tuple)) or len(bits) not in (1, 2):
                raise FieldWidthError(f"field {name!r}: bits must be [hi, lo] or [bit]")
            if any(isinstance(b, bool) or not isinstance(b, int) for b in bits):
                raise FieldWidthError(f"field {name!r}: bit numbers must be integers, "
                                      f"got {list(bits)!r}")
            hi, lo = (bits[0], bits[-1])
            claim(name, "field")
            if isinstance(default, int) and not isinstance(default, bool):
                target.fields[name] = FieldSpec(name, hi, lo, default)
            else:
                target.fields[name] = FieldSpec(name, hi, lo,
                                                expr_of(default, f"field {name!r} default"))

        for name, value in data.get("constants", {}).items():
            claim(name, "constant")
            target.constants[name] = expr_of(value, f"constant {name!r}")

        for name, members in data.get("enums", {}).items():
            claim(name, "enum")
            target.enums[name] = list(members)
            for i, member in enumerate(members):
                claim(member, f"member of enum {name!r}")
                target.constants[member] = Number(value=i)

        for name, op in data.get("ops", {}).items():
            claim(name, "op")
            body = [FieldAssignment(field=fname, expr=expr_of(v, f"op {name!r} field {fname!r}"))
                    for fname, v in op.get("fields", {}).items()]
            target.ops[name] = OpTemplate(name, list(op.get("params", [])), body)

        target.check_fields()
        return target


def _size_of(data: Dict[str, Any], key: str) -> Optional[int]:
    """Optional non-negative integer setting such as 'phase' or 'opsize'."""
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseError("an integer", repr(value),
                         message=f"{key}: expected an integer, got {value!r}")
    if value < 0:
        raise FieldWidthError(f"{key} must not be negative, got {value}")
    return value


# ──────────────────────────────────────────────
# Built-in target profiles
# ──────────────────────────────────────────────

TARGET_PROFILES: Dict[str, Dict[str, Any]] = {
    "none": {
        "description": "Empty target; the source declares its own layout",
    },
    "basic32": {
        "description": "32-bit demo word: ALU, register selects, memory strobe, "
                       "sequencer, next address",
        "width": 32,
        "fields": {
            "ALU":   [31, 28],
            "SRC_A": [27, 26],
            "SRC_B": [25, 24],
            "DEST":  [23, 22],
            "MEM":   [21, 20],
            "SEQ":   [19, 16],
            "ADDR":  [15, 0],
        },
        "enums": {
            "REG": ["A", "B", "C", "D"],
        },
        "ops": {
            "NOP":   {"params": [], "fields": {}},
            "LOAD":  {"params": ["a", "b"], "fields": {"ALU": 1, "SRC_A": "a", "SRC_B": "b"}},
            "ADD":   {"params": ["d", "a", "b"],
                      "fields": {"ALU": 2, "DEST": "d", "SRC_A": "a", "SRC_B": "b"}},
            "SUB":   {"params": ["d", "a", "b"],
                      "fields": {"ALU": 3, "DEST": "d", "SRC_A": "a", "SRC_B": "b"}},
            "READ":  {"params": ["addr"], "fields": {"MEM": 1, "ADDR": "addr"}},
            "WRITE": {"params": ["addr"], "fields": {"MEM": 2, "ADDR": "addr"}},
            "JMP":   {"params": ["t"], "fields": {"SEQ": 1, "ADDR": "t"}},
            "JZ":    {"params": ["t"], "fields": {"SEQ": 2, "ADDR": "t"}},
            "CALL":  {"params": ["t"], "fields": {"SEQ": 3, "ADDR": "t"}},
            "RET":   {"params": [], "fields": {"SEQ": 4}},
        },
    },
}


def load_target(spec: Union[None, str, os.PathLike, Dict[str, Any],
                            TargetDescription] = None) -> TargetDescription:
    """Resolve a profile name, JSON path, dict, or description into a fresh copy."""
    if spec is None:
        return TargetDescription()
    if isinstance(spec, TargetDescription):
        return spec.copy()
    if isinstance(spec, dict):
        return TargetDescription.from_dict(spec)
    if isinstance(spec, str) and spec in TARGET_PROFILES:
        logger.debug("Using built-in target profile %s", spec)
        return TargetDescription.from_dict(TARGET_PROFILES[spec])

    path = os.fspath(spec)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise SourceNotFoundError(path, e.strerror or str(e)) from e
    except json.JSONDecodeError as e:
        raise ParseError("valid JSON", e.msg, e.lineno, e.colno,
                         message=f"invalid target description {path!r}: {e.msg}") from e
    if not isinstance(data, dict):
        raise ParseError("a JSON object", type(data).__name__,
                         message=f"target description {path!r} must be a JSON object")
    logger.debug("Loaded target description from %s", path)
    return TargetDescription.from_dict(data)
