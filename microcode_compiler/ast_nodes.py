"""
AST node definitions for the microcode compiler.

These nodes form the provisional model built by parser pass 1. Operand
values are still symbolic here: a SymbolRef may name a label defined further
down the file, so nothing is evaluated until the resolver runs.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union


# ──────────────────────────────────────────────
# Base AST node
# ──────────────────────────────────────────────

@dataclass
class ASTNode:
    """Base class for all AST nodes."""
    line: int = 0
    col: int = 0


# ──────────────────────────────────────────────
# Expressions
# ──────────────────────────────────────────────

@dataclass
class Expression(ASTNode):
    pass


@dataclass
class Number(Expression):
    value: int = 0


@dataclass
class SymbolRef(Expression):
    """Placeholder for a label, constant, or op parameter."""
    name: str = ""


@dataclass
class BinaryOp(Expression):
    op: str = ""                    # "+", "-", "<<", ">>"
    left: Optional[Expression] = None
    right: Optional[Expression] = None


@dataclass
class Negate(Expression):
    operand: Optional[Expression] = None


# ──────────────────────────────────────────────
# Instruction parts
# ──────────────────────────────────────────────

@dataclass
class FieldAssignment(ASTNode):
    """FIELD = expr, or FIELD[hi:lo] = expr with the slice relative to the field."""
    field: str = ""
    expr: Optional[Expression] = None
    slice_hi: Optional[int] = None
    slice_lo: Optional[int] = None

    @property
    def has_slice(self) -> bool:
        return self.slice_hi is not None


@dataclass
class OpCall(ASTNode):
    """Use of a micro-op template, e.g. LOAD A, B."""
    name: str = ""
    args: List[Expression] = field(default_factory=list)


InstructionPart = Union[FieldAssignment, OpCall]


@dataclass
class ProvisionalInstruction(ASTNode):
    """One source micro-instruction before symbol resolution."""
    address: int = 0
    labels: List[str] = field(default_factory=list)
    parts: List[InstructionPart] = field(default_factory=list)
    bindings: Dict[str, Expression] = field(default_factory=dict)   # opcode parameters


# ──────────────────────────────────────────────
# Declarations
# ──────────────────────────────────────────────

@dataclass
class WidthDecl(ASTNode):
    width: int = 0


@dataclass
class OrgDecl(ASTNode):
    origin: int = 0


@dataclass
class FieldDecl(ASTNode):
    name: str = ""
    hi: int = 0
    lo: int = 0
    default: Optional[Expression] = None


@dataclass
class ConstDecl(ASTNode):
    name: str = ""
    expr: Optional[Expression] = None


@dataclass
class EnumDecl(ASTNode):
    name: str = ""
    members: List[str] = field(default_factory=list)


@dataclass
class OpDecl(ASTNode):
    name: str = ""
    params: List[str] = field(default_factory=list)
    body: List[FieldAssignment] = field(default_factory=list)


@dataclass
class PhaseDecl(ASTNode):
    phase: int = 0


@dataclass
class OpsizeDecl(ASTNode):
    opsize: int = 0


@dataclass
class HeaderDecl(ASTNode):
    """Lines every opcode slot starts with."""
    lines: List[ProvisionalInstruction] = field(default_factory=list)


@dataclass
class OpcodeDecl(ASTNode):
    """opcode N NAME(p: ENUM, ...) { lines }"""
    opcode: int = 0
    name: str = ""
    params: List[Tuple[str, str]] = field(default_factory=list)   # (name, enum)
    lines: List[ProvisionalInstruction] = field(default_factory=list)


Declaration = Union[WidthDecl, OrgDecl, FieldDecl, ConstDecl, EnumDecl, OpDecl,
                    PhaseDecl, OpsizeDecl, HeaderDecl, OpcodeDecl]


# ──────────────────────────────────────────────
# Top-level: Module
# ──────────────────────────────────────────────

@dataclass
class Module(ASTNode):
    """Root node: everything pass 1 read from one source."""
    declarations: List[Declaration] = field(default_factory=list)
    instructions: List[ProvisionalInstruction] = field(default_factory=list)
    origin: int = 0
