"""
Pass 2: deferred symbol resolution.

Walks the provisional Module produced by pass 1 and replaces every symbolic
placeholder with a concrete integer. All labels are already bound by the end
of pass 1, which is what makes forward references work. Constants are
evaluated on first use, with cycle detection, because they may depend on
labels or on each other. Micro-op calls are expanded into field assignments
here, with the call's operands substituted for the op's parameters.

The result is a Resolution: per instruction, a flat list of field
assignments with absolute bit ranges and integer values, ready for the
validator.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .ast_nodes import (
    ASTNode, BinaryOp, Expression, FieldAssignment, Module, Negate, Number,
    OpCall, ProvisionalInstruction, SymbolRef,
)
from .errors import (
    CompilationCancelled, FieldWidthError, ParseError, UndefinedSymbolError,
)
from .symbols import SymbolKind, SymbolTable, SymbolTableEntry
from .target import FieldSpec, TargetDescription

logger = logging.getLogger(__name__)


@dataclass
class BoundAssignment:
    """A field assignment after resolution; hi/lo are absolute word bits."""
    field: FieldSpec
    hi: int
    lo: int
    value: int
    line: Optional[int] = None
    col: Optional[int] = None

    @property
    def width(self) -> int:
        return self.hi - self.lo + 1

    @property
    def whole_field(self) -> bool:
        return self.hi == self.field.hi and self.lo == self.field.lo


@dataclass
class BoundInstruction:
    source: ProvisionalInstruction
    assignments: List[BoundAssignment] = field(default_factory=list)


@dataclass
class Resolution:
    instructions: List[BoundInstruction] = field(default_factory=list)
    defaults: Dict[str, int] = field(default_factory=dict)
    origin: int = 0


class Resolver:
    """Binds symbols and expands micro-ops for one Module."""

    def __init__(self, module: Module, target: TargetDescription,
                 symbols: SymbolTable, cancel=None):
        self.module = module
        self.target = target
        self.symbols = symbols
        self.cancel = cancel
        self._resolving: List[str] = []

    def resolve(self) -> Resolution:
        for entry in self.symbols.entries(SymbolKind.CONSTANT):
            self._constant_value(entry)
        self._check_op_templates()

        result = Resolution(origin=self.module.origin)
        for spec in self.target.fields.values():
            result.defaults[spec.name] = self._default_value(spec)

        for inst in self.module.instructions:
            if self.cancel is not None and self.cancel.is_set():
                raise CompilationCancelled("resolving")
            result.instructions.append(self._bind_instruction(inst))

        logger.debug("Pass 2: %d constants, %d labels, %d instructions resolved",
                     len(self.symbols.entries(SymbolKind.CONSTANT)),
                     len(self.symbols.entries(SymbolKind.LABEL)),
                     len(result.instructions))
        return result

    # ── Expressions ─────────────────────────

    def evaluate(self, expr: Expression,
                 params: Optional[Dict[str, Expression]] = None) -> int:
        """Evaluate an expression; `params` maps op parameters to call operands."""
        if isinstance(expr, Number):
            return expr.value
        if isinstance(expr, SymbolRef):
            if params is not None and expr.name in params:
                # Operands belong to the caller's scope, not the op's
                return self.evaluate(params[expr.name])
            return self._symbol_value(expr)
        if isinstance(expr, Negate):
            return -self.evaluate(expr.operand, params)
        if isinstance(expr, BinaryOp):
            left = self.evaluate(expr.left, params)
            right = self.evaluate(expr.right, params)
            if expr.op == "+":
                return left + right
            if expr.op == "-":
                return left - right
            if right < 0:
                raise FieldWidthError(f"negative shift count {right}", expr.line, expr.col)
            return left << right if expr.op == "<<" else left >> right
        raise TypeError(f"cannot evaluate {type(expr).__name__}")

    def _symbol_value(self, ref: SymbolRef) -> int:
        entry = self.symbols.lookup(ref.name)
        if entry is None:
            raise UndefinedSymbolError(ref.name, ref.line or None, ref.col or None)
        if entry.kind is SymbolKind.LABEL:
            return entry.value
        if entry.kind is SymbolKind.CONSTANT:
            return self._constant_value(entry)
        raise UndefinedSymbolError(
            ref.name, ref.line or None, ref.col or None,
            message=f"{ref.name!r} is a {entry.kind.value}, not a value")

    def _constant_value(self, entry: SymbolTableEntry) -> int:
        if entry.value is not None:
            return entry.value
        if entry.name in self._resolving:
            cycle = " -> ".join(self._resolving[self._resolving.index(entry.name):]
                                + [entry.name])
            raise UndefinedSymbolError(entry.name, entry.line, entry.col,
                                       message=f"circular definition: {cycle}")
        self._resolving.append(entry.name)
        try:
            entry.value = self.evaluate(entry.definition)
        finally:
            self._resolving.pop()
        return entry.value

    def _default_value(self, spec: FieldSpec) -> int:
        if isinstance(spec.default, Expression):
            return self.evaluate(spec.default)
        return spec.default

    # ── Instructions ──────────────────────

    def _check_op_templates(self):
        """Every op must only name declared fields, even if it is never used."""
        for op in self.target.ops.values():
            for assign in op.body:
                if assign.field not in self.target.fields:
                    raise UndefinedSymbolError(
                        assign.field, assign.line or op.line, assign.col or op.col,
                        message=f"micro-op {op.name!r} assigns undefined field "
                                f"{assign.field!r}")

    def _bind_instruction(self, inst: ProvisionalInstruction) -> BoundInstruction:
        bound = BoundInstruction(source=inst)
        scope = inst.bindings or None
        for part in inst.parts:
            if isinstance(part, FieldAssignment):
                bound.assignments.append(self._bind(part, scope, part))
            else:
                bound.assignments.extend(self._expand(part, scope))
        return bound

    def _expand(self, call: OpCall,
                scope: Optional[Dict[str, Expression]] = None) -> List[BoundAssignment]:
        template = self.target.ops.get(call.name)
        if template is None:
            entry = self.symbols.lookup(call.name)
            if entry is not None:
                raise UndefinedSymbolError(
                    call.name, call.line, call.col,
                    message=f"{call.name!r} is a {entry.kind.value}, not a micro-op")
            raise UndefinedSymbolError(call.name, call.line, call.col,
                                       message=f"undefined micro-op {call.name!r}")
        if len(call.args) != template.arity:
            raise ParseError(f"{template.arity} operand(s)", f"{len(call.args)}",
                             call.line, call.col,
                             message=f"micro-op {call.name!r} takes {template.arity} "
                                     f"operand(s), got {len(call.args)}")
        if scope:
            # Opcode parameters in the operands are fixed before the op sees them
            args = [Number(a.line, a.col, self.evaluate(a, scope)) for a in call.args]
        else:
            args = call.args
        params = dict(zip(template.params, args))
        return [self._bind(assign, params, call) for assign in template.body]

    def _bind(self, assign: FieldAssignment, params: Optional[Dict[str, Expression]],
              at: ASTNode) -> BoundAssignment:
        spec = self.target.fields.get(assign.field)
        if spec is None:
            raise UndefinedSymbolError(assign.field, at.line, at.col,
                                       message=f"undefined field {assign.field!r}")
        hi, lo = spec.hi, spec.lo
        if assign.has_slice:
            if assign.slice_hi >= spec.width:
                raise FieldWidthError(
                    f"slice [{assign.slice_hi}:{assign.slice_lo}] is outside field "
                    f"{spec.name!r} ({spec.width} bits)", at.line, at.col)
            hi, lo = spec.lo + assign.slice_hi, spec.lo + assign.slice_lo
        value = self.evaluate(assign.expr, params)
        return BoundAssignment(spec, hi, lo, value, at.line, at.col)
