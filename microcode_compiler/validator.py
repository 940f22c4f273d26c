"""
Pass 3: field validation.

Turns each resolved instruction into a MicroInstruction whose fields form an
exact partition of the control word. Any instruction that cannot be
partitioned aborts the whole compilation; no partial Program is returned.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Tuple

from .errors import CompilationCancelled, FieldOverlapError, FieldWidthError
from .program import MicroInstruction, Program, ResolvedField
from .resolver import BoundAssignment, BoundInstruction, Resolution
from .symbols import SymbolTable
from .target import FieldSpec, TargetDescription

logger = logging.getLogger(__name__)


def _fits(value: int, width: int) -> bool:
    return 0 <= value < (1 << width)


class Validator:
    """Checks widths and overlaps, fills defaults, and builds the Program."""

    def __init__(self, resolution: Resolution, target: TargetDescription,
                 symbols: SymbolTable, cancel=None):
        self.resolution = resolution
        self.target = target
        self.symbols = symbols
        self.cancel = cancel
        self.width: Optional[int] = None

    def validate(self) -> Program:
        self.target.check_fields()
        self.width = self.target.effective_width()
        self._check_defaults()

        instructions = []
        for bound in self.resolution.instructions:
            if self.cancel is not None and self.cancel.is_set():
                raise CompilationCancelled("validating")
            instructions.append(self._validate_instruction(bound))

        labels = self.symbols.labels()
        program = Program(width=self.width or 0, instructions=instructions,
                          labels=labels, origin=self.resolution.origin)
        logger.debug("Pass 3: %d instructions validated, %d-bit control word",
                     len(program), program.width)
        return program

    def _check_defaults(self):
        for spec in self.target.fields.values():
            value = self.resolution.defaults.get(spec.name, 0)
            if not _fits(value, spec.width):
                raise FieldWidthError(
                    f"default {value} of field {spec.name!r} does not fit in "
                    f"{spec.width} bit(s)", spec.line, spec.col)

    # ── Per instruction ─────────────────────

    def _validate_instruction(self, bound: BoundInstruction) -> MicroInstruction:
        src = bound.source
        if self.width is None:
            raise FieldWidthError("control word width is undetermined: declare "
                                  "'width' or at least one field", src.line, src.col)

        groups = self._group(bound.assignments)
        self._check_distinct_overlap(groups)

        fields: List[ResolvedField] = []
        for name, assigns in groups.items():
            fields.append(self._merge(self.target.fields[name], assigns))

        for spec in self.target.fields.values():
            if spec.name in groups:
                continue
            if any(spec.overlaps(f.hi, f.lo) for f in fields):
                continue  # an alternative layout for bits already claimed
            fields.append(ResolvedField(spec.name, spec.hi, spec.lo,
                                        self.resolution.defaults[spec.name]))

        total = sum(f.width for f in fields)
        if total != self.width:
            covered = 0
            for f in fields:
                covered |= ((1 << f.width) - 1) << f.lo
            missing = [b for b in range(self.width - 1, -1, -1) if not covered >> b & 1]
            raise FieldWidthError(
                f"fields cover {total} of {self.width} control-word bits "
                f"(unassigned bits: {_bit_ranges(missing)})", src.line, src.col)

        fields.sort(key=lambda f: f.hi, reverse=True)
        return MicroInstruction(address=src.address, fields=tuple(fields),
                                labels=tuple(src.labels), line=src.line, col=src.col)

    def _group(self, assigns: List[BoundAssignment]) -> Dict[str, List[BoundAssignment]]:
        groups: Dict[str, List[BoundAssignment]] = {}
        seen: Dict[Tuple[str, int, int], BoundAssignment] = {}
        for a in assigns:
            key = (a.field.name, a.hi, a.lo)
            if key in seen:
                first = seen[key]
                raise FieldOverlapError(
                    f"field {a.field.name!r} bits [{a.hi}:{a.lo}] assigned twice "
                    f"(first at L{first.line}:{first.col})", a.line, a.col)
            seen[key] = a
            groups.setdefault(a.field.name, []).append(a)
        return groups

    def _check_distinct_overlap(self, groups: Dict[str, List[BoundAssignment]]):
        specs = [self.target.fields[name] for name in groups]
        for i, left in enumerate(specs):
            for right in specs[i + 1:]:
                if left.overlaps(right.hi, right.lo):
                    at = groups[right.name][0]
                    raise FieldOverlapError(
                        f"field {right.name!r} [{right.hi}:{right.lo}] overlaps "
                        f"field {left.name!r} [{left.hi}:{left.lo}]", at.line, at.col)

    def _merge(self, spec: FieldSpec, assigns: List[BoundAssignment]) -> ResolvedField:
        """Apply assignments in source order over the field's default."""
        value = self.resolution.defaults[spec.name]
        for a in assigns:
            if not _fits(a.value, a.width):
                what = f"field {spec.name!r}" if a.whole_field else \
                    f"field {spec.name!r} slice [{a.hi - spec.lo}:{a.lo - spec.lo}]"
                raise FieldWidthError(f"value {a.value} does not fit in {what} "
                                      f"({a.width} bit(s))", a.line, a.col)
            shift = a.lo - spec.lo
            mask = ((1 << a.width) - 1) << shift
            value = (value & ~mask) | (a.value << shift)
        return ResolvedField(spec.name, spec.hi, spec.lo, value)


def _bit_ranges(bits: List[int]) -> str:
    """[7, 6, 5, 2] -> '7:5, 2'."""
    ranges = []
    for b in bits:
        if ranges and ranges[-1][1] == b + 1:
            ranges[-1][1] = b
        else:
            ranges.append([b, b])
    return ", ".join(f"{hi}:{lo}" if hi != lo else f"{hi}" for hi, lo in ranges)
