"""
Recursive-descent parser for the microcode compiler.

Pass 1 reads the token stream into a Module: declarations that extend the
target description, and provisional instructions whose operands are still
symbolic. Pass 2 (resolver.py) binds the symbols and pass 3 (validator.py)
checks the field layout. Parser.parse() runs all three.

Source language:

    width 32                        // control-word width (optional)
    field ALU[31:28]                // named bit range, bit 0 = LSB
    field ADDR[15:0] = 0            // with default value
    const RESET = 0x10
    enum REG { A, B, C, D }         // A=0, B=1, ...
    op LOAD(a, b) { ALU = 1, SRC_A = a, SRC_B = b }
    org 0                           // address of the first instruction

    START: LOAD A, B                // micro-op call
    ALU = 2, ADDR[7:0] = 5          // direct field assignments
    LOAD C, D | JMP START           // several parts, one control word

A micro-op's first operand must sit on the same line as its name, so a
mnemonic followed by a newline takes no operands.

Microcode indexed by machine opcode uses fixed-size slots instead of free
instructions (the two styles cannot be mixed in one source):

    phase 2                         // 4 control words per opcode slot
    opsize 4                        // 16 opcode slots
    header { READ PC | INC_PC }     // fetch lines that start every slot
    opcode 0x1 LDA { LOAD A, B      // lines after the header
                     JMP FETCH }
    opcode 0x2 MOV(d: REG) { ... }  // one slot per REG member: (0x2 << 2) | d

Unused words of the table hold the field defaults.
"""

from __future__ import annotations
import itertools
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .ast_nodes import (
    BinaryOp, ConstDecl, EnumDecl, Expression, FieldAssignment, FieldDecl,
    HeaderDecl, InstructionPart, Module, Negate, Number, OpCall, OpcodeDecl,
    OpDecl, OpsizeDecl, OrgDecl, PhaseDecl, ProvisionalInstruction, SymbolRef,
    WidthDecl,
)
from .errors import (
    CompilationCancelled, FieldWidthError, ParseError, UndefinedSymbolError,
)
from .lexer import Token, TokenKind, TokenStream, tokenize_string
from .program import Program
from .symbols import SymbolKind, SymbolTable
from .target import FieldSpec, OpTemplate, TargetDescription

logger = logging.getLogger(__name__)


class Parser:
    """Recursive descent parser producing a Module, then a Program."""

    def __init__(self, tokens: Iterable[Token],
                 target: Optional[TargetDescription] = None, cancel=None):
        self.stream = TokenStream(tokens)
        self.target = target.copy() if target is not None else TargetDescription()
        self.symbols = SymbolTable()
        self.cancel = cancel
        self.module = Module(line=1, col=1)
        self._seen_code = False       # an instruction or label was read
        self._seen_org = False
        self._header: Optional[HeaderDecl] = None
        self._first_block: Optional[Token] = None   # first header or opcode keyword
        self._slots: Dict[int, str] = {}             # opcode slot -> opcode name
        self._opcode_lines: List[ProvisionalInstruction] = []
        self._register_target()

    def _register_target(self):
        """Seed the symbol table with everything the base target defines."""
        for spec in self.target.fields.values():
            self.symbols.define(spec.name, SymbolKind.FIELD, value=(spec.hi, spec.lo))
        for name, members in self.target.enums.items():
            self.symbols.define(name, SymbolKind.ENUM, value=list(members))
        for name, expr in self.target.constants.items():
            value = expr.value if isinstance(expr, Number) else None
            self.symbols.define(name, SymbolKind.CONSTANT, value=value, definition=expr)
        for op in self.target.ops.values():
            self.symbols.define(op.name, SymbolKind.OP, value=op)

    # ── Helpers ─────────────────────────────

    def _cur(self) -> Token:
        return self.stream.peek()

    def _peek(self, offset: int = 0) -> Token:
        return self.stream.peek(offset)

    def _at(self, kind: TokenKind) -> bool:
        return self._cur().kind is kind

    def _at_symbol(self, *lexemes: str) -> bool:
        return self._cur().is_symbol(*lexemes)

    def _advance(self) -> Token:
        return self.stream.advance()

    def _error(self, expected: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self._cur()
        return ParseError(expected, tok.describe(), tok.line, tok.col)

    def _expect(self, kind: TokenKind, expected: str) -> Token:
        if self._cur().kind is not kind:
            raise self._error(expected)
        return self._advance()

    def _expect_symbol(self, lexeme: str) -> Token:
        if not self._at_symbol(lexeme):
            raise self._error(repr(lexeme))
        return self._advance()

    def _match_symbol(self, *lexemes: str) -> Optional[Token]:
        if self._at_symbol(*lexemes):
            return self._advance()
        return None

    def _expect_name(self, what: str) -> Token:
        tok = self._cur()
        if tok.kind is TokenKind.KEYWORD:
            raise ParseError(what, tok.describe(), tok.line, tok.col,
                             message=f"keyword {tok.lexeme!r} cannot be used as a {what}")
        return self._expect(TokenKind.IDENTIFIER, what)

    def _expect_number(self, what: str) -> int:
        return self._expect(TokenKind.NUMBER, what).value

    def _check_cancel(self):
        if self.cancel is not None and self.cancel.is_set():
            raise CompilationCancelled("parsing")

    # ── Top-level parsing ─────────────────────

    def parse(self) -> Program:
        """Run all three passes and return the validated Program."""
        from .resolver import Resolver
        from .validator import Validator

        module = self.parse_module()
        resolution = Resolver(module, self.target, self.symbols, cancel=self.cancel).resolve()
        return Validator(resolution, self.target, self.symbols, cancel=self.cancel).validate()

    def parse_module(self) -> Module:
        """Pass 1: read every statement into the provisional model."""
        while not self._at(TokenKind.EOF):
            self._check_cancel()
            self._parse_statement()
        self._advance()  # EOF
        if self._first_block is not None:
            self._layout_opcode_table()
        logger.debug("Pass 1: %d declarations, %d instructions, %d symbols",
                      len(self.module.declarations), len(self.module.instructions),
                      len(self.symbols))
        return self.module

    def _parse_statement(self):
        tok = self._cur()
        if tok.kind is TokenKind.KEYWORD:
            decl = self._parse_declaration()
            self.module.declarations.append(decl)
            self._match_symbol(";")
        elif tok.kind is TokenKind.IDENTIFIER:
            self._parse_instruction()
        elif tok.is_symbol(";"):
            self._advance()  # empty statement
        else:
            raise self._error("a declaration or an instruction")

    # ── Declarations ──────────────────────

    def _parse_declaration(self):
        kw = self._advance()
        handler = {
            "width": self._parse_width,
            "field": self._parse_field,
            "const": self._parse_const,
            "enum": self._parse_enum,
            "op": self._parse_op,
            "org": self._parse_org,
            "phase": self._parse_phase,
            "opsize": self._parse_opsize,
            "header": self._parse_header,
            "opcode": self._parse_opcode,
        }[kw.lexeme]
        return handler(kw)

    def _parse_width(self, kw: Token) -> WidthDecl:
        num = self._expect(TokenKind.NUMBER, "control word width")
        width = num.value
        if width <= 0:
            raise FieldWidthError(f"control word width must be positive, got {width}",
                                  num.line, num.col)
        if self.target.width is not None and self.target.width != width:
            raise ParseError("a single width declaration", f"width {width}",
                             kw.line, kw.col,
                             message=f"control word width already declared as "
                                     f"{self.target.width}")
        self.target.width = width
        return WidthDecl(line=kw.line, col=kw.col, width=width)

    def _parse_org(self, kw: Token) -> OrgDecl:
        if self._seen_code or self._seen_org or self._first_block is not None:
            raise ParseError("org before the first instruction or label", "org",
                             kw.line, kw.col,
                             message="org must appear once, before the first "
                                     "instruction or label")
        origin = self._expect_number("origin address")
        self._seen_org = True
        self.module.origin = origin
        return OrgDecl(line=kw.line, col=kw.col, origin=origin)

    def _parse_bit_range(self):
        """'[' hi [':' lo] ']' -> (hi, lo)."""
        self._expect_symbol("[")
        hi = self._expect_number("bit number")
        lo = hi
        if self._match_symbol(":"):
            lo = self._expect_number("bit number")
        self._expect_symbol("]")
        return hi, lo

    def _parse_field(self, kw: Token) -> FieldDecl:
        name = self._expect_name("field name")
        hi, lo = self._parse_bit_range()
        if hi < lo:
            raise FieldWidthError(f"field {name.lexeme!r} has invalid bit range "
                                  f"[{hi}:{lo}]", name.line, name.col)
        default: Optional[Expression] = None
        if self._match_symbol("="):
            default = self._parse_expr()
        self.symbols.define(name.lexeme, SymbolKind.FIELD, value=(hi, lo),
                            line=name.line, col=name.col)
        self.target.fields[name.lexeme] = FieldSpec(
            name.lexeme, hi, lo, default if default is not None else 0,
            line=name.line, col=name.col)
        return FieldDecl(line=kw.line, col=kw.col, name=name.lexeme, hi=hi, lo=lo,
                         default=default)

    def _parse_const(self, kw: Token) -> ConstDecl:
        name = self._expect_name("constant name")
        self._expect_symbol("=")
        expr = self._parse_expr()
        self.symbols.define(name.lexeme, SymbolKind.CONSTANT, line=name.line,
                            col=name.col, definition=expr)
        self.target.constants[name.lexeme] = expr
        return ConstDecl(line=kw.line, col=kw.col, name=name.lexeme, expr=expr)

    def _parse_enum(self, kw: Token) -> EnumDecl:
        name = self._expect_name("enum name")
        self._expect_symbol("{")
        members: List[Token] = [self._expect_name("enum member")]
        while self._match_symbol(","):
            if self._at_symbol("}"):
                break  # trailing comma
            members.append(self._expect_name("enum member"))
        self._expect_symbol("}")

        self.symbols.define(name.lexeme, SymbolKind.ENUM,
                            value=[m.lexeme for m in members],
                            line=name.line, col=name.col)
        for i, m in enumerate(members):
            self.symbols.define(m.lexeme, SymbolKind.CONSTANT, value=i,
                                line=m.line, col=m.col, definition=Number(m.line, m.col, i))
            self.target.constants[m.lexeme] = Number(m.line, m.col, i)
        self.target.enums[name.lexeme] = [m.lexeme for m in members]
        return EnumDecl(line=kw.line, col=kw.col, name=name.lexeme,
                        members=[m.lexeme for m in members])

    def _parse_op(self, kw: Token) -> OpDecl:
        name = self._expect_name("micro-op name")
        params: List[str] = []
        if self._match_symbol("("):
            if not self._at_symbol(")"):
                params.append(self._parse_param(params))
                while self._match_symbol(","):
                    params.append(self._parse_param(params))
            self._expect_symbol(")")

        self._expect_symbol("{")
        body: List[FieldAssignment] = []
        if not self._at_symbol("}"):
            body.append(self._parse_assignment(self._expect_name("field name")))
            while self._match_symbol(","):
                if self._at_symbol("}"):
                    break  # trailing comma
                body.append(self._parse_assignment(self._expect_name("field name")))
        self._expect_symbol("}")

        template = OpTemplate(name.lexeme, params, body, line=name.line, col=name.col)
        self.symbols.define(name.lexeme, SymbolKind.OP, value=template,
                            line=name.line, col=name.col)
        self.target.ops[name.lexeme] = template
        return OpDecl(line=kw.line, col=kw.col, name=name.lexeme, params=params, body=body)

    def _parse_param(self, seen: List[str]) -> str:
        tok = self._expect_name("parameter name")
        if tok.lexeme in seen:
            raise ParseError("a unique parameter name", tok.describe(), tok.line, tok.col,
                             message=f"duplicate parameter {tok.lexeme!r}")
        return tok.lexeme

    # ── Opcode table ──────────────────────

    def _parse_slot_setting(self, kw: Token) -> int:
        """'phase N' or 'opsize N'; both must precede every header and opcode block."""
        num = self._expect(TokenKind.NUMBER, f"{kw.lexeme} bit count")
        if self._first_block is not None:
            raise ParseError(f"{kw.lexeme} before the first header or opcode block",
                             kw.lexeme, kw.line, kw.col,
                             message=f"{kw.lexeme} must be declared before the first "
                                     f"header or opcode block")
        current = getattr(self.target, kw.lexeme)
        if current is not None and current != num.value:
            raise ParseError(f"a single {kw.lexeme} declaration", f"{kw.lexeme} {num.value}",
                             kw.line, kw.col,
                             message=f"{kw.lexeme} already declared as {current}")
        setattr(self.target, kw.lexeme, num.value)
        return num.value

    def _parse_phase(self, kw: Token) -> PhaseDecl:
        return PhaseDecl(line=kw.line, col=kw.col, phase=self._parse_slot_setting(kw))

    def _parse_opsize(self, kw: Token) -> OpsizeDecl:
        return OpsizeDecl(line=kw.line, col=kw.col, opsize=self._parse_slot_setting(kw))

    def _enter_block(self, kw: Token, what: str) -> int:
        """Common checks for header and opcode blocks; returns the slot size."""
        if self._seen_code:
            raise ParseError("no instructions outside opcode blocks", kw.describe(),
                             kw.line, kw.col,
                             message="instructions outside opcode blocks cannot be "
                                     "mixed with header or opcode blocks")
        if self.target.phase is None:
            raise ParseError("a phase declaration", kw.describe(), kw.line, kw.col,
                             message=f"'phase' must be declared before {what}")
        if self._first_block is None:
            self._first_block = kw
        return 1 << self.target.phase

    def _parse_header(self, kw: Token) -> HeaderDecl:
        size = self._enter_block(kw, "a header block")
        if self._header is not None:
            first = self._header
            raise ParseError("a single header block", "header", kw.line, kw.col,
                             message=f"only one header block is allowed "
                                     f"(first at L{first.line}:{first.col})")
        if self._slots:
            raise ParseError("header before the first opcode block", "header",
                             kw.line, kw.col,
                             message="the header block must come before the first "
                                     "opcode block")
        lines = self._parse_block(0, "a header block", labels_allowed=False)
        if len(lines) > size:
            raise ParseError(f"at most {size} line(s)", f"{len(lines)} lines",
                             kw.line, kw.col,
                             message=f"header has {len(lines)} lines, the maximum "
                                     f"is {size}")
        self._header = HeaderDecl(line=kw.line, col=kw.col, lines=lines)
        return self._header

    def _parse_opcode(self, kw: Token) -> OpcodeDecl:
        size = self._enter_block(kw, "an opcode block")
        number = self._expect(TokenKind.NUMBER, "opcode number").value
        name = self._expect_name("opcode name")
        params: List[Tuple[Token, Token]] = []
        if self._match_symbol("("):
            if not self._at_symbol(")"):
                params.append(self._parse_opcode_param(params))
                while self._match_symbol(","):
                    params.append(self._parse_opcode_param(params))
            self._expect_symbol(")")

        members = [self._enum_members(enum) for _, enum in params]
        widths = [max(1, (len(m) - 1).bit_length()) for m in members]
        param_bits = sum(widths)
        opsize = self.target.opsize
        if opsize is not None and number.bit_length() + param_bits > opsize:
            needed = number.bit_length() + param_bits
            raise ParseError(f"at most {opsize} opcode bit(s)", f"{needed} bit(s)",
                             name.line, name.col,
                             message=f"opcode {name.lexeme!r} needs {needed} bit(s), "
                                     f"opsize is {opsize}")

        header = self._header.lines if self._header is not None else []
        base = self.module.origin + (number << param_bits) * size
        self.symbols.define(name.lexeme, SymbolKind.LABEL, value=base,
                            line=name.line, col=name.col)
        body = self._parse_block(base + len(header), f"opcode {name.lexeme!r}",
                                 labels_allowed=not params)
        if len(header) + len(body) > size:
            raise ParseError(f"at most {size} line(s)", f"{len(header) + len(body)} lines",
                             name.line, name.col,
                             message=f"opcode {name.lexeme!r} has {len(body)} lines after "
                                     f"a {len(header)}-line header, the maximum is "
                                     f"{size - len(header)}")

        # One copy of header + body per combination of parameter values
        combos = itertools.product(*(range(len(m)) for m in members))
        for index, combo in enumerate(combos):
            slot = number
            for value, width in zip(combo, widths):
                slot = (slot << width) | value
            bindings = {p.lexeme: Number(p.line, p.col, value)
                        for (p, _), value in zip(params, combo)}
            self._place(name, slot, size, header + body, bindings, first=index == 0)

        return OpcodeDecl(line=kw.line, col=kw.col, opcode=number, name=name.lexeme,
                          params=[(p.lexeme, e.lexeme) for p, e in params], lines=body)

    def _parse_opcode_param(self, seen: List[Tuple[Token, Token]]) -> Tuple[Token, Token]:
        """name ':' ENUM"""
        tok = self._expect_name("parameter name")
        if any(p.lexeme == tok.lexeme for p, _ in seen):
            raise ParseError("a unique parameter name", tok.describe(), tok.line, tok.col,
                             message=f"duplicate parameter {tok.lexeme!r}")
        self._expect_symbol(":")
        return tok, self._expect_name("enum name")

    def _enum_members(self, tok: Token) -> List[str]:
        entry = self.symbols.lookup(tok.lexeme)
        if entry is None:
            raise UndefinedSymbolError(tok.lexeme, tok.line, tok.col,
                                       message=f"undefined enum {tok.lexeme!r}")
        if entry.kind is not SymbolKind.ENUM:
            raise UndefinedSymbolError(
                tok.lexeme, tok.line, tok.col,
                message=f"{tok.lexeme!r} is a {entry.kind.value}, not an enum")
        return entry.value

    def _place(self, name: Token, slot: int, size: int,
               lines: List[ProvisionalInstruction], bindings: Dict[str, Expression],
               first: bool):
        prior = self._slots.get(slot)
        if prior is not None:
            raise ParseError("an unused opcode slot", f"slot {slot}", name.line, name.col,
                             message=f"opcode slot {slot} is already used by {prior!r}")
        self._slots[slot] = name.lexeme
        base = self.module.origin + slot * size
        for i, line in enumerate(lines):
            labels = ([name.lexeme] if first and i == 0 else []) + line.labels
            self._opcode_lines.append(
                replace(line, address=base + i, labels=labels, bindings=bindings))

    def _layout_opcode_table(self):
        """Order opcode lines by address; unused words hold field defaults."""
        size = 1 << self.target.phase
        if self.target.opsize is not None:
            slots = 1 << self.target.opsize
        else:
            slots = max(self._slots, default=-1) + 1
        placed = {inst.address: inst for inst in self._opcode_lines}
        at = self._first_block
        origin = self.module.origin
        for address in range(origin, origin + slots * size):
            inst = placed.get(address)
            if inst is None:
                inst = ProvisionalInstruction(line=at.line, col=at.col, address=address)
            self.module.instructions.append(inst)
        logger.debug("Opcode table: %d of %d slot(s) used, %d word(s) per slot",
                     len(self._slots), slots, size)

    # ── Instructions ──────────────────────

    def _parse_instruction(self):
        if self._first_block is not None:
            tok = self._cur()
            raise ParseError("a header or opcode block", tok.describe(), tok.line, tok.col,
                             message="instructions outside opcode blocks cannot be "
                                     "mixed with header or opcode blocks")
        self._seen_code = True
        inst = self._parse_line(self.module.origin + len(self.module.instructions))
        if inst is not None:
            self.module.instructions.append(inst)

    def _parse_block(self, first_address: int, where: str,
                     labels_allowed: bool = True) -> List[ProvisionalInstruction]:
        """'{' line* '}' where each line is one control word."""
        self._expect_symbol("{")
        lines: List[ProvisionalInstruction] = []
        while not self._at_symbol("}"):
            self._check_cancel()
            if self._match_symbol(";"):
                continue
            lines.append(self._parse_line(first_address + len(lines), where, labels_allowed))
        self._advance()  # '}'
        return lines

    def _parse_line(self, address: int, where: Optional[str] = None,
                    labels_allowed: bool = True) -> Optional[ProvisionalInstruction]:
        first = self._cur()

        labels: List[str] = []
        while self._at(TokenKind.IDENTIFIER) and self._peek(1).is_symbol(":"):
            tok = self._advance()
            self._advance()  # ':'
            if not labels_allowed:
                raise ParseError("an instruction", f"label {tok.lexeme!r}",
                                 tok.line, tok.col,
                                 message=f"labels are not allowed in {where}")
            self.symbols.define(tok.lexeme, SymbolKind.LABEL, value=address,
                                line=tok.line, col=tok.col)
            labels.append(tok.lexeme)

        if not self._at(TokenKind.IDENTIFIER):
            if where is not None:
                raise self._error("an instruction")
            # Labels with nothing after them bind to the next address
            return None

        parts = self._parse_part()
        while self._match_symbol("|"):
            parts.extend(self._parse_part())
        self._match_symbol(";")

        return ProvisionalInstruction(line=first.line, col=first.col, address=address,
                                      labels=labels, parts=parts)

    def _parse_part(self) -> List[InstructionPart]:
        name = self._expect_name("field name or micro-op")
        if self._at_symbol("=", "["):
            parts: List[InstructionPart] = [self._parse_assignment(name)]
            while self._match_symbol(","):
                parts.append(self._parse_assignment(self._expect_name("field name")))
            return parts
        return [self._parse_op_call(name)]

    def _parse_assignment(self, name: Token) -> FieldAssignment:
        slice_hi = slice_lo = None
        if self._at_symbol("["):
            slice_hi, slice_lo = self._parse_bit_range()
            if slice_hi < slice_lo:
                raise FieldWidthError(f"invalid slice [{slice_hi}:{slice_lo}] of "
                                      f"field {name.lexeme!r}", name.line, name.col)
        self._expect_symbol("=")
        expr = self._parse_expr()
        return FieldAssignment(line=name.line, col=name.col, field=name.lexeme,
                               expr=expr, slice_hi=slice_hi, slice_lo=slice_lo)

    def _parse_op_call(self, name: Token) -> OpCall:
        args: List[Expression] = []
        if self._starts_expr() and self._cur().line == name.line:
            args.append(self._parse_expr())
            while self._match_symbol(","):
                args.append(self._parse_expr())
        return OpCall(line=name.line, col=name.col, name=name.lexeme, args=args)

    # ── Expressions ─────────────────────────

    def _starts_expr(self) -> bool:
        tok = self._cur()
        return (tok.kind in (TokenKind.NUMBER, TokenKind.IDENTIFIER)
                or tok.is_symbol("(", "-"))

    def _parse_expr(self) -> Expression:
        left = self._parse_additive()
        while self._at_symbol("<<", ">>"):
            op = self._advance()
            right = self._parse_additive()
            left = BinaryOp(line=op.line, col=op.col, op=op.lexeme, left=left, right=right)
        return left

    def _parse_additive(self) -> Expression:
        left = self._parse_unary()
        while self._at_symbol("+", "-"):
            op = self._advance()
            right = self._parse_unary()
            left = BinaryOp(line=op.line, col=op.col, op=op.lexeme, left=left, right=right)
        return left

    def _parse_unary(self) -> Expression:
        if self._at_symbol("-"):
            op = self._advance()
            return Negate(line=op.line, col=op.col, operand=self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self) -> Expression:
        tok = self._cur()
        if tok.kind is TokenKind.NUMBER:
            self._advance()
            return Number(line=tok.line, col=tok.col, value=tok.value)
        if tok.kind is TokenKind.IDENTIFIER:
            self._advance()
            return SymbolRef(line=tok.line, col=tok.col, name=tok.lexeme)
        if tok.is_symbol("("):
            self._advance()
            expr = self._parse_expr()
            self._expect_symbol(")")
            return expr
        raise self._error("an expression")


def parse_expression(text: str) -> Expression:
    """Parse a standalone expression string (used for JSON target files)."""
    parser = Parser(tokenize_string(text))
    expr = parser._parse_expr()
    if not parser._at(TokenKind.EOF):
        raise parser._error("end of expression")
    return expr
