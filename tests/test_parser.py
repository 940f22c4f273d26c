"""
Pass 1 tests: declarations, instructions, labels and syntax errors.
"""

import pytest
from microcode_compiler.ast_nodes import (
    BinaryOp, FieldAssignment, Negate, Number, OpCall, SymbolRef,
)
from microcode_compiler.errors import (
    DuplicateSymbolError, FieldWidthError, LexError, ParseError, UndefinedSymbolError,
)
from microcode_compiler.lexer import tokenize_string
from microcode_compiler.parser import Parser, parse_expression
from microcode_compiler.symbols import SymbolKind
from microcode_compiler.target import load_target


def _parser(src: str, target=None) -> Parser:
    p = Parser(tokenize_string(src), target=load_target(target))
    p.parse_module()
    return p


# ─── Declarations ─────────────────────────

class TestDeclarations:
    def test_width_and_fields(self):
        p = _parser("width 16\nfield OP[15:12]\nfield IMM[7:0] = 3\nfield FLAG[8]")
        assert p.target.width == 16
        assert (p.target.fields["OP"].hi, p.target.fields["OP"].lo) == (15, 12)
        assert p.target.fields["IMM"].default.value == 3
        assert (p.target.fields["FLAG"].hi, p.target.fields["FLAG"].lo) == (8, 8)
        assert p.symbols.lookup("OP").kind is SymbolKind.FIELD

    def test_const_keeps_expression(self):
        p = _parser("const BASE = 0x10 + 2")
        entry = p.symbols.lookup("BASE")
        assert entry.kind is SymbolKind.CONSTANT
        assert not entry.resolved
        assert isinstance(entry.definition, BinaryOp)

    def test_enum_members_number_from_zero(self):
        p = _parser("enum COND { ALWAYS, ZERO, CARRY, }")
        assert p.symbols.lookup("COND").kind is SymbolKind.ENUM
        assert [p.symbols.lookup(m).value for m in ("ALWAYS", "ZERO", "CARRY")] == [0, 1, 2]

    def test_op_template(self):
        p = _parser("op MOVE(d, s) { DEST = d, SRC = s, ALU = 0 }")
        op = p.target.ops["MOVE"]
        assert op.params == ["d", "s"]
        assert [a.field for a in op.body] == ["DEST", "SRC", "ALU"]
        assert p.symbols.lookup("MOVE").kind is SymbolKind.OP

    def test_op_without_params(self):
        p = _parser("op NOP {}")
        assert p.target.ops["NOP"].arity == 0

    def test_org_sets_origin(self):
        p = _parser("org 0x40\nA: X = 1\nB: X = 2")
        assert p.module.origin == 0x40
        assert p.symbols.labels() == {"A": 0x40, "B": 0x41}

    def test_semicolons_optional(self):
        p = _parser("width 8; field X[7:0];; X = 1;")
        assert len(p.module.instructions) == 1
        assert len(p.module.declarations) == 2


# ─── Instructions ─────────────────────────

class TestInstructions:
    def test_assignments_and_calls(self):
        p = _parser("ALU = 1, ADDR[3:0] = 5 | JMP LOOP")
        inst = p.module.instructions[0]
        assert isinstance(inst.parts[0], FieldAssignment)
        assert inst.parts[1].field == "ADDR"
        assert (inst.parts[1].slice_hi, inst.parts[1].slice_lo) == (3, 0)
        assert isinstance(inst.parts[2], OpCall)
        assert inst.parts[2].args[0].name == "LOOP"

    def test_several_labels_on_one_instruction(self):
        p = _parser("A: B: X = 1\nX = 2")
        assert p.module.instructions[0].labels == ["A", "B"]
        assert p.symbols.labels() == {"A": 0, "B": 0}

    def test_trailing_label_binds_to_next_address(self):
        p = _parser("X = 1\nEND:")
        assert len(p.module.instructions) == 1
        assert p.symbols.labels()["END"] == 1

    def test_first_operand_must_share_the_line(self):
        p = _parser("RET\nLOOP: X = 1")
        first = p.module.instructions[0].parts[0]
        assert isinstance(first, OpCall)
        assert first.args == []
        assert len(p.module.instructions) == 2

    def test_operand_list_may_continue_after_comma(self):
        p = _parser("ADD 1,\n  2, 3")
        assert len(p.module.instructions[0].parts[0].args) == 3

    def test_addresses_follow_source_order(self):
        p = _parser("X = 1\nX = 2\nX = 3")
        assert [i.address for i in p.module.instructions] == [0, 1, 2]

    def test_instruction_position(self):
        p = _parser("\n  L: X = 1")
        inst = p.module.instructions[0]
        assert (inst.line, inst.col) == (2, 3)


# ─── Expressions ──────────────────────────

class TestExpressions:
    def test_shift_binds_looser_than_add(self):
        expr = parse_expression("1 + 2 << 3")
        assert isinstance(expr, BinaryOp) and expr.op == "<<"
        assert expr.left.op == "+"
        assert expr.right.value == 3

    def test_parentheses_and_negation(self):
        expr = parse_expression("-(A - 1)")
        assert isinstance(expr, Negate)
        assert isinstance(expr.operand, BinaryOp)
        assert isinstance(expr.operand.left, SymbolRef)
        assert isinstance(expr.operand.right, Number)

    def test_unclosed_paren(self):
        with pytest.raises(ParseError):
            parse_expression("(1 + 2")

    def test_trailing_tokens(self):
        with pytest.raises(ParseError) as exc:
            parse_expression("1 2")
        assert exc.value.expected == "end of expression"


# ─── Syntax errors ────────────────────────

class TestSyntaxErrors:
    def test_missing_bracket(self):
        with pytest.raises(ParseError) as exc:
            _parser("field ALU[31:28 = 1")
        err = exc.value
        assert err.expected == "']'"
        assert err.found == "symbol '='"
        assert (err.line, err.col) == (1, 17)

    def test_missing_assignment_value(self):
        with pytest.raises(ParseError) as exc:
            _parser("ALU =\n")
        assert exc.value.found == "end of input"

    def test_statement_cannot_start_with_number(self):
        with pytest.raises(ParseError):
            _parser("42")

    def test_keyword_as_name(self):
        with pytest.raises(ParseError) as exc:
            _parser("const width = 3")
        assert "keyword 'width'" in exc.value.message

    def test_org_after_instruction(self):
        with pytest.raises(ParseError):
            _parser("X = 1\norg 4")

    def test_org_after_label(self):
        with pytest.raises(ParseError):
            _parser("L:\norg 4")

    def test_org_twice(self):
        with pytest.raises(ParseError):
            _parser("org 1\norg 2")

    def test_width_redeclared(self):
        with pytest.raises(ParseError):
            _parser("width 8\nwidth 16")

    def test_same_width_twice_is_fine(self):
        assert _parser("width 8\nwidth 8").target.width == 8

    def test_width_redeclared_against_target(self):
        with pytest.raises(ParseError):
            _parser("width 16", target="basic32")

    def test_zero_width(self):
        with pytest.raises(FieldWidthError):
            _parser("width 0")

    def test_inverted_field_range(self):
        with pytest.raises(FieldWidthError):
            _parser("field X[0:7]")

    def test_inverted_slice(self):
        with pytest.raises(FieldWidthError):
            _parser("X[0:3] = 1")

    def test_duplicate_parameter(self):
        with pytest.raises(ParseError):
            _parser("op BAD(a, a) {}")

    def test_lex_error_surfaces_through_parser(self):
        with pytest.raises(LexError):
            _parser("X = 1 # 2")


# ─── Duplicate symbols ────────────────────

class TestDuplicateSymbols:
    def test_label_twice(self):
        with pytest.raises(DuplicateSymbolError) as exc:
            _parser("L: X = 1\nL: X = 2")
        assert exc.value.symbol == "L"
        assert (exc.value.line, exc.value.col) == (2, 1)
        assert "L1:1" in exc.value.message

    def test_label_clashes_with_const(self):
        with pytest.raises(DuplicateSymbolError):
            _parser("const L = 1\nL: X = 1")

    def test_source_cannot_redefine_target_field(self):
        with pytest.raises(DuplicateSymbolError) as exc:
            _parser("field ALU[3:0]", target="basic32")
        assert "target description" in exc.value.message

    def test_enum_member_clashes(self):
        with pytest.raises(DuplicateSymbolError):
            _parser("enum R { A, B }\nconst B = 4")


# ─── Opcode table ─────────────────────────

OPCODES = (
    "width 8\n"
    "field OP[7:4]\n"
    "field ARG[3:0]\n"
    "enum R { R0, R1 }\n"
    "phase 1\n"
    "opsize 3\n"
    "header { OP = 1 }\n"
    "opcode 0 NOP { OP = 0 }\n"
    "opcode 1 LD(r: R) { ARG = r }\n"
    "opcode 7 HALT { OP = 15, ARG = 15 }\n"
)


class TestOpcodeTable:
    def test_slots_and_labels(self):
        p = _parser(OPCODES)
        assert (p.target.phase, p.target.opsize) == (1, 3)
        assert len(p.module.instructions) == 16
        assert [i.address for i in p.module.instructions] == list(range(16))
        assert p.symbols.lookup("NOP").value == 0
        assert p.symbols.lookup("LD").value == 4
        assert p.symbols.lookup("HALT").value == 14

    def test_header_starts_every_slot(self):
        p = _parser(OPCODES)
        for address in (0, 4, 6, 14):
            inst = p.module.instructions[address]
            assert inst.line == 7
            assert [part.field for part in inst.parts] == ["OP"]

    def test_parameter_variants(self):
        p = _parser(OPCODES)
        assert p.module.instructions[5].bindings["r"].value == 0
        assert p.module.instructions[7].bindings["r"].value == 1
        assert p.module.instructions[4].labels == ["LD"]
        assert p.module.instructions[6].labels == []

    def test_unused_slots_are_empty(self):
        p = _parser(OPCODES)
        for address in (2, 3, 8, 13):
            assert p.module.instructions[address].parts == []

    def test_table_size_without_opsize(self):
        p = _parser("phase 0\nopcode 3 A { X = 1 }")
        assert len(p.module.instructions) == 4

    def test_origin(self):
        p = _parser("org 0x100\nphase 1\nopcode 1 A { X = 1 }")
        assert p.symbols.lookup("A").value == 0x102
        assert p.module.instructions[0].address == 0x100

    def test_labels_inside_opcode(self):
        p = _parser("phase 1\nopcode 2 A { X = 1\nL: X = 2 }")
        assert p.symbols.lookup("A").value == 4
        assert p.symbols.lookup("L").value == 5
        assert p.module.instructions[5].labels == ["L"]

    def test_duplicate_header(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 1\nheader { X = 1 }\nheader { X = 2 }")
        assert (exc.value.line, exc.value.col) == (3, 1)
        assert "first at L2:1" in exc.value.message

    def test_header_too_long(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 1\nheader { X = 1\nX = 2\nX = 3 }")
        assert exc.value.message == "header has 3 lines, the maximum is 2"

    def test_opcode_too_long(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 1\nheader { X = 1 }\nopcode 0 A { X = 1\nX = 2 }")
        assert "the maximum is 1" in exc.value.message

    def test_phase_required(self):
        with pytest.raises(ParseError) as exc:
            _parser("opcode 0 A { X = 1 }")
        assert "'phase' must be declared" in exc.value.message

    def test_opsize_exceeded(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 0\nopsize 2\nopcode 4 A { X = 1 }")
        assert "needs 3 bit(s), opsize is 2" in exc.value.message

    def test_slot_used_twice(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 0\nenum R { R0, R1 }\n"
                    "opcode 1 LD(r: R) { X = r }\nopcode 2 ST { X = 1 }")
        assert "slot 2 is already used by 'LD'" in exc.value.message

    @pytest.mark.parametrize("src", [
        "phase 0\nX = 1\nopcode 0 A { X = 1 }",
        "phase 0\nopcode 0 A { X = 1 }\nX = 1",
        "phase 0\nL:\nheader { X = 1 }",
    ])
    def test_free_instructions_cannot_mix(self, src):
        with pytest.raises(ParseError) as exc:
            _parser(src)
        assert "cannot be mixed" in exc.value.message

    def test_no_labels_in_header(self):
        with pytest.raises(ParseError) as exc:
            _parser("phase 1\nheader { L: X = 1 }")
        assert "labels are not allowed in a header block" in exc.value.message

    def test_header_after_opcode(self):
        with pytest.raises(ParseError):
            _parser("phase 0\nopcode 0 A { X = 1 }\nheader { X = 2 }")

    @pytest.mark.parametrize("src", [
        "phase 0\nopcode 0 A { X = 1 }\norg 4",
        "phase 0\nopcode 0 A { X = 1 }\nopsize 4",
        "phase 0\nheader { X = 1 }\nphase 0",
    ])
    def test_settings_come_first(self, src):
        with pytest.raises(ParseError):
            _parser(src)

    def test_parameter_must_be_enum(self):
        with pytest.raises(UndefinedSymbolError) as exc:
            _parser("phase 0\nconst K = 1\nopcode 0 A(p: K) { X = p }")
        assert exc.value.message == "'K' is a constant, not an enum"

    def test_opcode_name_is_a_label(self):
        with pytest.raises(DuplicateSymbolError):
            _parser("phase 0\nconst A = 1\nopcode 0 A { X = 1 }")
