import pytest

from errors import SemanticError, StructuralError
from frames import TYPE_BOOL, TYPE_INT, TYPE_NIL, TYPE_STRING, TYPE_TYPE, Value
from loader import RawArgument, RawInstruction, RawProgram
from program import (
    LabelRef,
    LabelTable,
    Literal,
    Opcode,
    ProgramBuilder,
    TypeLiteral,
    VarRef,
    decode_escapes,
    parse_int,
)


def instr(order, opcode, *args):
    return RawInstruction(
        order=str(order),
        opcode=opcode,
        args=[RawArgument(position=i, type=t, text=x) for i, (t, x) in enumerate(args, start=1)],
    )


def build(*instructions):
    return ProgramBuilder().build(RawProgram(language="IPPcode24", name=None, description=None, instructions=list(instructions)))


class TestOrdering:
    def test_sorted_by_order_with_gaps(self):
        program = build(instr(20, "BREAK"), instr(3, "CREATEFRAME"), instr(7, "PUSHFRAME"))
        assert [i.opcode for i in program.instructions] == [Opcode.CREATEFRAME, Opcode.PUSHFRAME, Opcode.BREAK]
        assert [i.index for i in program.instructions] == [0, 1, 2]
        assert [i.order for i in program.instructions] == [3, 7, 20]
        assert len(program) == 3

    def test_duplicate_order(self):
        with pytest.raises(StructuralError):
            build(instr(1, "BREAK"), instr(1, "BREAK"))

    @pytest.mark.parametrize("order", ["-1", "abc", "", "1.5", "١"])
    def test_invalid_order(self, order):
        with pytest.raises(StructuralError):
            build(instr(order, "BREAK"))


class TestOpcodes:
    def test_opcode_is_case_insensitive(self):
        program = build(instr(1, "createFrame"), instr(2, "break"))
        assert program.instructions[0].opcode is Opcode.CREATEFRAME
        assert program.instructions[1].opcode is Opcode.BREAK

    def test_unknown_opcode(self):
        with pytest.raises(StructuralError):
            build(instr(1, "HALT"))

    def test_wrong_operand_count(self):
        with pytest.raises(StructuralError):
            build(instr(1, "MOVE", ("var", "GF@x")))

    def test_operand_kinds(self):
        program = build(
            instr(1, "READ", ("var", "LF@in"), ("type", "int")),
            instr(2, "JUMPIFEQ", ("label", "end"), ("var", "TF@a"), ("nil", "nil")),
        )
        read, jump = program.instructions
        assert read.args == (VarRef("LF", "in"), TypeLiteral("int"))
        assert jump.args == (LabelRef("end"), VarRef("TF", "a"), Literal(Value(TYPE_NIL, None)))
        assert jump.statement == "JUMPIFEQ label@end TF@a nil@nil"

    @pytest.mark.parametrize(
        "args",
        [
            (("int", "1"), ("int", "2")),
            (("var", "XF@x"), ("int", "2")),
            (("var", "GF@1x"), ("int", "2")),
            (("var", "GFx"), ("int", "2")),
            (("var", "GF@x"), ("label", "x")),
            (("var", "GF@x"), ("float", "1.0")),
        ],
    )
    def test_invalid_operands(self, args):
        with pytest.raises(StructuralError):
            build(instr(1, "MOVE", *args))

    def test_invalid_label_name(self):
        with pytest.raises(StructuralError):
            build(instr(1, "LABEL", ("label", "9lives")))

    def test_read_type_must_be_readable(self):
        with pytest.raises(StructuralError):
            build(instr(1, "READ", ("var", "GF@x"), ("type", "nil")))

    def test_identifier_special_characters(self):
        program = build(instr(1, "DEFVAR", ("var", "GF@_-$&%*!?x1")))
        assert program.instructions[0].args[0] == VarRef("GF", "_-$&%*!?x1")


class TestLiterals:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("0", 0),
            ("-42", -42),
            ("+7", 7),
            ("0x1F", 31),
            ("-0x10", -16),
            ("0o17", 15),
            ("9223372036854775807", 9223372036854775807),
            ("-9223372036854775808", -9223372036854775808),
        ],
    )
    def test_parse_int(self, text, expected):
        assert parse_int(text) == expected

    @pytest.mark.parametrize("text", ["", "1_000", "12a", "0x", "9223372036854775808", "--1", " 1"])
    def test_parse_int_rejects(self, text):
        with pytest.raises(StructuralError):
            parse_int(text)

    def test_decode_escapes(self):
        assert decode_escapes(r"a\032b\092c") == "a b\\c"
        assert decode_escapes("plain") == "plain"
        assert decode_escapes(r"\010") == "\n"

    @pytest.mark.parametrize("text", [r"a\1", r"\abc", "trailing\\"])
    def test_decode_escapes_rejects(self, text):
        with pytest.raises(StructuralError):
            decode_escapes(text)

    def test_constants(self):
        program = build(
            instr(1, "PUSHS", ("int", "-3")),
            instr(2, "PUSHS", ("bool", "true")),
            instr(3, "PUSHS", ("string", r"x\035y")),
            instr(4, "PUSHS", ("string", "")),
        )
        values = [i.args[0].value for i in program.instructions]
        assert values == [
            Value(TYPE_INT, -3),
            Value(TYPE_BOOL, True),
            Value(TYPE_STRING, "x#y"),
            Value(TYPE_STRING, ""),
        ]

    def test_type_literal_as_symbol(self):
        program = build(instr(1, "PUSHS", ("type", "nil")), instr(2, "WRITE", ("type", "string")))
        assert program.instructions[0].args[0] == Literal(Value(TYPE_TYPE, "nil"))
        assert program.instructions[1].statement == "WRITE type@string"

    @pytest.mark.parametrize("arg", [("bool", "TRUE"), ("bool", "1"), ("nil", ""), ("nil", "null"), ("type", "float"), ("type", "Int")])
    def test_invalid_constants(self, arg):
        with pytest.raises(StructuralError):
            build(instr(1, "PUSHS", arg))


class TestLabels:
    def test_labels_resolve_to_instruction_index(self):
        program = build(instr(5, "BREAK"), instr(10, "LABEL", ("label", "top")))
        labels = LabelTable(program.instructions)
        assert labels.resolve(LabelRef("top")) == 1

    def test_duplicate_label(self):
        program = build(instr(1, "LABEL", ("label", "a")), instr(2, "LABEL", ("label", "a")))
        with pytest.raises(SemanticError) as info:
            LabelTable(program.instructions)
        assert info.value.instruction.order == 2

    def test_undefined_label(self):
        labels = LabelTable([])
        with pytest.raises(SemanticError):
            labels.resolve(LabelRef("missing"))
