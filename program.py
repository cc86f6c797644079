from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from errors import SemanticError, StructuralError
from frames import (
    FRAME_KINDS,
    INT_MAX,
    INT_MIN,
    READABLE_TYPES,
    TYPE_BOOL,
    TYPE_INT,
    TYPE_NIL,
    TYPE_STRING,
    TYPE_TYPE,
    Value,
)
from loader import RawArgument, RawInstruction, RawProgram


class Opcode(str, Enum):
    MOVE = "MOVE"
    CREATEFRAME = "CREATEFRAME"
    PUSHFRAME = "PUSHFRAME"
    POPFRAME = "POPFRAME"
    DEFVAR = "DEFVAR"
    CALL = "CALL"
    RETURN = "RETURN"
    PUSHS = "PUSHS"
    POPS = "POPS"
    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    IDIV = "IDIV"
    LT = "LT"
    GT = "GT"
    EQ = "EQ"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    INT2CHAR = "INT2CHAR"
    STRI2INT = "STRI2INT"
    READ = "READ"
    WRITE = "WRITE"
    CONCAT = "CONCAT"
    STRLEN = "STRLEN"
    GETCHAR = "GETCHAR"
    SETCHAR = "SETCHAR"
    TYPE = "TYPE"
    LABEL = "LABEL"
    JUMP = "JUMP"
    JUMPIFEQ = "JUMPIFEQ"
    JUMPIFNEQ = "JUMPIFNEQ"
    EXIT = "EXIT"
    DPRINT = "DPRINT"
    BREAK = "BREAK"


# Operand slots of an opcode signature.
ARG_VAR = "var"
ARG_SYMB = "symb"
ARG_LABEL = "label"
ARG_TYPE = "type"

_VAR_SYMB_SYMB = (ARG_VAR, ARG_SYMB, ARG_SYMB)

SIGNATURES: Dict[Opcode, Tuple[str, ...]] = {
    Opcode.MOVE: (ARG_VAR, ARG_SYMB),
    Opcode.CREATEFRAME: (),
    Opcode.PUSHFRAME: (),
    Opcode.POPFRAME: (),
    Opcode.DEFVAR: (ARG_VAR,),
    Opcode.CALL: (ARG_LABEL,),
    Opcode.RETURN: (),
    Opcode.PUSHS: (ARG_SYMB,),
    Opcode.POPS: (ARG_VAR,),
    Opcode.ADD: _VAR_SYMB_SYMB,
    Opcode.SUB: _VAR_SYMB_SYMB,
    Opcode.MUL: _VAR_SYMB_SYMB,
    Opcode.IDIV: _VAR_SYMB_SYMB,
    Opcode.LT: _VAR_SYMB_SYMB,
    Opcode.GT: _VAR_SYMB_SYMB,
    Opcode.EQ: _VAR_SYMB_SYMB,
    Opcode.AND: _VAR_SYMB_SYMB,
    Opcode.OR: _VAR_SYMB_SYMB,
    Opcode.NOT: (ARG_VAR, ARG_SYMB),
    Opcode.INT2CHAR: (ARG_VAR, ARG_SYMB),
    Opcode.STRI2INT: _VAR_SYMB_SYMB,
    Opcode.READ: (ARG_VAR, ARG_TYPE),
    Opcode.WRITE: (ARG_SYMB,),
    Opcode.CONCAT: _VAR_SYMB_SYMB,
    Opcode.STRLEN: (ARG_VAR, ARG_SYMB),
    Opcode.GETCHAR: _VAR_SYMB_SYMB,
    Opcode.SETCHAR: _VAR_SYMB_SYMB,
    Opcode.TYPE: (ARG_VAR, ARG_SYMB),
    Opcode.LABEL: (ARG_LABEL,),
    Opcode.JUMP: (ARG_LABEL,),
    Opcode.JUMPIFEQ: (ARG_LABEL, ARG_SYMB, ARG_SYMB),
    Opcode.JUMPIFNEQ: (ARG_LABEL, ARG_SYMB, ARG_SYMB),
    Opcode.EXIT: (ARG_SYMB,),
    Opcode.DPRINT: (ARG_SYMB,),
    Opcode.BREAK: (),
}

IDENTIFIER = re.compile(r"^[A-Za-z_\-$&%*!?][A-Za-z0-9_\-$&%*!?]*$")
INT_LITERAL = re.compile(r"^[+-]?(0[xX][0-9a-fA-F]+|0[oO][0-7]+|[0-9]+)$")
ESCAPE = re.compile(r"\\([0-9]{3})")
ORDER = re.compile(r"^[0-9]+$")
# Names a type literal may carry.
TYPE_NAMES = (TYPE_INT, TYPE_BOOL, TYPE_STRING, TYPE_NIL)


@dataclass(frozen=True)
class VarRef:
    frame: str
    name: str

    def __str__(self) -> str:
        return f"{self.frame}@{self.name}"


@dataclass(frozen=True)
class LabelRef:
    name: str

    def __str__(self) -> str:
        return f"label@{self.name}"


@dataclass(frozen=True)
class Literal:
    value: Value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class TypeLiteral:
    name: str

    @property
    def value(self) -> Value:
        return Value(TYPE_TYPE, self.name)

    def __str__(self) -> str:
        return f"type@{self.name}"


Operand = Union[VarRef, LabelRef, Literal, TypeLiteral]


@dataclass(frozen=True)
class Instruction:
    index: int
    order: int
    opcode: Opcode
    args: Tuple[Operand, ...]

    @property
    def statement(self) -> str:
        return " ".join([self.opcode.value, *(str(arg) for arg in self.args)])


@dataclass
class Program:
    instructions: List[Instruction]
    name: Optional[str] = None
    description: Optional[str] = None

    def __len__(self) -> int:
        return len(self.instructions)


def decode_escapes(text: str) -> str:
    r"""Replace every ``\DDD`` sequence with the character of that decimal code."""
    if "\\" not in text:
        return text
    if text.count("\\") != len(ESCAPE.findall(text)):
        raise StructuralError(f"Invalid escape sequence in string literal '{text}'")
    return ESCAPE.sub(lambda m: chr(int(m.group(1))), text)


def parse_int(text: str) -> int:
    if not INT_LITERAL.match(text):
        raise StructuralError(f"Invalid int literal '{text}'")
    sign = -1 if text.startswith("-") else 1
    digits = text.lstrip("+-").lower()
    if digits.startswith("0x"):
        number = int(digits[2:], 16)
    elif digits.startswith("0o"):
        number = int(digits[2:], 8)
    else:
        number = int(digits, 10)
    number *= sign
    if not INT_MIN <= number <= INT_MAX:
        raise StructuralError(f"Int literal '{text}' is out of the 64-bit range")
    return number


class ProgramBuilder:
    """Turns raw XML records into validated, order-sorted instructions."""

    def build(self, raw: RawProgram) -> Program:
        seen: Dict[int, RawInstruction] = {}
        for record in raw.instructions:
            order = self._parse_order(record.order)
            if order in seen:
                raise StructuralError(f"Duplicate instruction order {order}")
            seen[order] = record

        instructions: List[Instruction] = []
        for index, order in enumerate(sorted(seen)):
            instructions.append(self.build_instruction(index, order, seen[order]))
        return Program(instructions=instructions, name=raw.name, description=raw.description)

    def build_instruction(self, index: int, order: int, record: RawInstruction) -> Instruction:
        try:
            opcode = Opcode(record.opcode.upper())
        except ValueError:
            raise StructuralError(f"Unknown opcode '{record.opcode}' (order {order})")
        signature = SIGNATURES[opcode]
        if len(record.args) != len(signature):
            raise StructuralError(
                f"{opcode.value} expects {len(signature)} operand(s), got {len(record.args)} (order {order})"
            )
        args = tuple(self._build_operand(kind, arg, opcode, order) for kind, arg in zip(signature, record.args))
        return Instruction(index=index, order=order, opcode=opcode, args=args)

    def _parse_order(self, text: str) -> int:
        if not ORDER.match(text):
            raise StructuralError(f"Invalid instruction order '{text}'")
        return int(text)

    def _build_operand(self, kind: str, arg: RawArgument, opcode: Opcode, order: int) -> Operand:
        where = f"arg{arg.position} of {opcode.value} (order {order})"
        if kind == ARG_VAR:
            if arg.type != "var":
                raise StructuralError(f"{where} must be a variable, got '{arg.type}'")
            return self._parse_var(arg.text, where)
        if kind == ARG_LABEL:
            if arg.type != "label":
                raise StructuralError(f"{where} must be a label, got '{arg.type}'")
            return LabelRef(self._parse_identifier(arg.text, where))
        if kind == ARG_TYPE:
            if arg.type != "type":
                raise StructuralError(f"{where} must be a type, got '{arg.type}'")
            if arg.text not in READABLE_TYPES:
                raise StructuralError(f"{where}: invalid type name '{arg.text}'")
            return TypeLiteral(arg.text)
        # symb: a variable or a constant
        if arg.type == "var":
            return self._parse_var(arg.text, where)
        return Literal(self._parse_constant(arg.type, arg.text, where))

    def _parse_var(self, text: str, where: str) -> VarRef:
        frame, sep, name = text.partition("@")
        if not sep or frame not in FRAME_KINDS:
            raise StructuralError(f"{where}: invalid variable '{text}'")
        return VarRef(frame=frame, name=self._parse_identifier(name, where))

    def _parse_identifier(self, text: str, where: str) -> str:
        if not IDENTIFIER.match(text):
            raise StructuralError(f"{where}: invalid identifier '{text}'")
        return text

    def _parse_constant(self, arg_type: str, text: str, where: str) -> Value:
        if arg_type == TYPE_INT:
            return Value(TYPE_INT, parse_int(text))
        if arg_type == TYPE_BOOL:
            if text not in ("true", "false"):
                raise StructuralError(f"{where}: invalid bool literal '{text}'")
            return Value(TYPE_BOOL, text == "true")
        if arg_type == TYPE_STRING:
            return Value(TYPE_STRING, decode_escapes(text))
        if arg_type == TYPE_NIL:
            if text != "nil":
                raise StructuralError(f"{where}: invalid nil literal '{text}'")
            return Value(TYPE_NIL, None)
        if arg_type == TYPE_TYPE:
            if text not in TYPE_NAMES:
                raise StructuralError(f"{where}: invalid type name '{text}'")
            return Value(TYPE_TYPE, text)
        raise StructuralError(f"{where}: invalid operand type '{arg_type}'")


class LabelTable:
    def __init__(self, instructions: Iterable[Instruction]) -> None:
        self.labels: Dict[str, int] = {}
        for instruction in instructions:
            if instruction.opcode is not Opcode.LABEL:
                continue
            label = instruction.args[0]
            assert isinstance(label, LabelRef)
            if label.name in self.labels:
                raise SemanticError(f"Label '{label.name}' is defined more than once", instruction=instruction)
            self.labels[label.name] = instruction.index

    def resolve(self, label: LabelRef, instruction: Optional[Instruction] = None) -> int:
        try:
            return self.labels[label.name]
        except KeyError:
            raise SemanticError(f"Undefined label '{label.name}'", instruction=instruction)
