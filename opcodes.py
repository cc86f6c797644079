from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Tuple

from errors import (
    ExitSignal,
    InternalError,
    MissingValueError,
    OperandValueError,
    StringOperationError,
    WrongOperandTypeError,
)
from frames import (
    NIL,
    TYPE_BOOL,
    TYPE_INT,
    TYPE_NIL,
    TYPE_STRING,
    Value,
    wrap_int64,
)
from program import Instruction, LabelRef, Opcode, VarRef

if TYPE_CHECKING:
    from interpreter import Interpreter


OpcodeImpl = Callable[["Interpreter", Instruction], None]

EXIT_CODE_MIN = 0
EXIT_CODE_MAX = 9
MAX_CODE_POINT = 0x10FFFF
SURROGATES = range(0xD800, 0xE000)


@dataclass
class OpcodeRoutine:
    opcode: Opcode
    impl: OpcodeImpl


def _idiv(a: int, b: int) -> int:
    if b == 0:
        raise OperandValueError("IDIV division by zero")
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


class OpcodeTable:
    def __init__(self) -> None:
        self.table: Dict[Opcode, OpcodeRoutine] = {}
        # Frames and calls
        self._register(Opcode.MOVE, self._move)
        self._register(Opcode.CREATEFRAME, self._createframe)
        self._register(Opcode.PUSHFRAME, self._pushframe)
        self._register(Opcode.POPFRAME, self._popframe)
        self._register(Opcode.DEFVAR, self._defvar)
        self._register(Opcode.CALL, self._call)
        self._register(Opcode.RETURN, self._return)
        # Data stack
        self._register(Opcode.PUSHS, self._pushs)
        self._register(Opcode.POPS, self._pops)
        # Arithmetic, relational, boolean
        self._register_int_binary(Opcode.ADD, lambda a, b: a + b)
        self._register_int_binary(Opcode.SUB, lambda a, b: a - b)
        self._register_int_binary(Opcode.MUL, lambda a, b: a * b)
        self._register_int_binary(Opcode.IDIV, _idiv)
        self._register_relational(Opcode.LT, lambda a, b: a < b)
        self._register_relational(Opcode.GT, lambda a, b: a > b)
        self._register(Opcode.EQ, self._eq)
        self._register_bool_binary(Opcode.AND, lambda a, b: a and b)
        self._register_bool_binary(Opcode.OR, lambda a, b: a or b)
        self._register(Opcode.NOT, self._not)
        # Conversions
        self._register(Opcode.INT2CHAR, self._int2char)
        self._register(Opcode.STRI2INT, self._stri2int)
        # I/O
        self._register(Opcode.READ, self._read)
        self._register(Opcode.WRITE, self._write)
        # Strings
        self._register(Opcode.CONCAT, self._concat)
        self._register(Opcode.STRLEN, self._strlen)
        self._register(Opcode.GETCHAR, self._getchar)
        self._register(Opcode.SETCHAR, self._setchar)
        # Types
        self._register(Opcode.TYPE, self._type)
        # Control flow
        self._register(Opcode.LABEL, self._label)
        self._register(Opcode.JUMP, self._jump)
        self._register(Opcode.JUMPIFEQ, self._jumpifeq)
        self._register(Opcode.JUMPIFNEQ, self._jumpifneq)
        self._register(Opcode.EXIT, self._exit)
        # Debugging
        self._register(Opcode.DPRINT, self._dprint)
        self._register(Opcode.BREAK, self._break)

        missing = [op.value for op in Opcode if op not in self.table]
        if missing:
            raise InternalError(f"No routine registered for opcode(s): {', '.join(missing)}")

    def _register(self, opcode: Opcode, impl: OpcodeImpl) -> None:
        if opcode in self.table:
            raise InternalError(f"Opcode {opcode.value} registered twice")
        self.table[opcode] = OpcodeRoutine(opcode=opcode, impl=impl)

    def _register_int_binary(self, opcode: Opcode, func: Callable[[int, int], int]) -> None:
        def impl(interpreter: "Interpreter", instruction: Instruction) -> None:
            target, left, right = self._target_and_sources(interpreter, instruction)
            a = self._expect_int(left, opcode.value)
            b = self._expect_int(right, opcode.value)
            interpreter.store(target, Value(TYPE_INT, wrap_int64(func(a, b))))

        self._register(opcode, impl)

    def _register_relational(self, opcode: Opcode, func: Callable[[object, object], bool]) -> None:
        def impl(interpreter: "Interpreter", instruction: Instruction) -> None:
            target, left, right = self._target_and_sources(interpreter, instruction)
            if left.type != right.type:
                raise WrongOperandTypeError(f"{opcode.value} cannot compare {left.type} with {right.type}")
            if left.type not in (TYPE_INT, TYPE_BOOL, TYPE_STRING):
                raise WrongOperandTypeError(f"{opcode.value} expects int, bool or string operands, got {left.type}")
            interpreter.store(target, Value(TYPE_BOOL, bool(func(left.value, right.value))))

        self._register(opcode, impl)

    def _register_bool_binary(self, opcode: Opcode, func: Callable[[bool, bool], bool]) -> None:
        def impl(interpreter: "Interpreter", instruction: Instruction) -> None:
            target, left, right = self._target_and_sources(interpreter, instruction)
            a = self._expect_bool(left, opcode.value)
            b = self._expect_bool(right, opcode.value)
            interpreter.store(target, Value(TYPE_BOOL, func(a, b)))

        self._register(opcode, impl)

    def invoke(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        routine = self.table.get(instruction.opcode)
        if routine is None:
            raise InternalError(f"Unknown opcode '{instruction.opcode}'")
        routine.impl(interpreter, instruction)

    # Helpers
    def _target_and_sources(self, interpreter: "Interpreter", instruction: Instruction) -> Tuple[VarRef, Value, Value]:
        target, left, right = instruction.args
        assert isinstance(target, VarRef)
        interpreter.check_target(target)
        return target, interpreter.resolve(left), interpreter.resolve(right)

    def _target_and_source(self, interpreter: "Interpreter", instruction: Instruction) -> Tuple[VarRef, Value]:
        target, source = instruction.args
        assert isinstance(target, VarRef)
        interpreter.check_target(target)
        return target, interpreter.resolve(source)

    def _expect_int(self, value: Value, rule: str) -> int:
        if value.type != TYPE_INT:
            raise WrongOperandTypeError(f"{rule} expects int operands, got {value.type}")
        return value.value

    def _expect_bool(self, value: Value, rule: str) -> bool:
        if value.type != TYPE_BOOL:
            raise WrongOperandTypeError(f"{rule} expects bool operands, got {value.type}")
        return value.value

    def _expect_str(self, value: Value, rule: str) -> str:
        if value.type != TYPE_STRING:
            raise WrongOperandTypeError(f"{rule} expects string operands, got {value.type}")
        return value.value

    def _expect_index(self, text: str, index: int, rule: str) -> int:
        if not 0 <= index < len(text):
            raise StringOperationError(f"{rule} index {index} is out of range for a string of length {len(text)}")
        return index

    def values_equal(self, left: Value, right: Value, rule: str) -> bool:
        if left.type == TYPE_NIL or right.type == TYPE_NIL:
            return left.type == right.type
        if left.type != right.type:
            raise WrongOperandTypeError(f"{rule} cannot compare {left.type} with {right.type}")
        return left.value == right.value

    # Frames and calls
    def _move(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, value = self._target_and_source(interpreter, instruction)
        interpreter.store(target, value)

    def _createframe(self, interpreter: "Interpreter", _: Instruction) -> None:
        interpreter.frames.create_temporary()

    def _pushframe(self, interpreter: "Interpreter", _: Instruction) -> None:
        interpreter.frames.push_temporary_as_local()

    def _popframe(self, interpreter: "Interpreter", _: Instruction) -> None:
        interpreter.frames.pop_local_as_temporary()

    def _defvar(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (target,) = instruction.args
        assert isinstance(target, VarRef)
        interpreter.frames.declare(target.frame, target.name)

    def _call(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (label,) = instruction.args
        assert isinstance(label, LabelRef)
        index = interpreter.labels.resolve(label, instruction)
        interpreter.call_stack.append(interpreter.pointer + 1)
        interpreter.jump_to(index)

    def _return(self, interpreter: "Interpreter", _: Instruction) -> None:
        if not interpreter.call_stack:
            raise MissingValueError("RETURN with an empty call stack")
        interpreter.jump_to(interpreter.call_stack.pop())

    # Data stack
    def _pushs(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (source,) = instruction.args
        interpreter.data_stack.append(interpreter.resolve(source))

    def _pops(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (target,) = instruction.args
        assert isinstance(target, VarRef)
        interpreter.check_target(target)
        if not interpreter.data_stack:
            raise MissingValueError("POPS with an empty data stack")
        interpreter.store(target, interpreter.data_stack.pop())

    # Relational and boolean
    def _eq(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, left, right = self._target_and_sources(interpreter, instruction)
        interpreter.store(target, Value(TYPE_BOOL, self.values_equal(left, right, "EQ")))

    def _not(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, value = self._target_and_source(interpreter, instruction)
        interpreter.store(target, Value(TYPE_BOOL, not self._expect_bool(value, "NOT")))

    # Conversions
    def _int2char(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, value = self._target_and_source(interpreter, instruction)
        code = self._expect_int(value, "INT2CHAR")
        if not 0 <= code <= MAX_CODE_POINT or code in SURROGATES:
            raise StringOperationError(f"INT2CHAR: {code} is not a valid Unicode scalar value")
        interpreter.store(target, Value(TYPE_STRING, chr(code)))

    def _stri2int(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, left, right = self._target_and_sources(interpreter, instruction)
        text = self._expect_str(left, "STRI2INT")
        index = self._expect_index(text, self._expect_int(right, "STRI2INT"), "STRI2INT")
        interpreter.store(target, Value(TYPE_INT, ord(text[index])))

    # I/O
    def _read(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, type_value = self._target_and_source(interpreter, instruction)
        channel = interpreter.input_channel
        kind = type_value.value
        if kind == TYPE_INT:
            number = channel.read_int()
            value = NIL if number is None else Value(TYPE_INT, number)
        elif kind == TYPE_BOOL:
            flag = channel.read_bool()
            value = NIL if flag is None else Value(TYPE_BOOL, flag)
        elif kind == TYPE_STRING:
            text = channel.read_string()
            value = NIL if text is None else Value(TYPE_STRING, text)
        else:
            raise WrongOperandTypeError(f"READ cannot read values of type '{kind}'")
        interpreter.store(target, value)

    def _write(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (source,) = instruction.args
        interpreter.stdout.write_value(interpreter.resolve(source))

    # Strings
    def _concat(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, left, right = self._target_and_sources(interpreter, instruction)
        text = self._expect_str(left, "CONCAT") + self._expect_str(right, "CONCAT")
        interpreter.store(target, Value(TYPE_STRING, text))

    def _strlen(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, value = self._target_and_source(interpreter, instruction)
        interpreter.store(target, Value(TYPE_INT, len(self._expect_str(value, "STRLEN"))))

    def _getchar(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, left, right = self._target_and_sources(interpreter, instruction)
        text = self._expect_str(left, "GETCHAR")
        index = self._expect_index(text, self._expect_int(right, "GETCHAR"), "GETCHAR")
        interpreter.store(target, Value(TYPE_STRING, text[index]))

    def _setchar(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, left, right = self._target_and_sources(interpreter, instruction)
        current = self._expect_str(interpreter.resolve(target), "SETCHAR")
        position = self._expect_int(left, "SETCHAR")
        replacement = self._expect_str(right, "SETCHAR")
        index = self._expect_index(current, position, "SETCHAR")
        if replacement == "":
            raise StringOperationError("SETCHAR replacement string is empty")
        updated = current[:index] + replacement[0] + current[index + 1:]
        interpreter.store(target, Value(TYPE_STRING, updated))

    # Types
    def _type(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        target, source = instruction.args
        assert isinstance(target, VarRef)
        interpreter.check_target(target)
        interpreter.store(target, Value(TYPE_STRING, interpreter.type_of(source)))

    # Control flow
    def _label(self, _: "Interpreter", __: Instruction) -> None:
        return None

    def _jump(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (label,) = instruction.args
        assert isinstance(label, LabelRef)
        interpreter.jump_to(interpreter.labels.resolve(label, instruction))

    def _conditional_jump(self, interpreter: "Interpreter", instruction: Instruction, *, when_equal: bool) -> None:
        label, left, right = instruction.args
        assert isinstance(label, LabelRef)
        index = interpreter.labels.resolve(label, instruction)
        equal = self.values_equal(interpreter.resolve(left), interpreter.resolve(right), instruction.opcode.value)
        if equal == when_equal:
            interpreter.jump_to(index)

    def _jumpifeq(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        self._conditional_jump(interpreter, instruction, when_equal=True)

    def _jumpifneq(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        self._conditional_jump(interpreter, instruction, when_equal=False)

    def _exit(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (source,) = instruction.args
        code = self._expect_int(interpreter.resolve(source), "EXIT")
        if not EXIT_CODE_MIN <= code <= EXIT_CODE_MAX:
            raise OperandValueError(f"EXIT code {code} is outside {EXIT_CODE_MIN}-{EXIT_CODE_MAX}")
        raise ExitSignal(code)

    # Debugging
    def _dprint(self, interpreter: "Interpreter", instruction: Instruction) -> None:
        (source,) = instruction.args
        interpreter.stderr.write_value(interpreter.resolve(source))

    def _break(self, interpreter: "Interpreter", _: Instruction) -> None:
        interpreter.stderr.write_string(interpreter.describe_state())
