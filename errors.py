from __future__ import annotations
from typing import Any, Optional


class IPPError(Exception):
    """Base class for interpreter errors."""

    exit_code = 99
    category = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParameterError(IPPError):
    exit_code = 10
    category = "parameter"


class InputFileError(IPPError):
    exit_code = 11
    category = "input file"


class OutputFileError(IPPError):
    exit_code = 12
    category = "output file"


class XMLFormatError(IPPError):
    """Raised when the source is not well-formed XML."""

    exit_code = 31
    category = "xml format"


class StructuralError(IPPError):
    """Raised for malformed programs: unexpected elements, bad operands, unknown opcodes."""

    exit_code = 32
    category = "source structure"


class IPPRuntimeError(IPPError):
    """Raised for faults detected while preparing or executing instructions."""

    def __init__(self, message: str, *, instruction: Optional[Any] = None) -> None:
        super().__init__(message)
        self.instruction = instruction
        self.step_index: Optional[int] = None


class SemanticError(IPPRuntimeError):
    exit_code = 52
    category = "semantic"


class WrongOperandTypeError(IPPRuntimeError):
    exit_code = 53
    category = "operand type"


class UndefinedVariableError(IPPRuntimeError):
    exit_code = 54
    category = "variable access"


class FrameAccessError(IPPRuntimeError):
    exit_code = 55
    category = "frame access"


class MissingValueError(IPPRuntimeError):
    """Raised when RETURN or POPS find their stack empty."""

    exit_code = 56
    category = "missing value"


class OperandValueError(IPPRuntimeError):
    exit_code = 57
    category = "operand value"


class StringOperationError(IPPRuntimeError):
    exit_code = 58
    category = "string operation"


class InternalError(IPPRuntimeError):
    exit_code = 99
    category = "internal"


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code
