from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

import pytest

from channels import InputChannel, OutputChannel
from interpreter import Interpreter


LITERAL_TYPES = ("int", "bool", "string", "nil", "type")
FRAMES = ("GF", "LF", "TF")


def _arg_xml(position: int, opcode: str, token: str) -> str:
    prefix, sep, rest = token.partition("@")
    if sep and prefix in FRAMES:
        kind, text = "var", token
    elif sep and prefix in LITERAL_TYPES:
        kind, text = prefix, rest
    elif opcode == "READ" and position == 2:
        kind, text = "type", token
    else:
        kind, text = "label", token
    return f'<arg{position} type="{kind}">{escape(text)}</arg{position}>'


def to_xml(source: str) -> str:
    """Build program XML from one ``OPCODE arg...`` line per instruction.

    ``GF@x`` is a variable, ``int@5`` a constant, a bare word a label (or the
    type operand of READ). Orders are assigned 1, 2, 3... in line order.
    """
    parts = ['<program language="IPPcode24">']
    order = 0
    for line in source.strip().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        order += 1
        opcode, *tokens = line.split()
        args = "".join(_arg_xml(i, opcode.upper(), tok) for i, tok in enumerate(tokens, start=1))
        parts.append(f'<instruction order="{order}" opcode="{opcode}">{args}</instruction>')
    parts.append("</program>")
    return "\n".join(parts)


@dataclass
class RunResult:
    code: int
    stdout: str
    stderr: str
    interpreter: Interpreter


class Runner:
    def __init__(self) -> None:
        self.last: Optional[Interpreter] = None

    def make(self, source: str, stdin: str = "", **kwargs) -> Interpreter:
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()
        interpreter = Interpreter(
            source=to_xml(source),
            input_channel=InputChannel(io.StringIO(stdin)),
            stdout=OutputChannel(self.stdout),
            stderr=OutputChannel(self.stderr),
            **kwargs,
        )
        self.last = interpreter
        return interpreter

    def __call__(self, source: str, stdin: str = "", **kwargs) -> RunResult:
        interpreter = self.make(source, stdin, **kwargs)
        code = interpreter.run()
        return RunResult(code=code, stdout=self.stdout.getvalue(), stderr=self.stderr.getvalue(), interpreter=interpreter)


@pytest.fixture
def run() -> Runner:
    return Runner()
