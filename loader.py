"""Reads the XML representation of an IPPcode24 program into raw records.

Only the document shape is checked here (element names, attributes, argument
numbering). Operand contents are validated by ``program.ProgramBuilder``.
"""

from __future__ import annotations
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import StructuralError, XMLFormatError


LANGUAGE = "IPPcode24"

PROGRAM_ATTRIBUTES = {"language", "name", "description"}
INSTRUCTION_ATTRIBUTES = {"order", "opcode"}
ARG_TAG = re.compile(r"^arg([123])$")


@dataclass
class RawArgument:
    position: int
    type: str
    text: str


@dataclass
class RawInstruction:
    order: str
    opcode: str
    args: List[RawArgument] = field(default_factory=list)


@dataclass
class RawProgram:
    language: str
    name: Optional[str]
    description: Optional[str]
    instructions: List[RawInstruction]


def _blank(text: Optional[str]) -> bool:
    return text is None or text.strip() == ""


class XMLLoader:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename

    def load(self) -> RawProgram:
        try:
            root = ET.fromstring(self.text)
        except ET.ParseError as exc:
            raise XMLFormatError(f"{self.filename}: {exc}")

        if root.tag != "program":
            raise StructuralError(f"Expected root element <program>, found <{root.tag}>")
        self._check_attributes(root, PROGRAM_ATTRIBUTES, "program")
        language = root.get("language")
        if language is None or language.upper() != LANGUAGE.upper():
            raise StructuralError(f"Unsupported language '{language}', expected {LANGUAGE}")
        if not _blank(root.text):
            raise StructuralError("Unexpected text inside <program>")

        instructions: List[RawInstruction] = []
        for element in root:
            if element.tag != "instruction":
                raise StructuralError(f"Unexpected element <{element.tag}> inside <program>")
            if not _blank(element.tail):
                raise StructuralError("Unexpected text inside <program>")
            instructions.append(self._load_instruction(element))

        return RawProgram(
            language=language,
            name=root.get("name"),
            description=root.get("description"),
            instructions=instructions,
        )

    def _load_instruction(self, element: ET.Element) -> RawInstruction:
        self._check_attributes(element, INSTRUCTION_ATTRIBUTES, "instruction")
        order = element.get("order")
        opcode = element.get("opcode")
        if order is None or opcode is None:
            raise StructuralError("<instruction> requires 'order' and 'opcode' attributes")
        if not _blank(element.text):
            raise StructuralError(f"Unexpected text inside instruction {order}")

        by_position: Dict[int, RawArgument] = {}
        for child in element:
            match = ARG_TAG.match(child.tag)
            if match is None:
                raise StructuralError(f"Unexpected element <{child.tag}> in instruction {order}")
            if not _blank(child.tail):
                raise StructuralError(f"Unexpected text inside instruction {order}")
            if len(child):
                raise StructuralError(f"<{child.tag}> of instruction {order} must not have child elements")
            self._check_attributes(child, {"type"}, child.tag)
            position = int(match.group(1))
            if position in by_position:
                raise StructuralError(f"Duplicate <{child.tag}> in instruction {order}")
            arg_type = child.get("type")
            if arg_type is None:
                raise StructuralError(f"<{child.tag}> of instruction {order} has no 'type' attribute")
            text = (child.text or "").strip()
            by_position[position] = RawArgument(position=position, type=arg_type.strip(), text=text)

        positions = sorted(by_position)
        if positions != list(range(1, len(positions) + 1)):
            raise StructuralError(f"Arguments of instruction {order} are not numbered consecutively from arg1")
        return RawInstruction(order=order.strip(), opcode=opcode.strip(), args=[by_position[p] for p in positions])

    def _check_attributes(self, element: ET.Element, allowed: set, where: str) -> None:
        unknown = set(element.attrib) - allowed
        if unknown:
            names = ", ".join(sorted(unknown))
            raise StructuralError(f"Unexpected attribute(s) {names} on <{where}>")
