"""Execution statistics collected through interpreter hooks.

LABEL, DPRINT and BREAK do not count as executed instructions. Variable and
stack maxima are sampled after every instruction.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from extensions import ExtensionAPI
from program import Instruction, Opcode


IPP_EXTENSION_NAME = "stats"

UNCOUNTED = frozenset({Opcode.LABEL, Opcode.DPRINT, Opcode.BREAK})

STAT_INSTS = "insts"
STAT_HOT = "hot"
STAT_VARS = "vars"
STAT_STACK = "stack"
STAT_FREQUENT = "frequent"
STAT_PRINT = "print"
STAT_EOL = "eol"


@dataclass
class StatsCollector:
    instructions: int = 0
    max_vars: int = 0
    max_stack: int = 0
    by_order: Counter = field(default_factory=Counter)
    by_opcode: Counter = field(default_factory=Counter)

    def attach(self, ext: ExtensionAPI) -> None:
        ext.metadata(name=IPP_EXTENSION_NAME, version="1.0.0")
        ext.on_event("after_instruction", self._after_instruction)

    def _after_instruction(self, interpreter: Any, instruction: Instruction) -> None:
        if instruction.opcode not in UNCOUNTED:
            self.instructions += 1
            self.by_order[instruction.order] += 1
            self.by_opcode[instruction.opcode.value] += 1
        self.max_vars = max(self.max_vars, interpreter.frames.initialized_count())
        self.max_stack = max(self.max_stack, len(interpreter.data_stack))

    def hot(self) -> Optional[int]:
        if not self.by_order:
            return None
        best = max(self.by_order.values())
        return min(order for order, count in self.by_order.items() if count == best)

    def frequent(self) -> List[str]:
        if not self.by_opcode:
            return []
        best = max(self.by_opcode.values())
        return sorted(name for name, count in self.by_opcode.items() if count == best)

    def render(self, options: Sequence[Tuple[str, Optional[str]]]) -> str:
        lines: List[str] = []
        values: Dict[str, str] = {
            STAT_INSTS: str(self.instructions),
            STAT_HOT: "" if self.hot() is None else str(self.hot()),
            STAT_VARS: str(self.max_vars),
            STAT_STACK: str(self.max_stack),
            STAT_FREQUENT: ",".join(self.frequent()),
            STAT_EOL: "",
        }
        for name, argument in options:
            if name == STAT_PRINT:
                lines.append(argument or "")
            elif name in values:
                lines.append(values[name])
            else:
                raise ValueError(f"Unknown statistic '{name}'")
        return "\n".join(lines) + "\n" if lines else ""
