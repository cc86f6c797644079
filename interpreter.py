from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Union

from channels import InputChannel, OutputChannel
from errors import ExitSignal, InternalError, IPPRuntimeError
from extensions import HookRegistry, RuntimeServices, StepContext, build_default_services
from frames import UNINITIALIZED, FrameSet, Value
from loader import XMLLoader
from opcodes import OpcodeTable
from program import Instruction, LabelTable, Literal, Operand, Program, ProgramBuilder, TypeLiteral, VarRef


STATE_RUNNING = "running"
STATE_HALTED = "halted"

# Number of step records kept for tracebacks.
DEFAULT_HISTORY = 1000


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    pointer: int
    order: int
    statement: str
    call_depth: int
    env_snapshot: Optional[Dict[str, Any]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        pointer: int,
        instruction: Instruction,
        call_depth: int,
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, Any]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            pointer=pointer,
            order=instruction.order,
            statement=instruction.statement,
            call_depth=call_depth,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


class Interpreter:
    """Executes an IPPcode24 program.

    All run state (frames, label table, call and data stacks, instruction
    pointer) lives on the instance, so separate instances never interfere.
    ``run()`` returns the exit code once the program falls off its end or
    executes EXIT; any interpreter error propagates as an ``IPPError``.
    """

    def __init__(
        self,
        *,
        source: Union[str, bytes, None] = None,
        program: Optional[Program] = None,
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_channel: Optional[InputChannel] = None,
        stdout: Optional[OutputChannel] = None,
        stderr: Optional[OutputChannel] = None,
    ) -> None:
        if source is None and program is None:
            raise ValueError("Interpreter needs either source or program")
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_channel = input_channel or InputChannel()
        self.stdout = stdout or OutputChannel()
        self.stderr = stderr or OutputChannel(sys.stderr)
        self.opcodes = OpcodeTable()

        self.program: Optional[Program] = program
        self.labels: Optional[LabelTable] = None
        self.frames = FrameSet()
        self.call_stack: List[int] = []
        self.data_stack: List[Value] = []
        self.pointer = 0
        self.executed_count = 0
        self.exit_code: Optional[int] = None
        self.current: Optional[Instruction] = None
        self._next_pointer: Optional[int] = None
        self.logger = StateLogger(verbose=verbose)

    @property
    def state(self) -> str:
        return STATE_RUNNING if self.exit_code is None else STATE_HALTED

    @property
    def instructions(self) -> List[Instruction]:
        assert self.program is not None
        return self.program.instructions

    def parse(self) -> Program:
        assert self.source is not None
        raw = XMLLoader(self.source, self.filename).load()
        return ProgramBuilder().build(raw)

    def prepare(self) -> None:
        """Decode the source if needed and build the label table."""
        if self.labels is not None:
            return
        if self.program is None:
            self.program = self.parse()
        self.labels = LabelTable(self.program.instructions)

    def run(self) -> int:
        self.prepare()
        self._emit_event("program_start", self, self.program)
        try:
            while self.step():
                pass
        except IPPRuntimeError as error:
            if error.step_index is None and self.logger.last_entry is not None:
                error.step_index = self.logger.last_entry.step_index
            self._emit_event("on_error", self, error)
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions so callers can format them.
            wrapped = InternalError(f"Internal interpreter error: {exc}", instruction=self.current)
            if self.logger.last_entry is not None:
                wrapped.step_index = self.logger.last_entry.step_index
            self._emit_event("on_error", self, wrapped)
            raise wrapped from exc
        assert self.exit_code is not None
        self._emit_event("program_end", self, self.exit_code)
        return self.exit_code

    def step(self) -> bool:
        """Execute one instruction; return False once the engine has halted."""
        if self.exit_code is not None:
            return False
        self.prepare()
        instructions = self.instructions
        if self.pointer >= len(instructions):
            self.exit_code = 0
            return False

        instruction = instructions[self.pointer]
        self.current = instruction
        self._next_pointer = None
        self._log_step(instruction)
        self._emit_event("before_instruction", self, instruction)
        try:
            self.opcodes.invoke(self, instruction)
        except ExitSignal as sig:
            self.executed_count += 1
            self.exit_code = sig.code
            self._emit_event("after_instruction", self, instruction)
            return False
        except IPPRuntimeError as error:
            if error.instruction is None:
                error.instruction = instruction
            raise
        self.executed_count += 1
        self.pointer = self.pointer + 1 if self._next_pointer is None else self._next_pointer
        self._emit_event("after_instruction", self, instruction)
        return True

    # Control flow
    def jump_to(self, index: int) -> None:
        self._next_pointer = index

    # Argument resolution
    def resolve(self, operand: Operand) -> Value:
        if isinstance(operand, Literal):
            return operand.value
        if isinstance(operand, TypeLiteral):
            return operand.value
        if isinstance(operand, VarRef):
            return self.frames.lookup(operand.frame, operand.name)
        raise InternalError(f"Unsupported operand {operand!r}", instruction=self.current)

    def type_of(self, operand: Operand) -> str:
        """Type name of an operand; an uninitialized variable has the empty type name."""
        if isinstance(operand, VarRef):
            slot = self.frames.get(operand.frame).slot(operand.name)
            return "" if slot is UNINITIALIZED else slot.type
        return self.resolve(operand).type

    def check_target(self, target: VarRef) -> None:
        self.frames.get(target.frame).slot(target.name)

    def store(self, target: VarRef, value: Value) -> None:
        self.check_target(target)
        self.frames.assign(target.frame, target.name, value)

    # Diagnostics
    def frame_snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {"GF": self.frames.global_frame.snapshot()}
        snapshot["LF"] = [frame.snapshot() for frame in self.frames.local_frames]
        temporary = self.frames.temporary_frame
        snapshot["TF"] = None if temporary is None else temporary.snapshot()
        return snapshot

    def describe_state(self) -> str:
        order = self.current.order if self.current is not None else None
        lines = [
            f"BREAK at instruction {self.pointer} (order {order})",
            f"  executed instructions: {self.executed_count}",
            f"  call stack: {self.call_stack}",
            f"  data stack: [{', '.join(str(v) for v in self.data_stack)}]",
        ]
        snapshot = self.frame_snapshot()
        lines.append(f"  GF: {_render_frame(snapshot['GF'])}")
        for depth, frame in enumerate(snapshot["LF"]):
            lines.append(f"  LF[{depth}]: {_render_frame(frame)}")
        if snapshot["TF"] is None:
            lines.append("  TF: <undefined>")
        else:
            lines.append(f"  TF: {_render_frame(snapshot['TF'])}")
        return "\n".join(lines) + "\n"

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except IPPRuntimeError:
            raise
        except Exception as exc:
            raise InternalError(f"Extension hook '{event}' failed: {exc}", instruction=self.current)

    def _log_step(self, instruction: Instruction) -> None:
        env_snapshot = self.frame_snapshot() if self.verbose else None
        entry = self.logger.record(
            pointer=self.pointer,
            instruction=instruction,
            call_depth=len(self.call_stack),
            env_snapshot=env_snapshot,
            rewrite_record={"rule": instruction.opcode.value},
        )

        # Run extension step rules (every N steps) after recording.
        try:
            self.hook_registry.after_step(
                self,
                StepContext(step_index=entry.step_index, order=instruction.order, opcode=instruction.opcode.value, extra=None),
            )
        except IPPRuntimeError:
            raise
        except Exception as exc:
            raise InternalError(f"Extension step rule failed: {exc}", instruction=instruction)


def _render_frame(values: Dict[str, str]) -> str:
    if not values:
        return "{}"
    return "{" + ", ".join(f"{k}={v}" for k, v in values.items()) + "}"


@dataclass
class TracebackFrame:
    name: str
    order: Optional[int]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: IPPRuntimeError) -> List[TracebackFrame]:
        interpreter = self.interpreter
        frames: List[TracebackFrame] = [TracebackFrame(name="<program>", order=None, statement=None, state_entry=None)]
        if interpreter.program is not None:
            instructions = interpreter.instructions
            for return_pointer in interpreter.call_stack:
                call_index = return_pointer - 1
                if 0 <= call_index < len(instructions):
                    call = instructions[call_index]
                    frames.append(TracebackFrame(name=call.statement, order=call.order, statement=call.statement, state_entry=None))
        failing = error.instruction if isinstance(error.instruction, Instruction) else None
        entry = interpreter.logger.last_entry
        if failing is not None:
            if entry is not None and entry.order != failing.order:
                entry = None
            frames.append(TracebackFrame(name=failing.opcode.value, order=failing.order, statement=failing.statement, state_entry=entry))
        return frames

    def format_text(self, error: IPPRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            if frame.order is not None:
                lines.append(f"  File \"{self.interpreter.filename}\", order {frame.order}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  File \"{self.interpreter.filename}\", in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    gf = _render_frame(frame.state_entry.env_snapshot["GF"])
                    lines.append(f"    Env snapshot: GF={gf}")
        lines.append(f"{error.__class__.__name__}: {error.message} (exit code {error.exit_code})")
        return "\n".join(lines)

    def to_json(self, error: IPPRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.order is not None:
                entry["source_location"] = {
                    "file": self.interpreter.filename,
                    "order": frame.order,
                    "statement": frame.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "category": error.category,
                "exit_code": error.exit_code,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
