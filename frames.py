from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import numpy as np

from errors import FrameAccessError, InternalError, SemanticError, UndefinedVariableError


TYPE_INT = "int"
TYPE_BOOL = "bool"
TYPE_STRING = "string"
TYPE_NIL = "nil"
TYPE_TYPE = "type"

# Type names accepted by READ and produced by TYPE.
READABLE_TYPES = (TYPE_INT, TYPE_BOOL, TYPE_STRING)

FRAME_GLOBAL = "GF"
FRAME_LOCAL = "LF"
FRAME_TEMPORARY = "TF"
FRAME_KINDS = (FRAME_GLOBAL, FRAME_LOCAL, FRAME_TEMPORARY)

INT64 = np.iinfo(np.int64)
INT_MIN = int(INT64.min)
INT_MAX = int(INT64.max)
_U64_MASK = (1 << 64) - 1


def wrap_int64(number: int) -> int:
    """Reduce an arbitrary Python int to the two's-complement int64 range."""
    if INT_MIN <= number <= INT_MAX:
        return number
    raw = np.array([number & _U64_MASK], dtype=np.uint64)
    return int(raw.view(np.int64)[0])


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def __post_init__(self) -> None:
        kind, payload = self.type, self.value
        if kind == TYPE_INT:
            ok = isinstance(payload, int) and not isinstance(payload, bool) and INT_MIN <= payload <= INT_MAX
        elif kind == TYPE_BOOL:
            ok = isinstance(payload, bool)
        elif kind == TYPE_STRING:
            ok = isinstance(payload, str)
        elif kind == TYPE_NIL:
            ok = payload is None
        elif kind == TYPE_TYPE:
            ok = isinstance(payload, str)
        else:
            ok = False
        if not ok:
            raise InternalError(f"Illegal value {payload!r} for type '{kind}'")

    def render(self) -> str:
        """Text form used by WRITE and DPRINT."""
        if self.type == TYPE_NIL:
            return ""
        if self.type == TYPE_BOOL:
            return "true" if self.value else "false"
        return str(self.value)

    def __str__(self) -> str:
        if self.type == TYPE_NIL:
            return "nil@nil"
        return f"{self.type}@{self.render()}"


NIL = Value(TYPE_NIL, None)


class _Uninitialized:
    """Slot marker for a declared variable that has not been assigned yet."""

    _instance: Optional["_Uninitialized"] = None

    def __new__(cls) -> "_Uninitialized":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNINITIALIZED"


UNINITIALIZED = _Uninitialized()

Slot = Union[_Uninitialized, Value]


@dataclass
class Frame:
    kind: str
    values: Dict[str, Slot] = field(default_factory=dict)

    def declare(self, name: str) -> None:
        if name in self.values:
            raise SemanticError(f"Variable '{self.kind}@{name}' is already defined")
        self.values[name] = UNINITIALIZED

    def set(self, name: str, value: Value) -> None:
        self.values[name] = value

    def slot(self, name: str) -> Slot:
        try:
            return self.values[name]
        except KeyError:
            raise UndefinedVariableError(f"Variable '{self.kind}@{name}' is not defined")

    def get(self, name: str) -> Value:
        slot = self.slot(name)
        if slot is UNINITIALIZED:
            raise UndefinedVariableError(f"Variable '{self.kind}@{name}' is not initialized")
        assert isinstance(slot, Value)
        return slot

    def initialized_count(self) -> int:
        return sum(1 for slot in self.values.values() if slot is not UNINITIALIZED)

    def snapshot(self) -> Dict[str, str]:
        def _render(slot: Slot) -> str:
            if slot is UNINITIALIZED:
                return "<uninitialized>"
            rendered = str(slot)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return rendered

        return {k: _render(v) for k, v in self.values.items()}


class FrameSet:
    """Global frame, the local frame stack and the staged temporary frame."""

    def __init__(self) -> None:
        self.global_frame = Frame(FRAME_GLOBAL)
        self.local_frames: List[Frame] = []
        self.temporary_frame: Optional[Frame] = None

    def get(self, kind: str) -> Frame:
        if kind == FRAME_GLOBAL:
            return self.global_frame
        if kind == FRAME_LOCAL:
            if not self.local_frames:
                raise FrameAccessError("Local frame stack is empty")
            return self.local_frames[-1]
        if kind == FRAME_TEMPORARY:
            if self.temporary_frame is None:
                raise FrameAccessError("Temporary frame is not defined")
            return self.temporary_frame
        raise InternalError(f"Unknown frame kind '{kind}'")

    def declare(self, kind: str, name: str) -> None:
        self.get(kind).declare(name)

    def assign(self, kind: str, name: str, value: Value) -> None:
        self.get(kind).set(name, value)

    def lookup(self, kind: str, name: str) -> Value:
        return self.get(kind).get(name)

    def create_temporary(self) -> None:
        self.temporary_frame = Frame(FRAME_TEMPORARY)

    def push_temporary_as_local(self) -> None:
        if self.temporary_frame is None:
            raise FrameAccessError("PUSHFRAME without a temporary frame")
        frame = self.temporary_frame
        frame.kind = FRAME_LOCAL
        self.local_frames.append(frame)
        self.temporary_frame = None

    def pop_local_as_temporary(self) -> None:
        if not self.local_frames:
            raise FrameAccessError("POPFRAME with an empty local frame stack")
        frame = self.local_frames.pop()
        frame.kind = FRAME_TEMPORARY
        self.temporary_frame = frame

    def live_frames(self) -> List[Frame]:
        frames = [self.global_frame, *self.local_frames]
        if self.temporary_frame is not None:
            frames.append(self.temporary_frame)
        return frames

    def initialized_count(self) -> int:
        return sum(frame.initialized_count() for frame in self.live_frames())
