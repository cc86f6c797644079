from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from errors import ParameterError


EXTENSION_API_VERSION = 1

# Events emitted by the interpreter, in the order they can occur during a run.
EVENTS = ("program_start", "before_instruction", "after_instruction", "on_error", "program_end")


class ExtensionError(ParameterError):
    """Raised when an extension cannot be loaded or registered."""

    category = "extension"


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"


@dataclass(frozen=True)
class StepContext:
    step_index: int
    order: int
    opcode: str
    extra: Optional[Dict[str, Any]]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, ext_name, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise ExtensionError(f"Unknown event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise ExtensionError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, ext_name, name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _ext, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0") -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version))

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self._services.hook_registry.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"ipp_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise ExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    except Exception as exc:
        raise ExtensionError(f"Failed to import extension {path}: {exc}") from exc
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def register_extension(services: RuntimeServices, module: Any, *, default_name: str) -> None:
    api_version = getattr(module, "IPP_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise ExtensionError(
            f"Extension {default_name} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "ipp_register", None)
    if register is None or not callable(register):
        raise ExtensionError(f"Extension {default_name} must define callable ipp_register(ext)")
    ext_name = getattr(module, "IPP_EXTENSION_NAME", default_name)
    try:
        register(ExtensionAPI(services=services, ext_name=str(ext_name)))
    except ExtensionError:
        raise
    except Exception as exc:
        raise ExtensionError(f"Extension {default_name} failed to register: {exc}") from exc


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str], services: Optional[RuntimeServices] = None) -> RuntimeServices:
    services = services or build_default_services()
    for path in paths:
        resolved = os.path.abspath(path)
        module = load_extension_module(resolved)
        register_extension(services, module, default_name=os.path.splitext(os.path.basename(resolved))[0])
    return services
