"""Observer hooks for BinLang runs.

An extension is a Python file exposing ``binlang_register(ext)``. It receives
an ``ExtensionAPI`` and subscribes to run events or asks to be called every N
processed instructions. Observers only look at the run; the interpreter never
reads anything back from them.
"""

from __future__ import annotations

import contextlib
import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence


EXTENSION_API_VERSION = 1

EVENTS = (
    "program_start",
    "before_instruction",
    "after_instruction",
    "on_error",
    "program_end",
)

StepHandler = Callable[[Any, "StepContext"], None]


class BinLangExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None


@dataclass(frozen=True)
class Observer:
    event: str
    handler: Callable[..., None]
    priority: int
    source: str


@dataclass(frozen=True)
class StepRule:
    name: str
    every_n: int
    handler: StepHandler
    source: str

    def due(self, step_index: int) -> bool:
        return step_index % self.every_n == 0


@dataclass
class HookRegistry:
    """Event subscriptions and periodic step rules, highest priority first."""

    _observers: Dict[str, List[Observer]] = field(default_factory=dict)
    _step_rules: List[StepRule] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise BinLangExtensionError(f"Unknown event '{event}' (expected one of: {', '.join(EVENTS)})")
        observers = self._observers.setdefault(event, [])
        observers.append(Observer(event=event, handler=handler, priority=priority, source=ext_name))
        # Stable sort keeps registration order among equal priorities.
        observers.sort(key=lambda obs: obs.priority, reverse=True)

    def observers(self, event: str) -> List[Observer]:
        return list(self._observers.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        for observer in self.observers(event):
            observer.handler(*args)

    def add_step_rule(self, *, name: str, every_n: int, handler: StepHandler, ext_name: str) -> None:
        if every_n < 1:
            raise BinLangExtensionError(f"Step rule '{name}' needs every_n >= 1, got {every_n}")
        self._step_rules.append(StepRule(name=name, every_n=every_n, handler=handler, source=ext_name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for rule in self._step_rules:
            if rule.due(ctx.step_index):
                rule.handler(interpreter, ctx)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)

    def extension_names(self) -> List[str]:
        return [meta.name for meta in self.metadata]


class ExtensionAPI:
    """Handle passed to ``binlang_register``.

    ``on_event`` and ``every_n_steps`` work either as plain calls or as
    decorators.
    """

    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self.services = services
        self.ext_name = ext_name

    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        if requires_api != EXTENSION_API_VERSION:
            raise BinLangExtensionError(
                f"{name} requires extension API {requires_api}, this BinLang provides {EXTENSION_API_VERSION}"
            )
        self.services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        def subscribe(fn: Callable[..., None]) -> Callable[..., None]:
            self.services.hook_registry.on_event(event, fn, priority=priority, ext_name=self.ext_name)
            return fn

        return subscribe if handler is None else subscribe(handler)

    def every_n_steps(self, every_n: int, handler: Optional[StepHandler] = None, *, name: str = ""):
        def subscribe(fn: StepHandler) -> StepHandler:
            rule_name = name or getattr(fn, "__name__", "step_rule")
            self.services.hook_registry.add_step_rule(name=rule_name, every_n=every_n, handler=fn, ext_name=self.ext_name)
            return fn

        return subscribe if handler is None else subscribe(handler)


def _module_name_for(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in stem)
    return f"binlang_ext_{safe}_{digest}"


@contextlib.contextmanager
def _importable_from(directory: str) -> Iterator[None]:
    # Extensions may import helper modules that sit next to them.
    sys.path.insert(0, directory)
    try:
        yield
    finally:
        with contextlib.suppress(ValueError):
            sys.path.remove(directory)


def load_extension_module(path: str) -> Any:
    path = os.path.abspath(path)
    if not os.path.isfile(path):
        raise BinLangExtensionError(f"Extension not found: {path}")
    spec = importlib.util.spec_from_file_location(_module_name_for(path), path)
    if spec is None or spec.loader is None:
        raise BinLangExtensionError(f"Cannot import extension: {path}")
    module = importlib.util.module_from_spec(spec)
    with _importable_from(os.path.dirname(path)):
        spec.loader.exec_module(module)
    return module


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in paths:
        module = load_extension_module(path)
        wanted = getattr(module, "BINLANG_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if wanted != EXTENSION_API_VERSION:
            raise BinLangExtensionError(
                f"Extension {path} targets API {wanted}, this BinLang provides {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "binlang_register", None)
        if not callable(register):
            raise BinLangExtensionError(f"Extension {path} has no binlang_register(ext) function")
        ext_name = str(getattr(module, "BINLANG_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0]))
        register(ExtensionAPI(services=services, ext_name=ext_name))
    return services
