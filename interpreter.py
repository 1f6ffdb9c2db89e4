from __future__ import annotations
import asyncio
import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from extensions import HookRegistry, RuntimeServices, StepContext
from history import HistoryTracker, format_binary, format_hex
from lexer import (
    DIVISION_BY_ZERO,
    INVALID_DELAY_FORMAT,
    INTERNAL_ERROR,
    INVALID_EXPRESSION,
    UNDEFINED_REGISTER,
    BinLangError,
    BinLangParseError,
    Lexer,
    SourceLocation,
    Token,
    check_allowed,
    split_lines,
)
from parser import BinaryOp, Expression, Literal, Parser, UnaryOp
from preprocessor import ExpandedInstruction, Expander, FunctionDef, Preprocessor, Program, Scope


DELAY_LINE = re.compile(r"^DELAY\s+(\d+)$", re.IGNORECASE)
ASSIGNMENT_LINE = re.compile(r"^([A-Z])\s*=\s*(.+)$")

# Shifting further than this is rejected rather than building huge integers.
MAX_SHIFT = 64
ASSIGNMENT_BINARY_WIDTH = 8

Sleeper = Callable[[float], Awaitable[Any]]


class BinLangRuntimeError(BinLangError):
    """Raised for faults while executing a single instruction."""


def _safe_div(a: int, b: int) -> int:
    if b == 0:
        raise BinLangRuntimeError("Division by zero", kind=DIVISION_BY_ZERO)
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def _shift_left(value: int, amount: int) -> int:
    if not 0 <= amount <= MAX_SHIFT:
        raise BinLangRuntimeError(f"Shift amount must be between 0 and {MAX_SHIFT}", kind=INVALID_EXPRESSION)
    return value << amount


def _shift_right(value: int, amount: int) -> int:
    if not 0 <= amount <= MAX_SHIFT:
        raise BinLangRuntimeError(f"Shift amount must be between 0 and {MAX_SHIFT}", kind=INVALID_EXPRESSION)
    return value >> amount


BINARY_OPERATORS: Dict[str, Callable[[int, int], int]] = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _safe_div,
    "<<": _shift_left,
    ">>": _shift_right,
    "&": lambda a, b: a & b,
    "^": lambda a, b: a ^ b,
    "|": lambda a, b: a | b,
}

UNARY_FUNCS: Dict[str, Callable[[int], int]] = {
    "-": lambda a: -a,
    "~": lambda a: ~a,
}


def resolve_registers(tokens: List[Token], scope: Scope, location: Optional[SourceLocation] = None) -> List[Token]:
    resolved: List[Token] = []
    for token in tokens:
        if token.type != "REGISTER":
            resolved.append(token)
            continue
        value = scope.get(token.value)
        if value is None:
            raise BinLangRuntimeError(
                f"Register \"{token.value}\" not defined.", kind=UNDEFINED_REGISTER, location=location
            )
        resolved.append(Token("NUMBER", str(value), token.column))
    return resolved


def evaluate(node: Expression) -> int:
    # Long operator chains build deep left-leaning trees, so walk them with an
    # explicit stack instead of recursing.
    pending: List[Tuple[Expression, bool]] = [(node, False)]
    values: List[int] = []
    while pending:
        current, operands_ready = pending.pop()
        if isinstance(current, Literal):
            values.append(current.value)
        elif isinstance(current, UnaryOp):
            if operands_ready:
                values.append(UNARY_FUNCS[current.op](values.pop()))
            else:
                pending.append((current, True))
                pending.append((current.operand, False))
        elif isinstance(current, BinaryOp):
            if operands_ready:
                right = values.pop()
                left = values.pop()
                values.append(BINARY_OPERATORS[current.op](left, right))
            else:
                pending.append((current, True))
                pending.append((current.right, False))
                pending.append((current.left, False))
        else:
            raise BinLangRuntimeError(f"Cannot evaluate {current.__class__.__name__}", kind=INVALID_EXPRESSION)
    return values.pop()


def evaluate_expression(text: str, scope: Scope, location: Optional[SourceLocation] = None) -> int:
    """Evaluate ``text`` against ``scope``.

    The character allow-list is enforced first, then register tokens are
    replaced by their values, then the result is parsed and reduced.
    """
    tokens = Lexer(text, location).tokenize()
    tokens = resolve_registers(tokens, scope, location)
    tree = Parser(tokens, location).parse()
    try:
        return evaluate(tree)
    except BinLangRuntimeError as error:
        if error.location is None:
            error.location = location
        raise


def format_report(value: int, target: Optional[str] = None) -> str:
    lines: List[str] = []
    if target:
        lines.append(f"  {target} = {value}")
    lines.append(f"  Decimal: {value}")
    lines.append(f"  Binary : {format_binary(value, ASSIGNMENT_BINARY_WIDTH if target else 0)}")
    lines.append(f"  Hex    : {format_hex(value)}")
    return "\n".join(lines)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, int]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    """Step log with chained state ids; scope snapshots are kept only when verbose."""

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        frame: Optional[str],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, int]] = None,
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
            frame=frame,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot if self.verbose else None,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry


@dataclass
class LineOutcome:
    step: int
    text: str
    source_line: int
    frame: str
    rule: str = "EXPR"
    value: Optional[int] = None
    target: Optional[str] = None
    delay_ms: Optional[int] = None
    report: Optional[str] = None
    error: Optional[BinLangError] = None
    scope_snapshot: Dict[str, int] = field(default_factory=dict)
    instruction: Optional[ExpandedInstruction] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def render(self) -> str:
        if self.error is not None:
            return f"Error on line {self.step}: {self.error.message}"
        return f"Line {self.step}: {self.text}\n{self.report}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "step": self.step,
            "source_line": self.source_line,
            "text": self.text,
            "frame": self.frame,
            "rule": self.rule,
        }
        if self.error is not None:
            data["error"] = {"kind": self.error.kind, "message": self.error.message}
            return data
        data["value"] = self.value
        if self.target is not None:
            data["target"] = self.target
        if self.delay_ms is not None:
            data["delay_ms"] = self.delay_ms
        data["report"] = self.report
        return data


@dataclass
class RunResult:
    outcomes: List[LineOutcome]
    registers: Dict[str, int]
    history: HistoryTracker

    @property
    def errors(self) -> List[LineOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def output(self) -> str:
        return "\n\n".join(outcome.render() for outcome in self.outcomes)

    def to_json(self) -> str:
        data = {
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "registers": self.registers,
            "history": self.history.to_dict(),
        }
        return json.dumps(data, indent=2)


class Interpreter:
    """One BinLang session.

    Owns the function table, the global registers, the register history and
    the step log. ``run``/``run_async``/``stream`` start from a clean session
    unless ``reset=False`` is passed.
    """

    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        sleep: Optional[Sleeper] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.filename = filename if filename == "<string>" else os.path.abspath(filename)
        self.verbose = verbose
        self.services = services or RuntimeServices()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.sleep: Sleeper = sleep or asyncio.sleep
        self.output_sink = output_sink
        self.reset()

    def reset(self) -> None:
        self.functions: Dict[str, FunctionDef] = {}
        self.registers = Scope()
        self.history = HistoryTracker()
        self.outcomes: List[LineOutcome] = []
        self.step = 0
        self.logger = StateLogger(verbose=self.verbose)
        self.logger.record(frame=None, location=None, statement="<seed>", rewrite_record={"rule": "SEED"})

    def parse(self, source: str) -> Program:
        lines = split_lines(source)
        return Preprocessor(self.filename, known_functions=self.functions).parse(lines)

    def run(self, source: str, *, reset: bool = True) -> RunResult:
        return asyncio.run(self.run_async(source, reset=reset))

    async def run_async(self, source: str, *, reset: bool = True) -> RunResult:
        async for _outcome in self.stream(source, reset=reset):
            pass
        return self.result()

    def result(self) -> RunResult:
        return RunResult(outcomes=list(self.outcomes), registers=self.registers.snapshot(), history=self.history)

    async def stream(self, source: str, *, reset: bool = True) -> AsyncIterator[LineOutcome]:
        """Yield one outcome per expanded instruction, in order.

        Structural errors raise ``BinLangParseError`` before anything runs.
        Stopping iteration abandons the run between two instructions.
        """
        if reset:
            self.reset()
        try:
            program = self.parse(source)
        except BinLangParseError as error:
            self._emit_event("on_error", self, error)
            raise
        self.functions = program.functions
        self._emit_event("program_start", self, program)

        expander = Expander(self.functions, self.registers, self.filename)
        for instruction in expander.expand(program.nodes):
            self._emit_event("before_instruction", self, instruction)
            outcome = await self._execute(instruction)
            self.outcomes.append(outcome)
            if outcome.error is not None:
                self._emit_event("on_error", self, outcome.error)
            self._emit_event("after_instruction", self, outcome)
            if self.output_sink is not None:
                self.output_sink(outcome.render())
            yield outcome

        self._emit_event("program_end", self)

    async def _execute(self, instruction: ExpandedInstruction) -> LineOutcome:
        self.step += 1
        outcome = LineOutcome(
            step=self.step,
            text=instruction.text,
            source_line=instruction.line.number,
            frame=instruction.frame,
            scope_snapshot=instruction.scope.snapshot(),
            instruction=instruction,
        )
        if instruction.error is not None:
            outcome.error = instruction.error
        else:
            try:
                if instruction.text.upper().startswith("DELAY"):
                    await self._execute_delay(instruction, outcome)
                else:
                    self._execute_evaluation(instruction, outcome)
            except BinLangError as error:
                outcome.error = error
            except Exception as exc:
                outcome.error = BinLangRuntimeError(
                    f"Internal interpreter error: {exc}", kind=INTERNAL_ERROR, location=instruction.location
                )
        if outcome.error is not None:
            outcome.rule = "ERROR"

        self.history.record(self.step, self.registers.values)
        self._log_step(outcome, instruction)
        return outcome

    async def _execute_delay(self, instruction: ExpandedInstruction, outcome: LineOutcome) -> None:
        match = DELAY_LINE.match(instruction.text)
        if not match:
            raise BinLangRuntimeError(
                "Invalid DELAY format. Use: DELAY <milliseconds>",
                kind=INVALID_DELAY_FORMAT,
                location=instruction.location,
            )
        milliseconds = int(match.group(1))
        await self.sleep(milliseconds / 1000)
        outcome.rule = "DELAY"
        outcome.delay_ms = milliseconds
        outcome.report = f"Delayed for {milliseconds}ms"

    def _execute_evaluation(self, instruction: ExpandedInstruction, outcome: LineOutcome) -> None:
        location = instruction.location
        check_allowed(instruction.text, location)
        assignment = ASSIGNMENT_LINE.match(instruction.text)
        expression = assignment.group(2) if assignment else instruction.text
        value = evaluate_expression(expression, instruction.scope, location)
        target: Optional[str] = None
        if assignment:
            target = assignment.group(1)
            instruction.scope.set(target, value)
            # Call-local registers only reach global state if they already live there.
            if not instruction.in_call or self.registers.has(target):
                self.registers.set(target, value)
            outcome.rule = "ASSIGN"
            outcome.target = target
        outcome.value = value
        outcome.report = format_report(value, target)

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.hook_registry.emit(event, *args)
        except BinLangError:
            raise
        except Exception as exc:
            loc = None
            if self.logger.entries:
                loc = self.logger.entries[-1].source_location
            raise BinLangRuntimeError(f"Extension hook '{event}' failed: {exc}", kind="EXT", location=loc)

    def _log_step(self, outcome: LineOutcome, instruction: ExpandedInstruction) -> None:
        rewrite: Dict[str, Any] = {"rule": outcome.rule}
        if outcome.error is not None:
            rewrite["error"] = outcome.error.kind
        entry = self.logger.record(
            frame=instruction.frame,
            location=instruction.location,
            statement=instruction.text,
            env_snapshot=outcome.scope_snapshot,
            rewrite_record=rewrite,
        )
        try:
            self.hook_registry.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=outcome.rule, location=instruction.location),
            )
        except BinLangError:
            raise
        except Exception as exc:
            raise BinLangRuntimeError(
                f"Extension step rule failed: {exc}", kind="EXT", location=instruction.location
            )
