"""Block parsing and macro expansion for BinLang programs.

Preprocessing runs in two stages. ``Preprocessor.parse`` validates the block
structure of the whole program up front (function definitions, ``LOOP``
blocks, ``CALL`` sites) so that structural errors abort a run before any
instruction executes. ``Expander.expand`` then lazily unrolls loops and
inlines calls, pairing each emitted instruction with the scope it must be
evaluated against. Expansion is lazy so that scopes are always seeded from
the global registers as they stand after every earlier instruction ran.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

from lexer import (
    ARITY_MISMATCH,
    INVALID_ARGUMENT,
    MISSING_LOOP_CLOSE,
    REGISTER_NAMES,
    UNDEFINED_FUNCTION,
    UNDEFINED_REGISTER,
    UNEXPECTED_BLOCK,
    UNSUPPORTED_NESTING,
    UNTERMINATED_BLOCK,
    BinLangError,
    BinLangParseError,
    SourceLine,
    SourceLocation,
)
from parser import parse_literal


RESERVED_WORDS = {"LOOP", "CALL", "DELAY"}
TOP_LEVEL = "<top-level>"

LOOP_HEADER = re.compile(r"^LOOP\s+(\d+)\s*\{$", re.IGNORECASE)
FUNCTION_HEADER = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s+([A-Z](?:\s*,\s*[A-Z])*)\s*\{$")
CALL_LINE = re.compile(r"^CALL(?:\s+(\S+)(?:\s+(.*))?)?$", re.IGNORECASE)
INLINE_BLOCK = re.compile(r"^([^{}]*\{)\s*([^{}]*?)\s*\}$")
BLOCK_CLOSE = "}"


@dataclass(frozen=True)
class PlainLine:
    line: SourceLine


@dataclass(frozen=True)
class LoopBlock:
    header: SourceLine
    count: int
    body: Tuple["Node", ...]


@dataclass(frozen=True)
class CallSite:
    line: SourceLine
    name: str
    args: Tuple[str, ...]


Node = Union[PlainLine, LoopBlock, CallSite]


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: Tuple[str, ...]
    body: Tuple[SourceLine, ...]
    nodes: Tuple[Node, ...]
    header: SourceLine


@dataclass
class Program:
    nodes: List[Node]
    functions: Dict[str, FunctionDef]


@dataclass
class Scope:
    """Register-name-to-value mapping used to resolve one instruction.

    ``assigned`` tracks registers written through ``set`` since the scope was
    created; parameter bindings made with ``bind`` are not counted.
    """

    values: Dict[str, int] = field(default_factory=dict)
    assigned: Set[str] = field(default_factory=set)

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> Optional[int]:
        return self.values.get(name)

    def set(self, name: str, value: int) -> None:
        self.values[name] = value
        self.assigned.add(name)

    def bind(self, name: str, value: int) -> None:
        self.values[name] = value

    def copy(self) -> "Scope":
        return Scope(values=dict(self.values))

    def snapshot(self) -> Dict[str, int]:
        return dict(self.values)


@dataclass(frozen=True)
class ExpandedInstruction:
    text: str
    scope: Scope
    line: SourceLine
    location: SourceLocation
    frame: str = TOP_LEVEL
    error: Optional[BinLangError] = None

    @property
    def in_call(self) -> bool:
        return self.frame != TOP_LEVEL


def _is_block_header(text: str) -> bool:
    return text.endswith("{") or INLINE_BLOCK.match(text) is not None


def _unfold_inline_blocks(lines: Sequence[SourceLine]) -> List[SourceLine]:
    # "LOOP 3 { A = A + 1 }" is shorthand for a three-line block; "LOOP 3 {}" has no body.
    unfolded: List[SourceLine] = []
    for line in lines:
        match = INLINE_BLOCK.match(line.text)
        if match and (LOOP_HEADER.match(match.group(1)) or FUNCTION_HEADER.match(match.group(1))):
            unfolded.append(SourceLine(number=line.number, text=match.group(1).strip()))
            if match.group(2):
                unfolded.append(SourceLine(number=line.number, text=match.group(2)))
            unfolded.append(SourceLine(number=line.number, text=BLOCK_CLOSE))
        else:
            unfolded.append(line)
    return unfolded


class Preprocessor:
    def __init__(self, filename: str = "<string>", known_functions: Optional[Mapping[str, FunctionDef]] = None) -> None:
        self.filename = filename
        self.known_functions: Dict[str, FunctionDef] = dict(known_functions or {})

    def parse(self, lines: Sequence[SourceLine]) -> Program:
        lines = _unfold_inline_blocks(lines)
        functions = dict(self.known_functions)
        functions.update(self.collect_definitions(lines))
        nodes = self._parse_nodes(lines, context="top")
        self._check_calls(nodes, functions)
        return Program(nodes=nodes, functions=functions)

    def collect_definitions(self, lines: Sequence[SourceLine]) -> Dict[str, FunctionDef]:
        """Gather every top-level ``NAME P1, P2 {`` block; later definitions win."""
        functions: Dict[str, FunctionDef] = {}
        i = 0
        while i < len(lines):
            line = lines[i]
            if LOOP_HEADER.match(line.text):
                _, i = self._read_block(lines, i, kind=MISSING_LOOP_CLOSE, allow_loop=False)
                continue
            header = FUNCTION_HEADER.match(line.text)
            if header:
                name = self._function_name(header.group(1), line)
                params = tuple(p.strip() for p in header.group(2).split(","))
                if len(set(params)) != len(params):
                    raise BinLangParseError(
                        f"Duplicate parameter in definition of {name}{self._at(line)}",
                        kind=UNEXPECTED_BLOCK,
                        location=self._location(line),
                    )
                body, i = self._read_block(lines, i, kind=UNTERMINATED_BLOCK, allow_loop=True)
                nodes = self._parse_nodes(body, context="function")
                functions[name] = FunctionDef(name=name, params=params, body=tuple(body), nodes=tuple(nodes), header=line)
                continue
            i += 1
        return functions

    def _parse_nodes(self, lines: Sequence[SourceLine], *, context: str) -> List[Node]:
        nodes: List[Node] = []
        i = 0
        while i < len(lines):
            line = lines[i]
            text = line.text
            if text == BLOCK_CLOSE:
                raise BinLangParseError(
                    f"Unexpected '}}' without an open block{self._at(line)}",
                    kind=UNEXPECTED_BLOCK,
                    location=self._location(line),
                )
            loop = LOOP_HEADER.match(text)
            if loop:
                if context not in ("top", "function"):
                    self._nesting_error(line, "LOOP blocks cannot be nested")
                body, i = self._read_block(lines, i, kind=MISSING_LOOP_CLOSE, allow_loop=False)
                inner = "loop" if context == "top" else "function-loop"
                nodes.append(LoopBlock(header=line, count=int(loop.group(1)), body=tuple(self._parse_nodes(body, context=inner))))
                continue
            if FUNCTION_HEADER.match(text):
                if context != "top":
                    self._nesting_error(line, "functions cannot be defined inside blocks")
                # Already collected; skip over the body.
                _, i = self._read_block(lines, i, kind=UNTERMINATED_BLOCK, allow_loop=True)
                continue
            if _is_block_header(text):
                raise BinLangParseError(
                    f"Invalid block header '{text}'{self._at(line)}",
                    kind=UNEXPECTED_BLOCK,
                    location=self._location(line),
                )
            call = CALL_LINE.match(text)
            if call:
                if context not in ("top", "loop"):
                    self._nesting_error(line, "CALL is not allowed inside a function body")
                nodes.append(self._parse_call(line, call))
                i += 1
                continue
            nodes.append(PlainLine(line=line))
            i += 1
        return nodes

    def _read_block(
        self, lines: Sequence[SourceLine], start: int, *, kind: str, allow_loop: bool
    ) -> Tuple[List[SourceLine], int]:
        """Collect the body of the block opened at ``lines[start]``.

        Returns the body lines and the index just past the closing brace.
        """
        header = lines[start]
        body: List[SourceLine] = []
        depth = 0
        i = start + 1
        while i < len(lines):
            line = lines[i]
            if line.text == BLOCK_CLOSE:
                if depth == 0:
                    return body, i + 1
                depth -= 1
            elif _is_block_header(line.text):
                if allow_loop and depth == 0 and LOOP_HEADER.match(line.text):
                    depth += 1
                elif LOOP_HEADER.match(line.text) or FUNCTION_HEADER.match(line.text):
                    self._nesting_error(line, "blocks may only nest one level deep")
                else:
                    raise BinLangParseError(
                        f"Invalid block header '{line.text}'{self._at(line)}",
                        kind=UNEXPECTED_BLOCK,
                        location=self._location(line),
                    )
            body.append(line)
            i += 1
        what = "LOOP" if kind == MISSING_LOOP_CLOSE else "block"
        raise BinLangParseError(
            f"Missing closing '}}' for {what} opened{self._at(header)}",
            kind=kind,
            location=self._location(header),
        )

    def _parse_call(self, line: SourceLine, match: "re.Match[str]") -> CallSite:
        raw_name = match.group(1)
        if raw_name is None:
            raise BinLangParseError(
                f"CALL requires a function name{self._at(line)}",
                kind=UNDEFINED_FUNCTION,
                location=self._location(line),
            )
        raw_args = match.group(2)
        args: Tuple[str, ...] = ()
        if raw_args is not None and raw_args.strip():
            args = tuple(arg.strip() for arg in raw_args.split(","))
        return CallSite(line=line, name=raw_name.upper(), args=args)

    def _check_calls(self, nodes: Sequence[Node], functions: Mapping[str, FunctionDef]) -> None:
        for node in nodes:
            if isinstance(node, LoopBlock):
                self._check_calls(node.body, functions)
                continue
            if not isinstance(node, CallSite):
                continue
            function = functions.get(node.name)
            if function is None:
                raise BinLangParseError(
                    f"Function \"{node.name}\" not defined{self._at(node.line)}",
                    kind=UNDEFINED_FUNCTION,
                    location=self._location(node.line),
                )
            if len(node.args) != len(function.params):
                raise BinLangParseError(
                    f"{function.name} expects {len(function.params)} arguments but got {len(node.args)}{self._at(node.line)}",
                    kind=ARITY_MISMATCH,
                    location=self._location(node.line),
                )
            for arg in node.args:
                if not _is_register(arg) and parse_literal(arg) is None:
                    raise BinLangParseError(
                        f"Invalid argument '{arg}' to {function.name}: expected a register or a literal{self._at(node.line)}",
                        kind=INVALID_ARGUMENT,
                        location=self._location(node.line),
                    )

    def _function_name(self, raw: str, line: SourceLine) -> str:
        name = raw.upper()
        if name in RESERVED_WORDS or len(name) == 1:
            raise BinLangParseError(
                f"'{raw}' cannot be used as a function name{self._at(line)}",
                kind=UNEXPECTED_BLOCK,
                location=self._location(line),
            )
        return name

    def _nesting_error(self, line: SourceLine, reason: str) -> None:
        raise BinLangParseError(
            f"Unsupported nesting: {reason}{self._at(line)}",
            kind=UNSUPPORTED_NESTING,
            location=self._location(line),
        )

    def _location(self, line: SourceLine) -> SourceLocation:
        return SourceLocation(file=self.filename, line=line.number, column=1, statement=line.text)

    def _at(self, line: SourceLine) -> str:
        return f" at {self.filename}:{line.number}"


def _is_register(text: str) -> bool:
    return len(text) == 1 and text in REGISTER_NAMES


class Expander:
    """Turns parsed nodes into a flat stream of ``ExpandedInstruction``.

    ``registers`` is the live global scope. Top-level lines (including loop
    bodies) get a fresh copy of it when they are emitted; every line of one
    call shares a single call scope seeded from it. Registers assigned during
    a call that also exist globally are written back once the call's last
    line has been consumed.
    """

    def __init__(self, functions: Mapping[str, FunctionDef], registers: Scope, filename: str = "<string>") -> None:
        self.functions = functions
        self.registers = registers
        self.filename = filename

    def expand(self, nodes: Sequence[Node]) -> Iterator[ExpandedInstruction]:
        for node in nodes:
            if isinstance(node, CallSite):
                yield from self._expand_call(node)
            elif isinstance(node, LoopBlock):
                for _ in range(node.count):
                    yield from self.expand(node.body)
            else:
                yield self._emit(node.line, self.registers.copy(), TOP_LEVEL)

    def _expand_call(self, site: CallSite) -> Iterator[ExpandedInstruction]:
        function = self.functions[site.name]
        scope = self.registers.copy()
        for param, arg in zip(function.params, site.args):
            if _is_register(arg):
                value = self.registers.get(arg)
                if value is None:
                    error = BinLangError(
                        f"Register \"{arg}\" not defined.",
                        kind=UNDEFINED_REGISTER,
                        location=self._location(site.line),
                    )
                    yield self._emit(site.line, scope, function.name, error=error)
                    return
            else:
                value = parse_literal(arg)
                assert value is not None
            scope.bind(param, value)

        yield from self._expand_body(function.nodes, scope, function.name)

        for name in sorted(scope.assigned):
            if self.registers.has(name):
                self.registers.set(name, scope.values[name])

    def _expand_body(self, nodes: Sequence[Node], scope: Scope, frame: str) -> Iterator[ExpandedInstruction]:
        for node in nodes:
            if isinstance(node, LoopBlock):
                for _ in range(node.count):
                    yield from self._expand_body(node.body, scope, frame)
            elif isinstance(node, PlainLine):
                yield self._emit(node.line, scope, frame)

    def _emit(
        self, line: SourceLine, scope: Scope, frame: str, *, error: Optional[BinLangError] = None
    ) -> ExpandedInstruction:
        return ExpandedInstruction(
            text=line.text,
            scope=scope,
            line=line,
            location=self._location(line),
            frame=frame,
            error=error,
        )

    def _location(self, line: SourceLine) -> SourceLocation:
        return SourceLocation(file=self.filename, line=line.number, column=1, statement=line.text)
