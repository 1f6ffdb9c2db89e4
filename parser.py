from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional

from lexer import BinLangExpressionError, SourceLocation, Token


class Expression:
    pass


@dataclass
class Literal(Expression):
    value: int


@dataclass
class UnaryOp(Expression):
    op: str
    operand: Expression


@dataclass
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression


def parse_literal(text: str) -> Optional[int]:
    """Parse a binary, hex or decimal literal (checked in that order).

    A leading ``-`` is accepted so that every rendered register value parses
    back to itself. Returns None for anything that is not a literal.
    """
    body = text.strip()
    negative = body.startswith("-")
    if negative:
        body = body[1:]
    if body.startswith("0b") and len(body) > 2 and set(body[2:]) <= set("01"):
        value = int(body[2:], 2)
    elif body.startswith("0x") and len(body) > 2 and all(ch in "0123456789abcdefABCDEF" for ch in body[2:]):
        value = int(body[2:], 16)
    elif body.isdigit() and body.isascii():
        value = int(body, 10)
    else:
        return None
    return -value if negative else value


# Binary operator levels, loosest first. Unary '-' and '~' bind tighter than all of them.
BINARY_LEVELS: List[Dict[str, str]] = [
    {"PIPE": "|"},
    {"CARET": "^"},
    {"AMP": "&"},
    {"LSHIFT": "<<", "RSHIFT": ">>"},
    {"PLUS": "+", "MINUS": "-"},
    {"STAR": "*", "SLASH": "/"},
]

UNARY_OPERATORS = {"MINUS": "-", "TILDE": "~"}

# Each parenthesised group costs one trip through every precedence level.
MAX_NESTING_DEPTH = 64


class Parser:
    def __init__(self, tokens: List[Token], location: Optional[SourceLocation] = None) -> None:
        self.tokens = tokens
        self.location = location
        self.index = 0
        self.depth = 0

    def parse(self) -> Expression:
        if self._peek().type == "EOF":
            raise BinLangExpressionError("Empty expression", location=self.location)
        expr = self._parse_level(0)
        token = self._peek()
        if token.type != "EOF":
            raise BinLangExpressionError(
                f"Unexpected '{token.value}' at column {token.column}", location=self.location
            )
        return expr

    def _parse_level(self, level: int) -> Expression:
        if level == len(BINARY_LEVELS):
            return self._parse_unary()
        operators = BINARY_LEVELS[level]
        left = self._parse_level(level + 1)
        while self._peek().type in operators:
            op = operators[self._advance().type]
            right = self._parse_level(level + 1)
            left = BinaryOp(op=op, left=left, right=right)
        return left

    def _parse_unary(self) -> Expression:
        prefixes: List[str] = []
        while self._peek().type in UNARY_OPERATORS:
            prefixes.append(UNARY_OPERATORS[self._advance().type])
        expr = self._parse_primary()
        for op in reversed(prefixes):
            expr = UnaryOp(op=op, operand=expr)
        return expr

    def _parse_primary(self) -> Expression:
        token = self._peek()
        if token.type == "NUMBER":
            self._advance()
            value = parse_literal(token.value)
            if value is None:
                raise BinLangExpressionError(
                    f"Invalid numeric literal '{token.value}' at column {token.column}", location=self.location
                )
            return Literal(value=value)
        if token.type == "LPAREN":
            self._advance()
            if self.depth == MAX_NESTING_DEPTH:
                raise BinLangExpressionError(
                    f"Expression nested too deeply (more than {MAX_NESTING_DEPTH} parentheses) at column {token.column}",
                    location=self.location,
                )
            self.depth += 1
            expr = self._parse_level(0)
            self._consume("RPAREN", "')'")
            self.depth -= 1
            return expr
        if token.type == "EOF":
            raise BinLangExpressionError("Unexpected end of expression", location=self.location)
        raise BinLangExpressionError(
            f"Unexpected '{token.value}' at column {token.column}", location=self.location
        )

    def _consume(self, token_type: str, description: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            found = token.value or "end of expression"
            raise BinLangExpressionError(
                f"Expected {description} but found '{found}' at column {token.column}", location=self.location
            )
        return self._advance()

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

