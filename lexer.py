from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


# Error kinds carried on every BinLangError.
UNDEFINED_REGISTER = "UndefinedRegister"
UNDEFINED_FUNCTION = "UndefinedFunction"
ARITY_MISMATCH = "ArityMismatch"
INVALID_ARGUMENT = "InvalidArgument"
INVALID_EXPRESSION = "InvalidExpression"
UNTERMINATED_BLOCK = "UnterminatedBlock"
MISSING_LOOP_CLOSE = "MissingLoopClose"
UNSUPPORTED_NESTING = "UnsupportedNesting"
UNEXPECTED_BLOCK = "UnexpectedBlock"
INVALID_DELAY_FORMAT = "InvalidDelayFormat"
DIVISION_BY_ZERO = "DivisionByZero"
INTERNAL_ERROR = "InternalError"

COMMENT_MARKER = "//"


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class BinLangError(Exception):
    """Base class for interpreter errors."""

    def __init__(self, message: str, *, kind: str, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.location = location


class BinLangParseError(BinLangError):
    """Raised when the block structure of a program cannot be trusted."""


class BinLangExpressionError(BinLangError):
    """Raised when an expression is malformed."""

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message, kind=INVALID_EXPRESSION, location=location)


@dataclass(frozen=True)
class SourceLine:
    number: int
    text: str


def split_lines(text: str) -> List[SourceLine]:
    """Split raw source into trimmed logical lines.

    Blank lines and full-line ``//`` comments are dropped; every kept line
    remembers its 1-based line number in the original text.
    """
    lines: List[SourceLine] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped or stripped.startswith(COMMENT_MARKER):
            continue
        lines.append(SourceLine(number=number, text=stripped))
    return lines


@dataclass
class Token:
    type: str
    value: str
    column: int


SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "&": "AMP",
    "|": "PIPE",
    "^": "CARET",
    "~": "TILDE",
    "(": "LPAREN",
    ")": "RPAREN",
}

SHIFTS = {
    "<<": "LSHIFT",
    ">>": "RSHIFT",
}

REGISTER_NAMES = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
HEX_DIGITS = "0123456789abcdefABCDEF"

# Everything an instruction line may contain once DELAY has been ruled out.
ALLOWED_CHARACTERS = frozenset(
    "0123456789" + REGISTER_NAMES + "abcdefxb" + "+-*/&|^~<>()=" + " \t"
)


def check_allowed(text: str, location: Optional[SourceLocation] = None) -> None:
    for ch in text:
        if ch not in ALLOWED_CHARACTERS:
            raise BinLangExpressionError(
                f"Invalid character '{ch}': use only binary, hex and decimal literals, "
                "uppercase registers and bitwise/math operators",
                location=location,
            )


class Lexer:
    def __init__(self, text: str, location: Optional[SourceLocation] = None) -> None:
        self.text = text
        self.location = location
        self.index = 0

    def tokenize(self) -> List[Token]:
        check_allowed(self.text, self.location)
        tokens: List[Token] = []
        tokens_append = tokens.append
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t":
                self.index += 1
                continue
            pair = text[self.index:self.index + 2]
            if pair in SHIFTS:
                tokens_append(Token(SHIFTS[pair], pair, self.index + 1))
                self.index += 2
                continue
            if ch in SYMBOLS:
                tokens_append(Token(SYMBOLS[ch], ch, self.index + 1))
                self.index += 1
                continue
            if ch.isdigit():
                tokens_append(self._consume_number())
                continue
            if ch in REGISTER_NAMES:
                tokens_append(self._consume_register())
                continue
            raise BinLangExpressionError(
                f"Unexpected character '{ch}' at column {self.index + 1}", location=self.location
            )
        tokens_append(Token("EOF", "", n + 1))
        return tokens

    def _consume_number(self) -> Token:
        start = self.index
        text = self.text
        prefix = text[start:start + 2]
        if prefix == "0x":
            self.index += 2
            digits = self._consume_while(HEX_DIGITS)
        elif prefix == "0b":
            self.index += 2
            digits = self._consume_while("01")
        else:
            digits = self._consume_while("0123456789")
            prefix = ""
        if not digits:
            raise BinLangExpressionError(
                f"Missing digits after '{prefix}' at column {start + 1}", location=self.location
            )
        self._reject_trailing_word(start)
        return Token("NUMBER", text[start:self.index], start + 1)

    def _consume_register(self) -> Token:
        start = self.index
        self.index += 1
        self._reject_trailing_word(start)
        return Token("REGISTER", self.text[start], start + 1)

    def _consume_while(self, allowed: str) -> str:
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in allowed:
            self.index += 1
        return text[start:self.index]

    def _reject_trailing_word(self, start: int) -> None:
        # "AB", "12C" and "0b102" are single malformed words, not two tokens.
        if self.index < len(self.text) and self.text[self.index].isalnum():
            end = self.index
            while end < len(self.text) and self.text[end].isalnum():
                end += 1
            raise BinLangExpressionError(
                f"Malformed token '{self.text[start:end]}' at column {start + 1}", location=self.location
            )
