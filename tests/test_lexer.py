import pytest

from lexer import INVALID_EXPRESSION, BinLangExpressionError, Lexer, SourceLine, split_lines


def _types(text):
    return [token.type for token in Lexer(text).tokenize()]


class TestSplitLines:
    def test_drops_blank_lines_and_comments(self):
        text = "A = 1\n\n   // set up B\n  B = 2  \n"
        assert split_lines(text) == [SourceLine(1, "A = 1"), SourceLine(4, "B = 2")]

    def test_keeps_division_inside_a_line(self):
        assert split_lines("A = 4 / 2") == [SourceLine(1, "A = 4 / 2")]

    def test_handles_windows_line_endings(self):
        assert [line.number for line in split_lines("A = 1\r\nB = 2\r\n")] == [1, 2]

    def test_empty_source(self):
        assert split_lines("") == []
        assert split_lines("\n  \n// only a comment\n") == []


class TestLexer:
    def test_literals_and_operators(self):
        tokens = Lexer("0b1010 + 0xFF - 12").tokenize()
        assert [t.type for t in tokens] == ["NUMBER", "PLUS", "NUMBER", "MINUS", "NUMBER", "EOF"]
        assert [t.value for t in tokens[:-1]] == ["0b1010", "+", "0xFF", "-", "12"]

    def test_shifts_and_registers(self):
        assert _types("A << 2 >> B") == ["REGISTER", "LSHIFT", "NUMBER", "RSHIFT", "REGISTER", "EOF"]

    def test_unary_and_grouping(self):
        assert _types("~(A & -1)") == ["TILDE", "LPAREN", "REGISTER", "AMP", "MINUS", "NUMBER", "RPAREN", "EOF"]

    def test_columns_are_one_based(self):
        tokens = Lexer("A  + 1").tokenize()
        assert [t.column for t in tokens] == [1, 4, 6, 7]

    @pytest.mark.parametrize("text", ["A % 2", "import os", "A; B", "A == 1", "A < 2", "\"A\""])
    def test_rejects_characters_outside_the_grammar(self, text):
        with pytest.raises(BinLangExpressionError) as excinfo:
            Lexer(text).tokenize()
        assert excinfo.value.kind == INVALID_EXPRESSION

    @pytest.mark.parametrize("text", ["AB", "12C", "0b102", "0x", "0b", "a + 1"])
    def test_rejects_malformed_words(self, text):
        with pytest.raises(BinLangExpressionError):
            Lexer(text).tokenize()
