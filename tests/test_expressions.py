import pytest

from history import format_binary, format_hex
from interpreter import evaluate_expression
from lexer import DIVISION_BY_ZERO, INVALID_EXPRESSION, UNDEFINED_REGISTER, BinLangError
from parser import parse_literal
from preprocessor import Scope


def ev(text, **registers):
    return evaluate_expression(text, Scope(values=dict(registers)))


class TestLiterals:
    @pytest.mark.parametrize(
        "text, expected",
        [("0b1010", 10), ("0xFF", 255), ("0xff", 255), ("42", 42), ("0", 0), ("0b0", 0)],
    )
    def test_evaluates_literals(self, text, expected):
        assert ev(text) == expected

    @pytest.mark.parametrize(
        "text, expected",
        [("0b101", 5), ("-0b101", -5), ("0x1F", 31), ("-0x1F", -31), ("17", 17), ("-17", -17)],
    )
    def test_parse_literal(self, text, expected):
        assert parse_literal(text) == expected

    @pytest.mark.parametrize("text", ["", "-", "0b", "0x", "0b12", "0xG", "B", "abc", "1.5"])
    def test_parse_literal_rejects(self, text):
        assert parse_literal(text) is None

    @pytest.mark.parametrize("value", [0, 1, 5, 255, 256, -1, -300, 2 ** 40])
    def test_formatting_parses_back(self, value):
        assert parse_literal(str(value)) == value
        assert parse_literal(format_binary(value)) == value
        assert parse_literal(format_binary(value, 8)) == value
        assert parse_literal(format_hex(value, 2)) == value


class TestOperators:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("2 + 3 * 4", 14),
            ("(2 + 3) * 4", 20),
            ("1 + 2 << 3", 24),
            ("1 << 2 + 1", 8),
            ("6 & 3 | 8", 10),
            ("1 | 2 ^ 3", 1),
            ("6 ^ 3 & 5", 7),
            ("-2 * 3", -6),
            ("~0", -1),
            ("~0b1010 & 0xF", 5),
            ("10 - 4 - 3", 3),
            ("100 / 10 / 5", 2),
            ("16 >> 2", 4),
            ("--3", 3),
        ],
    )
    def test_precedence_and_associativity(self, text, expected):
        assert ev(text) == expected

    @pytest.mark.parametrize("text, expected", [("7 / 2", 3), ("-7 / 2", -3), ("7 / -2", -3), ("-7 / -2", 3)])
    def test_division_truncates_toward_zero(self, text, expected):
        assert ev(text) == expected

    def test_division_by_zero(self):
        with pytest.raises(BinLangError) as excinfo:
            ev("A / 0", A=4)
        assert excinfo.value.kind == DIVISION_BY_ZERO

    @pytest.mark.parametrize("text", ["1 << 65", "1 << -1", "8 >> -2"])
    def test_shift_amount_is_bounded(self, text):
        with pytest.raises(BinLangError) as excinfo:
            ev(text)
        assert excinfo.value.kind == INVALID_EXPRESSION

    @pytest.mark.parametrize("text", ["1 +", "(1 + 2", "1 2", "", "()", "* 2", "1 + )"])
    def test_malformed_expressions(self, text):
        with pytest.raises(BinLangError) as excinfo:
            ev(text)
        assert excinfo.value.kind == INVALID_EXPRESSION


class TestRegisters:
    def test_resolves_against_scope(self):
        assert ev("A + 3", A=5) == 8
        assert ev("B * 2", B=-4) == -8

    def test_negative_register_values_stay_atomic(self):
        assert ev("A - B", A=1, B=-5) == 6
        assert ev("B * B", B=-3) == 9

    def test_undefined_register(self):
        with pytest.raises(BinLangError) as excinfo:
            ev("A + C", A=1)
        assert excinfo.value.kind == UNDEFINED_REGISTER
        assert excinfo.value.message == 'Register "C" not defined.'

    def test_scope_is_not_mutated(self):
        scope = Scope(values={"A": 2})
        evaluate_expression("A * A", scope)
        assert scope.values == {"A": 2}
        assert scope.assigned == set()


class TestLongExpressions:
    def test_long_flat_sum(self):
        assert ev(" + ".join(["1"] * 1500)) == 1500

    def test_long_chain_mixing_registers_and_operators(self):
        assert ev(" - ".join(["A"] * 1200), A=2) == 2 - 2 * 1199

    def test_long_unary_chain(self):
        assert ev("-" * 2000 + "1") == 1
        assert ev("~" * 1001 + "0") == -1

    def test_moderate_parenthesis_nesting(self):
        assert ev("(" * 40 + "1 + 1" + ")" * 40) == 2

    def test_deep_parenthesis_nesting_is_rejected(self):
        with pytest.raises(BinLangError) as excinfo:
            ev("(" * 400 + "1" + ")" * 400)
        assert excinfo.value.kind == INVALID_EXPRESSION
        assert "nested too deeply" in excinfo.value.message
