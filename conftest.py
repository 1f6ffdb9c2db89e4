"""
Pytest configuration for the BinLang test suite.

Interpreters built from the ``interpreter`` fixture never really sleep:
DELAY instructions are routed to a ``RecordingSleep`` so tests stay fast
and can assert on the requested durations.
"""

from typing import List

import pytest

from interpreter import Interpreter


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def interpreter(sleeper: RecordingSleep) -> Interpreter:
    return Interpreter(sleep=sleeper)


@pytest.fixture
def run(interpreter: Interpreter):
    """Run source text on a fresh session and return the RunResult."""
    return interpreter.run
