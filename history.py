from __future__ import annotations
from typing import Dict, List, Mapping

import numpy as np
from numpy.typing import NDArray

HISTORY_BINARY_WIDTH = 8
HISTORY_HEX_WIDTH = 2

_INT64 = np.iinfo(np.int64)


def format_binary(value: int, width: int = 0) -> str:
    magnitude = abs(value)
    digits = np.binary_repr(magnitude, width=max(width, magnitude.bit_length(), 1))
    return ("-" if value < 0 else "") + "0b" + digits


def format_hex(value: int, width: int = 0) -> str:
    digits = format(abs(value), "X").rjust(width, "0")
    return ("-" if value < 0 else "") + "0x" + digits


def format_history_value(value: int) -> str:
    return f"{format_binary(value, HISTORY_BINARY_WIDTH)} {format_hex(value, HISTORY_HEX_WIDTH)} {value}"


class HistoryTracker:
    """Append-only per-register log of formatted snapshots.

    One snapshot of every known register is recorded after each processed
    instruction, whether it succeeded or not.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[str]] = {}
        self._values: Dict[str, List[int]] = {}
        self._panel: List[str] = []

    def record(self, step: int, registers: Mapping[str, int]) -> str:
        states: List[str] = []
        for name, value in registers.items():
            entry = format_history_value(value)
            self._entries.setdefault(name, []).append(entry)
            self._values.setdefault(name, []).append(value)
            states.append(f"{name}: {entry}")
        line = f"After Line {step}: " + " | ".join(states)
        self._panel.append(line)
        return line

    def registers(self) -> List[str]:
        return sorted(self._entries)

    def entries(self, register: str) -> List[str]:
        return list(self._entries.get(register, []))

    def series(self, register: str) -> NDArray[np.generic]:
        values = self._values.get(register, [])
        if all(_INT64.min <= v <= _INT64.max for v in values):
            return np.array(values, dtype=np.int64)
        return np.array(values, dtype=object)

    def panel(self) -> List[str]:
        return list(self._panel)

    def render(self, register: str) -> str:
        history = self._entries.get(register)
        text = f"History for {register}:\n"
        if history:
            return text + "\n".join(history)
        return text + f"No history available for {register}."

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: list(entries) for name, entries in self._entries.items()}

    @staticmethod
    def viewer(registers: Mapping[str, int]) -> str:
        text = "Selected Registers:\n"
        for name, value in registers.items():
            text += f"{name}: {format_history_value(value)}\n"
        return text
