import numpy as np
import pytest

from history import HistoryTracker, format_binary, format_hex, format_history_value


class TestFormatting:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, "0b00000000 0x00 0"),
            (5, "0b00000101 0x05 5"),
            (255, "0b11111111 0xFF 255"),
            (300, "0b100101100 0x12C 300"),
            (-3, "-0b00000011 -0x03 -3"),
        ],
    )
    def test_history_value(self, value, expected):
        assert format_history_value(value) == expected

    def test_unpadded_forms(self):
        assert format_binary(0) == "0b0"
        assert format_binary(6) == "0b110"
        assert format_hex(255) == "0xFF"
        assert format_hex(-16) == "-0x10"


class TestHistoryTracker:
    def test_record_returns_panel_line(self):
        tracker = HistoryTracker()
        line = tracker.record(1, {"A": 5, "B": 1})
        assert line == "After Line 1: A: 0b00000101 0x05 5 | B: 0b00000001 0x01 1"
        assert tracker.panel() == [line]

    def test_entries_accumulate_per_register(self):
        tracker = HistoryTracker()
        tracker.record(1, {"A": 1})
        tracker.record(2, {"A": 2, "B": 7})
        assert tracker.entries("A") == ["0b00000001 0x01 1", "0b00000010 0x02 2"]
        assert tracker.entries("B") == ["0b00000111 0x07 7"]
        assert tracker.registers() == ["A", "B"]

    def test_render(self):
        tracker = HistoryTracker()
        tracker.record(1, {"A": 1})
        assert tracker.render("A") == "History for A:\n0b00000001 0x01 1"
        assert tracker.render("Z") == "History for Z:\nNo history available for Z."

    def test_series(self):
        tracker = HistoryTracker()
        for step, value in enumerate([1, 4, 9], start=1):
            tracker.record(step, {"A": value})
        series = tracker.series("A")
        assert series.dtype == np.int64
        assert series.tolist() == [1, 4, 9]
        assert tracker.series("Q").size == 0

    def test_series_falls_back_to_objects_for_big_values(self):
        tracker = HistoryTracker()
        tracker.record(1, {"A": 1 << 70})
        assert tracker.series("A").dtype == object

    def test_viewer(self):
        assert HistoryTracker.viewer({"A": 5, "B": 2}) == (
            "Selected Registers:\nA: 0b00000101 0x05 5\nB: 0b00000010 0x02 2\n"
        )

    def test_entries_are_copies(self):
        tracker = HistoryTracker()
        tracker.record(1, {"A": 1})
        tracker.entries("A").append("junk")
        assert tracker.to_dict() == {"A": ["0b00000001 0x01 1"]}
